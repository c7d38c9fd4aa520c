"""Compact image hashing for fast loop closure candidate screening.

Comparing two images descriptor-by-descriptor costs O(n*m). Instead,
each image's descriptor set is collapsed into one short vector:

1. Aggregate the variable-size descriptor matrix into a fixed-size
   summary: column-wise mean and standard deviation, L2 normalized
   (binary descriptors are unpacked to bits first)
2. Project the summary through a random Gaussian basis with
   ``num_proj`` rows, drawn once from the first image of the session

Two hashes are compared with the Euclidean distance, so screening a
candidate is O(num_proj) regardless of how many features it has.
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
from scipy.spatial import distance
from sklearn.random_projection import GaussianRandomProjection


class HashEngine:
    """Random projection hash of an image's descriptor set.

    The basis is sized from the descriptor dimensionality of the
    bootstrap observation and stays fixed afterwards; hashes are only
    comparable when computed with the same basis.
    """

    def __init__(
        self,
        num_proj: int,
        seed: int | None = 0,
        binary: bool | None = None,
    ) -> None:
        """Initialize an engine without a basis.

        Args:
            num_proj: Number of projections (hash length)
            seed: Seed of the random basis, None for OS entropy
            binary: Treat uint8 descriptors as packed bits. None infers it
                from the descriptor dtype at bootstrap.
        """
        if num_proj < 1:
            raise ValueError(f"num_proj must be positive, got {num_proj}")

        self._num_proj = num_proj
        self._seed = seed
        self._binary = binary
        self._descriptor_dim: int | None = None
        self._basis: np.ndarray | None = None  # (num_proj, aggregate_dim)
        self._initialized = False

    def init(self, descriptors: np.ndarray, bootstrap: bool = True) -> None:
        """Fix the projection basis from a first descriptor set.

        Args:
            descriptors: Descriptor matrix of the bootstrap observation (N, D)
            bootstrap: Draw a fresh random basis. If False, adopt the basis
                previously loaded with ``load`` after checking that its
                dimensionality matches these descriptors.

        Raises:
            RuntimeError: If the engine is already initialized, or no basis
                was loaded and ``bootstrap`` is False
            ValueError: On malformed or incompatible descriptors
        """
        if self._initialized:
            raise RuntimeError("Hash basis is already initialized for this session")

        descriptors = self._check_matrix(descriptors)

        if not bootstrap:
            if self._basis is None:
                raise RuntimeError("No basis loaded; call load() or bootstrap=True")
            if descriptors.shape[1] != self._descriptor_dim:
                raise ValueError(
                    f"Loaded basis expects {self._descriptor_dim}-dimensional "
                    f"descriptors, got {descriptors.shape[1]}"
                )
            self._initialized = True
            return

        if self._binary is None:
            self._binary = descriptors.dtype == np.uint8
        self._descriptor_dim = descriptors.shape[1]

        summary = self.aggregate(descriptors)
        projector = GaussianRandomProjection(
            n_components=self._num_proj,
            random_state=self._seed,
        )
        projector.fit(summary.reshape(1, -1))
        self._basis = np.asarray(projector.components_, dtype=np.float64)
        self._initialized = True

    def is_initialized(self) -> bool:
        """Return True once the basis is fixed."""
        return self._initialized

    def aggregate(self, descriptors: np.ndarray) -> np.ndarray:
        """Collapse a descriptor matrix into a fixed-length summary vector.

        Args:
            descriptors: Descriptor matrix (N, D), N may be zero

        Returns:
            L2 normalized [mean, std] vector of length 2 * D (2 * 8D for
            binary descriptors); all zeros when N is zero
        """
        descriptors = self._check_matrix(descriptors)
        if self._descriptor_dim is not None and descriptors.shape[1] != self._descriptor_dim:
            raise ValueError(
                f"Expected {self._descriptor_dim}-dimensional descriptors, "
                f"got {descriptors.shape[1]}"
            )

        values = self._to_float(descriptors)
        if len(values) == 0:
            return np.zeros(2 * values.shape[1], dtype=np.float64)

        summary = np.concatenate([values.mean(axis=0), values.std(axis=0)])
        norm = np.linalg.norm(summary)
        if norm > 0:
            summary = summary / norm
        return summary

    def get_hash(self, descriptors: np.ndarray) -> np.ndarray:
        """Compute the hash of a descriptor set.

        Args:
            descriptors: Descriptor matrix (N, D)

        Returns:
            Hash vector, shape (num_proj,) float64

        Raises:
            RuntimeError: If the basis is not initialized
        """
        if not self._initialized:
            raise RuntimeError("Hash basis is not initialized")
        return self._basis @ self.aggregate(descriptors)

    def match(self, hash1: np.ndarray, hash2: np.ndarray) -> float:
        """Return the dissimilarity of two hashes (lower is more similar)."""
        hash1 = np.asarray(hash1, dtype=np.float64)
        hash2 = np.asarray(hash2, dtype=np.float64)
        if hash1.shape != hash2.shape:
            raise ValueError(f"Hash shapes differ: {hash1.shape} vs {hash2.shape}")
        return float(distance.euclidean(hash1, hash2))

    def match_all(self, query: np.ndarray, hashes: np.ndarray) -> np.ndarray:
        """Dissimilarity of a query hash to each row of a hash matrix.

        Args:
            query: Hash vector, shape (num_proj,)
            hashes: Hash matrix, shape (M, num_proj)

        Returns:
            Distances, shape (M,)
        """
        hashes = np.asarray(hashes, dtype=np.float64)
        if len(hashes) == 0:
            return np.empty(0, dtype=np.float64)
        query = np.asarray(query, dtype=np.float64).reshape(1, -1)
        if query.shape[1] != hashes.shape[1]:
            raise ValueError(
                f"Hash shapes differ: {query.shape[1]} vs {hashes.shape[1]}"
            )
        return distance.cdist(query, hashes, metric="euclidean")[0]

    def _to_float(self, descriptors: np.ndarray) -> np.ndarray:
        if self._binary and descriptors.dtype == np.uint8:
            return np.unpackbits(descriptors, axis=1).astype(np.float64)
        return descriptors.astype(np.float64)

    @staticmethod
    def _check_matrix(descriptors: np.ndarray) -> np.ndarray:
        descriptors = np.asarray(descriptors)
        if descriptors.ndim != 2 or descriptors.shape[1] == 0:
            raise ValueError(
                f"Descriptors must be an (N, D) matrix, got shape {descriptors.shape}"
            )
        return descriptors

    def save(self, path: str | Path) -> None:
        """Save the basis to a .npz file.

        Raises:
            RuntimeError: If the engine has no basis yet
        """
        if self._basis is None:
            raise RuntimeError("Hash basis is not initialized")

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        np.savez(
            path,
            basis=self._basis,
            descriptor_dim=self._descriptor_dim,
            binary=bool(self._binary),
        )

    @classmethod
    def load(cls, path: str | Path) -> HashEngine:
        """Load a basis saved by ``save``.

        The returned engine still has to be initialized with
        ``init(descriptors, bootstrap=False)``, which checks that the
        session's descriptors fit the basis.
        """
        with np.load(path) as data:
            basis = data["basis"].astype(np.float64)
            engine = cls(num_proj=basis.shape[0], binary=bool(data["binary"]))
            engine._descriptor_dim = int(data["descriptor_dim"])
            engine._basis = basis
        return engine

    @property
    def num_proj(self) -> int:
        return self._num_proj

    @property
    def descriptor_dim(self) -> int | None:
        """Raw descriptor dimensionality the basis was sized for."""
        return self._descriptor_dim

    @property
    def basis(self) -> np.ndarray | None:
        return None if self._basis is None else self._basis.copy()
