"""Loop closure session combining hashing, ranking and geometric verification.

Each ingested observation goes through:
1. Persistence: stored under a fresh sequence index
2. Hashing: the first observation fixes the projection basis, then every
   observation's hash is appended to the hash table
3. Query: past observations at least ``min_neighbour`` indices older are
   ranked by hash dissimilarity, and the best ``n_candidates`` are
   verified geometrically (optionally confirmed against a temporal
   neighbour of the candidate)

A session is single-threaded and owns its working directory. Callers
feeding it from several threads must serialize ingest + query.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol

import numpy as np

from ..config import LoopClosureParams
from ..exceptions import ConfigurationError
from ..frontend import SE3, DescriptorProvider, FeatureExtractor
from ..frontend.feature_detector import is_binary_descriptor
from .geometric_verification import GeometricVerifier, VerificationResult
from .hashing import HashEngine
from .observation import Observation
from .observation_store import FileObservationStore, ObservationStore
from .place_recognition import Candidate, CandidateRanker, HashTable

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Lifecycle of a loop closure session."""

    UNINITIALIZED = "uninitialized"
    BOOTSTRAPPING = "bootstrapping"  # initialized, waiting for the first observation
    ACTIVE = "active"
    FINALIZED = "finalized"


class Verifier(Protocol):
    def verify(self, reference: Observation, candidate: Observation) -> VerificationResult: ...


@dataclass
class LoopClosureResult:
    """Result of a loop closure query.

    Attributes:
        is_valid: Whether a loop closure was accepted
        query_index: Index of the query observation (-1 if none ingested)
        matched_index: Index of the matched observation (-1 if none)
        matched_name: Name of the matched observation ("" if none)
        transform: Query-to-match camera transform (identity if none or mono)
        score: Hash dissimilarity of the match
        num_matches: Descriptor matches with the match
        num_inliers: Geometric inliers with the match
        validated_with: Neighbour index that confirmed the match, when
            temporal validation is enabled
    """

    is_valid: bool = False
    query_index: int = -1
    matched_index: int = -1
    matched_name: str = ""
    transform: SE3 = field(default_factory=SE3.identity)
    score: float = 0.0
    num_matches: int = 0
    num_inliers: int = 0
    validated_with: int | None = None


class LoopClosure:
    """Detects whether the latest observation revisits an earlier place.

    Example:
        >>> params = LoopClosureParams(work_dir="/tmp/haloc", min_neighbour=10)
        >>> with LoopClosure(params) as lc:
        ...     for name, image in images:
        ...         result = lc.process(image, name)
        ...         if result.is_valid:
        ...             print(f"{name} closes a loop with {result.matched_name}")
    """

    def __init__(
        self,
        params: LoopClosureParams,
        provider: DescriptorProvider | None = None,
        store: ObservationStore | None = None,
        verifier: Verifier | None = None,
        camera_matrix: np.ndarray | None = None,
    ) -> None:
        """Initialize a loop closure detector.

        Args:
            params: Session parameters
            provider: Descriptor provider for raw images. Defaults to a mono
                provider using ``params.desc_type``.
            store: Observation store. Defaults to .npz files in ``params.work_dir``.
            verifier: Geometric verifier. Defaults to one built from ``params``.
            camera_matrix: 3x3 intrinsics for stereo verification. Defaults
                to the provider's rectified camera matrix, if any.
        """
        self._params = params
        self._provider = provider
        self._store = store if store is not None else FileObservationStore(params.work_dir)

        if camera_matrix is None and provider is not None:
            camera_matrix = provider.camera_matrix
        self._verifier = (
            verifier
            if verifier is not None
            else GeometricVerifier.from_params(params, camera_matrix=camera_matrix)
        )

        self._state = SessionState.UNINITIALIZED
        self._hash_engine: HashEngine | None = None
        self._ranker: CandidateRanker | None = None
        self._table = HashTable()
        self._next_index = 0
        self._current: Observation | None = None
        self._bootstrap_index: int | None = None

    def init(self) -> None:
        """Start a session: clear the working directory and reset all state.

        Raises:
            ConfigurationError: If the working directory cannot be used or
                the configured basis file is missing or incompatible
        """
        self._store.reset()

        self._hash_engine = self._create_hash_engine()
        self._ranker = CandidateRanker(self._hash_engine)
        self._table = HashTable()
        self._next_index = 0
        self._current = None
        self._bootstrap_index = None
        self._state = SessionState.BOOTSTRAPPING

        logger.info(
            "Loop closure session started (work_dir=%s, desc_type=%s, num_proj=%d)",
            self._params.work_dir,
            self._params.desc_type,
            self._params.num_proj,
        )

    def _create_hash_engine(self) -> HashEngine:
        basis_path = self._params.basis_path
        if basis_path is None:
            return HashEngine(
                num_proj=self._params.num_proj,
                seed=self._params.hash_seed,
                binary=is_binary_descriptor(self._params.desc_type),
            )

        if not Path(basis_path).exists():
            raise ConfigurationError(f"Hash basis file not found: {basis_path}")
        engine = HashEngine.load(basis_path)
        if engine.num_proj != self._params.num_proj:
            raise ConfigurationError(
                f"Hash basis {basis_path} has {engine.num_proj} projections, "
                f"expected num_proj={self._params.num_proj}"
            )
        return engine

    def finalize(self) -> None:
        """End the session and delete the working directory.

        This is destructive and must not be called while a query runs.
        """
        self._store.destroy()
        self._table = HashTable()
        self._current = None
        self._state = SessionState.FINALIZED
        logger.info("Loop closure session finalized (%d observations)", self._next_index)

    def set_camera_matrix(self, camera_matrix: np.ndarray) -> None:
        """Set the 3x3 intrinsics used for stereo pose verification."""
        self._verifier.set_camera_matrix(camera_matrix)

    def ingest(
        self,
        image: np.ndarray | tuple[np.ndarray, np.ndarray],
        name: str = "",
    ) -> Observation:
        """Extract features from an image or stereo pair and ingest them.

        Args:
            image: Mono image, or a (left, right) stereo pair
            name: Human readable name of the observation

        Returns:
            The stored observation
        """
        self._require_session()
        provider = self._get_provider()

        if isinstance(image, (tuple, list)):
            left, right = image
            features = provider.describe_stereo(left, right)
        else:
            features = provider.describe_mono(image)

        return self.add_observation(
            keypoints=features.keypoints,
            descriptors=features.descriptors,
            points_3d=features.points_3d,
            name=name,
        )

    def add_observation(
        self,
        keypoints: np.ndarray,
        descriptors: np.ndarray,
        points_3d: np.ndarray | None = None,
        name: str = "",
    ) -> Observation:
        """Ingest an observation whose features were computed elsewhere.

        The observation is persisted under the next sequence index and
        its hash appended to the hash table. The first observation of a
        session also fixes the hash basis.

        Args:
            keypoints: 2D keypoints, shape (N, 2)
            descriptors: Descriptors, shape (N, D)
            points_3d: 3D points, shape (N, 3), or None/empty for mono
            name: Human readable name of the observation

        Returns:
            The stored observation
        """
        self._require_session()

        observation = Observation(
            index=self._next_index,
            name=name,
            keypoints=keypoints,
            descriptors=descriptors,
            points_3d=points_3d,
        )
        self._store.put(observation.index, observation)

        if not self._hash_engine.is_initialized():
            self._bootstrap(observation)
        image_hash = self._hash_engine.get_hash(observation.descriptors)
        self._table.append(observation.index, image_hash)
        self._next_index += 1
        self._current = observation
        return observation

    def _bootstrap(self, observation: Observation) -> None:
        bootstrap = self._params.basis_path is None
        try:
            self._hash_engine.init(observation.descriptors, bootstrap=bootstrap)
        except ValueError as e:
            if bootstrap:
                raise
            raise ConfigurationError(str(e)) from e

        self._bootstrap_index = observation.index
        self._state = SessionState.ACTIVE
        logger.debug(
            "Hash basis initialized from observation %d (%d-dimensional descriptors)",
            observation.index,
            self._hash_engine.descriptor_dim,
        )

    def query(self) -> LoopClosureResult:
        """Look for a loop closure of the most recently ingested observation.

        Returns:
            LoopClosureResult; ``is_valid`` is False when no loop is found

        Raises:
            StoreInconsistencyError: If a candidate record cannot be read
        """
        self._require_session()

        current = self._current
        if current is None:
            return LoopClosureResult()

        no_closure = LoopClosureResult(query_index=current.index)

        # The bootstrap observation has no history to compare against
        if current.index == self._bootstrap_index:
            return no_closure

        if len(self._table) <= self._params.min_neighbour:
            return no_closure

        candidates = self._ranker.rank(
            query_hash=self._table.get(current.index),
            table=self._table,
            min_gap=self._params.min_neighbour,
            current_index=current.index,
        )

        for candidate in candidates[: self._params.n_candidates]:
            result = self._check_candidate(current, candidate)
            if result is not None:
                logger.info(
                    "Loop closure: %d (%s) -> %d (%s), %d matches, %d inliers",
                    current.index,
                    current.name,
                    result.matched_index,
                    result.matched_name,
                    result.num_matches,
                    result.num_inliers,
                )
                return result

        return no_closure

    def _check_candidate(
        self, current: Observation, candidate: Candidate
    ) -> LoopClosureResult | None:
        """Verify one ranked candidate, including temporal validation."""
        matched, verification = self._verify(current, candidate.index)

        if not verification.is_valid:
            logger.debug(
                "Candidate %d rejected (score=%.4f, matches=%d, inliers=%d)",
                candidate.index,
                candidate.score,
                verification.num_matches,
                verification.num_inliers,
            )
            return None

        validated_with = None
        if self._params.validate:
            validated_with = self._cross_check(current, candidate.index)
            if validated_with is None:
                logger.debug(
                    "Candidate %d rejected: neither neighbour confirms it",
                    candidate.index,
                )
                return None

        return LoopClosureResult(
            is_valid=True,
            query_index=current.index,
            matched_index=candidate.index,
            matched_name=matched.name,
            transform=verification.transform,
            score=candidate.score,
            num_matches=verification.num_matches,
            num_inliers=verification.num_inliers,
            validated_with=validated_with,
        )

    def _cross_check(self, current: Observation, index: int) -> int | None:
        """Verify against the candidate's predecessor, then its successor.

        Returns:
            Index of the neighbour that verified, or None
        """
        for neighbour in (max(index - 1, 0), index + 1):
            _, verification = self._verify(current, neighbour)
            if verification.is_valid:
                return neighbour
        return None

    def _verify(
        self, current: Observation, index: int
    ) -> tuple[Observation, VerificationResult]:
        candidate = self._store.get(index)
        return candidate, self._verifier.verify(current, candidate)

    def process(
        self,
        image: np.ndarray | tuple[np.ndarray, np.ndarray],
        name: str = "",
    ) -> LoopClosureResult:
        """Ingest an image or stereo pair and query for a loop closure."""
        self.ingest(image, name)
        return self.query()

    def _get_provider(self) -> DescriptorProvider:
        if self._provider is None:
            self._provider = DescriptorProvider(
                FeatureExtractor(desc_type=self._params.desc_type)
            )
        return self._provider

    def _require_session(self) -> None:
        if self._state in (SessionState.UNINITIALIZED, SessionState.FINALIZED):
            raise RuntimeError(
                f"Loop closure session is {self._state.value}; call init() first"
            )

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def params(self) -> LoopClosureParams:
        return self._params

    @property
    def work_dir(self) -> Path:
        return Path(self._params.work_dir)

    @property
    def store(self) -> ObservationStore:
        return self._store

    @property
    def hash_engine(self) -> HashEngine | None:
        return self._hash_engine

    @property
    def hash_table(self) -> HashTable:
        return self._table

    @property
    def current_observation(self) -> Observation | None:
        return self._current

    @property
    def num_observations(self) -> int:
        """Number of observations ingested in this session."""
        return self._next_index

    def __enter__(self) -> LoopClosure:
        self.init()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.finalize()
