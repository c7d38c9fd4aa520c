"""Hash table of visited places and candidate ranking.

The table keeps one hash per ingested observation, in ingestion order.
A query ranks every entry that is old enough to be a loop closure
candidate by hash dissimilarity.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

import numpy as np

from .hashing import HashEngine

INITIAL_CAPACITY = 64


@dataclass(frozen=True)
class HashEntry:
    """An entry of the hash table.

    Attributes:
        index: Observation sequence index
        hash: Hash vector of the observation, shape (num_proj,)
    """

    index: int
    hash: np.ndarray


@dataclass(frozen=True)
class Candidate:
    """A past observation proposed as a loop closure.

    Attributes:
        index: Observation sequence index
        score: Hash dissimilarity to the query (lower is better)
    """

    index: int
    score: float


class HashTable:
    """Append-only sequence of (observation index, hash) pairs."""

    def __init__(self) -> None:
        self._indices: list[int] = []
        self._hashes: list[np.ndarray] = []
        self._positions: dict[int, int] = {}

        # Stacked hashes for batch distance computation, rows past len(self) unused.
        # Capacity doubles when full.
        self._buffer: np.ndarray | None = None

    def append(self, index: int, hash_vector: np.ndarray) -> HashEntry:
        """Append the hash of a newly ingested observation.

        Raises:
            ValueError: If the index is not newer than the last entry, or
                the hash length differs from previous entries
        """
        if self._indices and index <= self._indices[-1]:
            raise ValueError(
                f"Hash table indices must increase: {index} after {self._indices[-1]}"
            )

        hash_vector = np.asarray(hash_vector, dtype=np.float64).copy()
        hash_vector.setflags(write=False)

        size = len(self._indices)
        if self._buffer is None:
            self._buffer = np.empty((INITIAL_CAPACITY, hash_vector.shape[0]), dtype=np.float64)
        elif hash_vector.shape[0] != self._buffer.shape[1]:
            raise ValueError(
                f"Hash length {hash_vector.shape[0]} differs from table "
                f"hash length {self._buffer.shape[1]}"
            )
        elif size == self._buffer.shape[0]:
            grown = np.empty((2 * size, self._buffer.shape[1]), dtype=np.float64)
            grown[:size] = self._buffer
            self._buffer = grown
        self._buffer[size] = hash_vector

        self._positions[index] = len(self._indices)
        self._indices.append(index)
        self._hashes.append(hash_vector)
        return HashEntry(index=index, hash=hash_vector)

    def get(self, index: int) -> np.ndarray | None:
        """Return the hash of an observation, or None if it has no entry."""
        position = self._positions.get(index)
        return None if position is None else self._hashes[position]

    @property
    def indices(self) -> np.ndarray:
        return np.array(self._indices, dtype=np.int64)

    @property
    def matrix(self) -> np.ndarray:
        """Return all hashes stacked row-wise, shape (n_entries, num_proj)."""
        if self._buffer is None:
            return np.empty((0, 0), dtype=np.float64)
        matrix = self._buffer[: len(self._indices)]
        matrix.setflags(write=False)
        return matrix

    def __getitem__(self, position: int) -> HashEntry:
        return HashEntry(index=self._indices[position], hash=self._hashes[position])

    def __iter__(self) -> Iterator[HashEntry]:
        for index, hash_vector in zip(self._indices, self._hashes):
            yield HashEntry(index=index, hash=hash_vector)

    def __len__(self) -> int:
        return len(self._indices)


class CandidateRanker:
    """Ranks hash table entries against a query hash."""

    def __init__(self, hash_engine: HashEngine) -> None:
        self._engine = hash_engine

    def rank(
        self,
        query_hash: np.ndarray,
        table: HashTable,
        min_gap: int,
        current_index: int | None = None,
    ) -> list[Candidate]:
        """Rank the entries that are old enough to close a loop.

        An entry is eligible when ``current_index - entry.index > min_gap``,
        so observations close in time to the query are never offered.

        Args:
            query_hash: Hash of the query observation
            table: Hash table of past observations
            min_gap: Minimum temporal separation, in indices
            current_index: Index of the query. Defaults to the last entry.

        Returns:
            Candidates sorted by ascending dissimilarity; ties keep the
            earlier index first
        """
        if len(table) == 0:
            return []

        indices = table.indices
        if current_index is None:
            current_index = int(indices[-1])

        eligible = np.where(current_index - indices > min_gap)[0]
        if len(eligible) == 0:
            return []

        scores = self._engine.match_all(query_hash, table.matrix[eligible])
        order = np.argsort(scores, kind="stable")

        return [
            Candidate(index=int(indices[eligible[i]]), score=float(scores[i]))
            for i in order
        ]
