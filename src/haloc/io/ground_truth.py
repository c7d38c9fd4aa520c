"""Loop closure ground truth and precision/recall bookkeeping.

The ground truth is an NxN matrix of whitespace separated 0/1 values for
a sequence of N images: entry (i, j) is 1 when image i closes a loop
with image j.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np


class LoopGroundTruth:
    """Loop closure ground truth matrix of an image sequence."""

    def __init__(self, matrix: np.ndarray) -> None:
        matrix = np.asarray(matrix, dtype=np.int64)
        if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
            raise ValueError(f"Ground truth must be a square matrix, got {matrix.shape}")
        self._matrix = matrix

    @classmethod
    def load(cls, path: str | Path, num_images: int | None = None) -> LoopGroundTruth:
        """Load a ground truth matrix file.

        Args:
            path: Text file with one matrix row per line
            num_images: Expected sequence length, checked if given

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the matrix is malformed or has the wrong size
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Ground truth file does not exist: {path}")

        matrix = np.atleast_2d(np.loadtxt(path, dtype=np.int64))
        ground_truth = cls(matrix)

        if num_images is not None and len(ground_truth) != num_images:
            raise ValueError(
                f"Ground truth covers {len(ground_truth)} images, expected {num_images}"
            )
        return ground_truth

    @property
    def total_loops(self) -> int:
        """Number of images that close a loop with at least one other image."""
        return int(np.count_nonzero(self._matrix.sum(axis=1) > 0))

    def is_true_positive(self, query: int, match: int, tolerance: int = 0) -> bool:
        """Check a detected loop closure against the ground truth.

        The detection is correct if the query closes a loop with any
        image within ``tolerance`` indices of the match. The window is
        clamped to the valid index range.
        """
        first = max(match - tolerance, 0)
        last = min(match + tolerance, len(self) - 1)
        if first > last:
            return False
        return bool(self._matrix[query, first : last + 1].sum() >= 1)

    def __len__(self) -> int:
        return len(self._matrix)


@dataclass
class EvaluationStats:
    """Running detection counts of an evaluation run."""

    total_loops: int = 0
    found: int = 0
    true_positives: int = 0
    false_positives: int = 0

    def record(self, is_true_positive: bool) -> None:
        """Record one reported loop closure."""
        self.found += 1
        if is_true_positive:
            self.true_positives += 1
        else:
            self.false_positives += 1

    @property
    def false_negatives(self) -> int:
        return max(self.total_loops - self.found, 0)

    @property
    def precision(self) -> float:
        """Precision in percent (0 when nothing was reported)."""
        reported = self.true_positives + self.false_positives
        return 100.0 * self.true_positives / reported if reported else 0.0

    @property
    def recall(self) -> float:
        """Recall in percent (0 when there is nothing to find)."""
        relevant = self.true_positives + self.false_negatives
        return 100.0 * self.true_positives / relevant if relevant else 0.0
