"""I/O utilities for loop closure evaluation."""

from .ground_truth import EvaluationStats, LoopGroundTruth

__all__ = [
    "LoopGroundTruth",
    "EvaluationStats",
]
