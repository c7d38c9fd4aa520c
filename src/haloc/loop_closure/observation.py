"""Observation record shared by the store, the hash engine and the verifier."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass
class Observation:
    """One ingested camera observation.

    Attributes:
        index: Sequence index, assigned at ingestion and never reused
        name: Human readable name (e.g. image filename)
        keypoints: 2D keypoint locations, shape (N, 2)
        descriptors: One descriptor per keypoint, shape (N, D)
        points_3d: One 3D point per keypoint, shape (N, 3), or (0, 3) for mono
    """

    index: int
    name: str
    keypoints: np.ndarray  # (N, 2) float32
    descriptors: np.ndarray  # (N, D) float32 or uint8
    points_3d: np.ndarray  # (N, 3) or (0, 3) float64

    def __post_init__(self) -> None:
        self.keypoints = np.asarray(self.keypoints, dtype=np.float32).reshape(-1, 2)
        self.descriptors = np.asarray(self.descriptors)
        if self.points_3d is None:
            self.points_3d = np.empty((0, 3), dtype=np.float64)
        self.points_3d = np.asarray(self.points_3d, dtype=np.float64).reshape(-1, 3)

        if self.descriptors.ndim != 2:
            raise ValueError(
                f"Descriptors must be a 2D matrix, got shape {self.descriptors.shape}"
            )
        if len(self.descriptors) != len(self.keypoints):
            raise ValueError(
                f"Got {len(self.descriptors)} descriptors for "
                f"{len(self.keypoints)} keypoints"
            )
        if len(self.points_3d) not in (0, len(self.keypoints)):
            raise ValueError(
                f"Got {len(self.points_3d)} 3D points for "
                f"{len(self.keypoints)} keypoints (expected 0 or equal)"
            )

    @property
    def is_stereo(self) -> bool:
        """Return True if the observation carries 3D points."""
        return len(self.points_3d) > 0

    @property
    def num_features(self) -> int:
        return len(self.keypoints)
