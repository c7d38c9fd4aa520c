"""Relative camera transform reported by stereo loop closures."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np


@dataclass
class SE3:
    """Rigid transform between the query and the matched camera.

    For a stereo loop closure the transform maps points expressed in the
    query camera frame into the matched camera frame:

        p_match = R @ p_query + t

    Mono loop closures carry the identity, since a fundamental matrix
    does not fix the metric relative pose.

    Attributes:
        rotation: 3x3 rotation matrix
        translation: Translation vector, shape (3,)
    """

    rotation: np.ndarray
    translation: np.ndarray

    def __post_init__(self) -> None:
        self.rotation = np.asarray(self.rotation, dtype=np.float64)
        self.translation = np.asarray(self.translation, dtype=np.float64).reshape(-1)

        if self.rotation.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3, got {self.rotation.shape}")
        if self.translation.shape != (3,):
            raise ValueError(f"Translation must have 3 entries, got {self.translation.shape}")

    @classmethod
    def identity(cls) -> SE3:
        return cls(rotation=np.eye(3), translation=np.zeros(3))

    @classmethod
    def from_rvec_tvec(cls, rvec: np.ndarray, tvec: np.ndarray) -> SE3:
        """Build the transform from solvePnP's Rodrigues vector and translation.

        solvePnP estimates the motion taking object points into the camera
        frame, which is the query-to-match direction when the object
        points belong to the query.
        """
        rotation, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
        return cls(rotation=rotation, translation=tvec)

    @property
    def rotation_angle(self) -> float:
        """Rotation magnitude in radians."""
        cos_angle = (np.trace(self.rotation) - 1.0) / 2.0
        return float(np.arccos(np.clip(cos_angle, -1.0, 1.0)))

    @property
    def distance(self) -> float:
        """Translation magnitude, in the units of the 3D points."""
        return float(np.linalg.norm(self.translation))

    def is_identity(self, atol: float = 1e-9) -> bool:
        return bool(
            np.allclose(self.rotation, np.eye(3), atol=atol)
            and np.allclose(self.translation, 0.0, atol=atol)
        )

    def __repr__(self) -> str:
        t = self.translation
        return (
            f"SE3(t=[{t[0]:.3f}, {t[1]:.3f}, {t[2]:.3f}], "
            f"angle={np.degrees(self.rotation_angle):.2f} deg)"
        )
