"""Shared fixtures: a synthetic pinhole camera and textured 3-D places."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np
import pytest

CAMERA_MATRIX = np.array(
    [[500.0, 0.0, 320.0], [0.0, 500.0, 240.0], [0.0, 0.0, 1.0]], dtype=np.float64
)

# Second viewpoint of a place: small rotation, mostly sideways motion
REVISIT_ROTATION = cv2.Rodrigues(np.array([0.02, 0.1, 0.0]))[0]
REVISIT_TRANSLATION = np.array([-0.4, 0.05, 0.1])


def project(points: np.ndarray, rotation: np.ndarray, translation: np.ndarray) -> np.ndarray:
    """Project world points into a camera with pose (rotation, translation)."""
    camera_points = points @ rotation.T + translation
    pixels = camera_points @ CAMERA_MATRIX.T
    return (pixels[:, :2] / pixels[:, 2:3]).astype(np.float32)


@dataclass
class SyntheticPlace:
    """A rigid set of 3-D points, each with its own descriptor.

    Attributes:
        points: Nx3 points in the frame of the first visit
        descriptors: Nx128 float32 descriptors, one per point
    """

    points: np.ndarray
    descriptors: np.ndarray

    def first_visit(self) -> tuple[np.ndarray, np.ndarray]:
        """Keypoints and descriptors seen from the identity pose."""
        return project(self.points, np.eye(3), np.zeros(3)), self.descriptors.copy()

    def revisit_points(self) -> np.ndarray:
        """The points expressed in the frame of the second visit."""
        return self.points @ REVISIT_ROTATION.T + REVISIT_TRANSLATION

    def revisit(self, rng: np.random.Generator, noise: float = 0.01):
        """Keypoints and slightly perturbed descriptors seen from the second pose."""
        keypoints = project(self.points, REVISIT_ROTATION, REVISIT_TRANSLATION)
        descriptors = self.descriptors + rng.normal(0.0, noise, self.descriptors.shape)
        return keypoints, descriptors.astype(np.float32)


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(42)


@pytest.fixture
def camera_matrix() -> np.ndarray:
    return CAMERA_MATRIX.copy()


@pytest.fixture
def revisit_pose() -> tuple[np.ndarray, np.ndarray]:
    """Rotation and translation taking first visit points to the second visit."""
    return REVISIT_ROTATION.copy(), REVISIT_TRANSLATION.copy()


@pytest.fixture
def make_place(rng):
    """Factory for synthetic places with ``n_points`` textured points."""

    def _make(n_points: int = 60) -> SyntheticPlace:
        points = rng.uniform([-2.0, -1.5, 4.0], [2.0, 1.5, 8.0], size=(n_points, 3))
        descriptors = rng.random((n_points, 128)).astype(np.float32)
        return SyntheticPlace(points=points, descriptors=descriptors)

    return _make


@pytest.fixture
def make_features(rng):
    """Factory for unrelated features: random keypoints and descriptors.

    Every call draws its own per-dimension descriptor offset so that the
    descriptor sets of different calls summarize differently.
    """

    def _make(n_features: int = 60, dim: int = 128) -> tuple[np.ndarray, np.ndarray]:
        keypoints = rng.uniform([0.0, 0.0], [640.0, 480.0], size=(n_features, 2))
        offset = rng.random(dim) * 4.0
        descriptors = offset + rng.random((n_features, dim))
        return keypoints.astype(np.float32), descriptors.astype(np.float32)

    return _make
