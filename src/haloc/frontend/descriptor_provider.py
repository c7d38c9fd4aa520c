"""Descriptor provider turning mono images or stereo pairs into features."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np

from .feature_detector import FeatureExtractor
from .stereo_camera import StereoCamera
from .stereo_matcher import StereoMatcher


@dataclass
class FrameFeatures:
    """Keypoints, descriptors and (stereo only) 3-D points of one frame.

    Attributes:
        keypoints: Nx2 keypoint locations (float32)
        descriptors: NxD descriptor matrix
        points_3d: Nx3 points in the left camera frame, or 0x3 for mono
    """

    keypoints: np.ndarray
    descriptors: np.ndarray
    points_3d: np.ndarray

    @property
    def is_stereo(self) -> bool:
        return len(self.points_3d) > 0

    def __len__(self) -> int:
        return len(self.keypoints)


class DescriptorProvider:
    """Extracts loop closure features from pixel data.

    Mono frames keep every detected keypoint. Stereo pairs are rectified,
    matched left/right and triangulated; only left keypoints with a
    finite 3-D point in front of the camera are kept so that keypoints,
    descriptors and points stay aligned row by row.

    Example:
        >>> provider = DescriptorProvider(FeatureExtractor("SIFT"))
        >>> frame = provider.describe_mono(image)
        >>> print(f"{len(frame)} features")
    """

    def __init__(
        self,
        extractor: FeatureExtractor | None = None,
        stereo_camera: StereoCamera | None = None,
        stereo_matcher: StereoMatcher | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            extractor: Feature extractor. Defaults to SIFT.
            stereo_camera: Calibrated rig, required for stereo pairs
            stereo_matcher: Left/right matcher. Defaults to one using the
                extractor's descriptor norm.
        """
        self._extractor = extractor or FeatureExtractor()
        self._camera = stereo_camera
        self._matcher = stereo_matcher or StereoMatcher(
            norm_type=self._extractor.norm_type
        )

    @classmethod
    def from_euroc(
        cls,
        dataset_path: str | Path,
        desc_type: str = "SIFT",
        n_features: int = 1000,
    ) -> DescriptorProvider:
        """Create a stereo-capable provider from an EuRoC mav0 directory.

        Args:
            dataset_path: Path to mav0 directory containing cam0/ and cam1/
            desc_type: Descriptor type tag
            n_features: Maximum number of features per image

        Returns:
            Configured DescriptorProvider
        """
        path = Path(dataset_path)
        camera = StereoCamera.from_euroc(
            path / "cam0" / "sensor.yaml", path / "cam1" / "sensor.yaml"
        )
        return cls(
            extractor=FeatureExtractor(desc_type=desc_type, n_features=n_features),
            stereo_camera=camera,
        )

    def describe_mono(self, image: np.ndarray) -> FrameFeatures:
        """Extract features from a single image."""
        features = self._extractor.detect(image)
        return FrameFeatures(
            keypoints=features.points,
            descriptors=features.descriptors,
            points_3d=np.empty((0, 3), dtype=np.float64),
        )

    def describe_stereo(self, left: np.ndarray, right: np.ndarray) -> FrameFeatures:
        """Extract triangulated features from a stereo pair.

        Raises:
            RuntimeError: If no stereo camera was configured
        """
        if self._camera is None:
            raise RuntimeError("A StereoCamera is required to describe stereo pairs")

        left_rect, right_rect = self._camera.rectify_images(left, right)
        features_left = self._extractor.detect(left_rect)
        features_right = self._extractor.detect(right_rect)
        matches = self._matcher.match(features_left, features_right)

        if len(matches) == 0:
            return self._empty_stereo()

        points_3d = self._camera.triangulate_points(matches.pts_left, matches.pts_right)
        valid = np.isfinite(points_3d).all(axis=1) & (points_3d[:, 2] > 0)
        if not np.any(valid):
            return self._empty_stereo()

        indices = matches.left_indices[valid]
        return FrameFeatures(
            keypoints=matches.pts_left[valid].astype(np.float32),
            descriptors=features_left.descriptors[indices],
            points_3d=points_3d[valid].astype(np.float64),
        )

    def _empty_stereo(self) -> FrameFeatures:
        # A stereo frame without any 3-D point is indistinguishable from mono
        return FrameFeatures(
            keypoints=np.empty((0, 2), dtype=np.float32),
            descriptors=self._extractor.empty_descriptors(),
            points_3d=np.empty((0, 3), dtype=np.float64),
        )

    @property
    def camera_matrix(self) -> np.ndarray | None:
        """Return the rectified left camera matrix, if a rig is configured."""
        return None if self._camera is None else self._camera.camera_matrix

    @property
    def extractor(self) -> FeatureExtractor:
        return self._extractor

    @property
    def stereo_camera(self) -> StereoCamera | None:
        return self._camera
