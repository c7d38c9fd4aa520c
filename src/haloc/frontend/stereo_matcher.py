"""Left/right correspondence search on rectified stereo pairs."""

from dataclasses import dataclass

import cv2
import numpy as np

from .feature_detector import Features


@dataclass
class StereoMatches:
    """Container for stereo feature matches.

    Attributes:
        left_indices: N indices into the left image features
        pts_left: Nx2 matched points in the left image
        pts_right: Nx2 matched points in the right image
        disparities: N disparity values (u_left - u_right)
    """

    left_indices: np.ndarray
    pts_left: np.ndarray
    pts_right: np.ndarray
    disparities: np.ndarray

    @classmethod
    def empty(cls) -> "StereoMatches":
        return cls(
            left_indices=np.empty(0, dtype=np.int64),
            pts_left=np.empty((0, 2), dtype=np.float32),
            pts_right=np.empty((0, 2), dtype=np.float32),
            disparities=np.empty(0, dtype=np.float32),
        )

    def __len__(self) -> int:
        return len(self.left_indices)


class StereoMatcher:
    """Brute-force crosscheck matcher constrained by rectified geometry.

    A left/right match is kept when the descriptors are mutual nearest
    neighbours, both points lie on (nearly) the same image row and the
    disparity is within range.
    """

    def __init__(
        self,
        norm_type: int = cv2.NORM_L2,
        max_descriptor_distance: float | None = None,
        epipolar_threshold: float = 2.0,
        min_disparity: float = 1.0,
        max_disparity: float = 200.0,
    ) -> None:
        """Initialize stereo matcher.

        Args:
            norm_type: OpenCV norm for the descriptor type in use
            max_descriptor_distance: Optional upper bound on descriptor distance
            epipolar_threshold: Maximum row difference (pixels)
            min_disparity: Minimum disparity (pixels), rejects points at infinity
            max_disparity: Maximum disparity (pixels), rejects too-close points
        """
        self._bf_matcher = cv2.BFMatcher(norm_type, crossCheck=True)
        self._max_distance = max_descriptor_distance
        self._epipolar_threshold = epipolar_threshold
        self._min_disparity = min_disparity
        self._max_disparity = max_disparity

    def match(self, features_left: Features, features_right: Features) -> StereoMatches:
        """Match features between rectified left and right images."""
        if len(features_left) == 0 or len(features_right) == 0:
            return StereoMatches.empty()

        matches = self._bf_matcher.match(
            features_left.descriptors, features_right.descriptors
        )
        if len(matches) == 0:
            return StereoMatches.empty()

        pts_left = features_left.points
        pts_right = features_right.points

        kept: list[tuple[int, int]] = []
        for m in matches:
            if self._max_distance is not None and m.distance > self._max_distance:
                continue

            pt_left = pts_left[m.queryIdx]
            pt_right = pts_right[m.trainIdx]

            if abs(pt_left[1] - pt_right[1]) > self._epipolar_threshold:
                continue

            disparity = pt_left[0] - pt_right[0]
            if not self._min_disparity <= disparity <= self._max_disparity:
                continue

            kept.append((m.queryIdx, m.trainIdx))

        if not kept:
            return StereoMatches.empty()

        left_idx = np.array([k[0] for k in kept], dtype=np.int64)
        right_idx = np.array([k[1] for k in kept], dtype=np.int64)
        left = pts_left[left_idx]
        right = pts_right[right_idx]

        return StereoMatches(
            left_indices=left_idx,
            pts_left=left,
            pts_right=right,
            disparities=(left[:, 0] - right[:, 0]).astype(np.float32),
        )
