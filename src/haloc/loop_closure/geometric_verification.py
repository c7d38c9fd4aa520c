"""Geometric verification of loop closure candidates.

Hash ranking only says two images look alike. A candidate is accepted
only if enough descriptor correspondences are also consistent with a
single geometric model:

- Mono: a fundamental matrix estimated with RANSAC (epipolar constraint)
- Stereo: an absolute pose from the query's 3D points to the candidate's
  2D keypoints, estimated with PnP + RANSAC

This is what keeps perceptual aliasing (different places that look
similar) from producing false loop closures.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import cv2
import numpy as np

from ..exceptions import ConfigurationError
from ..frontend import SE3
from ..frontend.feature_detector import descriptor_norm
from .observation import Observation

logger = logging.getLogger(__name__)

# Minimum correspondences the OpenCV estimators accept
MIN_FUNDAMENTAL_POINTS = 8
MIN_PNP_POINTS = 4

# A fundamental matrix whose entries sum (in magnitude) below this is degenerate
DEGENERATE_F_THRESHOLD = 1e-3


@dataclass
class VerificationResult:
    """Result of geometric verification.

    Attributes:
        is_valid: Whether the candidate was accepted
        num_matches: Crosscheck descriptor matches
        num_inliers: Inliers of the geometric model
        transform: Query-to-candidate camera transform (identity for mono)
    """

    is_valid: bool
    num_matches: int = 0
    num_inliers: int = 0
    transform: SE3 = field(default_factory=SE3.identity)


class GeometricVerifier:
    """Verifies a candidate observation against the query observation."""

    def __init__(
        self,
        desc_type: str = "SIFT",
        desc_thresh: float = 0.8,
        epipolar_thresh: float = 1.0,
        min_matches: int = 20,
        min_inliers: int = 12,
        max_reproj_err: float = 2.0,
        camera_matrix: np.ndarray | None = None,
        ransac_seed: int = 0,
    ) -> None:
        """Initialize geometric verifier.

        Args:
            desc_type: Descriptor type tag, selects the matching norm
            desc_thresh: Ratio test threshold (best / second best distance)
            epipolar_thresh: RANSAC distance to epipolar line in pixels
            min_matches: Minimum crosscheck matches
            min_inliers: Minimum geometric inliers
            max_reproj_err: PnP RANSAC reprojection threshold in pixels
            camera_matrix: 3x3 intrinsics, required for stereo verification
            ransac_seed: Seed of OpenCV's RNG before each robust estimate,
                so repeated verification of the same pair is reproducible
        """
        self._desc_type = desc_type
        self._norm_type = descriptor_norm(desc_type)
        self._desc_thresh = desc_thresh
        self._epipolar_thresh = epipolar_thresh
        self._min_matches = min_matches
        self._min_inliers = min_inliers
        self._max_reproj_err = max_reproj_err
        self._ransac_seed = ransac_seed
        self._camera_matrix: np.ndarray | None = None
        if camera_matrix is not None:
            self.set_camera_matrix(camera_matrix)

        self._matcher = cv2.BFMatcher(self._norm_type, crossCheck=False)

    @classmethod
    def from_params(cls, params, camera_matrix: np.ndarray | None = None) -> GeometricVerifier:
        """Create a verifier from ``LoopClosureParams``."""
        return cls(
            desc_type=params.desc_type,
            desc_thresh=params.desc_thresh,
            epipolar_thresh=params.epipolar_thresh,
            min_matches=params.min_matches,
            min_inliers=params.min_inliers,
            max_reproj_err=params.max_reproj_err,
            camera_matrix=camera_matrix,
        )

    def set_camera_matrix(self, camera_matrix: np.ndarray) -> None:
        """Set the 3x3 intrinsics used for stereo pose estimation."""
        camera_matrix = np.asarray(camera_matrix, dtype=np.float64)
        if camera_matrix.shape != (3, 3):
            raise ConfigurationError(
                f"Camera matrix must be 3x3, got {camera_matrix.shape}"
            )
        self._camera_matrix = camera_matrix

    def verify(self, reference: Observation, candidate: Observation) -> VerificationResult:
        """Verify a loop closure candidate geometrically.

        Stereo verification is used when both observations carry 3D
        points; otherwise the epipolar test is used.

        Args:
            reference: Query observation
            candidate: Past observation proposed by the ranker

        Returns:
            VerificationResult with validity, counts and transform

        Raises:
            ConfigurationError: Stereo verification without camera matrix
        """
        # Step 1: Crosscheck descriptor matching
        matches = self.match_descriptors(reference.descriptors, candidate.descriptors)
        num_matches = len(matches)

        if num_matches < self._min_matches:
            return VerificationResult(is_valid=False, num_matches=num_matches)

        query_idx = np.array([m.queryIdx for m in matches], dtype=np.int64)
        train_idx = np.array([m.trainIdx for m in matches], dtype=np.int64)
        candidate_points = candidate.keypoints[train_idx].astype(np.float64)

        # Step 2: Geometric model, depending on modality
        if candidate.is_stereo and reference.is_stereo:
            object_points = reference.points_3d[query_idx]
            return self._verify_pose(object_points, candidate_points, num_matches)

        reference_points = reference.keypoints[query_idx].astype(np.float64)
        return self._verify_epipolar(reference_points, candidate_points, num_matches)

    def match_descriptors(
        self, desc1: np.ndarray, desc2: np.ndarray
    ) -> list[cv2.DMatch]:
        """Match descriptors with a ratio test and a mutual crosscheck.

        A match (i, j) is kept when j is i's nearest neighbour, i is j's
        nearest neighbour, and the nearest distance is below
        ``desc_thresh`` times the second nearest one.

        Args:
            desc1: Query descriptors (N, D)
            desc2: Train descriptors (M, D)

        Returns:
            List of matches (queryIdx into desc1, trainIdx into desc2)
        """
        if len(desc1) == 0 or len(desc2) == 0:
            return []

        desc1 = self._prepare(desc1)
        desc2 = self._prepare(desc2)

        forward = self._matcher.knnMatch(desc1, desc2, k=2)
        backward = self._matcher.match(desc2, desc1)
        best_backward = {m.queryIdx: m.trainIdx for m in backward}

        good_matches = []
        for match_pair in forward:
            if len(match_pair) == 0:
                continue
            m = match_pair[0]
            if len(match_pair) == 2 and m.distance >= self._desc_thresh * match_pair[1].distance:
                continue
            if best_backward.get(m.trainIdx) != m.queryIdx:
                continue
            good_matches.append(m)

        return good_matches

    def _prepare(self, descriptors: np.ndarray) -> np.ndarray:
        if self._norm_type == cv2.NORM_HAMMING:
            return np.ascontiguousarray(descriptors, dtype=np.uint8)
        return np.ascontiguousarray(descriptors, dtype=np.float32)

    def _verify_epipolar(
        self,
        reference_points: np.ndarray,
        candidate_points: np.ndarray,
        num_matches: int,
    ) -> VerificationResult:
        if len(reference_points) < MIN_FUNDAMENTAL_POINTS:
            return VerificationResult(is_valid=False, num_matches=num_matches)

        cv2.setRNGSeed(self._ransac_seed)
        F, status = cv2.findFundamentalMat(
            reference_points,
            candidate_points,
            cv2.FM_RANSAC,
            self._epipolar_thresh,
            0.999,
        )

        if F is None or status is None or F.shape[0] < 3:
            logger.debug("Fundamental matrix estimation failed")
            return VerificationResult(is_valid=False, num_matches=num_matches)

        # Some estimators return several stacked solutions; keep the first
        if np.abs(F[:3]).sum() < DEGENERATE_F_THRESHOLD:
            logger.debug("Degenerate fundamental matrix")
            return VerificationResult(is_valid=False, num_matches=num_matches)

        num_inliers = int(np.count_nonzero(status))
        return VerificationResult(
            is_valid=num_inliers >= self._min_inliers,
            num_matches=num_matches,
            num_inliers=num_inliers,
        )

    def _verify_pose(
        self,
        object_points: np.ndarray,
        image_points: np.ndarray,
        num_matches: int,
    ) -> VerificationResult:
        if self._camera_matrix is None:
            raise ConfigurationError(
                "Stereo verification requires a camera matrix; call set_camera_matrix()"
            )

        finite = np.isfinite(object_points).all(axis=1)
        object_points = np.ascontiguousarray(object_points[finite], dtype=np.float64)
        image_points = np.ascontiguousarray(image_points[finite], dtype=np.float64)

        if len(object_points) < MIN_PNP_POINTS:
            return VerificationResult(is_valid=False, num_matches=num_matches)

        cv2.setRNGSeed(self._ransac_seed)
        success, rvec, tvec, inliers = cv2.solvePnPRansac(
            objectPoints=object_points,
            imagePoints=image_points,
            cameraMatrix=self._camera_matrix,
            distCoeffs=None,
            iterationsCount=100,
            reprojectionError=self._max_reproj_err,
            confidence=0.99,
            flags=cv2.SOLVEPNP_ITERATIVE,
        )

        if not success or inliers is None:
            return VerificationResult(is_valid=False, num_matches=num_matches)

        num_inliers = len(inliers)
        if num_inliers < self._min_inliers:
            return VerificationResult(
                is_valid=False, num_matches=num_matches, num_inliers=num_inliers
            )

        return VerificationResult(
            is_valid=True,
            num_matches=num_matches,
            num_inliers=num_inliers,
            transform=SE3.from_rvec_tvec(rvec, tvec),
        )

    @property
    def camera_matrix(self) -> np.ndarray | None:
        return self._camera_matrix

    @property
    def min_inliers(self) -> int:
        return self._min_inliers

    @property
    def min_matches(self) -> int:
        return self._min_matches
