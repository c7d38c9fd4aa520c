"""Stereo camera calibration, rectification, and triangulation."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import cv2
import numpy as np
import yaml


@dataclass
class CameraIntrinsics:
    """Camera intrinsic parameters (pinhole model)."""

    fx: float  # Focal length x (pixels)
    fy: float  # Focal length y (pixels)
    cx: float  # Principal point x (pixels)
    cy: float  # Principal point y (pixels)

    def to_matrix(self) -> np.ndarray:
        """Return 3x3 camera intrinsic matrix K."""
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )


class StereoCamera:
    """Calibrated stereo rig used to give stereo observations 3-D points.

    Computes rectification maps once, then rectifies image pairs and
    triangulates matched rectified points into the left camera frame.
    The rectified left camera matrix is what loop closure verification
    needs for PnP.
    """

    def __init__(
        self,
        intrinsics_left: CameraIntrinsics,
        intrinsics_right: CameraIntrinsics,
        rotation: np.ndarray,
        translation: np.ndarray,
        image_size: tuple[int, int],
        distortion_left: np.ndarray | None = None,
        distortion_right: np.ndarray | None = None,
    ) -> None:
        """Initialize stereo camera from calibration data.

        Args:
            intrinsics_left: Left camera intrinsics
            intrinsics_right: Right camera intrinsics
            rotation: 3x3 rotation taking left camera points to the right camera
            translation: Translation taking left camera points to the right camera
            image_size: Image size as (width, height)
            distortion_left: Radial-tangential coefficients (k1, k2, p1, p2)
            distortion_right: Radial-tangential coefficients (k1, k2, p1, p2)
        """
        self._K_left = intrinsics_left.to_matrix()
        self._K_right = intrinsics_right.to_matrix()
        self._D_left = self._as_distortion(distortion_left)
        self._D_right = self._as_distortion(distortion_right)
        self._R = np.asarray(rotation, dtype=np.float64).reshape(3, 3)
        self._T = np.asarray(translation, dtype=np.float64).reshape(3, 1)
        self._image_size = (int(image_size[0]), int(image_size[1]))
        self._baseline = float(np.linalg.norm(self._T))

        self._compute_rectification_maps()

    @staticmethod
    def _as_distortion(coeffs: np.ndarray | None) -> np.ndarray:
        if coeffs is None:
            return np.zeros(4, dtype=np.float64)
        return np.asarray(coeffs, dtype=np.float64).flatten()

    @classmethod
    def from_euroc(cls, cam0_yaml_path: str | Path, cam1_yaml_path: str | Path) -> StereoCamera:
        """Create a stereo camera from EuRoC sensor.yaml calibration files.

        Args:
            cam0_yaml_path: Path to left camera sensor.yaml
            cam1_yaml_path: Path to right camera sensor.yaml

        Returns:
            Calibrated StereoCamera

        Raises:
            FileNotFoundError: If calibration files don't exist
            ValueError: If calibration data is invalid
        """
        intrinsics_left, distortion_left, T_BS_left, size = cls._load_calibration(
            cam0_yaml_path
        )
        intrinsics_right, distortion_right, T_BS_right, _ = cls._load_calibration(
            cam1_yaml_path
        )

        # T_cam1_cam0 = inv(T_BS_cam1) @ T_BS_cam0
        T_right_left = np.linalg.inv(T_BS_right) @ T_BS_left

        return cls(
            intrinsics_left=intrinsics_left,
            intrinsics_right=intrinsics_right,
            rotation=T_right_left[:3, :3],
            translation=T_right_left[:3, 3],
            image_size=size,
            distortion_left=distortion_left,
            distortion_right=distortion_right,
        )

    @staticmethod
    def _load_calibration(
        yaml_path: str | Path,
    ) -> tuple[CameraIntrinsics, np.ndarray, np.ndarray, tuple[int, int]]:
        """Parse one EuRoC sensor.yaml calibration file.

        Returns:
            Tuple of (intrinsics, distortion, T_BS, (width, height))
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Calibration file not found: {yaml_path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        def values(entry, length: int, label: str) -> np.ndarray:
            if entry is None or len(entry) != length:
                raise ValueError(f"Invalid {label} in {yaml_path}")
            return np.array(entry, dtype=np.float64)

        fu, fv, cu, cv = values(data.get("intrinsics"), 4, "intrinsics")
        distortion = values(
            data.get("distortion_coefficients"), 4, "distortion coefficients"
        )  # k1, k2, p1, p2
        T_BS = values((data.get("T_BS") or {}).get("data"), 16, "T_BS transform")
        width, height = values(data.get("resolution"), 2, "resolution")

        return (
            CameraIntrinsics(fx=float(fu), fy=float(fv), cx=float(cu), cy=float(cv)),
            distortion,
            T_BS.reshape(4, 4),
            (int(width), int(height)),
        )

    def _compute_rectification_maps(self) -> None:
        """Compute rectifying transforms and undistort+rectify lookup maps."""
        (
            self._R1,
            self._R2,
            self._P1,
            self._P2,
            self._Q,
            _roi1,
            _roi2,
        ) = cv2.stereoRectify(
            cameraMatrix1=self._K_left,
            distCoeffs1=self._D_left,
            cameraMatrix2=self._K_right,
            distCoeffs2=self._D_right,
            imageSize=self._image_size,
            R=self._R,
            T=self._T,
            flags=cv2.CALIB_ZERO_DISPARITY,
            alpha=0,
        )

        self._map_left = cv2.initUndistortRectifyMap(
            self._K_left, self._D_left, self._R1, self._P1, self._image_size, cv2.CV_32FC1
        )
        self._map_right = cv2.initUndistortRectifyMap(
            self._K_right, self._D_right, self._R2, self._P2, self._image_size, cv2.CV_32FC1
        )

    def rectify_images(
        self, left: np.ndarray, right: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        """Undistort and rectify a stereo pair so epipolar lines are rows."""
        left_rectified = cv2.remap(left, *self._map_left, interpolation=cv2.INTER_LINEAR)
        right_rectified = cv2.remap(
            right, *self._map_right, interpolation=cv2.INTER_LINEAR
        )
        return left_rectified, right_rectified

    def triangulate_points(
        self, pts_left: np.ndarray, pts_right: np.ndarray
    ) -> np.ndarray:
        """Triangulate matched rectified 2D points.

        Args:
            pts_left: Nx2 points in the rectified left image
            pts_right: Nx2 points in the rectified right image

        Returns:
            Nx3 points in the rectified left camera frame
        """
        if len(pts_left) == 0:
            return np.empty((0, 3), dtype=np.float64)

        points_4d = cv2.triangulatePoints(
            self._P1,
            self._P2,
            np.asarray(pts_left, dtype=np.float64).T,
            np.asarray(pts_right, dtype=np.float64).T,
        )
        return (points_4d[:3, :] / points_4d[3:4, :]).T

    @property
    def camera_matrix(self) -> np.ndarray:
        """Return the 3x3 intrinsic matrix of the rectified left camera."""
        return self._P1[:, :3].copy()

    @property
    def projection_left(self) -> np.ndarray:
        """Return the 3x4 rectified left projection matrix."""
        return self._P1.copy()

    @property
    def projection_right(self) -> np.ndarray:
        """Return the 3x4 rectified right projection matrix."""
        return self._P2.copy()

    @property
    def baseline_meters(self) -> float:
        return self._baseline

    @property
    def image_size(self) -> tuple[int, int]:
        return self._image_size
