"""Keypoint detection and descriptor extraction."""

from dataclasses import dataclass

import cv2
import numpy as np

# Descriptor tags whose descriptors are packed bit strings (Hamming norm)
BINARY_DESCRIPTORS = frozenset({"ORB", "BRISK", "AKAZE"})

# OpenCV factory of each descriptor tag
DETECTOR_FACTORIES = {
    "SIFT": "SIFT_create",
    "ORB": "ORB_create",
    "BRISK": "BRISK_create",
    "AKAZE": "AKAZE_create",
}

# Tags whose factory exists in the installed OpenCV build
SUPPORTED_DESCRIPTORS = frozenset(
    tag for tag, factory in DETECTOR_FACTORIES.items() if hasattr(cv2, factory)
)


def is_binary_descriptor(desc_type: str) -> bool:
    """Return True if the descriptor tag produces binary descriptors."""
    return desc_type.upper() in BINARY_DESCRIPTORS


def descriptor_norm(desc_type: str) -> int:
    """Return the OpenCV norm used to compare descriptors of this type."""
    return cv2.NORM_HAMMING if is_binary_descriptor(desc_type) else cv2.NORM_L2


@dataclass
class Features:
    """Container for detected image features.

    Attributes:
        keypoints: Tuple of OpenCV KeyPoint objects
        descriptors: NxD descriptor matrix (uint8 for binary types,
            float32 otherwise). Always 2D, possibly with zero rows.
    """

    keypoints: tuple[cv2.KeyPoint, ...]
    descriptors: np.ndarray

    @property
    def points(self) -> np.ndarray:
        """Return Nx2 array of keypoint (x, y) coordinates."""
        if len(self.keypoints) == 0:
            return np.empty((0, 2), dtype=np.float32)
        return np.array([kp.pt for kp in self.keypoints], dtype=np.float32)

    def __len__(self) -> int:
        return len(self.keypoints)


class FeatureExtractor:
    """Keypoint detector and descriptor extractor selected by type tag.

    SIFT gives float descriptors compared with the L2 norm; ORB, BRISK
    and AKAZE give binary descriptors compared with the Hamming norm.
    """

    def __init__(self, desc_type: str = "SIFT", n_features: int = 1000) -> None:
        """Create the underlying OpenCV detector.

        Args:
            desc_type: Descriptor type tag
            n_features: Maximum number of features to retain (SIFT and ORB)

        Raises:
            ValueError: If the descriptor type is not supported
        """
        desc_type = desc_type.upper()
        if desc_type not in SUPPORTED_DESCRIPTORS:
            raise ValueError(
                f"Unsupported descriptor type '{desc_type}', "
                f"expected one of {sorted(SUPPORTED_DESCRIPTORS)}"
            )

        self._desc_type = desc_type
        self._n_features = n_features
        self._detector = self._create_detector(desc_type, n_features)

    @staticmethod
    def _create_detector(desc_type: str, n_features: int):
        factory = getattr(cv2, DETECTOR_FACTORIES[desc_type])
        if desc_type in ("SIFT", "ORB"):
            return factory(nfeatures=n_features)
        return factory()

    def detect(self, image: np.ndarray, mask: np.ndarray | None = None) -> Features:
        """Detect keypoints and compute their descriptors.

        Args:
            image: Grayscale or BGR image (uint8)
            mask: Optional binary mask where 255 = detect, 0 = ignore

        Returns:
            Features with one descriptor row per keypoint
        """
        if image.ndim == 3:
            image = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)

        keypoints, descriptors = self._detector.detectAndCompute(image, mask)

        if keypoints is None or descriptors is None or len(keypoints) == 0:
            return Features(keypoints=(), descriptors=self.empty_descriptors())

        return Features(keypoints=tuple(keypoints), descriptors=descriptors)

    def empty_descriptors(self) -> np.ndarray:
        """Return a zero-row descriptor matrix with this extractor's layout."""
        dtype = np.uint8 if self.is_binary else np.float32
        return np.empty((0, self._detector.descriptorSize()), dtype=dtype)

    @property
    def desc_type(self) -> str:
        """Return the descriptor type tag."""
        return self._desc_type

    @property
    def is_binary(self) -> bool:
        """Return True if descriptors are binary (Hamming norm)."""
        return is_binary_descriptor(self._desc_type)

    @property
    def norm_type(self) -> int:
        """Return the OpenCV norm used for descriptor matching."""
        return descriptor_norm(self._desc_type)

    @property
    def n_features(self) -> int:
        """Return maximum number of features to detect."""
        return self._n_features
