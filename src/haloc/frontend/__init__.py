"""Descriptor provider: features, stereo geometry and rigid transforms.

Components:
- FeatureExtractor: keypoints and descriptors for a descriptor type tag
- StereoCamera / StereoMatcher: rectification, left/right matching and
  triangulation for stereo observations
- DescriptorProvider: mono and stereo frames to loop closure features
- SE3: rigid transform returned by stereo verification
"""

from .pose import SE3
from .feature_detector import Features, FeatureExtractor
from .stereo_camera import CameraIntrinsics, StereoCamera
from .stereo_matcher import StereoMatcher, StereoMatches
from .descriptor_provider import DescriptorProvider, FrameFeatures

__all__ = [
    # Pose
    "SE3",
    # Features
    "FeatureExtractor",
    "Features",
    # Stereo
    "StereoCamera",
    "CameraIntrinsics",
    "StereoMatcher",
    "StereoMatches",
    # Provider
    "DescriptorProvider",
    "FrameFeatures",
]
