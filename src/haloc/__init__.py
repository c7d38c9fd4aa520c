"""HALOC - hash-based loop closure detection for visual SLAM."""

__version__ = "0.1.0"

# Re-export main classes for convenient imports
from .config import LoopClosureParams
from .exceptions import ConfigurationError, StoreInconsistencyError
from .dataset_reader import ImageSequenceReader, StereoSequenceReader
from .io import EvaluationStats, LoopGroundTruth
from .frontend import (
    SE3,
    DescriptorProvider,
    FeatureExtractor,
    FrameFeatures,
    StereoCamera,
)
from .loop_closure import (
    FileObservationStore,
    GeometricVerifier,
    HashEngine,
    InMemoryObservationStore,
    LoopClosure,
    LoopClosureResult,
    Observation,
    SessionState,
)

__all__ = [
    "__version__",
    # Configuration / errors
    "LoopClosureParams",
    "ConfigurationError",
    "StoreInconsistencyError",
    # Dataset / I/O
    "ImageSequenceReader",
    "StereoSequenceReader",
    "LoopGroundTruth",
    "EvaluationStats",
    # Descriptor provider
    "DescriptorProvider",
    "FeatureExtractor",
    "FrameFeatures",
    "StereoCamera",
    "SE3",
    # Loop closure
    "LoopClosure",
    "LoopClosureResult",
    "SessionState",
    "Observation",
    "FileObservationStore",
    "InMemoryObservationStore",
    "HashEngine",
    "GeometricVerifier",
]
