"""Loop closure detection by image hashing and geometric verification.

Key components:
- Observation: one ingested frame (keypoints, descriptors, 3D points)
- ObservationStore: per-index persistence of observations
- HashEngine: random projection hash of a descriptor set
- HashTable / CandidateRanker: history of hashes and candidate ranking
- GeometricVerifier: epipolar (mono) or PnP (stereo) verification
- LoopClosure: the per-observation detection session
"""

from .geometric_verification import GeometricVerifier, VerificationResult
from .hashing import HashEngine
from .loop_detector import LoopClosure, LoopClosureResult, SessionState
from .observation import Observation
from .observation_store import (
    FileObservationStore,
    InMemoryObservationStore,
    ObservationStore,
)
from .place_recognition import Candidate, CandidateRanker, HashEntry, HashTable

__all__ = [
    # Observations
    "Observation",
    "ObservationStore",
    "FileObservationStore",
    "InMemoryObservationStore",
    # Hashing
    "HashEngine",
    # Ranking
    "HashTable",
    "HashEntry",
    "Candidate",
    "CandidateRanker",
    # Geometric Verification
    "GeometricVerifier",
    "VerificationResult",
    # Session
    "LoopClosure",
    "LoopClosureResult",
    "SessionState",
]
