"""Loop closure parameters and their YAML loader."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from pathlib import Path

import yaml

from .exceptions import ConfigurationError
from .frontend.feature_detector import SUPPORTED_DESCRIPTORS

DEFAULT_DESC_TYPE = "SIFT"
DEFAULT_NUM_PROJ = 64
DEFAULT_DESC_THRESH = 0.8
DEFAULT_EPIPOLAR_THRESH = 1.0
DEFAULT_MIN_NEIGHBOUR = 10
DEFAULT_N_CANDIDATES = 2
DEFAULT_MIN_MATCHES = 20
DEFAULT_MIN_INLIERS = 12
DEFAULT_MAX_REPROJ_ERR = 2.0
DEFAULT_VALIDATE = False


@dataclass(frozen=True)
class LoopClosureParams:
    """Parameters of a loop closure session.

    Attributes:
        work_dir: Directory holding the per-observation records. It is
            cleared by ``LoopClosure.init()`` and removed by ``finalize()``.
        desc_type: Descriptor type tag (SIFT, ORB, AKAZE, BRISK)
        num_proj: Number of random projections, i.e. hash vector length
        desc_thresh: Ratio between best and second best descriptor
            distance below which a match is kept
        epipolar_thresh: RANSAC distance to the epipolar line (pixels)
        min_neighbour: Minimum index gap between the query and a candidate
        n_candidates: Number of ranked candidates to verify per query
        min_matches: Minimum crosscheck descriptor matches
        min_inliers: Minimum inliers of the geometric model
        max_reproj_err: RANSAC reprojection error for stereo PnP (pixels)
        validate: Cross-check accepted candidates against their neighbours
        hash_seed: Seed for the projection basis (None for OS entropy)
        basis_path: Optional .npz basis saved by a previous session
    """

    work_dir: str
    desc_type: str = DEFAULT_DESC_TYPE
    num_proj: int = DEFAULT_NUM_PROJ
    desc_thresh: float = DEFAULT_DESC_THRESH
    epipolar_thresh: float = DEFAULT_EPIPOLAR_THRESH
    min_neighbour: int = DEFAULT_MIN_NEIGHBOUR
    n_candidates: int = DEFAULT_N_CANDIDATES
    min_matches: int = DEFAULT_MIN_MATCHES
    min_inliers: int = DEFAULT_MIN_INLIERS
    max_reproj_err: float = DEFAULT_MAX_REPROJ_ERR
    validate: bool = DEFAULT_VALIDATE
    hash_seed: int | None = 0
    basis_path: str | None = None

    def __post_init__(self) -> None:
        self.check()

    def check(self) -> None:
        """Validate parameter values.

        Raises:
            ConfigurationError: If any value is out of range
        """
        if not self.work_dir or not str(self.work_dir).strip():
            raise ConfigurationError("work_dir is required")
        if not self.desc_type:
            raise ConfigurationError("desc_type must not be empty")
        if self.desc_type.upper() not in SUPPORTED_DESCRIPTORS:
            raise ConfigurationError(
                f"Unsupported desc_type '{self.desc_type}', "
                f"expected one of {sorted(SUPPORTED_DESCRIPTORS)}"
            )

        for name in ("num_proj", "min_neighbour", "n_candidates", "min_matches", "min_inliers"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")

        if not 0.0 < self.desc_thresh <= 1.0:
            raise ConfigurationError(
                f"desc_thresh must be in (0, 1], got {self.desc_thresh}"
            )
        if self.epipolar_thresh <= 0.0:
            raise ConfigurationError(
                f"epipolar_thresh must be positive, got {self.epipolar_thresh}"
            )
        if self.max_reproj_err <= 0.0:
            raise ConfigurationError(
                f"max_reproj_err must be positive, got {self.max_reproj_err}"
            )

    @classmethod
    def from_dict(cls, data: dict) -> LoopClosureParams:
        """Create parameters from a plain mapping.

        Args:
            data: Parameter names to values

        Returns:
            Validated parameters

        Raises:
            ConfigurationError: On unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown parameters: {', '.join(unknown)}")
        if "work_dir" not in data:
            raise ConfigurationError("work_dir is required")
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: str | Path, **overrides) -> LoopClosureParams:
        """Load parameters from a YAML file.

        Args:
            path: YAML file containing a mapping of parameters
            **overrides: Values replacing those read from the file

        Returns:
            Validated parameters

        Raises:
            ConfigurationError: If the file is missing or malformed
        """
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigurationError(f"Expected a mapping in {path}")

        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls.from_dict(data)

    def to_dict(self) -> dict:
        """Return parameters as a plain dictionary."""
        return asdict(self)
