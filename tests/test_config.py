"""Tests for LoopClosureParams."""

from pathlib import Path

import pytest
import yaml

from haloc.config import LoopClosureParams
from haloc.exceptions import ConfigurationError


class TestLoopClosureParams:
    """Test suite for LoopClosureParams."""

    def test_defaults(self):
        """Test that unspecified parameters take the documented defaults."""
        params = LoopClosureParams(work_dir="/tmp/haloc")

        assert params.desc_type == "SIFT"
        assert params.desc_thresh == 0.8
        assert params.epipolar_thresh == 1.0
        assert params.min_neighbour == 10
        assert params.n_candidates == 2
        assert params.min_matches == 20
        assert params.min_inliers == 12
        assert params.max_reproj_err == 2.0
        assert params.validate is False
        assert params.basis_path is None

    def test_params_are_immutable(self):
        """Test that parameters cannot change after construction."""
        params = LoopClosureParams(work_dir="/tmp/haloc")

        with pytest.raises(AttributeError):
            params.min_neighbour = 3

    @pytest.mark.parametrize("work_dir", ["", "   "])
    def test_work_dir_required(self, work_dir: str):
        with pytest.raises(ConfigurationError, match="work_dir"):
            LoopClosureParams(work_dir=work_dir)

    @pytest.mark.parametrize(
        "field", ["num_proj", "min_neighbour", "n_candidates", "min_matches", "min_inliers"]
    )
    @pytest.mark.parametrize("value", [0, -1, 2.5, True])
    def test_counts_must_be_positive_integers(self, field: str, value):
        with pytest.raises(ConfigurationError, match=field):
            LoopClosureParams(work_dir="/tmp/haloc", **{field: value})

    @pytest.mark.parametrize("value", [0.0, -0.5, 1.5])
    def test_desc_thresh_range(self, value: float):
        with pytest.raises(ConfigurationError, match="desc_thresh"):
            LoopClosureParams(work_dir="/tmp/haloc", desc_thresh=value)

    def test_desc_thresh_upper_bound_inclusive(self):
        params = LoopClosureParams(work_dir="/tmp/haloc", desc_thresh=1.0)
        assert params.desc_thresh == 1.0

    @pytest.mark.parametrize("field", ["epipolar_thresh", "max_reproj_err"])
    def test_thresholds_must_be_positive(self, field: str):
        with pytest.raises(ConfigurationError, match=field):
            LoopClosureParams(work_dir="/tmp/haloc", **{field: 0.0})

    @pytest.mark.parametrize("desc_type", ["SURF", "FREAK", ""])
    def test_unsupported_desc_type(self, desc_type: str):
        """Test that unknown descriptor tags are rejected before a session starts."""
        with pytest.raises(ConfigurationError, match="desc_type"):
            LoopClosureParams(work_dir="/tmp/haloc", desc_type=desc_type)

    def test_desc_type_is_case_insensitive(self):
        params = LoopClosureParams(work_dir="/tmp/haloc", desc_type="orb")
        assert params.desc_type == "orb"

    def test_configuration_error_is_value_error(self):
        """Test that callers catching ValueError also see configuration errors."""
        with pytest.raises(ValueError):
            LoopClosureParams(work_dir="/tmp/haloc", min_inliers=0)

    def test_from_dict(self):
        params = LoopClosureParams.from_dict(
            {"work_dir": "/tmp/haloc", "desc_type": "ORB", "validate": True}
        )

        assert params.desc_type == "ORB"
        assert params.validate is True

    def test_from_dict_unknown_key(self):
        with pytest.raises(ConfigurationError, match="Unknown parameters: min_neighbor"):
            LoopClosureParams.from_dict({"work_dir": "/tmp/haloc", "min_neighbor": 5})

    def test_from_dict_missing_work_dir(self):
        with pytest.raises(ConfigurationError, match="work_dir is required"):
            LoopClosureParams.from_dict({"desc_type": "SIFT"})

    def test_to_dict_round_trip(self):
        params = LoopClosureParams(work_dir="/tmp/haloc", min_neighbour=3, validate=True)

        assert LoopClosureParams.from_dict(params.to_dict()) == params

    def test_from_yaml(self, tmp_path: Path):
        """Test loading from YAML with command line style overrides."""
        config = tmp_path / "haloc.yaml"
        config.write_text(
            yaml.safe_dump(
                {"work_dir": "/tmp/from_yaml", "min_neighbour": 5, "n_candidates": 3}
            )
        )

        params = LoopClosureParams.from_yaml(config, n_candidates=4, min_inliers=None)

        assert params.work_dir == "/tmp/from_yaml"
        assert params.min_neighbour == 5
        assert params.n_candidates == 4
        assert params.min_inliers == 12

    def test_from_yaml_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigurationError, match="not found"):
            LoopClosureParams.from_yaml(tmp_path / "missing.yaml")

    def test_from_yaml_not_a_mapping(self, tmp_path: Path):
        config = tmp_path / "haloc.yaml"
        config.write_text("- just\n- a list\n")

        with pytest.raises(ConfigurationError, match="Expected a mapping"):
            LoopClosureParams.from_yaml(config)

    def test_shipped_config(self):
        """Test that the example configuration file loads."""
        config = Path(__file__).parent.parent / "config" / "mono.yaml"

        params = LoopClosureParams.from_yaml(config)
        assert params.desc_type == "SIFT"
