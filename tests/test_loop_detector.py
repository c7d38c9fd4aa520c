"""Tests for the LoopClosure session."""

from pathlib import Path

import numpy as np
import pytest

from haloc.config import LoopClosureParams
from haloc.exceptions import ConfigurationError, StoreInconsistencyError
from haloc.loop_closure import (
    InMemoryObservationStore,
    LoopClosure,
    SessionState,
    VerificationResult,
)


class ScriptedVerifier:
    """Verifier accepting exactly the (query, candidate) index pairs it is told to."""

    def __init__(self, accepted: set[tuple[int, int]] | None = None, accept_all=False):
        self.accepted = accepted or set()
        self.accept_all = accept_all
        self.calls: list[tuple[int, int]] = []

    def verify(self, reference, candidate) -> VerificationResult:
        self.calls.append((reference.index, candidate.index))
        if self.accept_all or (reference.index, candidate.index) in self.accepted:
            return VerificationResult(is_valid=True, num_matches=50, num_inliers=40)
        return VerificationResult(is_valid=False, num_matches=5)

    def set_camera_matrix(self, camera_matrix) -> None:
        self.camera_matrix = camera_matrix


class FailingOnceStore(InMemoryObservationStore):
    """In-memory store whose next write fails with a disk error."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_next = True

    def put(self, index, observation) -> None:
        if self.fail_next:
            self.fail_next = False
            raise OSError("No space left on device")
        super().put(index, observation)


def make_params(tmp_path: Path, **overrides) -> LoopClosureParams:
    return LoopClosureParams(work_dir=str(tmp_path / "work"), **overrides)


@pytest.fixture
def ranked_session(tmp_path: Path, make_features, rng):
    """Factory for a session of 10 observations with a known ranking.

    Observation 9 is the query. Observation 2 has the same descriptors
    (best score) and observation 5 nearly the same (second best); all
    others are unrelated. With ``min_neighbour=2`` indices 0..6 are
    eligible.
    """

    def _make(verifier: ScriptedVerifier, **overrides) -> LoopClosure:
        params = make_params(tmp_path, min_neighbour=2, **overrides)
        lc = LoopClosure(params, store=InMemoryObservationStore(), verifier=verifier)
        lc.init()

        keypoints, descriptors = make_features(50)
        for index in range(10):
            if index in (2, 9):
                lc.add_observation(keypoints, descriptors, name=f"frame_{index}")
            elif index == 5:
                noisy = descriptors + rng.normal(0.0, 0.01, descriptors.shape)
                lc.add_observation(keypoints, noisy.astype(np.float32), name="frame_5")
            else:
                lc.add_observation(*make_features(50), name=f"frame_{index}")
        return lc

    return _make


class TestLoopClosureMono:
    """End-to-end detection with the real verifier on synthetic views."""

    def run_sequence(self, tmp_path, make_place, make_features, rng, min_neighbour):
        place = make_place(60)
        params = make_params(tmp_path, min_neighbour=min_neighbour, n_candidates=2)
        results = []

        with LoopClosure(params) as lc:
            lc.add_observation(*place.first_visit(), name="place")
            results.append(lc.query())
            for i in range(3):
                lc.add_observation(*make_features(60), name=f"other_{i}")
                results.append(lc.query())
            lc.add_observation(*place.revisit(rng), name="revisit")
            results.append(lc.query())

        return results

    def test_revisit_detected(self, tmp_path, make_place, make_features, rng):
        """Test that a revisit past the temporal gap closes a loop."""
        results = self.run_sequence(tmp_path, make_place, make_features, rng, min_neighbour=3)

        assert [r.is_valid for r in results] == [False, False, False, False, True]
        result = results[-1]
        assert result.query_index == 4
        assert result.matched_index == 0
        assert result.matched_name == "place"
        assert result.num_matches == 60
        assert result.num_inliers >= 12
        assert result.validated_with is None

    def test_revisit_too_recent(self, tmp_path, make_place, make_features, rng):
        """Test that no closure is reported when the gap is not exceeded."""
        results = self.run_sequence(tmp_path, make_place, make_features, rng, min_neighbour=4)

        assert not any(r.is_valid for r in results)
        assert results[-1].matched_index == -1

    def test_stereo_revisit_recovers_transform(
        self, tmp_path, make_place, make_features, rng, camera_matrix, revisit_pose
    ):
        place = make_place(40)
        params = make_params(tmp_path, min_neighbour=2)

        with LoopClosure(params, camera_matrix=camera_matrix) as lc:
            keypoints, descriptors = place.first_visit()
            lc.add_observation(keypoints, descriptors, points_3d=place.points)
            for _ in range(2):
                lc.add_observation(*make_features(40))
            keypoints, descriptors = place.revisit(rng)
            lc.add_observation(keypoints, descriptors, points_3d=place.revisit_points())
            result = lc.query()

        rotation, translation = revisit_pose
        assert result.is_valid
        assert result.matched_index == 0
        np.testing.assert_allclose(result.transform.rotation, rotation.T, atol=1e-4)
        np.testing.assert_allclose(
            result.transform.translation, -rotation.T @ translation, atol=1e-3
        )

    def test_ingest_images(self, tmp_path, rng):
        """Test that raw images go through feature extraction."""
        textured = rng.integers(0, 256, size=(240, 320), dtype=np.uint8)
        blank = np.zeros((240, 320), dtype=np.uint8)

        with LoopClosure(make_params(tmp_path, min_neighbour=1)) as lc:
            first = lc.ingest(textured, "textured.png")
            second = lc.ingest(blank, "blank.png")
            result = lc.query()

            assert first.num_features > 0
            assert first.descriptors.shape[1] == 128
            assert second.num_features == 0
            assert not result.is_valid
            assert result.query_index == 1


class TestLoopClosureCandidates:
    """Candidate ranking, verification order and temporal validation."""

    def test_best_candidate_accepted(self, ranked_session):
        verifier = ScriptedVerifier({(9, 2)})
        lc = ranked_session(verifier)

        result = lc.query()

        assert result.is_valid
        assert result.matched_index == 2
        assert result.matched_name == "frame_2"
        assert result.score == pytest.approx(0.0)
        assert verifier.calls == [(9, 2)]

    def test_falls_through_to_next_candidate(self, ranked_session):
        verifier = ScriptedVerifier({(9, 5)})
        lc = ranked_session(verifier)

        result = lc.query()

        assert result.matched_index == 5
        assert verifier.calls == [(9, 2), (9, 5)]

    def test_stops_after_n_candidates(self, ranked_session):
        verifier = ScriptedVerifier({(9, 5)})
        lc = ranked_session(verifier, n_candidates=1)

        result = lc.query()

        assert not result.is_valid
        assert result.query_index == 9
        assert verifier.calls == [(9, 2)]

    def test_validation_fall_through(self, ranked_session):
        """Test that a candidate without a confirming neighbour is skipped."""
        verifier = ScriptedVerifier({(9, 2), (9, 5), (9, 4)})
        lc = ranked_session(verifier, validate=True)

        result = lc.query()

        assert result.is_valid
        assert result.matched_index == 5
        assert result.validated_with == 4
        assert verifier.calls == [(9, 2), (9, 1), (9, 3), (9, 5), (9, 4)]

    def test_validation_by_successor(self, ranked_session):
        verifier = ScriptedVerifier({(9, 2), (9, 3)})
        lc = ranked_session(verifier, validate=True)

        result = lc.query()

        assert result.matched_index == 2
        assert result.validated_with == 3
        assert verifier.calls == [(9, 2), (9, 1), (9, 3)]

    def test_validation_predecessor_clamped_at_zero(self, tmp_path, make_features):
        """Test that the first observation is its own predecessor."""
        verifier = ScriptedVerifier({(7, 0)})
        params = make_params(tmp_path, min_neighbour=2, validate=True)
        lc = LoopClosure(params, store=InMemoryObservationStore(), verifier=verifier)
        lc.init()

        keypoints, descriptors = make_features(50)
        lc.add_observation(keypoints, descriptors)
        for _ in range(6):
            lc.add_observation(*make_features(50))
        lc.add_observation(keypoints, descriptors)

        result = lc.query()

        assert result.matched_index == 0
        assert result.validated_with == 0
        assert verifier.calls == [(7, 0), (7, 0)]

    def test_temporal_gap_always_respected(self, tmp_path, make_features):
        verifier = ScriptedVerifier(accept_all=True)
        params = make_params(tmp_path, min_neighbour=4)
        lc = LoopClosure(params, store=InMemoryObservationStore(), verifier=verifier)
        lc.init()

        for index in range(15):
            lc.add_observation(*make_features(30))
            result = lc.query()

            assert result.query_index == index
            assert result.is_valid == (index >= 5)
            if result.is_valid:
                assert index - result.matched_index > 4

    def test_missing_record(self, tmp_path, make_features):
        """Test that a vanished candidate record is reported, not skipped."""
        verifier = ScriptedVerifier(accept_all=True)
        params = make_params(tmp_path, min_neighbour=1)
        lc = LoopClosure(params, verifier=verifier)
        lc.init()

        for _ in range(3):
            lc.add_observation(*make_features(30))
        (tmp_path / "work" / "0.npz").unlink()

        with pytest.raises(StoreInconsistencyError):
            lc.query()
        lc.finalize()


class TestLoopClosureLifecycle:
    """Session states, bootstrap and working directory handling."""

    def test_requires_init(self, tmp_path, make_features):
        lc = LoopClosure(make_params(tmp_path))

        assert lc.state == SessionState.UNINITIALIZED
        with pytest.raises(RuntimeError, match="init"):
            lc.add_observation(*make_features(10))
        with pytest.raises(RuntimeError):
            lc.query()

    def test_bootstrap_observation(self, tmp_path, make_features):
        """Test that the first observation fixes the basis and never closes a loop."""
        lc = LoopClosure(make_params(tmp_path, min_neighbour=1))
        lc.init()
        assert lc.state == SessionState.BOOTSTRAPPING
        assert not lc.hash_engine.is_initialized()

        observation = lc.add_observation(*make_features(30), name="first")
        result = lc.query()

        assert observation.index == 0
        assert lc.state == SessionState.ACTIVE
        assert lc.hash_engine.is_initialized()
        assert len(lc.hash_table) == 1
        assert 0 in lc.store
        assert not result.is_valid
        assert result.query_index == 0
        lc.finalize()

    def test_failed_write_leaves_session_unbootstrapped(self, tmp_path, make_features):
        """Test that a store failure on the first observation changes no session state."""
        store = FailingOnceStore()
        lc = LoopClosure(make_params(tmp_path), store=store, verifier=ScriptedVerifier())
        lc.init()

        with pytest.raises(OSError, match="No space"):
            lc.add_observation(*make_features(20))

        assert lc.state == SessionState.BOOTSTRAPPING
        assert not lc.hash_engine.is_initialized()
        assert len(lc.hash_table) == 0
        assert lc.num_observations == 0

        observation = lc.add_observation(*make_features(20))

        assert observation.index == 0
        assert lc.state == SessionState.ACTIVE
        assert 0 in store
        np.testing.assert_array_equal(lc.hash_table.indices, [0])
        lc.finalize()

    def test_query_before_any_observation(self, tmp_path):
        with LoopClosure(make_params(tmp_path)) as lc:
            result = lc.query()

        assert not result.is_valid
        assert result.query_index == -1

    def test_indices_are_sequential(self, tmp_path, make_features):
        with LoopClosure(make_params(tmp_path)) as lc:
            indices = [lc.add_observation(*make_features(10)).index for _ in range(4)]

            assert indices == [0, 1, 2, 3]
            assert lc.num_observations == 4
            assert lc.current_observation.index == 3
            np.testing.assert_array_equal(lc.hash_table.indices, indices)

    def test_context_manager_cleans_up(self, tmp_path, make_features):
        work_dir = tmp_path / "work"

        with LoopClosure(make_params(tmp_path)) as lc:
            lc.add_observation(*make_features(10))
            assert (work_dir / "0.npz").exists()

        assert lc.work_dir == work_dir
        assert lc.state == SessionState.FINALIZED
        assert not work_dir.exists()
        with pytest.raises(RuntimeError, match="finalized"):
            lc.add_observation(*make_features(10))

    def test_init_clears_previous_session(self, tmp_path, make_features):
        work_dir = tmp_path / "work"
        work_dir.mkdir()
        (work_dir / "17.npz").write_bytes(b"stale")

        lc = LoopClosure(make_params(tmp_path))
        lc.init()

        assert list(work_dir.iterdir()) == []
        lc.finalize()

    def test_reinit_starts_over(self, tmp_path, make_features):
        lc = LoopClosure(make_params(tmp_path))
        lc.init()
        lc.add_observation(*make_features(10))
        lc.add_observation(*make_features(10))

        lc.init()

        assert lc.num_observations == 0
        assert len(lc.hash_table) == 0
        assert lc.add_observation(*make_features(10)).index == 0
        lc.finalize()

    def test_work_dir_is_a_file(self, tmp_path):
        (tmp_path / "work").write_text("occupied")
        lc = LoopClosure(make_params(tmp_path))

        with pytest.raises(ConfigurationError):
            lc.init()

    def test_set_camera_matrix(self, tmp_path, camera_matrix):
        verifier = ScriptedVerifier()
        lc = LoopClosure(make_params(tmp_path), verifier=verifier)

        lc.set_camera_matrix(camera_matrix)

        np.testing.assert_array_equal(verifier.camera_matrix, camera_matrix)

    def test_stereo_pair_needs_stereo_camera(self, tmp_path):
        image = np.zeros((60, 80), dtype=np.uint8)

        with LoopClosure(make_params(tmp_path)) as lc:
            with pytest.raises(RuntimeError, match="StereoCamera"):
                lc.ingest((image, image))


class TestHashBasisReuse:
    """Sessions adopting a basis saved by an earlier session."""

    def test_saved_basis_reproduces_hashes(self, tmp_path, make_features):
        keypoints, descriptors = make_features(40)
        basis_path = tmp_path / "basis.npz"

        with LoopClosure(make_params(tmp_path, num_proj=16)) as first:
            first.add_observation(keypoints, descriptors)
            first.hash_engine.save(basis_path)
            expected = first.hash_table.get(0)

        params = make_params(tmp_path, num_proj=16, basis_path=str(basis_path))
        with LoopClosure(params) as second:
            second.add_observation(*make_features(40))
            second.add_observation(keypoints, descriptors)

            np.testing.assert_allclose(second.hash_table.get(1), expected)

    def test_missing_basis_file(self, tmp_path):
        params = make_params(tmp_path, basis_path=str(tmp_path / "missing.npz"))

        with pytest.raises(ConfigurationError, match="not found"):
            LoopClosure(params).init()

    def test_num_proj_mismatch(self, tmp_path, make_features):
        basis_path = tmp_path / "basis.npz"
        with LoopClosure(make_params(tmp_path, num_proj=16)) as first:
            first.add_observation(*make_features(20))
            first.hash_engine.save(basis_path)

        params = make_params(tmp_path, num_proj=32, basis_path=str(basis_path))
        with pytest.raises(ConfigurationError, match="num_proj=32"):
            LoopClosure(params).init()

    def test_descriptor_dimension_mismatch(self, tmp_path, make_features):
        basis_path = tmp_path / "basis.npz"
        with LoopClosure(make_params(tmp_path, num_proj=16)) as first:
            first.add_observation(*make_features(20))
            first.hash_engine.save(basis_path)

        params = make_params(tmp_path, num_proj=16, basis_path=str(basis_path))
        with LoopClosure(params) as second:
            with pytest.raises(ConfigurationError, match="128"):
                second.add_observation(*make_features(20, dim=64))

            assert second.num_observations == 0
            assert second.add_observation(*make_features(20)).index == 0
