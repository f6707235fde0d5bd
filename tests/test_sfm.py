import os
import numpy as np
import pytest

from seqsfm.core.sfm import SfMOptions, SequentialSfMEngine, EngineState, ViewConnectionScore
from seqsfm.core.statistics import MemoryReporter
from seqsfm.core.matching import InMemoryMatchStore
from seqsfm.core.bundle_adjustment import BundleAdjuster, ScipyBundleAdjuster


def make_engine(synthetic, view_ids=None, point_subsets=None, engine_class=SequentialSfMEngine, **options):
    scene, features, matches = synthetic.build(view_ids, point_subsets)
    return engine_class(scene, features, matches, SfMOptions(**options), reporter=MemoryReporter())


def rmse(engine):
    errors = np.array([e for e, _ in engine.reconstruction.compute_residuals(engine.features).values()])
    return float(np.sqrt(np.mean(errors ** 2)))


class RecordingEngine(SequentialSfMEngine):
    """Keeps a snapshot of the view sets before each batch selection."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.snapshots = []

    def find_next_images_group_for_resection(self):
        self.snapshots.append((set(self.reconstruction.poses), set(self.reconstruction.remaining_view_ids),
                               set(self.reconstruction.landmarks)))
        return super().find_next_images_group_for_resection()


class FailingBundleAdjuster(BundleAdjuster):
    """Never converges; remembers the poses it was handed last."""

    def __init__(self):
        self.calls = 0
        self.last_poses = {}

    def optimize(self, reconstruction, features, fixed_intrinsics):
        self.calls += 1
        self.last_poses = {v: (pose.R.copy(), pose.t.copy()) for v, pose in reconstruction.poses.items()}
        return False


class RecordingBundleAdjuster(ScipyBundleAdjuster):
    """Keeps the outcome of every adjustment."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.outcomes = []

    def optimize(self, reconstruction, features, fixed_intrinsics):
        self.outcomes.append(super().optimize(reconstruction, features, fixed_intrinsics))
        return self.outcomes[-1]


def test_options_validation():
    SfMOptions().validate()

    with pytest.raises(ValueError):
        SfMOptions(unknown_camera_type="lens").validate()
    with pytest.raises(ValueError):
        SfMOptions(initial_pair=(1, 1)).validate()
    with pytest.raises(ValueError):
        SfMOptions(sfmdata_inter_file_extension=".abc").validate()
    with pytest.raises(ValueError):
        SfMOptions(min_track_length=1).validate()
    with pytest.raises(ValueError):
        SfMOptions(group_score_ratio=0.0).validate()
    with pytest.raises(ValueError):
        SfMOptions(ba_loss="tukey").validate()
    with pytest.raises(ValueError):
        SfMOptions(ba_f_scale=0.0).validate()


def test_options_dict_round_trip():
    options = SfMOptions.from_dict({"initial_pair": [2, 5], "min_points_per_pose": 40, "not_an_option": 1})

    assert options.initial_pair == (2, 5)
    assert options.min_points_per_pose == 40
    assert SfMOptions.from_dict(options.to_dict()) == options


def test_two_view_seed(synthetic):
    common = synthetic.common_points([0, 1])[:50]
    engine = make_engine(synthetic, [0, 1], {0: set(common), 1: set(common)})

    assert engine.process()
    result = engine.get_result()

    assert result.success
    assert engine.state == EngineState.CONVERGED
    assert result.reconstructed_view_ids == [0, 1]
    assert result.rejected_view_ids == []
    assert len(result.landmarks) >= 45
    assert engine.reconstruction.reference_view_id in (0, 1)
    assert rmse(engine) < 0.5


def test_weak_third_view_is_rejected(synthetic):
    weak = synthetic.common_points([0, 1, 2])[:5]
    engine = make_engine(synthetic, [0, 1, 2], {2: set(weak)})

    assert engine.process()
    result = engine.get_result()

    assert result.success
    assert result.rejected_view_ids == [2]
    assert 2 in engine.reconstruction.remaining_view_ids
    assert sorted(result.reconstructed_view_ids) == [0, 1]


def test_full_reconstruction(synthetic):
    engine = make_engine(synthetic)

    assert engine.process()
    result = engine.get_result()

    assert result.reconstructed_view_ids == [0, 1, 2, 3, 4]
    assert result.rejected_view_ids == []
    assert len(result.landmarks) > 200
    assert rmse(engine) < 0.5

    # Recovered up to a similarity: ratios of camera distances are preserved
    centers = {v: camera.extrinsics.center for v, camera in result.cameras.items()}
    truth = {v: pose.center for v, pose in synthetic.poses.items()}
    ratio = np.linalg.norm(centers[4] - centers[0]) / np.linalg.norm(centers[2] - centers[0])
    true_ratio = np.linalg.norm(truth[4] - truth[0]) / np.linalg.norm(truth[2] - truth[0])
    assert ratio == pytest.approx(true_ratio, rel=1e-2)

    reports = engine.reporter.reports
    assert len(reports) == 1
    assert reports[0]["num_reconstructed_views"] == 5
    assert reports[0]["num_points"] == len(result.landmarks)


def test_reconstruction_grows_monotonically(synthetic):
    engine = make_engine(synthetic, engine_class=RecordingEngine)
    assert engine.process()

    all_views = set(engine.reconstruction.views)
    previous = set()
    for reconstructed, remaining, _ in engine.snapshots:
        assert previous <= reconstructed
        assert reconstructed | remaining == all_views
        assert not reconstructed & remaining
        previous = reconstructed


def test_seed_selection_is_deterministic(synthetic):
    first = make_engine(synthetic)
    second = make_engine(synthetic)
    assert first.init_landmark_tracks()
    assert second.init_landmark_tracks()

    pairs_first = [pair for pair, _ in first.get_best_initial_image_pairs()]
    pairs_second = [pair for pair, _ in second.get_best_initial_image_pairs()]

    assert pairs_first == pairs_second
    assert first.choose_initial_pair() == pairs_first[0]


def test_explicit_initial_pair(synthetic):
    engine = make_engine(synthetic, initial_pair=(1, 2))

    assert engine.process()
    assert engine.reconstruction.reference_view_id == 1
    np.testing.assert_allclose(engine.reconstruction.poses[1].R, np.eye(3))


def test_connected_views_and_batch(synthetic):
    engine = make_engine(synthetic, initial_pair=(1, 2))
    assert engine.init_landmark_tracks()
    assert engine.make_initial_pair_3d((1, 2))

    connected = engine.find_connected_views()
    assert connected
    assert all(isinstance(c, ViewConnectionScore) for c in connected)
    assert {c.view_id for c in connected} <= {0, 3, 4}
    scores = [c.pyramid_score for c in connected]
    assert scores == sorted(scores, reverse=True)
    assert all(c.pyramid_score >= engine.scorer.threshold for c in connected)
    assert all(c.has_intrinsics for c in connected)

    group = engine.find_next_images_group_for_resection()
    assert group
    assert group[0] == connected[0].view_id
    best = connected[0].pyramid_score
    for view_id in group:
        score = next(c.pyramid_score for c in connected if c.view_id == view_id)
        assert score >= 0.75 * best


def test_failed_views_wait_for_growth(synthetic):
    engine = make_engine(synthetic, initial_pair=(1, 2))
    assert engine.init_landmark_tracks()
    assert engine.make_initial_pair_3d((1, 2))

    group = engine.find_next_images_group_for_resection()
    engine._rejected_at = {view_id: len(engine.reconstruction.poses) for view_id in group}
    assert not set(engine.find_next_images_group_for_resection()) & set(group)

    engine._rejected_at = {view_id: len(engine.reconstruction.poses) - 1 for view_id in group}
    assert engine.find_next_images_group_for_resection() == group


def test_no_tracks_aborts(synthetic):
    scene, features, _ = synthetic.build()
    engine = SequentialSfMEngine(scene, features, InMemoryMatchStore())

    assert not engine.process()
    assert engine.state == EngineState.ABORTED
    assert not engine.get_result().success


def test_no_initial_pair_aborts(synthetic):
    engine = make_engine(synthetic, initial_pair_min_tracks=100000)

    assert not engine.process()
    assert engine.state == EngineState.ABORTED
    assert engine.get_result().reconstructed_view_ids == []


def test_user_interaction_supplies_pair(synthetic):
    scene, features, matches = synthetic.build()
    engine = SequentialSfMEngine(scene, features, matches,
                                 SfMOptions(initial_pair_min_tracks=100000, allow_user_interaction=True),
                                 prompt=lambda message: "0 1")

    assert engine.process()
    assert engine.reconstruction.reference_view_id == 0


def test_configure_only_before_processing(synthetic):
    engine = make_engine(synthetic, [0, 1])
    engine.configure(SfMOptions(min_points_per_pose=20))
    assert engine.options.min_points_per_pose == 20

    engine.process()
    with pytest.raises(RuntimeError):
        engine.configure(SfMOptions())
    assert not engine.process()


def test_intermediate_json_export(synthetic, tmp_path):
    engine = make_engine(synthetic, [0, 1, 2], output_dir=str(tmp_path), sfmdata_inter_file_extension=".json")

    assert engine.process()
    assert os.path.exists(os.path.join(str(tmp_path), "sfm_00_02.json"))
    assert os.path.exists(os.path.join(str(tmp_path), "sfm_01_03.json"))


def test_view_with_few_spread_points_is_resected(synthetic):
    common = synthetic.common_points([0, 1, 2])
    spread = [common[k] for k in np.linspace(0, len(common) - 1, 40).astype(int)]
    engine = make_engine(synthetic, [0, 1, 2], {2: set(spread)}, initial_pair=(0, 1))

    assert engine.process()
    result = engine.get_result()

    assert result.reconstructed_view_ids == [0, 1, 2]
    assert result.rejected_view_ids == []
    np.testing.assert_allclose(result.cameras[2].extrinsics.R, synthetic.poses[2].R, atol=1e-6)


def test_failed_bundle_adjustment_keeps_growing(synthetic):
    scene, features, matches = synthetic.build()
    adjuster = FailingBundleAdjuster()
    engine = SequentialSfMEngine(scene, features, matches, bundle_adjuster=adjuster)

    assert engine.process()
    result = engine.get_result()

    assert result.success
    assert result.reconstructed_view_ids == [0, 1, 2, 3, 4]
    assert adjuster.calls > 1
    # The last adjustment saw every pose and none was overwritten
    assert set(adjuster.last_poses) == set(engine.reconstruction.poses)
    for view_id, (R, t) in adjuster.last_poses.items():
        np.testing.assert_array_equal(engine.reconstruction.poses[view_id].R, R)
        np.testing.assert_array_equal(engine.reconstruction.poses[view_id].t, t)


def test_noisy_features(synthetic):
    scene, features, matches = synthetic.build(noise=0.5, noise_seed=7)
    adjuster = RecordingBundleAdjuster()
    engine = SequentialSfMEngine(scene, features, matches, bundle_adjuster=adjuster)

    assert engine.process()
    result = engine.get_result()

    assert result.reconstructed_view_ids == [0, 1, 2, 3, 4]
    assert adjuster.outcomes[-1]
    assert rmse(engine) < 1.0

    centers = {v: camera.extrinsics.center for v, camera in result.cameras.items()}
    truth = {v: pose.center for v, pose in synthetic.poses.items()}
    ratio = np.linalg.norm(centers[4] - centers[0]) / np.linalg.norm(centers[2] - centers[0])
    true_ratio = np.linalg.norm(truth[4] - truth[0]) / np.linalg.norm(truth[2] - truth[0])
    assert ratio == pytest.approx(true_ratio, rel=2e-2)


def test_result_points_serialize_like_reconstruction(synthetic):
    engine = make_engine(synthetic, [0, 1, 2])
    assert engine.process()

    points = engine.get_result().to_dict()["points"]

    assert points == engine.reconstruction.to_dict()["points"]
    assert len(points) == len(engine.reconstruction.landmarks)
    assert set(points[0]) == {"track_id", "position", "observations", "error"}
