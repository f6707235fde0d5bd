import json
import os
import numpy as np
import pytest

from seqsfm.core.scene import SfMReconstruction
from seqsfm.core.sfm import SfMOptions
from seqsfm.main import main, parse_args, build_options
from seqsfm.utils.io_utils import scene_from_dict, load_scene, save_reconstruction, save_json
from seqsfm.utils.export import intermediate_filename, export_intermediate


def scene_dict(synthetic, view_ids):
    """Scene file contents for some synthetic views."""
    _, _, matches = synthetic.build(view_ids)
    return {
        "views": [{"id": v, "intrinsic_id": 0, "width": 640, "height": 480} for v in view_ids],
        "intrinsics": {"0": synthetic.intrinsics.to_dict()},
        "features": {str(v): synthetic.keypoints[v].tolist() for v in view_ids},
        "matches": [{"pair": list(pair), "matches": matches.matches_for(pair).tolist()}
                    for pair in matches.pairs()],
    }


def test_scene_from_dict(synthetic):
    scene, features, matches = scene_from_dict(scene_dict(synthetic, [0, 1, 2]))

    assert sorted(scene.views) == [0, 1, 2]
    assert scene.intrinsics[0].fx == pytest.approx(500.0)
    np.testing.assert_allclose(features.features_for(1), synthetic.keypoints[1])
    assert sorted(matches.pairs()) == [(0, 1), (0, 2), (1, 2)]


def test_missing_intrinsics_are_unknown():
    scene, _, _ = scene_from_dict({"views": [{"id": 3, "intrinsic_id": 7, "width": 800, "height": 600}]})

    assert scene.intrinsics[7].model == "unknown"
    assert not scene.intrinsics[7].is_valid


def test_save_reconstruction(tmp_path):
    data = {"success": True, "cameras": {}, "points": [], "statistics": {"num_points": 0}}
    written = []

    paths = save_reconstruction(data, str(tmp_path), pointcloud_writer=lambda path: written.append(path) or True)

    assert set(paths) == {"reconstruction", "statistics", "sparse_pointcloud"}
    assert written == [os.path.join(str(tmp_path), "sparse_pointcloud.ply")]
    with open(paths["reconstruction"]) as f:
        assert "statistics" not in json.load(f)
    assert os.path.exists(os.path.join(str(tmp_path), "metadata.json"))


def test_intermediate_filename():
    assert intermediate_filename(3, 12, ".ply") == "sfm_03_12.ply"


def test_export_intermediate_json(synthetic, tmp_path):
    scene, _, _ = synthetic.build([0, 1])
    reconstruction = SfMReconstruction(scene)
    reconstruction.add_pose(0, synthetic.poses[0])

    path = export_intermediate(reconstruction, str(tmp_path), 0, ".json")

    assert path == os.path.join(str(tmp_path), "sfm_00_01.json")
    with open(path) as f:
        assert list(json.load(f)["cameras"]) == ["0"]


def test_build_options_overrides(tmp_path):
    args = parse_args(["--input", "scene.json", "--initial_pair", "2", "4", "--min_points_per_pose", "12",
                       "--export_intermediate"])
    config = {"sfm": {"min_points_per_pose": 50, "rejection_count": 10}}

    options = build_options(config, args, str(tmp_path))

    assert isinstance(options, SfMOptions)
    assert options.initial_pair == (2, 4)
    assert options.min_points_per_pose == 12
    assert options.rejection_count == 10
    assert options.output_dir == os.path.join(str(tmp_path), "intermediate")


def test_main_end_to_end(synthetic, tmp_path):
    scene_path = str(tmp_path / "scene.json")
    save_json(scene_dict(synthetic, [0, 1, 2]), scene_path)
    config_path = str(tmp_path / "config.yaml")
    with open(config_path, "w") as f:
        f.write("sfm:\n  min_points_per_pose: 30\noutput:\n  save_pointcloud: false\n")
    output_dir = str(tmp_path / "out")

    assert main(["--input", scene_path, "--config", config_path, "--output_dir", output_dir]) == 0

    with open(os.path.join(output_dir, "reconstruction.json")) as f:
        result = json.load(f)
    assert result["success"]
    assert result["reconstructed_view_ids"] == [0, 1, 2]
    assert os.path.exists(os.path.join(output_dir, "statistics.json"))


def test_main_reports_failure(synthetic, tmp_path):
    data = scene_dict(synthetic, [0, 1])
    data["matches"] = []
    scene_path = str(tmp_path / "scene.json")
    save_json(data, scene_path)
    config_path = str(tmp_path / "config.yaml")
    with open(config_path, "w") as f:
        f.write("output:\n  save_pointcloud: false\n")

    assert main(["--input", scene_path, "--config", config_path, "--output_dir", str(tmp_path / "out")]) == 1


def test_loaded_scene_matches_file(synthetic, tmp_path):
    scene_path = str(tmp_path / "scene.json")
    save_json(scene_dict(synthetic, [0, 1]), scene_path)

    scene, features, matches = load_scene(scene_path)

    assert scene.views[1].image_size == (640, 480)
    assert len(matches.matches_for((0, 1))) == len(synthetic.common_points([0, 1]))
