import numpy as np
import pytest

from seqsfm.core.camera import (Camera, CameraIntrinsics, CameraExtrinsics,
                                ray_angle_degrees, max_ray_angle)

from conftest import make_intrinsics, look_at_pose


def test_resolved_fills_unknown_model_and_focal():
    placeholder = CameraIntrinsics(width=640, height=480, fx=0.0, fy=0.0, cx=0.0, cy=0.0, model="unknown")
    assert not placeholder.is_valid

    resolved = placeholder.resolved("radial3", 1.2)
    assert resolved.is_valid
    assert resolved.model == "radial3"
    assert resolved.fx == pytest.approx(768.0)
    assert (resolved.cx, resolved.cy) == (320.0, 240.0)

    # Valid intrinsics are left alone
    assert make_intrinsics().resolved("radial3", 1.2) == make_intrinsics()


def test_params_round_trip_keeps_aspect():
    intrinsics = CameraIntrinsics(width=640, height=480, fx=500.0, fy=550.0, cx=320.0, cy=240.0,
                                  k1=0.01, k2=-0.002, k3=0.0005, model="radial3")
    params = intrinsics.get_params()
    np.testing.assert_allclose(params, [500.0, 0.01, -0.002, 0.0005])

    updated = intrinsics.with_params(np.array([600.0, 0.02, 0.0, 0.0]))
    assert updated.fx == pytest.approx(600.0)
    assert updated.fy == pytest.approx(660.0)
    assert updated.k1 == pytest.approx(0.02)

    assert len(make_intrinsics().get_params()) == 1


def test_project_and_rays_agree():
    camera = Camera(make_intrinsics(), look_at_pose(np.array([0.8, 0.0, 0.0])))
    points = np.array([[0.0, 0.0, 6.0], [1.0, -0.5, 5.0], [-1.5, 1.0, 7.0]])

    uv, depths = camera.project(points)
    assert np.all(depths > 0)

    rays = camera.get_rays(uv)
    expected = points - camera.extrinsics.center
    expected /= np.linalg.norm(expected, axis=1, keepdims=True)
    np.testing.assert_allclose(rays, expected, atol=1e-9)

    errors, _ = camera.residuals(points, uv)
    np.testing.assert_allclose(errors, 0.0, atol=1e-9)


def test_extrinsics_dict_round_trip():
    pose = look_at_pose(np.array([0.3, 0.0, -0.2]))
    restored = CameraExtrinsics.from_dict(pose.to_dict())
    np.testing.assert_allclose(restored.R, pose.R)
    np.testing.assert_allclose(restored.center, pose.center)

    from_rvec = CameraExtrinsics.from_rvec(pose.rvec, pose.t)
    np.testing.assert_allclose(from_rvec.R, pose.R, atol=1e-12)


def test_ray_angles():
    assert ray_angle_degrees(np.array([1.0, 0, 0]), np.array([0, 1.0, 0])) == pytest.approx(90.0)

    intrinsics = make_intrinsics()
    cameras = [Camera(intrinsics, look_at_pose(np.array([x, 0.0, 0.0]))) for x in (-1.0, 0.0, 1.0)]
    point = np.array([0.0, 0.0, 6.0])
    observations = np.vstack([camera.project(point)[0] for camera in cameras])

    expected = np.degrees(2 * np.arctan(1.0 / 6.0))
    assert max_ray_angle(cameras, observations) == pytest.approx(expected, abs=1e-6)
    assert max_ray_angle(cameras[:1], observations[:1]) == 0.0
