import numpy as np
import pytest

from slamkit.icp import bundle_adjustment, depth_to_point, pose_estimation_3d3d
from slamkit.lie import se3_exp

K = np.array([[520.9, 0.0, 325.1], [0.0, 521.0, 249.7], [0.0, 0.0, 1.0]])


def _pairs(seed=0, count=25):
    rng = np.random.default_rng(seed)
    pts2 = rng.uniform(-2.0, 2.0, size=(count, 3)) + np.array([0.0, 0.0, 5.0])
    motion = se3_exp([0.2, -0.1, 0.3, 0.1, -0.05, 0.08])
    pts1 = motion.apply(pts2)
    return pts1, pts2, motion


def test_depth_to_point_at_principal_point():
    np.testing.assert_allclose(depth_to_point([325.1, 249.7], 2.0, K), [0.0, 0.0, 2.0], atol=1e-12)


def test_depth_to_point_projects_back_to_pixel():
    pixel = np.array([400.0, 120.0])
    point = depth_to_point(pixel, 3.5, K)
    uvw = K @ point
    np.testing.assert_allclose(uvw[:2] / uvw[2], pixel, atol=1e-9)
    assert point[2] == pytest.approx(3.5)


def test_svd_recovers_rigid_motion():
    pts1, pts2, motion = _pairs()
    rotation, translation = pose_estimation_3d3d(pts1, pts2)
    np.testing.assert_allclose(rotation, motion.rotation, atol=1e-9)
    np.testing.assert_allclose(translation, motion.translation, atol=1e-9)


def test_svd_rotation_is_proper():
    pts1, pts2, _ = _pairs(seed=4)
    rotation, _ = pose_estimation_3d3d(pts1, pts2)
    np.testing.assert_allclose(rotation @ rotation.T, np.eye(3), atol=1e-9)
    assert np.linalg.det(rotation) == pytest.approx(1.0)


def test_svd_rejects_empty_input():
    with pytest.raises(ValueError):
        pose_estimation_3d3d(np.zeros((0, 3)), np.zeros((0, 3)))


def test_svd_rejects_mismatched_counts():
    with pytest.raises(ValueError):
        pose_estimation_3d3d(np.ones((3, 3)), np.ones((4, 3)))


def test_bundle_adjustment_recovers_rigid_motion():
    pts1, pts2, motion = _pairs(seed=1)
    rotation, translation = bundle_adjustment(pts1, pts2)
    np.testing.assert_allclose(rotation, motion.rotation, atol=1e-5)
    np.testing.assert_allclose(translation, motion.translation, atol=1e-5)


def test_bundle_adjustment_aligns_points():
    pts1, pts2, _ = _pairs(seed=2)
    rotation, translation = bundle_adjustment(pts1, pts2, 20)
    np.testing.assert_allclose(pts2 @ rotation.T + translation, pts1, atol=1e-5)


def test_bundle_adjustment_agrees_with_svd():
    pts1, pts2, _ = _pairs(seed=5)
    r_svd, t_svd = pose_estimation_3d3d(pts1, pts2)
    r_ba, t_ba = bundle_adjustment(pts1, pts2)
    np.testing.assert_allclose(r_ba, r_svd, atol=1e-5)
    np.testing.assert_allclose(t_ba, t_svd, atol=1e-5)


def test_bundle_adjustment_rejects_zero_iterations():
    pts1, pts2, _ = _pairs()
    with pytest.raises(ValueError):
        bundle_adjustment(pts1, pts2, 0)