import numpy as np
import pytest

from slamkit.lie import SE3, se3_exp
from slamkit.pnp import bundle_adjustment_gauss_newton, pixel2cam, projection_jacobian

K = np.array([[520.9, 0.0, 325.1], [0.0, 521.0, 249.7], [0.0, 0.0, 1.0]])


def _project(points_cam):
    uvw = points_cam @ K.T
    return uvw[:, :2] / uvw[:, 2:3]


def _scene(seed=0, count=30):
    rng = np.random.default_rng(seed)
    pts = np.column_stack(
        [rng.uniform(-1, 1, count), rng.uniform(-1, 1, count), rng.uniform(4, 8, count)]
    )
    true_pose = se3_exp([0.05, -0.02, 0.1, 0.02, -0.01, 0.03])
    return pts, true_pose, _project(true_pose.apply(pts))


def test_pixel2cam_principal_point_maps_to_origin():
    np.testing.assert_allclose(pixel2cam([325.1, 249.7], K), [0.0, 0.0], atol=1e-12)


def test_pixel2cam_inverts_projection():
    point = np.array([0.3, -0.4, 2.5])
    pixel = _project(point[None, :])[0]
    np.testing.assert_allclose(pixel2cam(pixel, K), point[:2] / point[2], atol=1e-12)


def test_pixel2cam_rejects_bad_camera_matrix():
    with pytest.raises(ValueError):
        pixel2cam([1.0, 2.0], np.eye(2))


def test_projection_jacobian_matches_numeric_derivative():
    pose = se3_exp([0.1, 0.2, -0.1, 0.05, 0.1, -0.02])
    world = np.array([0.4, -0.3, 5.0])
    obs = np.array([300.0, 200.0])

    def error(delta):
        return obs - _project((se3_exp(delta) * pose).apply(world)[None, :])[0]

    h = 1e-6
    numeric = np.column_stack(
        [(error(h * np.eye(6)[k]) - error(-h * np.eye(6)[k])) / (2 * h) for k in range(6)]
    )
    analytic = projection_jacobian(pose.apply(world), K)
    np.testing.assert_allclose(analytic, numeric, rtol=1e-4, atol=1e-3)


def test_projection_jacobian_zero_depth_raises():
    with pytest.raises(ValueError):
        projection_jacobian([1.0, 1.0, 0.0], K)


def test_gauss_newton_recovers_pose():
    pts, true_pose, pixels = _scene()
    estimate = bundle_adjustment_gauss_newton(pts, pixels, K, SE3())
    np.testing.assert_allclose(estimate.matrix(), true_pose.matrix(), atol=1e-6)


def test_gauss_newton_result_reprojects_onto_observations():
    pts, _, pixels = _scene(seed=3)
    estimate = bundle_adjustment_gauss_newton(pts, pixels, K)
    np.testing.assert_allclose(_project(estimate.apply(pts)), pixels, atol=1e-5)


def test_gauss_newton_with_no_points_returns_start_pose():
    start = se3_exp([0.1, 0.0, 0.0, 0.0, 0.0, 0.0])
    result = bundle_adjustment_gauss_newton(np.zeros((0, 3)), np.zeros((0, 2)), K, start)
    np.testing.assert_allclose(result.matrix(), start.matrix())


def test_gauss_newton_rejects_mismatched_counts():
    with pytest.raises(ValueError):
        bundle_adjustment_gauss_newton(np.ones((3, 3)), np.ones((2, 2)), K)