import numpy as np
import pytest

from slamkit.direct import (
    CameraIntrinsics,
    JacobianAccumulator,
    direct_pose_multi_layer,
    direct_pose_single_layer,
)
from slamkit.lie import SE3

CAMERA = CameraIntrinsics(fx=100.0, fy=100.0, cx=100.0, cy=80.0)
DEPTH = 5.0


def texture(x, y):
    return 100 + 60 * np.sin(x / 13.0) + 60 * np.sin(y / 11.0) + 30 * np.sin((x - y) / 17.0)


def make_images(shift_x):
    ys, xs = np.mgrid[0:160, 0:200].astype(float)
    return texture(xs, ys), texture(xs - shift_x, ys)


def reference_pixels():
    gx, gy = np.meshgrid(np.arange(30.0, 171.0, 10.0), np.arange(30.0, 131.0, 10.0))
    px = np.stack([gx.ravel(), gy.ravel()], axis=1)
    return px, np.full(len(px), DEPTH)


def project(pose, px, depth):
    pts = depth[:, None] * np.stack(
        [(px[:, 0] - CAMERA.cx) / CAMERA.fx, (px[:, 1] - CAMERA.cy) / CAMERA.fy, np.ones(len(px))],
        axis=1,
    )
    q = pose.apply(pts)
    return np.stack(
        [CAMERA.fx * q[:, 0] / q[:, 2] + CAMERA.cx, CAMERA.fy * q[:, 1] / q[:, 2] + CAMERA.cy],
        axis=1,
    )


def test_default_intrinsics():
    cam = CameraIntrinsics()
    assert cam.fx == 718.856
    assert cam.cy == 185.2157


def test_scaled_intrinsics():
    cam = CameraIntrinsics()
    half = cam.scaled(0.5)
    assert half.fx == pytest.approx(cam.fx * 0.5)
    assert half.cx == pytest.approx(cam.cx * 0.5)
    assert cam.scaled(1.0) == cam


def test_accumulate_identical_images_has_zero_error():
    img, _ = make_images(0)
    px, depth = reference_pixels()
    acc = JacobianAccumulator(img, img, px, depth, SE3(), CAMERA)
    acc.accumulate(0, len(px))
    assert acc.cost == pytest.approx(0.0)
    np.testing.assert_allclose(acc.b, 0.0, atol=1e-9)
    np.testing.assert_allclose(acc.H, acc.H.T)
    assert np.linalg.eigvalsh(acc.H).min() > -1e-6
    np.testing.assert_allclose(acc.projection, px)


def test_reset_clears_accumulation():
    img1, img2 = make_images(1.0)
    px, depth = reference_pixels()
    acc = JacobianAccumulator(img1, img2, px, depth, SE3(), CAMERA)
    acc.accumulate(0, len(px))
    assert acc.cost > 0
    acc.reset()
    assert acc.cost == 0.0
    assert not acc.H.any()


def test_point_behind_camera_is_skipped():
    img, _ = make_images(0)
    acc = JacobianAccumulator(img, img, [[100.0, 80.0]], [-2.0], SE3(), CAMERA)
    acc.accumulate(0, 1)
    assert not acc.H.any()
    assert acc.cost == 0.0
    np.testing.assert_array_equal(acc.projection, np.zeros((1, 2)))


def test_bad_range_rejected():
    img, _ = make_images(0)
    px, depth = reference_pixels()
    acc = JacobianAccumulator(img, img, px, depth, SE3(), CAMERA)
    with pytest.raises(ValueError):
        acc.accumulate(0, len(px) + 1)


def test_mismatched_depths_rejected():
    img, _ = make_images(0)
    px, depth = reference_pixels()
    with pytest.raises(ValueError):
        JacobianAccumulator(img, img, px, depth[:-1], SE3(), CAMERA)


def test_single_layer_identical_images_keeps_identity():
    img, _ = make_images(0)
    px, depth = reference_pixels()
    pose, projection = direct_pose_single_layer(img, img, px, depth, SE3(), CAMERA)
    np.testing.assert_allclose(pose.matrix(), np.eye(4), atol=1e-9)
    np.testing.assert_allclose(projection, px)


def test_single_layer_recovers_small_motion():
    shift = 1.0
    img1, img2 = make_images(shift)
    px, depth = reference_pixels()
    pose, _ = direct_pose_single_layer(img1, img2, px, depth, SE3(), CAMERA)
    predicted = project(pose, px, depth)
    np.testing.assert_allclose(predicted, px + [shift, 0.0], atol=0.3)


def test_multi_layer_recovers_larger_motion():
    shift = 3.0
    img1, img2 = make_images(shift)
    px, depth = reference_pixels()
    pose = direct_pose_multi_layer(img1, img2, px, depth, SE3(), CAMERA)
    predicted = project(pose, px, depth)
    np.testing.assert_allclose(predicted, px + [shift, 0.0], atol=0.3)