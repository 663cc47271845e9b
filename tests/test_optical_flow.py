import numpy as np
import pytest

from slamkit.optical_flow import optical_flow_multi_level, optical_flow_single_level


def texture(x, y):
    return 100 + 60 * np.sin(x / 13.0) + 60 * np.sin(y / 11.0) + 30 * np.sin((x - y) / 17.0)


def make_pair(shift_x, shift_y, size=160):
    ys, xs = np.mgrid[0:size, 0:size].astype(float)
    return texture(xs, ys), texture(xs - shift_x, ys - shift_y)


POINTS = np.array([[80.0, 80.0], [70.0, 90.0], [95.0, 75.0]])


def test_identical_images_keep_points():
    img, _ = make_pair(0, 0)
    tracked, success = optical_flow_single_level(img, img, POINTS)
    assert success.all()
    np.testing.assert_allclose(tracked, POINTS, atol=1e-6)


@pytest.mark.parametrize("inverse", [False, True])
def test_single_level_recovers_small_shift(inverse):
    shift = np.array([1.5, -1.0])
    img1, img2 = make_pair(*shift)
    tracked, success = optical_flow_single_level(img1, img2, POINTS, inverse=inverse)
    assert success.all()
    np.testing.assert_allclose(tracked, POINTS + shift, atol=0.2)


def test_exact_initial_guess_is_kept():
    shift = np.array([2.0, 1.0])
    img1, img2 = make_pair(*shift)
    tracked, success = optical_flow_single_level(
        img1, img2, POINTS, POINTS + shift, False, True
    )
    assert success.all()
    np.testing.assert_allclose(tracked, POINTS + shift, atol=0.05)


@pytest.mark.parametrize("inverse", [False, True])
def test_multi_level_recovers_larger_shift(inverse):
    shift = np.array([4.0, 3.0])
    img1, img2 = make_pair(*shift)
    tracked, success = optical_flow_multi_level(img1, img2, POINTS, inverse)
    assert tracked.shape == POINTS.shape
    assert success.all()
    np.testing.assert_allclose(tracked, POINTS + shift, atol=0.3)


def test_flat_patch_fails():
    img = np.full((40, 40), 50.0)
    _, success = optical_flow_single_level(img, img, [[20.0, 20.0]])
    assert not success[0]


def test_initial_guess_required():
    img, _ = make_pair(0, 0)
    with pytest.raises(ValueError):
        optical_flow_single_level(img, img, POINTS, None, False, True)


def test_initial_guess_shape_must_match():
    img, _ = make_pair(0, 0)
    with pytest.raises(ValueError):
        optical_flow_single_level(img, img, POINTS, POINTS[:2], False, True)


def test_empty_keypoints():
    img, _ = make_pair(0, 0)
    tracked, success = optical_flow_multi_level(img, img, [])
    assert tracked.shape == (0, 2)
    assert success.shape == (0,)