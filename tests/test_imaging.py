import numpy as np
import pytest

from slamkit.imaging import bilinear_clamped, build_pyramid, get_pixel_value


def ramp(x, y):
    return 2.0 * x + 3.0 * y + 1.0


@pytest.fixture
def ramp_image():
    ys, xs = np.mgrid[0:12, 0:16]
    return ramp(xs, ys).astype(float)


def test_get_pixel_value_at_integer_coordinates(ramp_image):
    assert get_pixel_value(ramp_image, 5, 7) == pytest.approx(ramp_image[7, 5])


def test_get_pixel_value_interpolates_affine_exactly(ramp_image):
    assert get_pixel_value(ramp_image, 4.25, 6.5) == pytest.approx(ramp(4.25, 6.5))


def test_get_pixel_value_clamps_negative(ramp_image):
    assert get_pixel_value(ramp_image, -3.0, -1.0) == pytest.approx(ramp_image[0, 0])


def test_get_pixel_value_clamps_last_column_to_one_before(ramp_image):
    cols = ramp_image.shape[1]
    assert get_pixel_value(ramp_image, cols - 1, 0) == pytest.approx(ramp_image[0, cols - 2])


def test_get_pixel_value_accepts_arrays(ramp_image):
    xs = np.array([1.5, 2.5, 3.5])
    ys = np.array([2.0, 2.0, 2.0])
    values = get_pixel_value(ramp_image, xs, ys)
    assert values.shape == (3,)
    np.testing.assert_allclose(values, ramp(xs, ys))


def test_bilinear_clamped_interpolates(ramp_image):
    assert bilinear_clamped(ramp_image, 3.5, 2.25) == pytest.approx(ramp(3.5, 2.25))


def test_bilinear_clamped_clamps_past_border(ramp_image):
    rows, cols = ramp_image.shape
    assert bilinear_clamped(ramp_image, cols + 5, 0) == pytest.approx(ramp_image[0, cols - 1])
    assert bilinear_clamped(ramp_image, 0, rows + 2) == pytest.approx(ramp_image[rows - 1, 0])


def test_rejects_non_2d_image():
    with pytest.raises(ValueError):
        get_pixel_value(np.zeros((4, 4, 3)), 1, 1)


def test_pyramid_shapes():
    pyramid = build_pyramid(np.zeros((40, 60)), 4, 0.5)
    assert [level.shape for level in pyramid] == [(40, 60), (20, 30), (10, 15), (5, 7)]


def test_pyramid_first_level_is_input():
    img = np.arange(64, dtype=float).reshape(8, 8)
    pyramid = build_pyramid(img, 2, 0.5)
    assert pyramid[0] is img or np.array_equal(pyramid[0], img)


def test_half_scale_is_block_average():
    img = np.random.default_rng(3).random((8, 6))
    half = build_pyramid(img, 2, 0.5)[1]
    expected = img.reshape(4, 2, 3, 2).mean(axis=(1, 3))
    np.testing.assert_allclose(half, expected)


def test_constant_image_stays_constant_and_keeps_dtype():
    img = np.full((32, 32), 77, dtype=np.uint8)
    for level in build_pyramid(img, 4, 0.5):
        assert level.dtype == np.uint8
        assert np.all(level == 77)


def test_pyramid_rejects_bad_levels():
    with pytest.raises(ValueError):
        build_pyramid(np.zeros((8, 8)), 0, 0.5)