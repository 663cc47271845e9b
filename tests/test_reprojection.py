import numpy as np
import pytest

from slamkit.reprojection import SnavelyReprojectionError, project_with_distortion


IDENTITY_CAMERA = [0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0]


def test_identity_camera_projection():
    result = project_with_distortion(IDENTITY_CAMERA, [1.0, 2.0, -1.0])
    assert np.allclose(result, [1.0, 2.0])


def test_focal_length_scales_projection():
    cam = list(IDENTITY_CAMERA)
    cam[6] = 500.0
    base = project_with_distortion(IDENTITY_CAMERA, [0.3, -0.2, -2.0])
    scaled = project_with_distortion(cam, [0.3, -0.2, -2.0])
    assert np.allclose(scaled, 500.0 * base)


def test_distortion_keeps_direction():
    cam = list(IDENTITY_CAMERA)
    cam[7] = 0.1
    cam[8] = 0.01
    point = [0.4, 0.8, -1.0]
    plain = project_with_distortion(IDENTITY_CAMERA, point)
    distorted = project_with_distortion(cam, point)
    assert distorted[0] * plain[1] == pytest.approx(distorted[1] * plain[0])
    assert np.linalg.norm(distorted) > np.linalg.norm(plain)


def test_wrong_camera_size_rejected():
    with pytest.raises(ValueError):
        project_with_distortion([0.0] * 8, [0.0, 0.0, 1.0])


def test_residual_zero_at_prediction():
    cam = [0.1, -0.2, 0.05, 0.3, 0.1, -4.0, 450.0, 0.01, 0.001]
    point = [0.5, -0.4, 1.0]
    pred = project_with_distortion(cam, point)
    error = SnavelyReprojectionError(pred[0], pred[1])
    assert np.allclose(error(cam, point), [0.0, 0.0])


def test_residual_is_prediction_minus_observation():
    cam = [0.1, -0.2, 0.05, 0.3, 0.1, -4.0, 450.0, 0.01, 0.001]
    point = [0.5, -0.4, 1.0]
    pred = project_with_distortion(cam, point)
    error = SnavelyReprojectionError(pred[0] + 2.0, pred[1] - 3.0)
    assert np.allclose(error(cam, point), [-2.0, 3.0])