import numpy as np
import pytest

from slamkit.reprojection import SnavelyReprojectionError, cam_projection_with_distortion


def _camera(aa=(0, 0, 0), t=(0, 0, 0), focal=2.0, k1=0.0, k2=0.0):
    return np.array([*aa, *t, focal, k1, k2], dtype=float)


def test_projection_without_distortion():
    prediction = cam_projection_with_distortion(_camera(), [1.0, 2.0, -4.0])
    np.testing.assert_allclose(prediction, [0.5, 1.0])


def test_distortion_scales_radially():
    point = [0.3, -0.7, -2.0]
    plain = cam_projection_with_distortion(_camera(focal=100.0), point)
    distorted = cam_projection_with_distortion(_camera(focal=100.0, k1=0.1, k2=0.01), point)
    assert np.linalg.norm(distorted) > np.linalg.norm(plain)
    assert distorted[0] / distorted[1] == pytest.approx(plain[0] / plain[1])


def test_translation_shifts_point_before_projection():
    shifted = cam_projection_with_distortion(_camera(t=(1.0, 0.0, 0.0)), [0.0, 2.0, -4.0])
    direct = cam_projection_with_distortion(_camera(), [1.0, 2.0, -4.0])
    np.testing.assert_allclose(shifted, direct)


def test_residual_is_zero_at_prediction():
    camera = _camera(aa=(0.1, -0.2, 0.05), t=(0.3, 0.1, -5.0), focal=500.0, k1=0.01)
    point = [0.5, -0.25, 1.0]
    prediction = cam_projection_with_distortion(camera, point)
    residual = SnavelyReprojectionError(prediction[0], prediction[1])(camera, point)
    np.testing.assert_allclose(residual, [0.0, 0.0], atol=1e-12)


def test_residual_is_prediction_minus_observation():
    error = SnavelyReprojectionError(0.25, -0.5)
    residual = error(_camera(), [1.0, 2.0, -4.0])
    np.testing.assert_allclose(residual, [0.25, 1.5])


def test_camera_of_wrong_size_is_rejected():
    with pytest.raises(ValueError):
        cam_projection_with_distortion([0.0] * 8, [1.0, 2.0, 3.0])