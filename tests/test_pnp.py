import math

import numpy as np
import pytest
from hypothesis import given, strategies as st

from slamkit.pnp import (
    bundle_adjustment_gauss_newton,
    hat,
    pixel2cam,
    se3_exp,
    so3_exp,
    so3_log,
)

K = np.array([[520.9, 0, 325.1], [0, 521.0, 249.7], [0, 0, 1]])

small = st.floats(min_value=-1.5, max_value=1.5, allow_nan=False)


def test_hat_matches_cross_product():
    a = np.array([0.3, -1.2, 2.0])
    b = np.array([1.5, 0.7, -0.4])
    assert np.allclose(hat(a) @ b, np.cross(a, b))
    assert np.allclose(hat(a), -hat(a).T)


def test_hat_rejects_wrong_size():
    with pytest.raises(ValueError):
        hat([1.0, 2.0])


@given(st.tuples(small, small, small))
def test_so3_exp_log_round_trip(values):
    omega = np.array(values)
    rotation = so3_exp(omega)
    assert np.allclose(rotation @ rotation.T, np.eye(3), atol=1e-9)
    assert np.isclose(np.linalg.det(rotation), 1.0)
    assert np.allclose(so3_log(rotation), omega, atol=1e-7)


def test_so3_log_near_pi():
    rotation = so3_exp([0.0, 0.0, math.pi])
    log = so3_log(rotation)
    assert np.isclose(np.linalg.norm(log), math.pi)
    assert np.allclose(so3_exp(log), rotation, atol=1e-9)


def test_se3_exp_zero_is_identity():
    assert np.allclose(se3_exp(np.zeros(6)), np.eye(4))


def test_se3_exp_pure_translation():
    transform = se3_exp([1.0, -2.0, 3.0, 0.0, 0.0, 0.0])
    assert np.allclose(transform[:3, :3], np.eye(3))
    assert np.allclose(transform[:3, 3], [1.0, -2.0, 3.0])


def test_se3_exp_rotation_block_matches_so3():
    xi = np.array([0.2, 0.1, -0.3, 0.4, -0.2, 0.1])
    assert np.allclose(se3_exp(xi)[:3, :3], so3_exp(xi[3:]))


def test_pixel2cam_principal_point_maps_to_origin():
    assert np.allclose(pixel2cam([325.1, 249.7], K), [0.0, 0.0])


def test_pixel2cam_round_trip_with_projection():
    p = np.array([400.0, 120.0])
    normalized = pixel2cam(p, K)
    back = K @ np.array([normalized[0], normalized[1], 1.0])
    assert np.allclose(back[:2], p)


def _synthetic_problem():
    rng = np.random.default_rng(7)
    points = np.column_stack(
        [rng.uniform(-1, 1, 30), rng.uniform(-1, 1, 30), rng.uniform(4, 8, 30)]
    )
    true_pose = se3_exp([0.1, -0.05, 0.08, 0.03, -0.04, 0.02])
    cam = points @ true_pose[:3, :3].T + true_pose[:3, 3]
    pixels = (cam @ K.T)[:, :2] / cam[:, 2:3]
    return points, pixels, true_pose


def test_gauss_newton_recovers_pose():
    points, pixels, true_pose = _synthetic_problem()
    pose = bundle_adjustment_gauss_newton(points, pixels, K, np.eye(4))
    assert np.allclose(pose, true_pose, atol=1e-6)


def test_gauss_newton_keeps_exact_pose():
    points, pixels, true_pose = _synthetic_problem()
    pose = bundle_adjustment_gauss_newton(points, pixels, K, true_pose)
    assert np.allclose(pose, true_pose, atol=1e-9)


def test_gauss_newton_rejects_mismatched_lengths():
    points, pixels, _ = _synthetic_problem()
    with pytest.raises(ValueError):
        bundle_adjustment_gauss_newton(points, pixels[:-1], K, np.eye(4))