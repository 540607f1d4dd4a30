import numpy as np
import pytest

from slamkit.orb import DMatch
from slamkit.pnp import so3_exp
from slamkit.triangulation import (
    DEFAULT_K,
    epipolar_constraint,
    essential_from_pose,
    get_color,
    triangulation,
)


@pytest.fixture
def scene():
    rng = np.random.default_rng(7)
    R = so3_exp([0.05, -0.1, 0.02])
    t = np.array([-0.5, 0.1, 0.05])
    points = np.column_stack(
        [rng.uniform(-1, 1, 12), rng.uniform(-1, 1, 12), rng.uniform(3, 8, 12)]
    )

    def project(p):
        h = DEFAULT_K @ p
        return (h[0] / h[2], h[1] / h[2])

    kp1 = [project(p) for p in points]
    kp2 = [project(R @ p + t) for p in points]
    return R, t, points, kp1, kp2


def test_get_color_midpoint():
    assert get_color(20) == pytest.approx((127.5, 0.0, 127.5))


def test_get_color_clamps_low_and_high():
    assert get_color(0) == get_color(10)
    assert get_color(1000) == get_color(50)
    assert get_color(30)[1] == 0.0


def test_essential_matrix_invariants():
    R = so3_exp([0.2, 0.1, -0.3])
    t = np.array([1.0, -2.0, 0.5])
    E = essential_from_pose(R, t)
    assert np.allclose(t @ E, 0.0)
    assert abs(np.linalg.det(E)) < 1e-9


def test_essential_rejects_bad_shapes():
    with pytest.raises(ValueError):
        essential_from_pose(np.eye(2), [0, 0, 1])


def test_epipolar_constraint_holds_for_true_matches(scene):
    R, t, _, kp1, kp2 = scene
    for a, b in zip(kp1, kp2):
        assert abs(epipolar_constraint(a, b, R, t)) < 1e-9


def test_epipolar_constraint_nonzero_for_wrong_pair(scene):
    R, t, _, kp1, kp2 = scene
    assert abs(epipolar_constraint(kp1[0], (kp2[0][0], kp2[0][1] + 40.0), R, t)) > 1e-4


def test_triangulation_recovers_points(scene):
    R, t, points, kp1, kp2 = scene
    matches = [DMatch(i, i, 0.0) for i in range(len(points))]
    result = triangulation(kp1, kp2, matches, R, t, DEFAULT_K)
    assert result.shape == points.shape
    assert np.allclose(result, points, atol=1e-6)


def test_triangulation_follows_match_indices(scene):
    R, t, points, kp1, kp2 = scene
    kp2_reversed = list(reversed(kp2))
    n = len(points)
    matches = [DMatch(i, n - 1 - i, 0.0) for i in (3, 0, 5)]
    result = triangulation(kp1, kp2_reversed, matches, R, t)
    assert np.allclose(result, points[[3, 0, 5]], atol=1e-6)


def test_triangulation_of_no_matches_is_empty(scene):
    R, t, _, kp1, kp2 = scene
    assert triangulation(kp1, kp2, [], R, t).shape == (0, 3)