"""Two-view geometry: epipolar checks and linear triangulation of matched pixels."""

import numpy as np

from slamkit.pnp import hat, pixel2cam

# Camera intrinsics of the TUM Freiburg2 sequence.
DEFAULT_K = np.array(
    [
        [520.9, 0.0, 325.1],
        [0.0, 521.0, 249.7],
        [0.0, 0.0, 1.0],
    ]
)

_DEPTH_UPPER = 50.0
_DEPTH_LOWER = 10.0


def _intrinsics(K):
    return DEFAULT_K if K is None else np.asarray(K, dtype=float)


def _rotation_and_translation(R, t):
    rotation = np.asarray(R, dtype=float)
    translation = np.asarray(t, dtype=float).reshape(-1)
    if rotation.shape != (3, 3):
        raise ValueError(f"R must be 3x3, got shape {rotation.shape}")
    if translation.shape != (3,):
        raise ValueError(f"t must have 3 components, got shape {translation.shape}")
    return rotation, translation


def get_color(depth):
    """Return a BGR colour for a depth, blending from red (near) to blue (far).

    The depth is clamped to [10, 50] and divided by the range width 40.
    """
    th_range = _DEPTH_UPPER - _DEPTH_LOWER
    d = min(max(float(depth), _DEPTH_LOWER), _DEPTH_UPPER)
    return (255.0 * d / th_range, 0.0, 255.0 * (1.0 - d / th_range))


def essential_from_pose(R, t):
    """Return the essential matrix t^ R of a relative pose."""
    rotation, translation = _rotation_and_translation(R, t)
    return hat(translation) @ rotation


def epipolar_constraint(pt1, pt2, R, t, K=None):
    """Return y2ᵀ t^ R y1 for a pixel pair; zero for a perfect correspondence."""
    k = _intrinsics(K)
    essential = essential_from_pose(R, t)
    y1 = np.append(pixel2cam(pt1, k), 1.0)
    y2 = np.append(pixel2cam(pt2, k), 1.0)
    return float(y2 @ essential @ y1)


def _triangulate_point(proj1, proj2, x1, x2):
    a = np.vstack(
        [
            x1[0] * proj1[2] - proj1[0],
            x1[1] * proj1[2] - proj1[1],
            x2[0] * proj2[2] - proj2[0],
            x2[1] * proj2[2] - proj2[1],
        ]
    )
    _, _, vt = np.linalg.svd(a)
    homogeneous = vt[-1]
    return homogeneous[:3] / homogeneous[3]


def triangulation(keypoints_1, keypoints_2, matches, R, t, K=None):
    """Triangulate matched pixels into 3D points in the first camera's frame.

    ``matches`` holds objects with ``query_idx`` into ``keypoints_1`` and
    ``train_idx`` into ``keypoints_2``; the result has one row per match.
    """
    k = _intrinsics(K)
    rotation, translation = _rotation_and_translation(R, t)
    proj1 = np.hstack([np.eye(3), np.zeros((3, 1))])
    proj2 = np.hstack([rotation, translation[:, np.newaxis]])

    points = [
        _triangulate_point(
            proj1,
            proj2,
            pixel2cam(keypoints_1[m.query_idx], k),
            pixel2cam(keypoints_2[m.train_idx], k),
        )
        for m in matches
    ]
    if not points:
        return np.empty((0, 3))
    return np.array(points)