"""Lie-group helpers and Gauss-Newton pose refinement from 3D-2D correspondences."""

import logging
import math

import numpy as np

logger = logging.getLogger(__name__)

_SMALL_ANGLE = 1e-10
_NEAR_PI = 1e-6
GAUSS_NEWTON_ITERATIONS = 10
CONVERGENCE_NORM = 1e-6


def _as_vector(values, size, name):
    array = np.asarray(values, dtype=float)
    if array.shape != (size,):
        raise ValueError(f"{name} must have exactly {size} components, got shape {array.shape}")
    return array


def _vee(matrix):
    return np.array([matrix[2, 1], matrix[0, 2], matrix[1, 0]])


def hat(v):
    """Return the skew-symmetric matrix of a 3-vector, so that hat(a) @ b == a × b."""
    x, y, z = _as_vector(v, 3, "v")
    return np.array(
        [
            [0.0, -z, y],
            [z, 0.0, -x],
            [-y, x, 0.0],
        ]
    )


def so3_exp(omega):
    """Return the rotation matrix of a rotation vector (Rodrigues' formula)."""
    w = _as_vector(omega, 3, "omega")
    theta = float(np.linalg.norm(w))
    if theta < _SMALL_ANGLE:
        return np.eye(3) + hat(w)
    axis_hat = hat(w / theta)
    return np.eye(3) + math.sin(theta) * axis_hat + (1.0 - math.cos(theta)) * (axis_hat @ axis_hat)


def so3_log(rotation):
    """Return the rotation vector of a 3x3 rotation matrix."""
    r = np.asarray(rotation, dtype=float)
    if r.shape != (3, 3):
        raise ValueError(f"rotation must be 3x3, got shape {r.shape}")
    diagonal_sum = float(r[0, 0] + r[1, 1] + r[2, 2])
    cos_theta = float(np.clip((diagonal_sum - 1.0) / 2.0, -1.0, 1.0))
    theta = math.acos(cos_theta)
    if theta < _SMALL_ANGLE:
        return _vee((r - r.T) / 2.0)
    if math.pi - theta < _NEAR_PI:
        b = (r + np.eye(3)) / 2.0
        k = int(np.argmax(np.diag(b)))
        axis = b[:, k] / math.sqrt(max(b[k, k], _SMALL_ANGLE))
        axis /= np.linalg.norm(axis)
        return theta * axis
    return theta / (2.0 * math.sin(theta)) * _vee(r - r.T)


def _left_jacobian(phi):
    theta = float(np.linalg.norm(phi))
    phi_hat = hat(phi)
    if theta < _SMALL_ANGLE:
        return np.eye(3) + 0.5 * phi_hat
    theta2 = theta * theta
    return (
        np.eye(3)
        + (1.0 - math.cos(theta)) / theta2 * phi_hat
        + (theta - math.sin(theta)) / (theta2 * theta) * (phi_hat @ phi_hat)
    )


def se3_exp(xi):
    """Return the 4x4 transform of a twist (translation part first, rotation second)."""
    twist = _as_vector(xi, 6, "xi")
    rho, phi = twist[:3], twist[3:]
    transform = np.eye(4)
    transform[:3, :3] = so3_exp(phi)
    transform[:3, 3] = _left_jacobian(phi) @ rho
    return transform


def pixel2cam(p, K):
    """Convert a pixel position to normalised camera coordinates."""
    x, y = _as_vector(p, 2, "p")
    k = np.asarray(K, dtype=float)
    return np.array([(x - k[0, 2]) / k[0, 0], (y - k[1, 2]) / k[1, 1]])


def _as_pose(pose):
    if pose is None:
        return np.eye(4)
    matrix = np.array(pose, dtype=float)
    if matrix.shape != (4, 4):
        raise ValueError(f"pose must be a 4x4 transform, got shape {matrix.shape}")
    return matrix


def bundle_adjustment_gauss_newton(points_3d, points_2d, K, pose=None):
    """Refine a camera pose by Gauss-Newton on the reprojection error.

    Returns the refined 4x4 transform mapping world points into the camera.
    """
    pts3 = np.asarray(points_3d, dtype=float).reshape(-1, 3)
    pts2 = np.asarray(points_2d, dtype=float).reshape(-1, 2)
    if len(pts3) != len(pts2):
        raise ValueError("points_3d and points_2d must have the same length")
    k = np.asarray(K, dtype=float)
    fx, fy, cx, cy = k[0, 0], k[1, 1], k[0, 2], k[1, 2]
    pose = _as_pose(pose)

    last_cost = 0.0
    for iteration in range(GAUSS_NEWTON_ITERATIONS):
        h = np.zeros((6, 6))
        b = np.zeros(6)
        cost = 0.0
        for world, observed in zip(pts3, pts2):
            pc = pose[:3, :3] @ world + pose[:3, 3]
            inv_z = 1.0 / pc[2]
            inv_z2 = inv_z * inv_z
            proj = np.array([fx * pc[0] * inv_z + cx, fy * pc[1] * inv_z + cy])
            e = observed - proj
            cost += float(e @ e)
            j = np.array(
                [
                    [
                        -fx * inv_z,
                        0.0,
                        fx * pc[0] * inv_z2,
                        fx * pc[0] * pc[1] * inv_z2,
                        -fx - fx * pc[0] * pc[0] * inv_z2,
                        fx * pc[1] * inv_z,
                    ],
                    [
                        0.0,
                        -fy * inv_z,
                        fy * pc[1] * inv_z2,
                        fy + fy * pc[1] * pc[1] * inv_z2,
                        -fy * pc[0] * pc[1] * inv_z2,
                        -fy * pc[0] * inv_z,
                    ],
                ]
            )
            h += j.T @ j
            b += -j.T @ e

        try:
            dx = np.linalg.solve(h, b)
        except np.linalg.LinAlgError:
            dx = np.full(6, np.nan)
        if not np.all(np.isfinite(dx)):
            logger.debug("result is nan!")
            break

        if iteration > 0 and cost >= last_cost:
            logger.debug("cost: %s, last cost: %s", cost, last_cost)
            break

        pose = se3_exp(dx) @ pose
        last_cost = cost
        logger.debug("iteration %d cost=%.12g", iteration, cost)
        if np.linalg.norm(dx) < CONVERGENCE_NORM:
            break

    return pose