"""Angle-axis and quaternion rotation helpers for 3-vectors."""

import math
import sys

import numpy as np

_EPSILON = sys.float_info.epsilon


def _as_vector(values, size, name):
    array = np.asarray(values, dtype=float)
    if array.shape != (size,):
        raise ValueError(f"{name} must have exactly {size} components, got shape {array.shape}")
    return array


def dot_product(x, y):
    """Return the dot product of two 3-vectors."""
    a = _as_vector(x, 3, "x")
    b = _as_vector(y, 3, "y")
    return float(a[0] * b[0] + a[1] * b[1] + a[2] * b[2])


def cross_product(x, y):
    """Return the cross product x × y of two 3-vectors."""
    a = _as_vector(x, 3, "x")
    b = _as_vector(y, 3, "y")
    return np.array(
        [
            a[1] * b[2] - a[2] * b[1],
            a[2] * b[0] - a[0] * b[2],
            a[0] * b[1] - a[1] * b[0],
        ]
    )


def angle_axis_to_quaternion(angle_axis):
    """Convert an angle-axis vector to a quaternion (w, x, y, z)."""
    a = _as_vector(angle_axis, 3, "angle_axis")
    theta_squared = float(a @ a)
    if theta_squared > _EPSILON:
        theta = math.sqrt(theta_squared)
        half_theta = 0.5 * theta
        k = math.sin(half_theta) / theta
        return np.array([math.cos(half_theta), a[0] * k, a[1] * k, a[2] * k])
    # Near zero the first-order expansion is used.
    k = 0.5
    return np.array([1.0, a[0] * k, a[1] * k, a[2] * k])


def quaternion_to_angle_axis(quaternion):
    """Convert a quaternion (w, x, y, z) to an angle-axis vector."""
    q = _as_vector(quaternion, 4, "quaternion")
    q1, q2, q3 = q[1], q[2], q[3]
    sin_squared_theta = q1 * q1 + q2 * q2 + q3 * q3
    if sin_squared_theta > _EPSILON:
        sin_theta = math.sqrt(sin_squared_theta)
        cos_theta = q[0]
        # Keep the resulting angle within [-pi, pi].
        if cos_theta < 0.0:
            two_theta = 2.0 * math.atan2(-sin_theta, -cos_theta)
        else:
            two_theta = 2.0 * math.atan2(sin_theta, cos_theta)
        k = two_theta / sin_theta
    else:
        k = 2.0
    return np.array([q1 * k, q2 * k, q3 * k])


def angle_axis_rotate_point(angle_axis, pt):
    """Rotate a 3D point by the rotation encoded in an angle-axis vector."""
    a = _as_vector(angle_axis, 3, "angle_axis")
    p = _as_vector(pt, 3, "pt")
    theta2 = float(a @ a)
    if theta2 > _EPSILON:
        theta = math.sqrt(theta2)
        cos_theta = math.cos(theta)
        sin_theta = math.sin(theta)
        w = a / theta
        w_cross_pt = cross_product(w, p)
        tmp = dot_product(w, p) * (1.0 - cos_theta)
        return p * cos_theta + w_cross_pt * sin_theta + w * tmp
    # First-order Taylor approximation: R * p = p + w x p.
    return p + cross_product(a, p)