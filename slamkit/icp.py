"""Rigid alignment of matched 3D point sets: SVD closed form and pose-only refinement."""

import logging
import math

import numpy as np

from slamkit.pnp import hat, se3_exp

logger = logging.getLogger(__name__)

_LAMBDA_TAU = 1e-5
_MAX_TRIALS = 10


def _point_sets(pts1, pts2):
    a = np.asarray(pts1, dtype=float)
    b = np.asarray(pts2, dtype=float)
    if a.ndim != 2 or a.shape[1] != 3 or b.ndim != 2 or b.shape[1] != 3:
        raise ValueError("point sets must have shape (N, 3)")
    if len(a) != len(b):
        raise ValueError("point sets must have the same number of points")
    if len(a) == 0:
        raise ValueError("point sets must not be empty")
    return a, b


def pose_estimation_3d3d(pts1, pts2):
    """Return (R, t) with pts1 ≈ R @ pts2 + t, found by SVD of the cross covariance."""
    a, b = _point_sets(pts1, pts2)
    p1 = a.mean(axis=0)
    p2 = b.mean(axis=0)
    q1 = a - p1
    q2 = b - p2

    w = q1.T @ q2
    u, _, vt = np.linalg.svd(w)
    r = u @ vt
    if np.linalg.det(r) < 0:
        r = -r
    t = p1 - r @ p2
    return r, t


def _residuals(pose, a, b):
    transformed = b @ pose[:3, :3].T + pose[:3, 3]
    return a - transformed, transformed


def _chi2(pose, a, b):
    errors, _ = _residuals(pose, a, b)
    return float((errors * errors).sum())


def _linearize(pose, a, b):
    errors, transformed = _residuals(pose, a, b)
    h = np.zeros((6, 6))
    g = np.zeros(6)
    for error, q in zip(errors, transformed):
        j = np.hstack([-np.eye(3), hat(q)])
        h += j.T @ j
        g += j.T @ error
    return h, g, float((errors * errors).sum())


def bundle_adjustment(pts1, pts2, iterations=10):
    """Refine (R, t) with pts1 ≈ R @ pts2 + t by Levenberg-Marquardt from the identity."""
    a, b = _point_sets(pts1, pts2)
    pose = np.eye(4)
    lam = None
    ni = 2.0

    for iteration in range(iterations):
        h, g, chi = _linearize(pose, a, b)
        if lam is None:
            lam = _LAMBDA_TAU * max(float(np.max(np.abs(np.diag(h)))), 1e-12)

        accepted = False
        for _ in range(_MAX_TRIALS):
            try:
                dx = np.linalg.solve(h + lam * np.eye(6), -g)
            except np.linalg.LinAlgError:
                dx = np.full(6, np.nan)
            if np.all(np.isfinite(dx)):
                candidate = se3_exp(dx) @ pose
                new_chi = _chi2(candidate, a, b)
                scale = float(dx @ (lam * dx - g)) + 1e-3
                rho = (chi - new_chi) / scale
            else:
                new_chi, rho = math.inf, -1.0
            if rho > 0 and math.isfinite(new_chi):
                pose = candidate
                lam *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                ni = 2.0
                accepted = True
                logger.debug("iteration %d chi2=%.12g lambda=%g", iteration, new_chi, lam)
                break
            lam *= ni
            ni *= 2.0
        if not accepted:
            break

    return pose[:3, :3].copy(), pose[:3, 3].copy()