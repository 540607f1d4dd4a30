"""Bundle adjustment of BAL problems with a robust reprojection cost."""

import logging
import sys
from dataclasses import dataclass, field

import numpy as np
from scipy.optimize import least_squares
from scipy.sparse import lil_matrix

from slamkit.bal import BALFormatError, BALProblem
from slamkit.pnp import so3_exp, so3_log

logger = logging.getLogger(__name__)

CAMERA_SIZE = 9
POINT_SIZE = 3
HUBER_DELTA = 1.0
_EPSILON = sys.float_info.epsilon


@dataclass
class PoseAndIntrinsics:
    """Camera rotation, translation, focal length and radial distortion."""

    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    focal: float = 0.0
    k1: float = 0.0
    k2: float = 0.0

    @classmethod
    def from_array(cls, data):
        """Build from a 9-parameter camera block (angle-axis, t, f, k1, k2)."""
        values = np.asarray(data, dtype=float)
        if values.shape != (CAMERA_SIZE,):
            raise ValueError(f"camera block must have 9 values, got shape {values.shape}")
        return cls(
            rotation=so3_exp(values[:3]),
            translation=values[3:6].copy(),
            focal=float(values[6]),
            k1=float(values[7]),
            k2=float(values[8]),
        )

    def to_array(self):
        """Return the 9-parameter camera block."""
        return np.concatenate(
            [so3_log(self.rotation), self.translation, [self.focal, self.k1, self.k2]]
        )

    def project(self, point):
        """Project a 3D point with this camera.

        The squared radius is taken over the whole normalised 3-vector,
        whose last component is -1.
        """
        pc = self.rotation @ np.asarray(point, dtype=float) + self.translation
        pc = -pc / pc[2]
        r2 = float(pc @ pc)
        distortion = 1.0 + r2 * (self.k1 + self.k2 * r2)
        return np.array([self.focal * distortion * pc[0], self.focal * distortion * pc[1]])


def _rotate_points(angle_axis, points):
    theta2 = np.einsum("ij,ij->i", angle_axis, angle_axis)
    large = theta2 > _EPSILON
    theta = np.sqrt(np.where(large, theta2, 1.0))
    w = angle_axis / theta[:, np.newaxis]
    cos_theta = np.cos(theta)[:, np.newaxis]
    sin_theta = np.sin(theta)[:, np.newaxis]
    tmp = np.einsum("ij,ij->i", w, points)[:, np.newaxis] * (1.0 - cos_theta)
    rotated = points * cos_theta + np.cross(w, points) * sin_theta + w * tmp
    approx = points + np.cross(angle_axis, points)
    return np.where(large[:, np.newaxis], rotated, approx)


def _residuals(params, num_cameras, num_points, camera_index, point_index, observations):
    cameras = params[: CAMERA_SIZE * num_cameras].reshape(num_cameras, CAMERA_SIZE)
    points = params[CAMERA_SIZE * num_cameras:].reshape(num_points, POINT_SIZE)
    cams = cameras[camera_index]
    p = _rotate_points(cams[:, :3], points[point_index]) + cams[:, 3:6]
    xp = -p[:, 0] / p[:, 2]
    yp = -p[:, 1] / p[:, 2]
    r2 = xp * xp + yp * yp
    distortion = 1.0 + r2 * (cams[:, 7] + cams[:, 8] * r2)
    focal = cams[:, 6]
    predictions = np.column_stack([focal * distortion * xp, focal * distortion * yp])
    return (predictions - observations).ravel()


def _sparsity(num_cameras, num_points, camera_index, point_index):
    num_obs = len(camera_index)
    pattern = lil_matrix(
        (2 * num_obs, CAMERA_SIZE * num_cameras + POINT_SIZE * num_points), dtype=int
    )
    rows = np.arange(num_obs)
    point_offset = CAMERA_SIZE * num_cameras
    for row in (2 * rows, 2 * rows + 1):
        for s in range(CAMERA_SIZE):
            pattern[row, CAMERA_SIZE * camera_index + s] = 1
        for s in range(POINT_SIZE):
            pattern[row, point_offset + POINT_SIZE * point_index + s] = 1
    return pattern


def solve_ba(problem):
    """Optimise the cameras and points of a BAL problem in place.

    Every observation contributes a 2D reprojection residual under a Huber
    loss of width 1. Returns the optimiser's result.
    """
    if problem.use_quaternions:
        raise ValueError("bundle adjustment needs angle-axis cameras")
    if problem.num_observations == 0:
        raise ValueError("bundle adjustment needs at least one observation")

    num_cameras, num_points = problem.num_cameras, problem.num_points
    camera_index = np.asarray(problem.camera_index, dtype=int)
    point_index = np.asarray(problem.point_index, dtype=int)
    observations = np.asarray(problem.observations, dtype=float)

    logger.info(
        "bal problem have %d cameras and %d points, forming %d observations",
        num_cameras,
        num_points,
        problem.num_observations,
    )
    result = least_squares(
        _residuals,
        problem.parameters.copy(),
        jac_sparsity=_sparsity(num_cameras, num_points, camera_index, point_index),
        loss="huber",
        f_scale=HUBER_DELTA,
        x_scale="jac",
        method="trf",
        args=(num_cameras, num_points, camera_index, point_index, observations),
    )
    problem.parameters[:] = result.x
    logger.info("%s", result.message)
    return result


def main(argv=None):
    """Load a BAL file, normalise and perturb it, solve it and write PLY clouds."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 1:
        print("usage: bundle_adjustment bal_data.txt")
        return 1
    try:
        problem = BALProblem(args[0])
    except (OSError, BALFormatError) as exc:
        print(f"Error: unable to load {args[0]}: {exc}", file=sys.stderr)
        return 1

    problem.normalize()
    problem.perturb(0.1, 0.5, 0.5)
    problem.write_to_ply_file("initial.ply")
    print("bal problem file loaded...")
    print(
        f"bal problem have {problem.num_cameras} cameras and "
        f"{problem.num_points} points. "
    )
    print(f"Forming {problem.num_observations} observations. ")
    print("Solving BA ... ")
    result = solve_ba(problem)
    print(result.message)
    problem.write_to_ply_file("final.ply")
    return 0