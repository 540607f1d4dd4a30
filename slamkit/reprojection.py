"""Reprojection model for bundle adjustment with radial distortion."""

from dataclasses import dataclass

import numpy as np

from slamkit.rotation import angle_axis_rotate_point


def cam_projection_with_distortion(camera, point):
    """Project a 3D point with a 9-parameter camera.

    The camera holds an angle-axis rotation [0:3], a translation [3:6],
    the focal length [6] and second and fourth order radial distortion
    coefficients [7:9]. The result is relative to the image centre.
    """
    cam = np.asarray(camera, dtype=float)
    if cam.shape != (9,):
        raise ValueError(f"camera must have 9 parameters, got shape {cam.shape}")
    p = angle_axis_rotate_point(cam[:3], point) + cam[3:6]

    xp = -p[0] / p[2]
    yp = -p[1] / p[2]

    l1, l2 = cam[7], cam[8]
    r2 = xp * xp + yp * yp
    distortion = 1.0 + r2 * (l1 + l2 * r2)

    focal = cam[6]
    return np.array([focal * distortion * xp, focal * distortion * yp])


@dataclass(frozen=True)
class SnavelyReprojectionError:
    """Residual between an observed pixel and the projected point."""

    observed_x: float
    observed_y: float

    def __call__(self, camera, point):
        """Return the two-dimensional residual prediction - observation."""
        prediction = cam_projection_with_distortion(camera, point)
        return prediction - np.array([self.observed_x, self.observed_y])