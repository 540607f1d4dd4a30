"""Loading, normalising, perturbing and writing BAL bundle-adjustment problems."""

import numpy as np

from slamkit.rotation import (
    angle_axis_rotate_point,
    angle_axis_to_quaternion,
    quaternion_to_angle_axis,
)
from slamkit.sampling import rand_normal


class BALFormatError(ValueError):
    """Raised when a BAL data file cannot be parsed."""


def median(data):
    """Return the element at position n // 2 of the sorted data."""
    values = sorted(data)
    if not values:
        raise ValueError("median of empty data")
    return float(values[len(values) // 2])


def perturb_point3(sigma, point, rng=None):
    """Return the 3-vector with Gaussian noise of standard deviation sigma added."""
    base = np.asarray(point, dtype=float)
    noise = np.array([rand_normal(rng) * sigma for _ in range(3)])
    return base + noise


class _TokenReader:
    def __init__(self, tokens):
        self._tokens = iter(tokens)

    def _next(self):
        try:
            return next(self._tokens)
        except StopIteration:
            raise BALFormatError("Invalid UW data file: unexpected end of data") from None

    def integer(self):
        token = self._next()
        try:
            return int(token)
        except ValueError:
            raise BALFormatError(f"Invalid UW data file: expected integer, got {token!r}") from None

    def real(self):
        token = self._next()
        try:
            return float(token)
        except ValueError:
            raise BALFormatError(f"Invalid UW data file: expected number, got {token!r}") from None


class BALProblem:
    """A bundle-adjustment problem read from a BAL text file."""

    point_block_size = 3

    def __init__(self, filename, use_quaternions=False):
        with open(filename, encoding="ascii") as fh:
            reader = _TokenReader(fh.read().split())

        num_cameras = reader.integer()
        num_points = reader.integer()
        num_observations = reader.integer()
        if min(num_cameras, num_points, num_observations) < 0:
            raise BALFormatError("Invalid UW data file: negative count in header")

        camera_index = np.empty(num_observations, dtype=int)
        point_index = np.empty(num_observations, dtype=int)
        observations = np.empty((num_observations, 2), dtype=float)
        for i in range(num_observations):
            camera_index[i] = reader.integer()
            point_index[i] = reader.integer()
            observations[i] = (reader.real(), reader.real())

        num_parameters = 9 * num_cameras + 3 * num_points
        parameters = np.array([reader.real() for _ in range(num_parameters)], dtype=float)

        self._num_cameras = num_cameras
        self._num_points = num_points
        self._use_quaternions = bool(use_quaternions)
        self.camera_index = camera_index
        self.point_index = point_index
        self.observations = observations

        if self._use_quaternions:
            cameras = parameters[: 9 * num_cameras].reshape(num_cameras, 9)
            converted = [
                np.concatenate([angle_axis_to_quaternion(cam[:3]), cam[3:]]) for cam in cameras
            ]
            camera_part = np.concatenate(converted) if converted else np.empty(0)
            parameters = np.concatenate([camera_part, parameters[9 * num_cameras:]])
        self.parameters = parameters

    @property
    def use_quaternions(self):
        return self._use_quaternions

    @property
    def camera_block_size(self):
        return 10 if self._use_quaternions else 9

    @property
    def num_cameras(self):
        return self._num_cameras

    @property
    def num_points(self):
        return self._num_points

    @property
    def num_observations(self):
        return len(self.observations)

    @property
    def num_parameters(self):
        return len(self.parameters)

    def cameras(self):
        """Return a writable (num_cameras, camera_block_size) view of the cameras."""
        end = self.camera_block_size * self._num_cameras
        return self.parameters[:end].reshape(self._num_cameras, self.camera_block_size)

    def points(self):
        """Return a writable (num_points, 3) view of the points."""
        start = self.camera_block_size * self._num_cameras
        return self.parameters[start:].reshape(self._num_points, self.point_block_size)

    def camera_for_observation(self, i):
        """Return the writable camera block seen by observation i."""
        return self.cameras()[self.camera_index[i]]

    def point_for_observation(self, i):
        """Return the writable point block seen by observation i."""
        return self.points()[self.point_index[i]]

    def write_to_file(self, filename):
        """Write the problem in BAL text form with angle-axis cameras.

        The header line lists the camera count twice, then the point and
        observation counts.
        """
        with open(filename, "w", encoding="ascii") as fh:
            fh.write(
                "%d %d %d %d\n"
                % (self._num_cameras, self._num_cameras, self._num_points, self.num_observations)
            )
            for cam_idx, pt_idx, obs in zip(self.camera_index, self.point_index, self.observations):
                fh.write("%d %d" % (cam_idx, pt_idx))
                for value in obs:
                    fh.write(" %g" % value)
                fh.write("\n")

            for camera in self.cameras():
                if self._use_quaternions:
                    values = np.concatenate([quaternion_to_angle_axis(camera[:4]), camera[4:10]])
                else:
                    values = camera
                for value in values:
                    fh.write("%.16g\n" % value)

            for point in self.points():
                for value in point:
                    fh.write("%.16g\n" % value)

    def write_to_ply_file(self, filename):
        """Write camera centres (green) and points (white) as an ASCII PLY cloud."""
        header = [
            "ply",
            "format ascii 1.0",
            f"element vertex {self._num_cameras + self._num_points}",
            "property float x",
            "property float y",
            "property float z",
            "property uchar red",
            "property uchar green",
            "property uchar blue",
            "end_header",
        ]
        with open(filename, "w", encoding="ascii") as fh:
            fh.write("\n".join(header) + "\n")
            for camera in self.cameras():
                _, center = self._camera_to_angle_axis_and_center(camera)
                fh.write(f"{center[0]:g} {center[1]:g} {center[2]:g} 0 255 0\n")
            for point in self.points():
                fh.write("".join(f"{value:g} " for value in point) + " 255 255 255\n")

    def _camera_to_angle_axis_and_center(self, camera):
        if self._use_quaternions:
            angle_axis = quaternion_to_angle_axis(camera[:4])
        else:
            angle_axis = np.array(camera[:3], dtype=float)
        t0 = self.camera_block_size - 6
        # c = -R^T t
        center = -angle_axis_rotate_point(-angle_axis, camera[t0:t0 + 3])
        return angle_axis, center

    def _angle_axis_and_center_to_camera(self, angle_axis, center, camera):
        updated = np.array(camera, dtype=float)
        if self._use_quaternions:
            updated[:4] = angle_axis_to_quaternion(angle_axis)
        else:
            updated[:3] = angle_axis
        t0 = self.camera_block_size - 6
        # t = -R c
        updated[t0:t0 + 3] = -angle_axis_rotate_point(angle_axis, center)
        return updated

    def normalize(self):
        """Centre the scene on its median and scale its median absolute deviation to 100."""
        points = self.points()
        med = np.array([median(points[:, axis]) for axis in range(3)])
        deviation = np.abs(points - med).sum(axis=1)
        scale = 100.0 / median(deviation)

        points[:] = scale * (points - med)

        for camera in self.cameras():
            angle_axis, center = self._camera_to_angle_axis_and_center(camera)
            center = scale * (center - med)
            camera[:] = self._angle_axis_and_center_to_camera(angle_axis, center, camera)

    def perturb(self, rotation_sigma, translation_sigma, point_sigma, rng=None):
        """Add Gaussian noise to points, camera rotations and camera translations."""
        if point_sigma < 0.0 or rotation_sigma < 0.0 or translation_sigma < 0.0:
            raise ValueError("perturbation sigmas must be non-negative")

        points = self.points()
        if point_sigma > 0:
            for point in points:
                point[:] = perturb_point3(point_sigma, point, rng)

        t0 = self.camera_block_size - 6
        for camera in self.cameras():
            angle_axis, center = self._camera_to_angle_axis_and_center(camera)
            if rotation_sigma > 0.0:
                angle_axis = perturb_point3(rotation_sigma, angle_axis, rng)
            camera[:] = self._angle_axis_and_center_to_camera(angle_axis, center, camera)
            if translation_sigma > 0.0:
                camera[t0:t0 + 3] = perturb_point3(translation_sigma, camera[t0:t0 + 3], rng)