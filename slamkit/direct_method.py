"""Direct (photometric) camera pose estimation from sparse pixels with known depth."""

import logging
import math
import sys
from dataclasses import dataclass

import numpy as np

from slamkit.optical_flow import build_pyramid
from slamkit.pnp import se3_exp

logger = logging.getLogger(__name__)

BASELINE = 0.573
HALF_PATCH_SIZE = 1
ITERATIONS = 10
CONVERGENCE_NORM = 1e-3
PYRAMID_LEVELS = 4
PYRAMID_SCALE = 0.5
NUM_POINTS = 2000
BORDER = 20
DEFAULT_LEFT = "../left.png"
DEFAULT_DISPARITY = "../disparity.png"
DEFAULT_OTHERS = "../%06d.png"


@dataclass(frozen=True)
class Intrinsics:
    """Pinhole camera intrinsics."""

    fx: float = 718.856
    fy: float = 718.856
    cx: float = 607.1928
    cy: float = 185.2157

    def scaled(self, factor):
        """Return the intrinsics of the image resized by ``factor``."""
        return Intrinsics(self.fx * factor, self.fy * factor, self.cx * factor, self.cy * factor)


def _as_image(img):
    image = np.asarray(img, dtype=float)
    if image.ndim != 2:
        raise ValueError(f"image must be two-dimensional, got shape {image.shape}")
    return image


def _sample(image, x, y):
    """Bilinear samples; neighbours past the border repeat the edge pixel."""
    rows, cols = image.shape
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    x = np.where(x < 0, 0.0, x)
    y = np.where(y < 0, 0.0, y)
    x = np.where(x >= cols, cols - 1.0, x)
    y = np.where(y >= rows, rows - 1.0, y)
    xi = x.astype(int)
    yi = y.astype(int)
    xx = x - np.floor(x)
    yy = y - np.floor(y)
    x1 = np.minimum(xi + 1, cols - 1)
    y1 = np.minimum(yi + 1, rows - 1)
    return (
        (1 - xx) * (1 - yy) * image[yi, xi]
        + xx * (1 - yy) * image[yi, x1]
        + (1 - xx) * yy * image[y1, xi]
        + xx * yy * image[y1, x1]
    )


def get_pixel_value(img, x, y):
    """Return the bilinearly interpolated grey value of an image at (x, y)."""
    return float(_sample(_as_image(img), np.array([x]), np.array([y]))[0])


def _solve(h, b):
    try:
        return np.linalg.solve(h, b)
    except np.linalg.LinAlgError:
        return np.linalg.lstsq(h, b, rcond=None)[0]


def _as_pose(pose):
    if pose is None:
        return np.eye(4)
    matrix = np.array(pose, dtype=float)
    if matrix.shape != (4, 4):
        raise ValueError(f"pose must be a 4x4 transform, got shape {matrix.shape}")
    return matrix


class JacobianAccumulator:
    """Accumulates the Gauss-Newton system of the photometric error."""

    def __init__(self, img1, img2, px_ref, depth_ref, T21=None, camera=None):
        self.img1 = _as_image(img1)
        self.img2 = _as_image(img2)
        pixels = np.asarray(px_ref, dtype=float)
        self.px_ref = pixels.reshape(-1, 2) if pixels.size else np.empty((0, 2))
        self.depth_ref = np.asarray(depth_ref, dtype=float).reshape(-1)
        if len(self.px_ref) != len(self.depth_ref):
            raise ValueError("px_ref and depth_ref must have the same length")
        self.T21 = _as_pose(T21)
        self.camera = camera if camera is not None else Intrinsics()
        self.projection = np.zeros((len(self.px_ref), 2))
        self.reset()

    def reset(self):
        """Zero the Hessian, the bias and the cost."""
        self.H = np.zeros((6, 6))
        self.b = np.zeros(6)
        self.cost = 0.0

    def accumulate_jacobian(self, start, end):
        """Add the contribution of reference points start..end-1 to H, b and cost."""
        if not 0 <= start <= end <= len(self.px_ref):
            raise ValueError("range out of bounds")
        cam = self.camera
        rows, cols = self.img2.shape
        px = self.px_ref[start:end]
        depth = self.depth_ref[start:end]

        with np.errstate(all="ignore"):
            bearing = np.column_stack(
                [(px[:, 0] - cam.cx) / cam.fx, (px[:, 1] - cam.cy) / cam.fy, np.ones(len(px))]
            )
            point_ref = depth[:, np.newaxis] * bearing
            point_cur = point_ref @ self.T21[:3, :3].T + self.T21[:3, 3]
            u = cam.fx * point_cur[:, 0] / point_cur[:, 2] + cam.cx
            v = cam.fy * point_cur[:, 1] / point_cur[:, 2] + cam.cy
        valid = (
            np.isfinite(point_cur).all(axis=1)
            & (point_cur[:, 2] >= 0)
            & np.isfinite(u)
            & np.isfinite(v)
        )
        valid &= ~(
            (u < HALF_PATCH_SIZE)
            | (u > cols - HALF_PATCH_SIZE)
            | (v < HALF_PATCH_SIZE)
            | (v > rows - HALF_PATCH_SIZE)
        )
        good = np.nonzero(valid)[0]
        if len(good) == 0:
            return
        u, v = u[good], v[good]
        px = px[good]
        self.projection[start + good] = np.column_stack([u, v])

        X, Y, Z = point_cur[good].T
        z_inv = 1.0 / Z
        z2_inv = z_inv * z_inv
        zero = np.zeros_like(X)
        fx, fy = cam.fx, cam.fy
        j_u = np.column_stack(
            [fx * z_inv, zero, -fx * X * z2_inv, -fx * X * Y * z2_inv,
             fx + fx * X * X * z2_inv, -fx * Y * z_inv]
        )
        j_v = np.column_stack(
            [zero, fy * z_inv, -fy * Y * z2_inv, -fy - fy * Y * Y * z2_inv,
             fy * X * Y * z2_inv, fy * X * z_inv]
        )

        hessian = np.zeros((6, 6))
        bias = np.zeros(6)
        cost = 0.0
        offsets = range(-HALF_PATCH_SIZE, HALF_PATCH_SIZE + 1)
        for x in offsets:
            for y in offsets:
                error = _sample(self.img1, px[:, 0] + x, px[:, 1] + y) - _sample(
                    self.img2, u + x, v + y
                )
                grad_u = 0.5 * (
                    _sample(self.img2, u + 1 + x, v + y) - _sample(self.img2, u - 1 + x, v + y)
                )
                grad_v = 0.5 * (
                    _sample(self.img2, u + x, v + 1 + y) - _sample(self.img2, u + x, v - 1 + y)
                )
                jacobian = -(grad_u[:, np.newaxis] * j_u + grad_v[:, np.newaxis] * j_v)
                hessian += jacobian.T @ jacobian
                bias += -(jacobian.T @ error)
                cost += float(error @ error)

        self.H += hessian
        self.b += bias
        self.cost += cost / len(good)


def direct_pose_estimation_single_layer(img1, img2, px_ref, depth_ref, T21=None, camera=None):
    """Estimate the pose of img2 relative to img1 by Gauss-Newton on one level.

    Returns the 4x4 transform and the projections of the reference pixels
    into img2 from the last evaluation (zero for points that fell outside).
    """
    accumulator = JacobianAccumulator(img1, img2, px_ref, depth_ref, T21, camera)
    last_cost = 0.0
    for iteration in range(ITERATIONS):
        accumulator.reset()
        accumulator.accumulate_jacobian(0, len(accumulator.px_ref))
        update = _solve(accumulator.H, accumulator.b)
        if not np.all(np.isfinite(update)):
            logger.debug("update is nan")
            break
        accumulator.T21 = se3_exp(update) @ accumulator.T21
        cost = accumulator.cost
        if iteration > 0 and cost > last_cost:
            logger.debug("cost increased: %s, %s", cost, last_cost)
            break
        if np.linalg.norm(update) < CONVERGENCE_NORM:
            break
        last_cost = cost
        logger.debug("iteration: %d, cost: %s", iteration, cost)
    return accumulator.T21, accumulator.projection.copy()


def direct_pose_estimation_multi_layer(img1, img2, px_ref, depth_ref, T21=None, camera=None):
    """Estimate the pose coarse-to-fine over a four-level, half-scale pyramid."""
    camera = camera if camera is not None else Intrinsics()
    pyramid1 = build_pyramid(_as_image(img1), PYRAMID_LEVELS, PYRAMID_SCALE)
    pyramid2 = build_pyramid(_as_image(img2), PYRAMID_LEVELS, PYRAMID_SCALE)
    pixels = np.asarray(px_ref, dtype=float)
    pose = _as_pose(T21)
    for level in reversed(range(PYRAMID_LEVELS)):
        scale = PYRAMID_SCALE ** level
        pose, _ = direct_pose_estimation_single_layer(
            pyramid1[level], pyramid2[level], pixels * scale, depth_ref, pose,
            camera.scaled(scale),
        )
    return pose


def _load_grey(path):
    from PIL import Image

    with Image.open(path) as image:
        return np.asarray(image.convert("L"))


def main(argv=None):
    """Track frames 1..5 against a left image whose depth comes from a disparity map."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) > 3:
        print("usage: direct_method [left.png [disparity.png [others_format]]]")
        return 1
    left_file = args[0] if len(args) > 0 else DEFAULT_LEFT
    disparity_file = args[1] if len(args) > 1 else DEFAULT_DISPARITY
    others = args[2] if len(args) > 2 else DEFAULT_OTHERS

    camera = Intrinsics()
    try:
        left = _load_grey(left_file)
        disparity = _load_grey(disparity_file)
    except OSError as exc:
        print(f"Error: unable to load images: {exc}", file=sys.stderr)
        return 1
    rows, cols = left.shape
    if cols <= 2 * BORDER or rows <= 2 * BORDER:
        print("Error: image is too small", file=sys.stderr)
        return 1

    rng = np.random.default_rng(0xFFFFFFFF)
    pixels = []
    depths = []
    for _ in range(NUM_POINTS):
        x = int(rng.integers(BORDER, cols - BORDER))
        y = int(rng.integers(BORDER, rows - BORDER))
        d = int(disparity[y, x])
        depths.append(camera.fx * BASELINE / d if d else math.inf)
        pixels.append((x, y))

    pose = np.eye(4)
    for i in range(1, 6):
        try:
            image = _load_grey(others % i)
        except OSError as exc:
            print(f"Error: unable to load image {i}: {exc}", file=sys.stderr)
            return 1
        pose, _ = direct_pose_estimation_single_layer(left, image, pixels, depths, pose, camera)
        print("T21 = ")
        print(pose)
    return 0