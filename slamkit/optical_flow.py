"""Lucas-Kanade sparse optical flow solved by Gauss-Newton, on single images and pyramids."""

import logging

import numpy as np

logger = logging.getLogger(__name__)

HALF_PATCH_SIZE = 4
ITERATIONS = 10
CONVERGENCE_NORM = 1e-2
PYRAMID_LEVELS = 4
PYRAMID_SCALE = 0.5

_OFFSETS_X, _OFFSETS_Y = (
    grid.ravel()
    for grid in np.meshgrid(
        np.arange(-HALF_PATCH_SIZE, HALF_PATCH_SIZE),
        np.arange(-HALF_PATCH_SIZE, HALF_PATCH_SIZE),
        indexing="ij",
    )
)


def _as_image(img):
    image = np.asarray(img, dtype=float)
    if image.ndim != 2:
        raise ValueError(f"image must be two-dimensional, got shape {image.shape}")
    if image.shape[0] < 2 or image.shape[1] < 2:
        raise ValueError(f"image must be at least 2x2, got shape {image.shape}")
    return image


def _keypoints(points):
    array = np.asarray(points, dtype=float)
    if array.size == 0:
        return np.empty((0, 2))
    if array.ndim != 2 or array.shape[1] != 2:
        raise ValueError(f"keypoints must have shape (N, 2), got {array.shape}")
    return array


def _sample(image, x, y):
    """Bilinear samples; coordinates are clamped one pixel inside the far border."""
    rows, cols = image.shape
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    x = np.where(x < 0, 0.0, x)
    y = np.where(y < 0, 0.0, y)
    x = np.where(x >= cols - 1, cols - 2.0, x)
    y = np.where(y >= rows - 1, rows - 2.0, y)
    xi = x.astype(int)
    yi = y.astype(int)
    xx = x - np.floor(x)
    yy = y - np.floor(y)
    x1 = np.minimum(cols - 1, xi + 1)
    y1 = np.minimum(rows - 1, yi + 1)
    return (
        (1 - xx) * (1 - yy) * image[yi, xi]
        + xx * (1 - yy) * image[yi, x1]
        + (1 - xx) * yy * image[y1, xi]
        + xx * yy * image[y1, x1]
    )


def get_pixel_value(img, x, y):
    """Return the bilinearly interpolated grey value of an image at (x, y)."""
    image = _as_image(img)
    return float(_sample(image, np.array([x]), np.array([y]))[0])


def _solve(h, b):
    try:
        return np.linalg.solve(h, b)
    except np.linalg.LinAlgError:
        return np.linalg.lstsq(h, b, rcond=None)[0]


def _axis_map(src_size, dst_size):
    scale = src_size / dst_size
    coords = (np.arange(dst_size) + 0.5) * scale - 0.5
    lower = np.floor(coords).astype(int)
    weight = coords - lower
    below = lower < 0
    lower = np.where(below, 0, lower)
    weight = np.where(below, 0.0, weight)
    beyond = lower >= src_size - 1
    lower = np.where(beyond, src_size - 1, lower)
    weight = np.where(beyond, 0.0, weight)
    upper = np.minimum(lower + 1, src_size - 1)
    return lower, upper, weight


def resize_bilinear(img, width, height):
    """Resize a 2-D image with bilinear interpolation on pixel centres.

    Integer images are rounded and keep their dtype.
    """
    source = np.asarray(img)
    if source.ndim != 2:
        raise ValueError(f"image must be two-dimensional, got shape {source.shape}")
    width, height = int(width), int(height)
    if width <= 0 or height <= 0:
        raise ValueError("target size must be positive")
    rows, cols = source.shape
    x0, x1, ax = _axis_map(cols, width)
    y0, y1, ay = _axis_map(rows, height)
    data = source.astype(float)
    ax = ax[np.newaxis, :]
    ay = ay[:, np.newaxis]
    top = data[np.ix_(y0, x0)] * (1 - ax) + data[np.ix_(y0, x1)] * ax
    bottom = data[np.ix_(y1, x0)] * (1 - ax) + data[np.ix_(y1, x1)] * ax
    result = top * (1 - ay) + bottom * ay
    if np.issubdtype(source.dtype, np.integer):
        info = np.iinfo(source.dtype)
        return np.clip(np.rint(result), info.min, info.max).astype(source.dtype)
    return result.astype(source.dtype)


def build_pyramid(img, levels=PYRAMID_LEVELS, scale=PYRAMID_SCALE):
    """Return [img, img scaled once, scaled twice, ...] with ``levels`` entries."""
    if levels < 1:
        raise ValueError("a pyramid needs at least one level")
    pyramid = [np.asarray(img)]
    for _ in range(levels - 1):
        previous = pyramid[-1]
        rows, cols = previous.shape[:2]
        pyramid.append(resize_bilinear(previous, int(cols * scale), int(rows * scale)))
    return pyramid


def _gradient(image, x, y):
    return -0.5 * np.column_stack(
        [
            _sample(image, x + 1, y) - _sample(image, x - 1, y),
            _sample(image, x, y + 1) - _sample(image, x, y - 1),
        ]
    )


def _track(image1, image2, kx, ky, dx, dy, inverse):
    xs = kx + _OFFSETS_X
    ys = ky + _OFFSETS_Y
    reference = _sample(image1, xs, ys)
    if inverse:
        # The template gradient does not depend on (dx, dy), so it is computed once.
        jacobian = _gradient(image1, xs, ys)
        hessian = jacobian.T @ jacobian

    last_cost = 0.0
    success = True
    for iteration in range(ITERATIONS):
        if not inverse:
            jacobian = _gradient(image2, xs + dx, ys + dy)
            hessian = jacobian.T @ jacobian
        error = reference - _sample(image2, xs + dx, ys + dy)
        bias = -(jacobian.T @ error)
        cost = float(error @ error)

        update = _solve(hessian, bias)
        if not np.all(np.isfinite(update)):
            logger.debug("update is nan")
            success = False
            break
        if iteration > 0 and cost > last_cost:
            break

        dx += update[0]
        dy += update[1]
        last_cost = cost
        success = True
        if np.linalg.norm(update) < CONVERGENCE_NORM:
            break
    return dx, dy, success


def optical_flow_single_level(img1, img2, kp1, kp2=None, inverse=False, has_initial=False):
    """Track keypoints of img1 into img2 on one image level.

    Returns an (N, 2) array of tracked positions and a list of success flags.
    With ``has_initial`` the positions in ``kp2`` are the starting guess.
    """
    image1 = _as_image(img1)
    image2 = _as_image(img2)
    points1 = _keypoints(kp1)
    if has_initial:
        if kp2 is None:
            raise ValueError("an initial guess needs kp2")
        initial = _keypoints(kp2)
        if initial.shape != points1.shape:
            raise ValueError("kp2 must hold one position per keypoint in kp1")
    else:
        initial = points1

    tracked = []
    success = []
    for (kx, ky), (ix, iy) in zip(points1, initial):
        dx, dy, ok = _track(image1, image2, kx, ky, ix - kx, iy - ky, inverse)
        tracked.append((kx + dx, ky + dy))
        success.append(ok)
    return (np.array(tracked) if tracked else np.empty((0, 2))), success


def optical_flow_multi_level(img1, img2, kp1, inverse=False):
    """Track keypoints coarse-to-fine over a four-level, half-scale pyramid."""
    pyramid1 = build_pyramid(np.asarray(img1, dtype=float), PYRAMID_LEVELS, PYRAMID_SCALE)
    pyramid2 = build_pyramid(np.asarray(img2, dtype=float), PYRAMID_LEVELS, PYRAMID_SCALE)

    top_scale = PYRAMID_SCALE ** (PYRAMID_LEVELS - 1)
    kp1_pyr = _keypoints(kp1) * top_scale
    kp2_pyr = kp1_pyr.copy()
    success = []
    for level in reversed(range(PYRAMID_LEVELS)):
        kp2_pyr, success = optical_flow_single_level(
            pyramid1[level], pyramid2[level], kp1_pyr, kp2_pyr, inverse, True
        )
        logger.debug("tracked pyramid level %d", level)
        if level > 0:
            kp1_pyr = kp1_pyr / PYRAMID_SCALE
            kp2_pyr = kp2_pyr / PYRAMID_SCALE
    return kp2_pyr, success