"""Oriented BRIEF descriptors, brute-force Hamming matching and match filtering."""

import logging
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)

HALF_PATCH_SIZE = 8
HALF_BOUNDARY = 16
DESCRIPTOR_WORDS = 8
BITS_PER_WORD = 32
MATCH_DISTANCE_MAX = 40
GOOD_MATCH_FLOOR = 30.0

# 256 point pairs (px, py, qx, qy) sampled around the keypoint.
_ORB_PATTERN = (
    8, -3, 9, 5,
    4, 2, 7, -12,
    -11, 9, -8, 2,
    7, -12, 12, -13,
    2, -13, 2, 12,
    1, -7, 1, 6,
    -2, -10, -2, -4,
    -13, -13, -11, -8,
    -13, -3, -12, -9,
    10, 4, 11, 9,
    -13, -8, -8, -9,
    -11, 7, -9, 12,
    7, 7, 12, 6,
    -4, -5, -3, 0,
    -13, 2, -12, -3,
    -9, 0, -7, 5,
    12, -6, 12, -1,
    -3, 6, -2, 12,
    -6, -13, -4, -8,
    11, -13, 12, -8,
    4, 7, 5, 1,
    5, -3, 10, -3,
    3, -7, 6, 12,
    -8, -7, -6, -2,
    -2, 11, -1, -10,
    -13, 12, -8, 10,
    -7, 3, -5, -3,
    -4, 2, -3, 7,
    -10, -12, -6, 11,
    5, -12, 6, -7,
    5, -6, 7, -1,
    1, 0, 4, -5,
    9, 11, 11, -13,
    4, 7, 4, 12,
    2, -1, 4, 4,
    -4, -12, -2, 7,
    -8, -5, -7, -10,
    4, 11, 9, 12,
    0, -8, 1, -13,
    -13, -2, -8, 2,
    -3, -2, -2, 3,
    -6, 9, -4, -9,
    8, 12, 10, 7,
    0, 9, 1, 3,
    7, -5, 11, -10,
    -13, -6, -11, 0,
    10, 7, 12, 1,
    -6, -3, -6, 12,
    10, -9, 12, -4,
    -13, 8, -8, -12,
    -13, 0, -8, -4,
    3, 3, 7, 8,
    5, 7, 10, -7,
    -1, 7, 1, -12,
    3, -10, 5, 6,
    2, -4, 3, -10,
    -13, 0, -13, 5,
    -13, -7, -12, 12,
    -13, 3, -11, 8,
    -7, 12, -4, 7,
    6, -10, 12, 8,
    -9, -1, -7, -6,
    -2, -5, 0, 12,
    -12, 5, -7, 5,
    3, -10, 8, -13,
    -7, -7, -4, 5,
    -3, -2, -1, -7,
    2, 9, 5, -11,
    -11, -13, -5, -13,
    -1, 6, 0, -1,
    5, -3, 5, 2,
    -4, -13, -4, 12,
    -9, -6, -9, 6,
    -12, -10, -8, -4,
    10, 2, 12, -3,
    7, 12, 12, 12,
    -7, -13, -6, 5,
    -4, 9, -3, 4,
    7, -1, 12, 2,
    -7, 6, -5, 1,
    -13, 11, -12, 5,
    -3, 7, -2, -6,
    7, -8, 12, -7,
    -13, -7, -11, -12,
    1, -3, 12, 12,
    2, -6, 3, 0,
    -4, 3, -2, -13,
    -1, -13, 1, 9,
    7, 1, 8, -6,
    1, -1, 3, 12,
    9, 1, 12, 6,
    -1, -9, -1, 3,
    -13, -13, -10, 5,
    7, 7, 10, 12,
    12, -5, 12, 9,
    6, 3, 7, 11,
    5, -13, 6, 10,
    2, -12, 2, 3,
    3, 8, 4, -6,
    2, 6, 12, -13,
    9, -12, 10, 3,
    -8, 4, -7, 9,
    -11, 12, -4, -6,
    1, 12, 2, -8,
    6, -9, 7, -4,
    2, 3, 3, -2,
    6, 3, 11, 0,
    3, -3, 8, -8,
    7, 8, 9, 3,
    -11, -5, -6, -4,
    -10, 11, -5, 10,
    -5, -8, -3, 12,
    -10, 5, -9, 0,
    8, -1, 12, -6,
    4, -6, 6, -11,
    -10, 12, -8, 7,
    4, -2, 6, 7,
    -2, 0, -2, 12,
    -5, -8, -5, 2,
    7, -6, 10, 12,
    -9, -13, -8, -8,
    -5, -13, -5, -2,
    8, -8, 9, -13,
    -9, -11, -9, 0,
    1, -8, 1, -2,
    7, -4, 9, 1,
    -2, 1, -1, -4,
    11, -6, 12, -11,
    -12, -9, -6, 4,
    3, 7, 7, 12,
    5, 5, 10, 8,
    0, -4, 2, 8,
    -9, 12, -5, -13,
    0, 7, 2, 12,
    -1, 2, 1, 7,
    5, 11, 7, -9,
    3, 5, 6, -8,
    -13, -4, -8, 9,
    -5, 9, -3, -3,
    -4, -7, -3, -12,
    6, 5, 8, 0,
    -7, 6, -6, 12,
    -13, 6, -5, -2,
    1, -10, 3, 10,
    4, 1, 8, -4,
    -2, -2, 2, -13,
    2, -12, 12, 12,
    -2, -13, 0, -6,
    4, 1, 9, 3,
    -6, -10, -3, -5,
    -3, -13, -1, 1,
    7, 5, 12, -11,
    4, -2, 5, -7,
    -13, 9, -9, -5,
    7, 1, 8, 6,
    7, -8, 7, 6,
    -7, -4, -7, 1,
    -8, 11, -7, -8,
    -13, 6, -12, -8,
    2, 4, 3, 9,
    10, -5, 12, 3,
    -6, -5, -6, 7,
    8, -3, 9, -8,
    2, -12, 2, 8,
    -11, -2, -10, 3,
    -12, -13, -7, -9,
    -11, 0, -10, -5,
    5, -3, 11, 8,
    -2, -13, -1, 12,
    -1, -8, 0, 9,
    -13, -11, -12, -5,
    -10, -2, -10, 11,
    -3, 9, -2, -13,
    2, -3, 3, 2,
    -9, -13, -4, 0,
    -4, 6, -3, -10,
    -4, 12, -2, -7,
    -6, -11, -4, 9,
    6, -3, 6, 11,
    -13, 11, -5, 5,
    11, 11, 12, 6,
    7, -5, 12, -2,
    -1, 12, 0, 7,
    -4, -8, -3, -2,
    -7, 1, -6, 7,
    -13, -12, -8, -13,
    -7, -2, -6, -8,
    -8, 5, -6, -9,
    -5, -1, -4, 5,
    -13, 7, -8, 10,
    1, 5, 5, -13,
    1, 0, 10, -13,
    9, 12, 10, -1,
    5, -8, 10, -9,
    -1, 11, 1, -13,
    -9, -3, -6, 2,
    -1, -10, 1, 12,
    -13, 1, -8, -10,
    8, -11, 10, -6,
    2, -13, 3, -6,
    7, -13, 12, -9,
    -10, -10, -5, -7,
    -10, -8, -8, -13,
    4, -6, 8, 5,
    3, 12, 8, -13,
    -4, 2, -3, -3,
    5, -13, 10, -12,
    4, -13, 5, -1,
    -9, 9, -4, 3,
    0, 3, 3, -9,
    -12, 1, -6, 1,
    3, 2, 4, -8,
    -10, -10, -10, 9,
    8, -13, 12, 12,
    -8, -12, -6, -5,
    2, 2, 3, 7,
    10, 6, 11, -8,
    6, 8, 8, -12,
    -7, 10, -6, 5,
    -3, -9, -3, 9,
    -1, -13, -1, 5,
    -3, -7, -3, 4,
    -8, -2, -8, 3,
    4, 2, 12, 12,
    2, -5, 3, 11,
    6, -9, 11, -13,
    3, -1, 7, 12,
    11, -1, 12, 4,
    -3, 0, -3, 6,
    4, -11, 4, 12,
    2, -4, 2, 1,
    -10, -6, -8, 1,
    -13, 7, -11, 1,
    -13, 12, -11, -13,
    6, 0, 11, -13,
    0, -1, 1, 4,
    -13, 3, -9, -2,
    -9, 8, -6, -3,
    -13, -6, -8, -2,
    5, -9, 8, 10,
    2, 7, 3, -9,
    -1, -6, -1, -1,
    9, 5, 11, -2,
    11, -3, 12, -8,
    3, 0, 3, 5,
    -1, 4, 0, 10,
    3, -6, 4, 5,
    -13, 0, -10, 5,
    5, 8, 12, 11,
    8, 9, 9, -6,
    7, -4, 8, -12,
    -10, 4, -10, 9,
    7, 3, 12, 4,
    9, -7, 10, -2,
    7, 0, 12, -2,
    -1, -6, 0, -11,
)

_PATTERN = np.array(_ORB_PATTERN, dtype=np.float32).reshape(
    DESCRIPTOR_WORDS * BITS_PER_WORD, 4
)
_PATCH_OFFSETS = np.arange(-HALF_PATCH_SIZE, HALF_PATCH_SIZE)
_BIT_WEIGHTS = np.left_shift(np.uint64(1), np.arange(BITS_PER_WORD, dtype=np.uint64))


@dataclass(frozen=True)
class DMatch:
    """A correspondence between a query descriptor and a train descriptor."""

    query_idx: int
    train_idx: int
    distance: float


def _orientation(image, x, y):
    xs = np.trunc(x + _PATCH_OFFSETS).astype(int)
    ys = np.trunc(y + _PATCH_OFFSETS).astype(int)
    patch = image[np.ix_(ys, xs)].astype(np.int64)  # indexed [dy, dx]
    m10 = float((_PATCH_OFFSETS[np.newaxis, :] * patch).sum())
    m01 = float((_PATCH_OFFSETS[:, np.newaxis] * patch).sum())
    m_sqrt = np.sqrt(m01 * m01 + m10 * m10) + 1e-18  # avoids division by zero
    return np.float32(m01 / m_sqrt), np.float32(m10 / m_sqrt)


def _describe(image, x, y):
    sin_theta, cos_theta = _orientation(image, x, y)
    kx, ky = np.float32(x), np.float32(y)
    px, py, qx, qy = _PATTERN.T
    pp_x = cos_theta * px - sin_theta * py + kx
    pp_y = sin_theta * px + cos_theta * py + ky
    qq_x = cos_theta * qx - sin_theta * qy + kx
    qq_y = sin_theta * qx + cos_theta * qy + ky
    p_values = image[np.trunc(pp_y).astype(int), np.trunc(pp_x).astype(int)]
    q_values = image[np.trunc(qq_y).astype(int), np.trunc(qq_x).astype(int)]
    bits = (p_values < q_values).reshape(DESCRIPTOR_WORDS, BITS_PER_WORD)
    words = (bits.astype(np.uint64) * _BIT_WEIGHTS).sum(axis=1)
    return tuple(int(word) for word in words)


def compute_orb(img, keypoints):
    """Compute a 256-bit oriented BRIEF descriptor for each keypoint.

    ``img`` is a 2-D grey image and ``keypoints`` an iterable of (x, y)
    positions. Each descriptor is a tuple of eight 32-bit words; keypoints
    closer than 16 pixels to the image border get ``None`` instead.
    """
    image = np.asarray(img)
    if image.ndim != 2:
        raise ValueError(f"image must be two-dimensional, got shape {image.shape}")
    rows, cols = image.shape

    descriptors = []
    bad_points = 0
    for kx, ky in keypoints:
        x, y = float(kx), float(ky)
        if (
            x < HALF_BOUNDARY
            or y < HALF_BOUNDARY
            or x >= cols - HALF_BOUNDARY
            or y >= rows - HALF_BOUNDARY
        ):
            bad_points += 1
            descriptors.append(None)
            continue
        descriptors.append(_describe(image, x, y))

    logger.debug("bad/total: %d/%d", bad_points, len(descriptors))
    return descriptors


def hamming_distance(desc1, desc2):
    """Return the number of differing bits between two word descriptors."""
    if len(desc1) != len(desc2):
        raise ValueError("descriptors must have the same number of words")
    return sum((int(a) ^ int(b)).bit_count() for a, b in zip(desc1, desc2))


def bf_match(desc1, desc2):
    """Match every query descriptor to its nearest train descriptor.

    Missing descriptors (``None`` or empty) are skipped. A match is kept only
    when its Hamming distance is below 40; ties go to the first train index.
    """
    matches = []
    for i1, query in enumerate(desc1):
        if not query:
            continue
        best_distance = DESCRIPTOR_WORDS * BITS_PER_WORD
        best_train = 0
        for i2, train in enumerate(desc2):
            if not train:
                continue
            distance = hamming_distance(query, train)
            if distance < MATCH_DISTANCE_MAX and distance < best_distance:
                best_distance = distance
                best_train = i2
        if best_distance < MATCH_DISTANCE_MAX:
            matches.append(DMatch(i1, best_train, best_distance))
    return matches


def filter_good_matches(matches):
    """Keep matches no farther than twice the smallest distance, or 30 at least."""
    matches = list(matches)
    if not matches:
        return []
    min_dist = min(m.distance for m in matches)
    threshold = max(2 * min_dist, GOOD_MATCH_FLOOR)
    return [m for m in matches if m.distance <= threshold]