import numpy as np
import pytest
from hypothesis import given
from hypothesis import strategies as st

from slamkit.orb import (
    DMatch,
    bf_match,
    compute_orb,
    filter_good_matches,
    hamming_distance,
)

FULL_WORD = 0xFFFFFFFF
ZERO_DESC = (0,) * 8

word = st.integers(min_value=0, max_value=FULL_WORD)
descriptor = st.tuples(*([word] * 8))


def _random_image(seed, rows=80, cols=80):
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(rows, cols), dtype=np.uint8)


def _desc_with_bits(count):
    """Descriptor whose first `count` bits are set."""
    words = []
    remaining = count
    for _ in range(8):
        take = min(32, remaining)
        words.append((1 << take) - 1)
        remaining -= take
    return tuple(words)


def test_hamming_distance_of_identical_descriptors_is_zero():
    desc = (1, 2, 3, 4, 5, 6, 7, 8)
    assert hamming_distance(desc, desc) == 0


def test_hamming_distance_all_bits_differ():
    assert hamming_distance((FULL_WORD,) * 8, ZERO_DESC) == 256


def test_hamming_distance_length_mismatch_raises():
    with pytest.raises(ValueError):
        hamming_distance((0,) * 8, (0,) * 7)


@given(descriptor, descriptor)
def test_hamming_distance_is_symmetric(a, b):
    assert hamming_distance(a, b) == hamming_distance(b, a)


@given(descriptor, descriptor, descriptor)
def test_hamming_distance_triangle_inequality(a, b, c):
    assert hamming_distance(a, c) <= hamming_distance(a, b) + hamming_distance(b, c)


def test_bf_match_finds_exact_match():
    d0 = _desc_with_bits(100)
    d1 = _desc_with_bits(200)
    matches = bf_match([d1, d0], [d0, d1])
    assert matches == [DMatch(0, 1, 0), DMatch(1, 0, 0)]


def test_bf_match_distance_threshold():
    near = _desc_with_bits(39)
    far = _desc_with_bits(40)
    assert bf_match([ZERO_DESC], [near]) == [DMatch(0, 0, 39)]
    assert bf_match([ZERO_DESC], [far]) == []


def test_bf_match_skips_missing_descriptors():
    d = _desc_with_bits(5)
    matches = bf_match([None, d], [None, d])
    assert matches == [DMatch(1, 1, 0)]


def test_bf_match_ties_go_to_first_train_index():
    d = _desc_with_bits(10)
    matches = bf_match([d], [_desc_with_bits(60), d, d])
    assert [m.train_idx for m in matches] == [1]


def test_filter_good_matches_uses_floor_of_thirty():
    matches = [DMatch(0, 0, 5), DMatch(1, 1, 8), DMatch(2, 2, 25), DMatch(3, 3, 40)]
    kept = filter_good_matches(matches)
    assert [m.query_idx for m in kept] == [0, 1, 2]


def test_filter_good_matches_uses_twice_minimum():
    matches = [DMatch(0, 0, 20), DMatch(1, 1, 40), DMatch(2, 2, 41)]
    kept = filter_good_matches(matches)
    assert [m.distance for m in kept] == [20, 40]


def test_filter_good_matches_empty():
    assert filter_good_matches([]) == []


def test_compute_orb_border_keypoints_have_no_descriptor():
    img = _random_image(1, rows=64, cols=64)
    descs = compute_orb(img, [(16, 16), (15.9, 30), (48, 20), (30, 48)])
    assert len(descs) == 4
    assert descs[0] is not None and len(descs[0]) == 8
    assert descs[1:] == [None, None, None]


def test_compute_orb_words_are_32_bit():
    img = _random_image(2)
    (desc,) = compute_orb(img, [(40, 40)])
    assert len(desc) == 8
    assert all(0 <= w <= FULL_WORD for w in desc)


def test_compute_orb_uniform_image_gives_zero_descriptor():
    img = np.full((64, 64), 128, dtype=np.uint8)
    assert compute_orb(img, [(32, 32)]) == [ZERO_DESC]


def test_compute_orb_is_translation_invariant():
    img = _random_image(3)
    shifted = np.roll(img, shift=(3, 5), axis=(0, 1))
    (original,) = compute_orb(img, [(40, 40)])
    (moved,) = compute_orb(shifted, [(45, 43)])
    assert original == moved


def test_compute_orb_then_match_same_image():
    img = _random_image(4)
    keypoints = [(30, 30), (40, 45), (50, 35)]
    descs = compute_orb(img, keypoints)
    matches = bf_match(descs, descs)
    assert len(matches) == 3
    assert all(m.distance == 0 for m in matches)


def test_compute_orb_rejects_non_2d_image():
    with pytest.raises(ValueError):
        compute_orb(np.zeros((40, 40, 3), dtype=np.uint8), [(20, 20)])