import random
import statistics

import pytest

from slamkit.sampling import rand_double, rand_normal


def test_rand_double_is_in_unit_interval():
    rng = random.Random(3)
    samples = [rand_double(rng) for _ in range(2000)]
    assert min(samples) >= 0.0
    assert max(samples) <= 1.0


def test_rand_normal_is_reproducible_with_seed():
    first = [rand_normal(random.Random(11)) for _ in range(1)]
    second = [rand_normal(random.Random(11)) for _ in range(1)]
    assert first == second


def test_rand_normal_has_standard_moments():
    rng = random.Random(42)
    samples = [rand_normal(rng) for _ in range(20000)]
    assert statistics.fmean(samples) == pytest.approx(0.0, abs=0.05)
    assert statistics.pstdev(samples) == pytest.approx(1.0, abs=0.05)


def test_rand_normal_without_rng_returns_finite_values():
    values = [rand_normal() for _ in range(100)]
    assert all(abs(v) < 100 for v in values)