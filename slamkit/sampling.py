"""Uniform and Gaussian random samples used to perturb problems."""

import math
import random

_default_rng = random.Random()


def rand_double(rng=None):
    """Return a uniform sample in [0, 1)."""
    generator = rng if rng is not None else _default_rng
    return generator.random()


def rand_normal(rng=None):
    """Return a standard normal sample using the Marsaglia polar method."""
    while True:
        x1 = 2.0 * rand_double(rng) - 1.0
        x2 = 2.0 * rand_double(rng) - 1.0
        w = x1 * x1 + x2 * x2
        if 0.0 < w < 1.0:
            break
    w = math.sqrt((-2.0 * math.log(w)) / w)
    return x1 * w