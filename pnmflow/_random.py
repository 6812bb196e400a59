import logging
import numpy as np
import scipy.stats

logger = logging.getLogger(__name__)


__all__ = [
    'RandomGenerator',
]


class RandomGenerator:
    r"""
    Pseudorandom variates used for wettability, radii, shape and filling
    assignment. All the randomness of a simulation goes through one instance,
    so the same seed gives the same trajectory.

    All the methods accept a size argument (None returns a float) and the
    bounded distributions are truncated to [min, max].
    """

    def __init__(self, seed = None):
        self.seed = seed
        self.gen = np.random.default_rng(seed)

    def uniform_int(self, a = 0, b = 1, size = None):
        r"""
        Integers in [a, b], both included
        """
        return self.gen.integers(a, b + 1, size = size)

    def uniform_real(self, a = 0, b = 1, size = None):
        return self.gen.uniform(a, b, size = size)

    def rayleigh(self, min_value, max_value, ave, size = None):
        r"""
        Rayleigh distribution shifted to min_value and truncated at max_value.
        ave is the scale parameter
        """
        u = self.gen.random(size)
        span = (max_value - min_value) ** 2 / ave ** 2
        return min_value + np.sqrt(-ave ** 2 * np.log(1 - u * (1 - np.exp(-span))))

    def triangular(self, min_value, max_value, mode, size = None):
        if not (min_value <= mode <= max_value):
            raise ValueError('mode must be between min_value and max_value')
        if min_value == max_value:
            return np.full(size, min_value) if size is not None else min_value
        return self.gen.triangular(min_value, mode, max_value, size = size)

    def normal(self, min_value, max_value, mu, sigma, size = None):
        r"""
        Normal distribution truncated to [min_value, max_value]
        """
        a = (min_value - mu) / sigma
        b = (max_value - mu) / sigma
        return scipy.stats.truncnorm.rvs(a, b, loc = mu, scale = sigma, size = size,
                                         random_state = self.gen)

    def weibull(self, min_value, max_value, alpha, beta, size = None):
        r"""
        Truncated Weibull distribution used for pore size generation
        (Oren and Bakke, 2002). alpha is the shape and beta the scale parameter
        """
        u = self.gen.random(size)
        e = np.exp(-1 / beta)
        return (max_value - min_value) * np.power(-beta * np.log(u * (1 - e) + e), 1 / alpha) + min_value

    def shuffle(self, array):
        self.gen.shuffle(array)
        return array

    def random(self, size = None):
        return self.gen.random(size)
