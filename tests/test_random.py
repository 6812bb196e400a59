import numpy as np
import pytest
from pnmflow import RandomGenerator


def test_same_seed_same_values():
    a = RandomGenerator(42)
    b = RandomGenerator(42)
    assert np.array_equal(a.uniform_real(0, 1, 10), b.uniform_real(0, 1, 10))
    assert np.array_equal(a.weibull(1e-6, 1e-5, 1.5, 0.2, 10), b.weibull(1e-6, 1e-5, 1.5, 0.2, 10))
    assert np.array_equal(a.normal(1e-6, 1e-5, 5e-6, 1e-6, 10), b.normal(1e-6, 1e-5, 5e-6, 1e-6, 10))
    assert not np.array_equal(RandomGenerator(1).random(10), RandomGenerator(2).random(10))


def test_uniform_int_includes_both_ends():
    values = RandomGenerator(0).uniform_int(1, 3, 1000)
    assert set(np.unique(values)) == {1, 2, 3}


@pytest.mark.parametrize('method, args', [
    ('uniform_real', (1e-6, 1e-5)),
    ('rayleigh', (1e-6, 1e-5, 2e-6)),
    ('triangular', (1e-6, 1e-5, 5e-6)),
    ('normal', (1e-6, 1e-5, 5e-6, 1e-6)),
    ('weibull', (1e-6, 1e-5, 1.5, 0.2)),
])
def test_distributions_are_bounded(method, args):
    values = getattr(RandomGenerator(3), method)(*args, size = 2000)
    assert values.shape == (2000,)
    assert np.all(values >= 1e-6)
    assert np.all(values <= 1e-5)


def test_triangular_mode_outside_range():
    with pytest.raises(ValueError):
        RandomGenerator(0).triangular(1.0, 2.0, 3.0)


def test_shuffle_returns_the_array():
    rng = RandomGenerator(0)
    ids = np.arange(20)
    out = rng.shuffle(ids)
    assert out is ids
    assert sorted(out) == list(range(20))
