"""
Shared pytest fixtures for sparse_lowrank tests.
"""

import numpy as np
import pytest

from sparse_lowrank import make_synthetic


def pytest_configure(config):
    """Add custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")


@pytest.fixture
def params():
    """Minimal valid parameter dict."""
    return {'lambda': 1.0, 'mu': 1.0}


@pytest.fixture
def rng():
    return np.random.RandomState(0)


@pytest.fixture
def synthetic():
    """A small sparse and low-rank observation with its ground truth."""
    return make_synthetic(n=8, m=6, rank=2, density=0.5, noise=0.05, seed=3)


@pytest.fixture
def rank_one():
    """Y = 5 u v^T with dense unit vectors u, v."""
    u = np.array([1.0, 2.0, 2.0, 4.0])
    v = np.array([3.0, 1.0, 1.0])
    u /= np.linalg.norm(u)
    v /= np.linalg.norm(v)
    return 5.0 * np.outer(u, v), u, v
