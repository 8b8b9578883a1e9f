import numpy as np
import pytest

from lidar_grid.config import LidarGridConfig
from lidar_grid.polar_grid import PolarGrid


def make_flat_ground(z=0.0, x_range=(-3.0, 12.0), y_range=(-8.0, 8.0), step=0.25):
    """Regular grid of ground points at height z"""
    xs = np.arange(x_range[0], x_range[1] + step / 2, step)
    ys = np.arange(y_range[0], y_range[1] + step / 2, step)
    xx, yy = np.meshgrid(xs, ys, indexing='ij')
    return np.column_stack([xx.ravel(), yy.ravel(), np.full(xx.size, z)])


def make_post(x, y, height=1.0, levels=5):
    """Vertical obstacle at (x, y) sampled from ground level to height"""
    zs = np.linspace(0.0, height, levels)
    return np.column_stack([np.full(levels, x), np.full(levels, y), zs])


@pytest.fixture
def config():
    return LidarGridConfig(random_seed=0)


@pytest.fixture
def flat_ground():
    return make_flat_ground


@pytest.fixture
def empty_grid(config):
    return PolarGrid(config)


@pytest.fixture
def post():
    return make_post
