"""
Polar occupancy grid around the vehicle.

Points are bucketed by (radial index, angular index). Angle zero is the
forward axis and increases toward the left side, covering [0, 2*pi).
Points beyond the grid radius are clamped into the outermost ring.
"""

import logging
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

from lidar_grid.config import LidarGridConfig

logger = logging.getLogger(__name__)

# Below this radius the bearing of a point is undefined
ORIGIN_EPSILON = 1e-9


def compute_angles(x: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Planar radius and bearing in [0, 2*pi) for each (x, y)"""
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    r = np.sqrt(x * x + y * y)

    angle = np.zeros_like(r)
    valid = r > ORIGIN_EPSILON
    angle[valid] = np.arccos(np.clip(x[valid] / r[valid], -1.0, 1.0))

    right = valid & (y < 0)
    angle[right] = 2 * np.pi - angle[right]

    return r, angle


def angular_indices(angle: np.ndarray, config: LidarGridConfig) -> np.ndarray:
    return np.floor(angle / config.grid_size_th).astype(np.int64) % config.TH


def polar_indices(x: np.ndarray, y: np.ndarray,
                  config: LidarGridConfig) -> Tuple[np.ndarray, np.ndarray]:
    """
    Map planar coordinates to polar grid indices.

    Returns:
        (radial, angular) integer arrays; radial is clamped to R-1 and
        angular is reduced modulo TH. Points at the origin get angular 0.
    """
    r, angle = compute_angles(x, y)
    t = angular_indices(angle, config)
    a = np.minimum(np.floor(r / config.grid_size_r).astype(np.int64), config.R - 1)
    return a, t


@dataclass
class PolarCell:
    """View of one polar grid cell"""
    radial: int
    angular: int
    points: np.ndarray  # Nx3 points binned into this cell
    drivable: bool = False
    visited: bool = False


class PolarGrid:
    """
    R x TH polar grid for a single frame.

    Point storage is one arena: the frame's points plus the flat cell index
    of each point. Per-cell flags live in (R, TH) boolean arrays.
    """

    def __init__(self, config: LidarGridConfig):
        self.config = config
        self.R = config.R
        self.TH = config.TH

        self.points = np.empty((0, 3))
        self.cell_index = np.empty(0, dtype=np.int64)

        self.drivable = np.zeros((self.R, self.TH), dtype=bool)
        self.visited = np.zeros((self.R, self.TH), dtype=bool)

    def flat_index(self, radial, angular):
        return radial * self.TH + angular

    def cell_points(self, radial: int, angular: int) -> np.ndarray:
        """Points binned into one cell, in insertion order"""
        mask = self.cell_index == self.flat_index(radial, angular)
        return self.points[mask]

    def cell(self, radial: int, angular: int) -> PolarCell:
        return PolarCell(
            radial=radial,
            angular=angular,
            points=self.cell_points(radial, angular),
            drivable=bool(self.drivable[radial, angular]),
            visited=bool(self.visited[radial, angular])
        )

    def point_counts(self) -> np.ndarray:
        """Number of points per cell as an (R, TH) array"""
        counts = np.bincount(self.cell_index, minlength=self.R * self.TH)
        return counts.reshape(self.R, self.TH)

    def occupied_cells(self) -> List[Tuple[int, int]]:
        flat = np.unique(self.cell_index)
        return [(int(i // self.TH), int(i % self.TH)) for i in flat]

    def drivable_cells(self) -> int:
        return int(np.count_nonzero(self.drivable))


class PolarBinner:
    """Bucket raw points into a fresh polar grid"""

    def __init__(self, config: LidarGridConfig):
        self.config = config

    def bin(self, points: np.ndarray) -> PolarGrid:
        grid = PolarGrid(self.config)
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)

        if len(points) == 0:
            return grid

        a, t = polar_indices(points[:, 0], points[:, 1], self.config)

        grid.points = points
        grid.cell_index = grid.flat_index(a, t)

        logger.debug(f"Binned {len(points)} points into {len(np.unique(grid.cell_index))} cells")
        return grid
