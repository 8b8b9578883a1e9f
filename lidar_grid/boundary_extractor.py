"""
Drivable boundary extraction per angular sector.

The nearest obstacle in each sector bounds the drivable region in that
direction; sectors without obstacles are drivable out to the grid radius.
"""

import logging
from typing import List

import numpy as np

from lidar_grid.config import LidarGridConfig
from lidar_grid.polar_grid import PolarGrid, compute_angles, angular_indices

logger = logging.getLogger(__name__)


class ObstacleSectors:
    """Obstacle points bucketed by angular index only"""

    def __init__(self, config: LidarGridConfig, obstacles: np.ndarray):
        self.TH = config.TH
        self.points = np.asarray(obstacles, dtype=np.float64).reshape(-1, 3)

        _, angle = compute_angles(self.points[:, 0], self.points[:, 1])
        self.sector_index = angular_indices(angle, config)

    def sector(self, t: int) -> np.ndarray:
        """Points of one sector in insertion order"""
        return self.points[self.sector_index == t]

    def counts(self) -> np.ndarray:
        return np.bincount(self.sector_index, minlength=self.TH)


class SectorBoundaryExtractor:
    """Mark cells radially inside the nearest obstacle as drivable"""

    def __init__(self, config: LidarGridConfig):
        self.config = config

    def is_rear_sector(self, t: int) -> bool:
        quarter = self.config.TH // 4
        return self.config.exclude_rear and quarter <= t < 3 * quarter

    def build_sectors(self, obstacles: np.ndarray) -> ObstacleSectors:
        obstacles = np.asarray(obstacles, dtype=np.float64).reshape(-1, 3)
        if self.config.exclude_rear:
            obstacles = obstacles[obstacles[:, 0] >= 0]
        return ObstacleSectors(self.config, obstacles)

    def extract(self, grid: PolarGrid, obstacles: np.ndarray, ground_z: float) -> np.ndarray:
        """
        Set drivable flags on the grid from the obstacle set.

        Args:
            grid: Frame grid, flags are updated in place
            obstacles: Nx3 obstacle points (LiDAR and virtual)
            ground_z: Mean ground elevation

        Returns:
            Kx3 boundary points, one per processed sector, at ground_z
        """
        sectors = self.build_sectors(obstacles)
        w = self.config.grid_size_th
        boundary: List[np.ndarray] = []

        for t in range(self.config.TH):
            if self.is_rear_sector(t):
                continue

            points = sectors.sector(t)

            if len(points) == 0:
                grid.drivable[:, t] = True
                boundary.append(np.array([
                    self.config.radius * np.cos(t * w),
                    self.config.radius * np.sin(t * w),
                    ground_z
                ]))
                continue

            # Manhattan distance; argmin keeps the first of equal scores
            nearest = points[np.argmin(np.abs(points[:, 0]) + np.abs(points[:, 1]))].copy()
            r = np.hypot(nearest[0], nearest[1])
            cutoff = int(np.floor(r / self.config.grid_size_r))

            grid.drivable[:cutoff, t] = True

            nearest[2] = ground_z
            boundary.append(nearest)

        logger.debug(
            f"Boundary extraction: {int(np.count_nonzero(sectors.counts()))} occupied sectors, "
            f"{grid.drivable_cells()} drivable cells"
        )

        return np.array(boundary, dtype=np.float64).reshape(-1, 3)
