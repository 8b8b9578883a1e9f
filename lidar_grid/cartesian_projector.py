"""
Re-projection of the polar drivable grid onto a vehicle-frame Cartesian grid.
"""

import logging
from typing import Tuple

import numpy as np

from lidar_grid.config import LidarGridConfig
from lidar_grid.polar_grid import PolarGrid, polar_indices

logger = logging.getLogger(__name__)


class CartesianProjector:
    """Emit the Cartesian cells that fall in drivable polar cells"""

    def __init__(self, config: LidarGridConfig):
        self.config = config

    def cell_indices(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Longitudinal (i) and lateral (j) indices of every output cell.

        Lateral index is the outer loop and longitudinal the inner one.
        """
        js = np.arange(-self.config.y_width, self.config.y_width + 1)
        is_ = np.arange(-self.config.x_backward, self.config.x_forward + 1)
        jj, ii = np.meshgrid(js, is_, indexing='ij')
        return ii.ravel(), jj.ravel()

    def lookup(self, x: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Polar cell of each Cartesian point, with the rear seam correction"""
        a, t = polar_indices(x, y, self.config)

        if self.config.exclude_rear:
            quarter = self.config.TH // 4
            # Keep cells on the excluded arc's edges in the adjoining forward sector
            t = np.where(t == quarter, quarter - 1, t)
            t = np.where(t == 3 * quarter - 1, 3 * quarter, t)

        return a, t

    def project(self, grid: PolarGrid, ground_z: float) -> np.ndarray:
        """
        Build the drivable Cartesian cell list.

        Returns:
            Mx3 array of (x, y, ground_z); the vehicle's own cell is always
            included.
        """
        ii, jj = self.cell_indices()
        x = ii * self.config.grid_size
        y = jj * self.config.grid_size

        origin = (ii == 0) & (jj == 0)
        keep = origin.copy()

        others = ~origin
        a, t = self.lookup(x[others], y[others])
        keep[others] = grid.drivable[a, t]

        cells = np.column_stack([x[keep], y[keep], np.full(np.count_nonzero(keep), ground_z)])
        logger.debug(f"Projected {len(cells)} drivable cells of {len(ii)}")
        return cells.astype(np.float64)
