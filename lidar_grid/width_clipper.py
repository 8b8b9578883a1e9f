"""
Narrow passage pruning on the polar grid.

At each ring, every run of adjacent drivable cells is measured as an arc
(ring radius x angular bin width x cells). Runs narrower than the vehicle
clearance are removed together with everything radially outward of them,
so pruning only ever propagates away from the vehicle.
"""

import logging
from dataclasses import dataclass, field
from typing import List

from lidar_grid.config import LidarGridConfig
from lidar_grid.polar_grid import PolarGrid

logger = logging.getLogger(__name__)


@dataclass
class ScanCursor:
    """One direction of the lateral scan"""
    step: int  # +1 counter-clockwise (left), -1 clockwise (right)
    reach: int = 0
    closed: bool = False

    def column(self, origin: int, m: int, TH: int) -> int:
        return (origin + self.step * m) % TH


@dataclass
class CorridorScan:
    """Outcome of scanning one ring from an origin cell"""
    ring: int
    origin: int
    columns: List[int] = field(default_factory=list)
    width: float = 0.0
    clipped: bool = False


class WidthClipper:
    """Demote drivable cells in passages narrower than cut_width"""

    def __init__(self, config: LidarGridConfig):
        self.config = config
        self.start_ring = int(config.min_clip_radius / config.grid_size_r)

    def corridor_width(self, ring: int, cells: int) -> float:
        return ring * self.config.grid_size_r * self.config.grid_size_th * cells

    def scan(self, grid: PolarGrid, ring: int, origin: int) -> CorridorScan:
        """
        Expand left and right from (ring, origin) until the corridor is wide
        enough or both sides hit a non-drivable cell.
        """
        TH = self.config.TH
        cursors = [ScanCursor(step=1), ScanCursor(step=-1)]
        cells = 1
        m = 0

        while self.corridor_width(ring, cells) < self.config.cut_width:
            m += 1
            for cursor in cursors:
                if cursor.closed:
                    continue

                # Both cursors together already cover the whole ring
                if 1 + cursors[0].reach + cursors[1].reach >= TH:
                    return self._result(ring, origin, cursors, cells, clipped=False)

                column = cursor.column(origin, m, TH)
                if grid.drivable[ring, column]:
                    grid.visited[ring, column] = True
                    cursor.reach = m
                    cells += 1
                else:
                    cursor.closed = True

            if all(c.closed for c in cursors):
                result = self._result(ring, origin, cursors, cells, clipped=True)
                grid.drivable[ring:, result.columns] = False
                return result

        return self._result(ring, origin, cursors, cells, clipped=False)

    def _result(self, ring, origin, cursors, cells, clipped) -> CorridorScan:
        columns = [origin]
        for cursor in cursors:
            columns.extend(cursor.column(origin, k, self.config.TH)
                           for k in range(1, cursor.reach + 1))
        return CorridorScan(
            ring=ring,
            origin=origin,
            columns=columns,
            width=self.corridor_width(ring, cells),
            clipped=clipped
        )

    def clip(self, grid: PolarGrid) -> List[CorridorScan]:
        """Prune the grid in place, innermost eligible ring first"""
        clipped = []

        for ring in range(self.start_ring, self.config.R):
            for origin in range(self.config.TH):
                if not grid.drivable[ring, origin] or grid.visited[ring, origin]:
                    continue

                result = self.scan(grid, ring, origin)
                if result.clipped:
                    clipped.append(result)

        if clipped:
            removed = sum(len(c.columns) for c in clipped)
            logger.debug(f"Width clipping removed {len(clipped)} corridors ({removed} columns)")

        return clipped
