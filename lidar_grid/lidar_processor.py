"""
LiDAR Grid Processor
Extracts the drivable ground area around the vehicle from one LiDAR frame
and the side ultrasonic arrays.

Pipeline:
- Polar binning of the raw point cloud
- Ground / obstacle separation (height span + plane fit)
- Ultrasonic virtual obstacle injection
- Per-sector nearest obstacle boundary
- Narrow passage pruning
- Cartesian drivable cell output with ground height and processing time

Every frame is processed from scratch; nothing carries over between frames
except the latest ultrasonic readings.
"""

import time
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

import numpy as np

from lidar_grid.config import LidarGridConfig
from lidar_grid.polar_grid import PolarBinner, PolarGrid
from lidar_grid.ground_segmentation import (
    GroundObstacleSplitter, EmptyGroundSetError, PlaneFitter
)
from lidar_grid.ultrasonic_fusion import UltrasonicBuffer, UltrasonicSnapshot, ProximityFuser
from lidar_grid.boundary_extractor import SectorBoundaryExtractor
from lidar_grid.width_clipper import WidthClipper, CorridorScan
from lidar_grid.cartesian_projector import CartesianProjector

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class FrameStatus(Enum):
    """Outcome of processing one frame"""
    OK = "ok"
    EMPTY_GROUND_SET = "empty_ground_set"


@dataclass
class FrameResult:
    """Drivable area output for one frame"""
    status: FrameStatus
    cells: np.ndarray  # Mx3 drivable Cartesian cells
    ground_z: Optional[float]
    elapsed_ms: float
    cell_size: float
    frame_id: str
    boundary: np.ndarray = field(default_factory=lambda: np.empty((0, 3)))
    plane_coefficients: Optional[np.ndarray] = None
    clipped_corridors: List[CorridorScan] = field(default_factory=list)
    grid: Optional[PolarGrid] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is FrameStatus.OK

    def to_dict(self) -> Dict:
        """Plain-type view of the published outputs"""
        return {
            'status': self.status.value,
            'frame_id': self.frame_id,
            'cell_width': self.cell_size,
            'cell_height': self.cell_size,
            'cells': self.cells.tolist(),
            'ground_z': self.ground_z,
            'time_ms': self.elapsed_ms,
            'reason': self.reason
        }


class LidarGridProcessor:
    """Main drivable area coordinator"""

    def __init__(self, config: Optional[LidarGridConfig] = None,
                 plane_fitter: Optional[PlaneFitter] = None):
        self.config = config or LidarGridConfig()

        # Initialize components
        self.binner = PolarBinner(self.config)
        self.splitter = GroundObstacleSplitter(self.config, plane_fitter)
        self.fuser = ProximityFuser(self.config)
        self.extractor = SectorBoundaryExtractor(self.config)
        self.clipper = WidthClipper(self.config)
        self.projector = CartesianProjector(self.config)

        # Written by the ultrasonic callbacks
        self.ultrasonic = UltrasonicBuffer()

        logger.info(
            f"LiDAR grid processor initialized ({self.config.R}x{self.config.TH} polar, "
            f"{self.config.grid_size} m output cells)"
        )

    def left_ultrasonic_callback(self, probes: Sequence[float]):
        self.ultrasonic.update_left(probes)

    def right_ultrasonic_callback(self, probes: Sequence[float]):
        self.ultrasonic.update_right(probes)

    def process_frame(self, points: np.ndarray,
                      ultrasonic: Optional[UltrasonicSnapshot] = None) -> FrameResult:
        """
        Run the full pipeline on one point cloud.

        Args:
            points: Nx3 array of (x, y, z) in the vehicle frame
            ultrasonic: Readings to use; defaults to a snapshot of the
                internal buffer taken now

        Returns:
            FrameResult; failed frames have status EMPTY_GROUND_SET and no cells
        """
        start = time.perf_counter()

        if ultrasonic is None:
            ultrasonic = self.ultrasonic.snapshot()

        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)

        grid = self.binner.bin(points)

        try:
            split = self.splitter.split(grid)
        except EmptyGroundSetError as e:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            logger.warning(f"Frame dropped ({len(points)} points): {e}")
            return FrameResult(
                status=FrameStatus.EMPTY_GROUND_SET,
                cells=np.empty((0, 3)),
                ground_z=None,
                elapsed_ms=elapsed_ms,
                cell_size=self.config.grid_size,
                frame_id=self.config.fixed_frame,
                grid=grid,
                reason=str(e)
            )

        obstacles = self.fuser.fuse(split.obstacles, ultrasonic)
        boundary = self.extractor.extract(grid, obstacles, split.ground_z)
        clipped = self.clipper.clip(grid)
        cells = self.projector.project(grid, split.ground_z)

        elapsed_ms = (time.perf_counter() - start) * 1000.0
        logger.debug(f"Frame processed: {len(cells)} drivable cells in {elapsed_ms:.1f} ms")

        return FrameResult(
            status=FrameStatus.OK,
            cells=cells,
            ground_z=split.ground_z,
            elapsed_ms=elapsed_ms,
            cell_size=self.config.grid_size,
            frame_id=self.config.fixed_frame,
            boundary=boundary,
            plane_coefficients=split.coefficients,
            clipped_corridors=clipped,
            grid=grid
        )
