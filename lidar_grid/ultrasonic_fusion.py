"""
Ultrasonic Fusion Module
Turns the side ultrasonic sensor arrays into virtual obstacle points for
the LiDAR grid.

Features:
- Thread-safe reading buffer written by independent sensor callbacks
- Atomic per-frame snapshot of both arrays
- Range validation against the sensor's usable window
- Mount geometry mapping from reading to vehicle-frame point
"""

import logging
import threading
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

from lidar_grid.config import LidarGridConfig

logger = logging.getLogger(__name__)

SENSORS_PER_SIDE = 4


@dataclass(frozen=True)
class UltrasonicSnapshot:
    """Both side arrays as read at one instant"""
    left: Tuple[float, ...] = (0.0,) * SENSORS_PER_SIDE
    right: Tuple[float, ...] = (0.0,) * SENSORS_PER_SIDE


class UltrasonicBuffer:
    """Latest readings of the left and right sensor arrays"""

    def __init__(self):
        self.lock = threading.Lock()
        self._left = (0.0,) * SENSORS_PER_SIDE
        self._right = (0.0,) * SENSORS_PER_SIDE

    @staticmethod
    def _as_probe_tuple(probes: Sequence[float]) -> Tuple[float, ...]:
        values = tuple(float(p) for p in probes)
        if len(values) != SENSORS_PER_SIDE:
            raise ValueError(f"Expected {SENSORS_PER_SIDE} probe readings, got {len(values)}")
        return values

    def update_left(self, probes: Sequence[float]):
        """Replace the left array (sensor callback)"""
        values = self._as_probe_tuple(probes)
        with self.lock:
            self._left = values

    def update_right(self, probes: Sequence[float]):
        """Replace the right array (sensor callback)"""
        values = self._as_probe_tuple(probes)
        with self.lock:
            self._right = values

    def snapshot(self) -> UltrasonicSnapshot:
        with self.lock:
            return UltrasonicSnapshot(left=self._left, right=self._right)


class ProximityFuser:
    """Synthesize obstacle points from an ultrasonic snapshot"""

    def __init__(self, config: LidarGridConfig):
        self.config = config

    def is_valid(self, reading: float) -> bool:
        return 0.0 < reading < self.config.ultrasonic_max_range

    def virtual_points(self, snapshot: UltrasonicSnapshot) -> np.ndarray:
        """
        Convert valid readings to ground-level obstacle points.

        Each sensor sits at a fixed longitudinal offset; the point lies
        baseline + reading to its side (left positive, right negative).

        Returns:
            Nx3 array ordered by sensor, left before right.
        """
        baseline = self.config.ultrasonic_baseline
        points = []

        for i, offset in enumerate(self.config.ultrasonic_offsets):
            if self.is_valid(snapshot.left[i]):
                points.append((offset, baseline + snapshot.left[i], 0.0))
            if self.is_valid(snapshot.right[i]):
                points.append((offset, -baseline - snapshot.right[i], 0.0))

        logger.debug(f"Ultrasonic fusion produced {len(points)} virtual obstacle points")
        return np.array(points, dtype=np.float64).reshape(-1, 3)

    def fuse(self, obstacles: np.ndarray, snapshot: UltrasonicSnapshot) -> np.ndarray:
        """Append virtual points to the obstacle set"""
        obstacles = np.asarray(obstacles, dtype=np.float64).reshape(-1, 3)
        return np.vstack([obstacles, self.virtual_points(snapshot)])
