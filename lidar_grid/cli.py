#!/usr/bin/env python3
"""
Run the drivable area pipeline on a recorded point cloud.

Usage:
    lidar-grid --points frame.npy --config config/lidar_grid.yaml
    lidar-grid --points frame.csv --left 0 1.2 0 0 --output cells.npy
"""

import argparse
import json
import logging
import sys

import numpy as np

from lidar_grid.config import LidarGridConfig, ConfigurationError, load_config
from lidar_grid.lidar_processor import LidarGridProcessor
from lidar_grid.ultrasonic_fusion import UltrasonicSnapshot

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def load_points(path: str) -> np.ndarray:
    """Load an Nx3 point array from .npy or text (whitespace or comma separated)"""
    if path.endswith('.npy'):
        points = np.load(path)
    else:
        delimiter = ',' if path.endswith('.csv') else None
        points = np.loadtxt(path, delimiter=delimiter, ndmin=2)

    points = np.asarray(points, dtype=np.float64)
    if points.size == 0:
        return np.empty((0, 3))

    if points.ndim != 2 or points.shape[1] < 3:
        raise ValueError(f"{path} must hold rows of x y z, got shape {points.shape}")

    return points[:, :3]


def main(argv=None):
    parser = argparse.ArgumentParser(description='LiDAR drivable area grid')
    parser.add_argument('--config', type=str, default=None,
                        help='Path to YAML parameter file')
    parser.add_argument('--points', type=str, required=True,
                        help='Point cloud file (.npy, .csv or whitespace text)')
    parser.add_argument('--left', type=float, nargs=4, default=[0.0] * 4,
                        help='Left ultrasonic readings (m)')
    parser.add_argument('--right', type=float, nargs=4, default=[0.0] * 4,
                        help='Right ultrasonic readings (m)')
    parser.add_argument('--output', type=str, default=None,
                        help='Save drivable cells to this .npy file')
    parser.add_argument('--verbose', action='store_true',
                        help='Log every pipeline stage')
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger('lidar_grid').setLevel(logging.DEBUG)

    try:
        config = load_config(args.config) if args.config else LidarGridConfig()
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    try:
        points = load_points(args.points)
    except (OSError, ValueError) as e:
        logger.error(f"Cannot read points from {args.points}: {e}")
        return 2

    processor = LidarGridProcessor(config)

    result = processor.process_frame(
        points,
        UltrasonicSnapshot(left=tuple(args.left), right=tuple(args.right))
    )

    if args.output and result.ok:
        np.save(args.output, result.cells)
        logger.info(f"Saved {len(result.cells)} cells to {args.output}")

    print(json.dumps({
        'status': result.status.value,
        'num_cells': len(result.cells),
        'ground_z': result.ground_z,
        'time_ms': round(result.elapsed_ms, 3),
        'reason': result.reason
    }, indent=2))

    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
