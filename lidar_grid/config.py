"""
Configuration for the LiDAR drivable-area grid.

Parameter names follow the on-robot parameter server so that existing
YAML files load without translation.
"""

import math
import logging
from dataclasses import dataclass, field, fields, asdict
from typing import Dict, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Raised when the grid parameters cannot describe a valid grid"""


@dataclass
class LidarGridConfig:
    """LiDAR grid configuration parameters"""
    fixed_frame: str = "velodyne"

    # Polar grid
    R: int = 60  # radial bins
    TH: int = 180  # angular bins
    grid_size_r: float = 0.4  # meters per radial bin

    # Ground / obstacle separation
    threshold: float = 0.15  # max z span (m) of a ground cell
    ransac_threshold: float = 0.2  # meters
    ransac_max_iterations: int = 500
    random_seed: Optional[int] = None

    # Narrow passage pruning
    cut_width: float = 1.7  # meters
    min_clip_radius: float = 1.6  # meters, rings inside are never pruned

    # Cartesian output grid (extents in cells)
    grid_size: float = 0.2  # meters
    y_width: int = 50
    x_forward: int = 100
    x_backward: int = 0  # 0 excludes the rear half

    # Side ultrasonic sensors
    ultrasonic_offsets: Tuple[float, ...] = field(
        default_factory=lambda: (0.9, 0.65, -0.3, -1.05)
    )
    ultrasonic_baseline: float = 0.75  # meters from centerline to sensor face
    ultrasonic_max_range: float = 5.0  # meters

    def __post_init__(self):
        self.ultrasonic_offsets = tuple(float(x) for x in self.ultrasonic_offsets)
        self.validate()

    @property
    def grid_size_th(self) -> float:
        """Angular bin width in radians"""
        return 2 * math.pi / self.TH

    @property
    def radius(self) -> float:
        """Outer radius covered by the polar grid"""
        return self.R * self.grid_size_r

    @property
    def exclude_rear(self) -> bool:
        return self.x_backward == 0

    def validate(self):
        for name in ("R", "TH", "ransac_max_iterations", "y_width", "x_forward"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")

        for name in ("grid_size_r", "grid_size", "threshold", "ransac_threshold",
                     "cut_width", "ultrasonic_max_range"):
            if not getattr(self, name) > 0:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")

        if self.x_backward < 0:
            raise ConfigurationError(f"x_backward must not be negative, got {self.x_backward}")

        if self.min_clip_radius < 0 or self.ultrasonic_baseline < 0:
            raise ConfigurationError("min_clip_radius and ultrasonic_baseline must not be negative")

        if self.exclude_rear and self.TH % 4 != 0:
            raise ConfigurationError(
                f"TH={self.TH} must be divisible by 4 when the rear half is excluded"
            )

        if len(self.ultrasonic_offsets) != 4:
            raise ConfigurationError(
                f"Expected 4 ultrasonic mount offsets, got {len(self.ultrasonic_offsets)}"
            )

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['ultrasonic_offsets'] = list(self.ultrasonic_offsets)
        return data


def load_config(config_path: str) -> LidarGridConfig:
    """Load configuration from YAML file"""
    with open(config_path, 'r') as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ConfigurationError(f"{config_path} does not contain a mapping")

    # Accept files namespaced the same way as the parameter server
    if isinstance(raw.get('lidar_grid'), dict):
        raw = raw['lidar_grid']

    known = {f.name for f in fields(LidarGridConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigurationError(f"Unknown parameters in {config_path}: {', '.join(unknown)}")

    config = LidarGridConfig(**raw)
    logger.info(f"Loaded grid configuration from {config_path}")
    return config
