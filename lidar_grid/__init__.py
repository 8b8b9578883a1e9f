from lidar_grid.config import LidarGridConfig, ConfigurationError, load_config
from lidar_grid.lidar_processor import LidarGridProcessor, FrameResult, FrameStatus

__all__ = [
    "LidarGridConfig",
    "ConfigurationError",
    "load_config",
    "LidarGridProcessor",
    "FrameResult",
    "FrameStatus",
]
