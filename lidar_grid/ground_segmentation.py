"""
Ground / obstacle separation.

Features:
- Per-cell height span pre-filter on the polar grid
- Plane fitting behind a narrow interface (swappable RANSAC variants)
- Least-squares refinement of the consensus plane
- Mean ground elevation from plane inliers
"""

import math
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.optimize import least_squares
from sklearn.linear_model import LinearRegression, RANSACRegressor

from lidar_grid.config import LidarGridConfig
from lidar_grid.polar_grid import PolarGrid

logger = logging.getLogger(__name__)


class EmptyGroundSetError(RuntimeError):
    """No ground points survived filtering, mean ground height is undefined"""


class PlaneFitError(EmptyGroundSetError):
    """Plane fitting could not produce a model"""


@dataclass
class PlaneFitResult:
    """Plane fit output, coefficients (a, b, c, d) with ax + by + cz + d = 0"""
    inliers: np.ndarray
    outliers: np.ndarray
    coefficients: np.ndarray
    iterations: int = 0  # model hypotheses evaluated


@dataclass
class GroundSplit:
    """Result of ground / obstacle separation for one frame"""
    ground: np.ndarray  # Nx3 plane inliers
    obstacles: np.ndarray  # Mx3 tall-cell points plus plane outliers
    ground_z: float
    coefficients: np.ndarray


def point_to_plane_distance(points: np.ndarray, plane: np.ndarray) -> np.ndarray:
    """Unsigned distance from points to plane"""
    return np.abs(points @ plane[:3] + plane[3]) / np.linalg.norm(plane[:3])


class PlaneFitter(ABC):
    """Fit a plane to a point set and split it into inliers and outliers"""

    def __init__(self, distance_threshold: float = 0.2, max_iterations: int = 500,
                 random_seed: Optional[int] = None):
        self.distance_threshold = distance_threshold
        self.max_iterations = max_iterations
        self.random_seed = random_seed

    @abstractmethod
    def fit(self, points: np.ndarray) -> PlaneFitResult:
        """Raises PlaneFitError when no plane can be fitted"""


class RansacPlaneFitter(PlaneFitter):
    """
    Three-point RANSAC with perpendicular point-to-plane distance.

    Sampling stops once enough hypotheses have been drawn to find an
    outlier-free sample with the given probability, estimated from the best
    inlier ratio so far, or at max_iterations. The best consensus plane is
    refined with a least-squares fit over its inliers, and the inlier set is
    re-selected against the refined plane.
    """

    probability = 0.99

    def required_iterations(self, inlier_ratio: float) -> int:
        """Hypotheses needed to draw one all-inlier sample with self.probability"""
        w3 = inlier_ratio ** 3
        if w3 >= 1.0:
            return 0
        if w3 <= 0.0:
            return self.max_iterations
        return math.ceil(math.log(1.0 - self.probability) / math.log1p(-w3))

    def fit(self, points: np.ndarray) -> PlaneFitResult:
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        if len(points) < 3:
            raise PlaneFitError(f"Plane fit needs at least 3 points, got {len(points)}")

        rng = np.random.default_rng(self.random_seed)

        best_count = 0
        best_plane = None
        required = self.max_iterations
        iterations = 0

        while iterations < min(required, self.max_iterations):
            iterations += 1
            sample = points[rng.choice(len(points), 3, replace=False)]

            # Plane through the 3 samples
            normal = np.cross(sample[1] - sample[0], sample[2] - sample[0])
            norm = np.linalg.norm(normal)
            if norm < 1e-9:
                continue

            normal = normal / norm
            plane = np.append(normal, -np.dot(normal, sample[0]))

            count = np.count_nonzero(point_to_plane_distance(points, plane) <= self.distance_threshold)
            if count > best_count:
                best_count = count
                best_plane = plane
                required = self.required_iterations(count / len(points))

        if best_plane is None:
            raise PlaneFitError("All samples were collinear, no plane model found")

        inlier_mask = point_to_plane_distance(points, best_plane) <= self.distance_threshold
        plane = self._refine(points[inlier_mask], best_plane)

        refined_mask = point_to_plane_distance(points, plane) <= self.distance_threshold
        if np.count_nonzero(refined_mask) >= np.count_nonzero(inlier_mask):
            inlier_mask = refined_mask
        else:
            plane = best_plane

        return PlaneFitResult(
            inliers=points[inlier_mask],
            outliers=points[~inlier_mask],
            coefficients=plane,
            iterations=iterations
        )

    def _refine(self, inliers: np.ndarray, plane: np.ndarray) -> np.ndarray:
        """Least-squares plane refinement over the consensus set"""
        if len(inliers) <= 3:
            return plane

        def residuals(p):
            return (inliers @ p[:3] + p[3]) / np.linalg.norm(p[:3])

        result = least_squares(residuals, plane)
        refined = result.x / np.linalg.norm(result.x[:3])

        if not result.success or not np.all(np.isfinite(refined)):
            return plane

        # Orient the normal the same way as the seed plane
        if np.dot(refined[:3], plane[:3]) < 0:
            refined = -refined
        return refined


class RegressorPlaneFitter(PlaneFitter):
    """RANSAC regression of z on (x, y); the residual is vertical distance"""

    def fit(self, points: np.ndarray) -> PlaneFitResult:
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        if len(points) < 3:
            raise PlaneFitError(f"Plane fit needs at least 3 points, got {len(points)}")

        regressor = RANSACRegressor(
            LinearRegression(),
            min_samples=3,
            residual_threshold=self.distance_threshold,
            max_trials=self.max_iterations,
            random_state=self.random_seed
        )

        try:
            regressor.fit(points[:, :2], points[:, 2])
        except ValueError as e:
            raise PlaneFitError(f"RANSAC regression failed: {e}") from e

        inlier_mask = regressor.inlier_mask_
        a, b = regressor.estimator_.coef_
        c = regressor.estimator_.intercept_

        return PlaneFitResult(
            inliers=points[inlier_mask],
            outliers=points[~inlier_mask],
            coefficients=np.array([a, b, -1.0, c]),
            iterations=int(regressor.n_trials_)
        )


class GroundObstacleSplitter:
    """Separate ground from obstacle points on a binned polar grid"""

    def __init__(self, config: LidarGridConfig, plane_fitter: Optional[PlaneFitter] = None):
        self.config = config
        self.plane_fitter = plane_fitter or RansacPlaneFitter(
            distance_threshold=config.ransac_threshold,
            max_iterations=config.ransac_max_iterations,
            random_seed=config.random_seed
        )

    def cell_spans(self, grid: PolarGrid) -> np.ndarray:
        """Max minus min z per cell as an (R, TH) array, NaN for empty cells"""
        n_cells = grid.R * grid.TH
        z_min = np.full(n_cells, np.inf)
        z_max = np.full(n_cells, -np.inf)

        np.minimum.at(z_min, grid.cell_index, grid.points[:, 2])
        np.maximum.at(z_max, grid.cell_index, grid.points[:, 2])

        spans = z_max - z_min
        spans[np.isinf(z_min)] = np.nan
        return spans.reshape(grid.R, grid.TH)

    def split(self, grid: PolarGrid) -> GroundSplit:
        """
        Classify the grid's points into ground and obstacles.

        Raises:
            EmptyGroundSetError: no ground candidates or no plane inliers
            PlaneFitError: the plane fitter failed
        """
        if len(grid.points) == 0:
            raise EmptyGroundSetError("Frame contains no points")

        # Visit cells ring by ring, points within a cell in insertion order
        order = np.argsort(grid.cell_index, kind='stable')
        points = grid.points[order]

        spans = self.cell_spans(grid).ravel()
        candidate_mask = spans[grid.cell_index[order]] < self.config.threshold

        candidates = points[candidate_mask]
        obstacles = points[~candidate_mask]

        if len(candidates) == 0:
            raise EmptyGroundSetError("No cell is flat enough to be a ground candidate")

        fit = self.plane_fitter.fit(candidates)

        if len(fit.inliers) == 0:
            raise EmptyGroundSetError("Plane fit returned no inliers")

        ground_z = float(np.mean(fit.inliers[:, 2]))
        obstacles = np.vstack([obstacles, fit.outliers])

        logger.debug(
            f"Ground split: {len(candidates)} candidates, {len(fit.inliers)} inliers "
            f"after {fit.iterations} iterations, "
            f"{len(obstacles)} obstacle points, ground z {ground_z:.3f}"
        )

        return GroundSplit(
            ground=fit.inliers,
            obstacles=obstacles,
            ground_z=ground_z,
            coefficients=fit.coefficients
        )
