import numpy as np
import pytest

from lidar_grid.config import LidarGridConfig
from lidar_grid.polar_grid import PolarBinner
from lidar_grid.ground_segmentation import (
    EmptyGroundSetError,
    GroundObstacleSplitter,
    PlaneFitError,
    PlaneFitResult,
    PlaneFitter,
    RansacPlaneFitter,
    RegressorPlaneFitter,
    point_to_plane_distance,
)


class NoInlierFitter(PlaneFitter):
    def fit(self, points):
        return PlaneFitResult(
            inliers=np.empty((0, 3)),
            outliers=points,
            coefficients=np.array([0.0, 0.0, 1.0, 0.0])
        )


def plane_with_outliers(z=0.5):
    rng = np.random.default_rng(11)
    xy = rng.uniform(-5.0, 5.0, size=(300, 2))
    plane = np.column_stack([xy, np.full(len(xy), z)])
    outliers = np.array([[1.0, 1.0, z + 2.0], [-2.0, 3.0, z + 1.5], [4.0, -1.0, z - 1.0]])
    return plane, outliers


@pytest.mark.parametrize("fitter_cls", [RansacPlaneFitter, RegressorPlaneFitter])
def test_fitter_separates_plane_from_outliers(fitter_cls):
    plane, outliers = plane_with_outliers()
    fitter = fitter_cls(distance_threshold=0.2, max_iterations=200, random_seed=1)

    result = fitter.fit(np.vstack([plane, outliers]))

    assert len(result.inliers) == len(plane)
    assert len(result.outliers) == len(outliers)
    np.testing.assert_allclose(np.sort(result.outliers[:, 2]), np.sort(outliers[:, 2]))
    assert np.max(point_to_plane_distance(plane, result.coefficients)) < 1e-6


def test_ransac_coefficients_are_unit_normal():
    plane, _ = plane_with_outliers(z=-1.2)
    result = RansacPlaneFitter(random_seed=0).fit(plane)

    normal = result.coefficients[:3]
    assert np.linalg.norm(normal) == pytest.approx(1.0)
    assert abs(normal[2]) == pytest.approx(1.0)
    assert result.coefficients[3] / normal[2] == pytest.approx(1.2)


def test_ransac_handles_tilted_plane():
    rng = np.random.default_rng(5)
    xy = rng.uniform(-4.0, 4.0, size=(200, 2))
    z = 0.1 * xy[:, 0] - 0.05 * xy[:, 1] + 0.3
    points = np.column_stack([xy, z])

    result = RansacPlaneFitter(distance_threshold=0.05, random_seed=2).fit(points)

    assert len(result.inliers) == len(points)
    assert np.max(point_to_plane_distance(points, result.coefficients)) < 1e-6


@pytest.mark.parametrize("fitter_cls", [RansacPlaneFitter, RegressorPlaneFitter])
def test_too_few_points_fail(fitter_cls):
    with pytest.raises(PlaneFitError):
        fitter_cls().fit(np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]]))


def test_collinear_points_fail():
    points = np.column_stack([np.linspace(0, 5, 20), np.zeros(20), np.zeros(20)])
    with pytest.raises(PlaneFitError):
        RansacPlaneFitter(max_iterations=50, random_seed=0).fit(points)


def test_plane_fit_failure_is_an_empty_ground_set():
    assert issubclass(PlaneFitError, EmptyGroundSetError)


def test_tall_cells_become_obstacles(config, flat_ground, post):
    ground = flat_ground(z=0.0)
    wall = post(3.0, 0.0, height=1.0)
    grid = PolarBinner(config).bin(np.vstack([ground, wall]))

    split = GroundObstacleSplitter(config).split(grid)

    assert split.ground_z == pytest.approx(0.0)
    # Every point of the post's cell is an obstacle, ground points there included
    assert len(split.obstacles) >= len(wall)
    assert np.any(split.obstacles[:, 2] == 1.0)
    assert len(split.ground) + len(split.obstacles) == len(ground) + len(wall)


def test_short_clutter_rejected_by_plane_fit(config, flat_ground):
    ground = flat_ground(z=0.0)
    # Alone in its cell (outside the ground patch), so it passes the span test
    floater = np.array([[13.0, 9.0, 0.9]])
    grid = PolarBinner(config).bin(np.vstack([ground, floater]))

    split = GroundObstacleSplitter(config).split(grid)

    assert any(np.allclose(p, floater[0]) for p in split.obstacles)
    assert split.ground_z == pytest.approx(0.0)


def test_cell_spans(config):
    points = np.array([[1.0, 0.01, 0.0], [1.1, 0.01, 0.4], [5.0, 5.0, 2.0]])
    grid = PolarBinner(config).bin(points)

    spans = GroundObstacleSplitter(config).cell_spans(grid)

    assert spans[2, 0] == pytest.approx(0.4)
    assert np.nansum(spans) == pytest.approx(0.4)
    assert np.isnan(spans[0, 0])


def test_mean_elevation_is_mean_of_inliers():
    config = LidarGridConfig(random_seed=0)
    xy = np.array([[2.0, 0.0], [2.0, 2.0], [0.0, 2.0], [-2.0, 0.0], [0.0, -2.0], [3.0, -3.0]])
    ground = np.column_stack([xy, -1.0 + 0.05 * xy[:, 0] - 0.02 * xy[:, 1]])
    clutter = np.array([[1.0, -1.0, 1.0]])
    grid = PolarBinner(config).bin(np.vstack([ground, clutter]))

    split = GroundObstacleSplitter(config).split(grid)

    assert split.ground_z == pytest.approx(np.mean(split.ground[:, 2]))
    assert split.ground_z == pytest.approx(np.mean(ground[:, 2]))
    np.testing.assert_allclose(split.obstacles, clutter)


def test_empty_frame_raises(config):
    grid = PolarBinner(config).bin(np.empty((0, 3)))
    with pytest.raises(EmptyGroundSetError):
        GroundObstacleSplitter(config).split(grid)


def test_no_ground_candidates_raises(config, post):
    grid = PolarBinner(config).bin(np.vstack([post(2.0, 0.0), post(0.0, 4.0)]))
    with pytest.raises(EmptyGroundSetError):
        GroundObstacleSplitter(config).split(grid)


def test_no_inliers_raises(config, flat_ground):
    grid = PolarBinner(config).bin(flat_ground())
    with pytest.raises(EmptyGroundSetError, match="no inliers"):
        GroundObstacleSplitter(config, NoInlierFitter()).split(grid)


def test_required_iterations_follow_inlier_ratio():
    fitter = RansacPlaneFitter(max_iterations=500)

    assert fitter.required_iterations(1.0) == 0
    assert fitter.required_iterations(0.0) == 500
    assert fitter.required_iterations(0.5) == 35
    assert fitter.required_iterations(0.9) < fitter.required_iterations(0.6)


def test_ransac_stops_early_on_mostly_planar_cloud():
    rng = np.random.default_rng(3)
    xy = rng.uniform(-10.0, 10.0, size=(900, 2))
    plane = np.column_stack([xy, np.full(len(xy), -0.8)])
    clutter = np.column_stack([
        rng.uniform(-10.0, 10.0, size=(100, 2)),
        rng.uniform(0.5, 3.0, size=100)
    ])

    result = RansacPlaneFitter(distance_threshold=0.2, max_iterations=500,
                               random_seed=0).fit(np.vstack([plane, clutter]))

    assert len(result.inliers) == len(plane)
    assert 1 <= result.iterations < 50


def test_ransac_never_exceeds_iteration_cap():
    rng = np.random.default_rng(4)
    xy = rng.uniform(-5.0, 5.0, size=(50, 2))
    plane = np.column_stack([xy, np.zeros(len(xy))])
    clutter = np.column_stack([
        rng.uniform(-5.0, 5.0, size=(200, 2)),
        rng.uniform(1.0, 4.0, size=200)
    ])

    result = RansacPlaneFitter(max_iterations=3, random_seed=0).fit(np.vstack([plane, clutter]))

    assert result.iterations == 3


def test_obstacle_order_is_ring_major_regardless_of_input_order(config, flat_ground, post):
    ground = flat_ground(z=0.0, x_range=(-3.0, 2.0))
    outer = post(3.25, 0.0)  # ring 8, sector 0
    inner = post(3.1875, 0.0625)  # ring 7, sector 0

    outer_first = GroundObstacleSplitter(config).split(
        PolarBinner(config).bin(np.vstack([outer, inner, ground])))
    inner_first = GroundObstacleSplitter(config).split(
        PolarBinner(config).bin(np.vstack([ground, inner, outer])))

    np.testing.assert_array_equal(outer_first.obstacles, inner_first.obstacles)
    np.testing.assert_array_equal(outer_first.obstacles[:len(inner)], inner)
    np.testing.assert_array_equal(outer_first.obstacles[len(inner):], outer)


def test_refinement_keeps_seed_normal_orientation():
    plane, _ = plane_with_outliers(z=0.5)
    fitter = RansacPlaneFitter()
    up = np.array([0.0, 0.0, 1.0, -0.5])

    np.testing.assert_allclose(fitter._refine(plane, up), up, atol=1e-6)
    np.testing.assert_allclose(fitter._refine(plane, -up), -up, atol=1e-6)
