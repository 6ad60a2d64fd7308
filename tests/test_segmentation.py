import logging
import sys

import numpy as np
import pytest

from sacseg import KdTree, SACSegmentation, SACSegmentationFromNormals, SacMethod, SacModel
from sacseg.exceptions import InitializationError, UnsupportedMethodError, UnsupportedModelError
from sacseg.synthetic import make_plane, make_sphere


def _segmenter(model, threshold, max_iterations=100, cls=SACSegmentation):
    seg = cls()
    seg.set_model_type(model)
    seg.set_method_type(SacMethod.RANSAC)
    seg.set_distance_threshold(threshold)
    seg.set_max_iterations(max_iterations)
    return seg


def test_defaults():
    seg = SACSegmentation()
    assert seg.get_model_type() == SacModel.PLANE
    assert seg.get_method_type() == SacMethod.RANSAC
    assert seg.get_optimize_coefficients() is True
    assert seg.get_distance_threshold() == 0.0
    assert seg.get_max_iterations() == 50
    assert seg.get_probability() == 0.99
    assert seg.get_eps_angle() == 0.0
    np.testing.assert_array_equal(seg.get_axis(), [0.0, 0.0, 0.0])
    assert seg.get_radius_limits() == {"min_radius": sys.float_info.min, "max_radius": sys.float_info.max}
    assert seg.get_samples_max_dist() == {"radius": 0.0, "search": None}

    seg_n = SACSegmentationFromNormals()
    assert seg_n.get_normal_distance_weight() == 0.1
    assert seg_n.get_min_max_opening_angle() == {"min_angle": 0.0, "max_angle": np.pi / 2}
    assert seg_n.get_distance_from_origin() == 0.0
    assert seg_n.get_eps_dist() == 0.0
    assert seg_n.get_input_normals() is None


def test_setters_round_trip():
    seg = SACSegmentation()
    seg.set_model_type(SacModel.SPHERE)
    seg.set_method_type(SacMethod.MSAC)
    seg.set_radius_limits(0.1, 0.2)
    seg.set_axis([0, 1, 0])
    seg.set_eps_angle(0.3)
    seg.set_probability(0.9)
    seg.set_optimize_coefficients(False)
    assert seg.get_model_type() == SacModel.SPHERE
    assert seg.get_method_type() == SacMethod.MSAC
    assert seg.get_radius_limits() == {"min_radius": 0.1, "max_radius": 0.2}
    np.testing.assert_array_equal(seg.get_axis(), [0.0, 1.0, 0.0])
    assert seg.get_eps_angle() == 0.3
    assert seg.get_probability() == 0.9
    assert seg.get_optimize_coefficients() is False


def test_plane(plane_with_outliers):
    seg = _segmenter(SacModel.PLANE, 0.01)
    seg.set_input_cloud(plane_with_outliers)
    inliers, coefficients = seg.segment()

    assert set(range(1000)) <= set(inliers.indices)
    assert len(inliers) < 1030
    assert len(coefficients) == 4
    normal = np.array(coefficients.values[:3])
    assert abs(normal @ [0, 0, 1]) > 0.999
    assert abs(abs(coefficients.values[3]) - 0.5) < 0.005


def test_plane_accepts_structured_cloud(plane_with_outliers):
    dtype = [("x", "f4"), ("y", "f4"), ("z", "f4"), ("intensity", "f4")]
    cloud = np.zeros(len(plane_with_outliers), dtype=dtype)
    for i, name in enumerate("xyz"):
        cloud[name] = plane_with_outliers[:, i]

    seg = _segmenter(SacModel.PLANE, 0.01)
    seg.set_input_cloud(cloud)
    inliers, _ = seg.segment()
    assert set(range(1000)) <= set(inliers.indices)


def test_indices_map_to_input_cloud(plane_with_outliers):
    seg = _segmenter(SacModel.PLANE, 0.01)
    seg.set_input_cloud(plane_with_outliers)
    seg.set_indices(np.arange(500, 1200))
    inliers, _ = seg.segment()

    assert min(inliers.indices) >= 500
    assert set(range(500, 1000)) <= set(inliers.indices)


def test_same_result_when_not_random(plane_with_outliers):
    results = []
    for _ in range(2):
        seg = _segmenter(SacModel.PLANE, 0.01)
        seg.set_optimize_coefficients(False)
        seg.set_input_cloud(plane_with_outliers)
        results.append(seg.segment())
    assert results[0][0].indices == results[1][0].indices
    assert results[0][1].values == results[1][1].values


@pytest.mark.parametrize("method", [SacMethod.MSAC, SacMethod.LMEDS])
def test_other_estimators(plane_with_outliers, method):
    seg = _segmenter(SacModel.PLANE, 0.01)
    seg.set_method_type(method)
    seg.set_input_cloud(plane_with_outliers)
    inliers, coefficients = seg.segment()
    assert set(range(1000)) <= set(inliers.indices)
    assert abs(coefficients.values[2]) > 0.999


def test_rransac_on_clean_plane():
    cloud = make_plane(500, normal=(0, 1, 0), d=0.2, noise=0.001, seed=3)
    seg = _segmenter(SacModel.PLANE, 0.01)
    seg.set_method_type(SacMethod.RRANSAC)
    seg.set_input_cloud(cloud)
    inliers, coefficients = seg.segment()
    assert len(inliers) == 500
    assert abs(coefficients.values[1]) > 0.999


def test_samples_max_dist(plane_with_outliers):
    tree = KdTree()
    tree.set_input_cloud(plane_with_outliers)
    seg = _segmenter(SacModel.PLANE, 0.01)
    seg.set_samples_max_dist(0.3, tree)
    seg.set_input_cloud(plane_with_outliers)
    assert seg.get_samples_max_dist() == {"radius": 0.3, "search": tree}

    inliers, _ = seg.segment()
    assert set(range(1000)) <= set(inliers.indices)


def _floor_and_wall():
    floor = make_plane(1000, normal=(0, 0, 1), d=0.0, noise=0.001, seed=4)
    wall = make_plane(600, normal=(1, 0, 0), d=-2.0, noise=0.001, seed=5)
    return np.vstack([floor, wall])


def test_perpendicular_plane_follows_axis():
    seg = _segmenter(SacModel.PERPENDICULAR_PLANE, 0.01, max_iterations=200)
    seg.set_axis([1.0, 0.0, 0.0])
    seg.set_eps_angle(0.1)
    seg.set_input_cloud(_floor_and_wall())
    inliers, coefficients = seg.segment()

    assert set(range(1000, 1600)) <= set(inliers.indices)
    assert abs(coefficients.values[0]) > 0.99


def test_parallel_plane_contains_axis():
    seg = _segmenter(SacModel.PARALLEL_PLANE, 0.01, max_iterations=200)
    seg.set_axis([0.0, 0.0, 1.0])
    seg.set_eps_angle(0.1)
    seg.set_input_cloud(_floor_and_wall())
    inliers, coefficients = seg.segment()

    assert set(range(1000, 1600)) <= set(inliers.indices)
    assert abs(coefficients.values[2]) < 0.1


def test_line(rng):
    t = rng.uniform(-1.0, 1.0, 400)
    direction = np.array([1.0, 1.0, 0.0]) / np.sqrt(2.0)
    line = np.array([0.1, 0.2, 0.3]) + np.outer(t, direction) + rng.normal(0, 0.001, (400, 3))
    cloud = np.vstack([line, rng.uniform(-1, 1, (100, 3))])

    seg = _segmenter(SacModel.LINE, 0.01)
    seg.set_input_cloud(cloud)
    inliers, coefficients = seg.segment()

    assert set(range(400)) <= set(inliers.indices)
    assert len(coefficients) == 6
    assert abs(np.array(coefficients.values[3:6]) @ direction) > 0.999


def test_parallel_line(rng):
    along_x = np.column_stack([rng.uniform(-1, 1, 500), np.zeros(500), np.zeros(500)])
    along_z = np.column_stack([np.full(300, 0.5), np.full(300, 0.5), rng.uniform(-1, 1, 300)])
    cloud = np.vstack([along_x, along_z])

    seg = _segmenter(SacModel.PARALLEL_LINE, 0.01, max_iterations=200)
    seg.set_axis([0.0, 0.0, 1.0])
    seg.set_eps_angle(0.1)
    seg.set_input_cloud(cloud)
    inliers, coefficients = seg.segment()

    assert set(inliers.indices) == set(range(500, 800))
    assert abs(coefficients.values[5]) > 0.99


def test_circle2d(rng):
    theta = rng.uniform(0, 2 * np.pi, 300)
    circle = np.column_stack([0.3 + 0.4 * np.cos(theta), -0.2 + 0.4 * np.sin(theta), rng.uniform(-1, 1, 300)])
    cloud = np.vstack([circle, rng.uniform(-1, 1, (60, 3))])

    seg = _segmenter(SacModel.CIRCLE2D, 0.005)
    seg.set_input_cloud(cloud)
    inliers, coefficients = seg.segment()

    assert set(range(300)) <= set(inliers.indices)
    np.testing.assert_allclose(coefficients.values, [0.3, -0.2, 0.4], atol=1e-3)


def test_sphere(rng):
    sphere = make_sphere(500, center=(1.0, 2.0, 3.0), radius=0.5, noise=0.001, seed=6)
    cloud = np.vstack([sphere, rng.uniform(0, 4, (100, 3))])

    seg = _segmenter(SacModel.SPHERE, 0.01, max_iterations=200)
    seg.set_input_cloud(cloud)
    inliers, coefficients = seg.segment()

    assert set(range(500)) <= set(inliers.indices)
    np.testing.assert_allclose(coefficients.values, [1.0, 2.0, 3.0, 0.5], atol=5e-3)


def test_sphere_outside_radius_limits_is_empty():
    cloud = make_sphere(200, radius=0.5, seed=7)
    seg = _segmenter(SacModel.SPHERE, 0.01)
    seg.set_radius_limits(0.6, 1.0)
    seg.set_input_cloud(cloud)
    inliers, coefficients = seg.segment()
    assert len(inliers) == 0
    assert len(coefficients) == 0


def test_empty_cloud_gives_empty_result():
    seg = _segmenter(SacModel.PLANE, 0.01)
    seg.set_input_cloud(np.zeros((0, 3)))
    inliers, coefficients = seg.segment()
    assert len(inliers) == 0
    assert len(coefficients) == 0


def test_cylinder(cylinder_with_normals):
    points, normals = cylinder_with_normals
    seg = _segmenter(SacModel.CYLINDER, 0.01, cls=SACSegmentationFromNormals)
    seg.set_normal_distance_weight(0.1)
    seg.set_radius_limits(0.0, 0.1)
    seg.set_input_cloud(points)
    seg.set_input_normals(normals)
    inliers, coefficients = seg.segment()

    values = np.array(coefficients.values)
    assert len(inliers) == len(points)
    assert len(values) == 7
    assert abs(values[5]) > 0.999
    np.testing.assert_allclose(values[:2], [0.2, -0.1], atol=1e-3)
    assert values[6] == pytest.approx(0.05, abs=1e-3)


def test_cone(rng):
    angle = 0.4
    h = rng.uniform(0.2, 1.0, 600)
    phi = rng.uniform(0, 2 * np.pi, 600)
    radial = np.column_stack([np.cos(phi), np.sin(phi), np.zeros(600)])
    points = h[:, None] * np.tan(angle) * radial + np.outer(h, [0.0, 0.0, 1.0])
    normals = np.cos(angle) * radial - np.sin(angle) * np.array([0.0, 0.0, 1.0])

    seg = _segmenter(SacModel.CONE, 0.01, cls=SACSegmentationFromNormals)
    seg.set_min_max_opening_angle(0.1, 1.0)
    seg.set_input_cloud(points)
    seg.set_input_normals(normals)
    inliers, coefficients = seg.segment()

    values = np.array(coefficients.values)
    assert len(inliers) == 600
    np.testing.assert_allclose(values[:3], [0.0, 0.0, 0.0], atol=1e-3)
    np.testing.assert_allclose(values[3:6], [0.0, 0.0, 1.0], atol=1e-3)
    assert values[6] == pytest.approx(angle, abs=1e-3)


def test_cone_outside_opening_angle_is_empty(rng):
    angle = 0.4
    h = rng.uniform(0.2, 1.0, 100)
    phi = rng.uniform(0, 2 * np.pi, 100)
    radial = np.column_stack([np.cos(phi), np.sin(phi), np.zeros(100)])
    points = h[:, None] * np.tan(angle) * radial + np.outer(h, [0.0, 0.0, 1.0])
    normals = np.cos(angle) * radial - np.sin(angle) * np.array([0.0, 0.0, 1.0])

    seg = _segmenter(SacModel.CONE, 0.01, max_iterations=20, cls=SACSegmentationFromNormals)
    seg.set_min_max_opening_angle(0.5, 1.0)
    seg.set_input_cloud(points)
    seg.set_input_normals(normals)
    inliers, _ = seg.segment()
    assert len(inliers) == 0


def test_normal_plane(plane_with_outliers, rng):
    normals = np.tile([0.0, 0.0, 1.0, 0.0], (len(plane_with_outliers), 1))
    normals[1000:, :3] = rng.normal(size=(200, 3))

    seg = _segmenter(SacModel.NORMAL_PLANE, 0.01, cls=SACSegmentationFromNormals)
    seg.set_input_cloud(plane_with_outliers)
    seg.set_input_normals(normals)
    inliers, coefficients = seg.segment()

    assert set(range(1000)) <= set(inliers.indices)
    assert abs(coefficients.values[2]) > 0.999


def test_normal_parallel_plane_distance_from_origin():
    upper = make_plane(500, normal=(0, 0, 1), d=-0.5, seed=8)
    lower = make_plane(1000, normal=(0, 0, 1), d=0.2, seed=9)
    cloud = np.vstack([upper, lower])
    normals = np.tile([0.0, 0.0, 1.0, 0.0], (len(cloud), 1))

    seg = _segmenter(SacModel.NORMAL_PARALLEL_PLANE, 0.01, max_iterations=200, cls=SACSegmentationFromNormals)
    seg.set_axis([0.0, 0.0, 1.0])
    seg.set_eps_angle(0.1)
    seg.set_distance_from_origin(0.5)
    seg.set_eps_dist(0.05)
    seg.set_input_cloud(cloud)
    seg.set_input_normals(normals)
    inliers, coefficients = seg.segment()

    assert set(inliers.indices) == set(range(500))
    assert coefficients.values[3] == pytest.approx(-0.5, abs=1e-3)


def test_normal_sphere():
    center = np.array([0.5, 0.0, -0.5])
    points = make_sphere(400, center=center, radius=0.3, seed=10)
    normals = (points - center) / 0.3

    seg = _segmenter(SacModel.NORMAL_SPHERE, 0.01, cls=SACSegmentationFromNormals)
    seg.set_input_cloud(points)
    seg.set_input_normals(normals)
    inliers, coefficients = seg.segment()

    assert len(inliers) == 400
    np.testing.assert_allclose(coefficients.values, [0.5, 0.0, -0.5, 0.3], atol=1e-3)


@pytest.mark.parametrize("model", [SacModel.CYLINDER, SacModel.NORMAL_PLANE, SacModel.CONE])
def test_normal_models_need_from_normals(plane_with_outliers, model):
    seg = _segmenter(model, 0.01)
    seg.set_input_cloud(plane_with_outliers)
    with pytest.raises(UnsupportedModelError):
        seg.segment()


def test_missing_normals(cylinder_with_normals):
    points, _ = cylinder_with_normals
    seg = _segmenter(SacModel.CYLINDER, 0.01, cls=SACSegmentationFromNormals)
    seg.set_input_cloud(points)
    with pytest.raises(InitializationError):
        seg.segment()


def test_normals_size_mismatch(cylinder_with_normals):
    points, normals = cylinder_with_normals
    seg = _segmenter(SacModel.CYLINDER, 0.01, cls=SACSegmentationFromNormals)
    seg.set_input_cloud(points)
    seg.set_input_normals(normals[:10])
    with pytest.raises(InitializationError):
        seg.segment()


def test_missing_input():
    with pytest.raises(InitializationError):
        SACSegmentation().segment()


def test_out_of_range_indices(plane_with_outliers):
    seg = _segmenter(SacModel.PLANE, 0.01)
    seg.set_input_cloud(plane_with_outliers)
    seg.set_indices([0, 1, 5000])
    with pytest.raises(InitializationError):
        seg.segment()


def test_unknown_model_and_method():
    seg = SACSegmentation()
    with pytest.raises(UnsupportedModelError):
        seg.set_model_type(3)
    with pytest.raises(UnsupportedMethodError):
        seg.set_method_type(42)


def test_no_model_logs_warning(caplog):
    seg = _segmenter(SacModel.SPHERE, 0.01)
    seg.set_radius_limits(0.6, 1.0)
    seg.set_input_cloud(make_sphere(200, radius=0.5, seed=7))

    with caplog.at_level(logging.WARNING, logger="sacseg.segmentation"):
        inliers, _ = seg.segment()

    assert len(inliers) == 0
    assert any(
        r.levelno == logging.WARNING and r.name == "sacseg.segmentation" for r in caplog.records
    )


def test_samples_max_dist_with_non_finite_rows(plane_with_outliers):
    cloud = np.vstack([plane_with_outliers, [[np.nan, 0.0, 0.0]]])
    tree = KdTree()
    tree.set_input_cloud(cloud)
    seg = _segmenter(SacModel.PLANE, 0.01)
    seg.set_samples_max_dist(0.3, tree)
    seg.set_input_cloud(cloud)

    inliers, _ = seg.segment()
    assert set(range(1000)) <= set(inliers.indices)
    assert len(cloud) - 1 not in inliers.indices
