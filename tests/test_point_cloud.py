import numpy as np
import pytest

from sacseg.exceptions import PointCloudError
from sacseg.point_cloud import (
    ModelCoefficients,
    PointIndices,
    field_values,
    finite_mask,
    to_normals,
    to_xyz,
)


def test_to_xyz_drops_extra_columns():
    cloud = np.array([[1, 2, 3, 100], [4, 5, 6, 200]], dtype=np.float32)
    xyz = to_xyz(cloud)
    assert xyz.shape == (2, 3)
    assert xyz.dtype == np.float64
    np.testing.assert_array_equal(xyz, [[1, 2, 3], [4, 5, 6]])


def test_to_xyz_structured_any_field_order():
    dtype = [("intensity", "f4"), ("z", "f4"), ("x", "f8"), ("rgb", "u4"), ("y", "f4")]
    cloud = np.zeros(3, dtype=dtype)
    cloud["x"] = [1, 2, 3]
    cloud["y"] = [4, 5, 6]
    cloud["z"] = [7, 8, 9]
    xyz = to_xyz(cloud)
    np.testing.assert_array_equal(xyz, [[1, 4, 7], [2, 5, 8], [3, 6, 9]])


@pytest.mark.parametrize("bad", [np.zeros(5), np.zeros((4, 2)), np.zeros(2, dtype=[("x", "f4"), ("y", "f4")])])
def test_to_xyz_rejects_unreadable_layouts(bad):
    with pytest.raises(PointCloudError):
        to_xyz(bad)


def test_to_normals_pads_curvature():
    normals = to_normals(np.array([[0.0, 0.0, 1.0], [1.0, 0.0, 0.0]]))
    assert normals.shape == (2, 4)
    np.testing.assert_array_equal(normals[:, 3], [0.0, 0.0])


def test_to_normals_structured():
    dtype = [("normal_x", "f4"), ("normal_y", "f4"), ("normal_z", "f4"), ("curvature", "f4")]
    normals = np.zeros(2, dtype=dtype)
    normals["normal_z"] = 1.0
    normals["curvature"] = 0.25
    out = to_normals(normals)
    np.testing.assert_allclose(out, [[0, 0, 1, 0.25], [0, 0, 1, 0.25]])


def test_field_values():
    cloud = np.array([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]])
    np.testing.assert_array_equal(field_values(cloud, "y"), [2.0, 5.0])
    with pytest.raises(PointCloudError):
        field_values(cloud, "intensity")


def test_finite_mask():
    cloud = np.array([[0.0, 0.0, 0.0], [np.nan, 0.0, 0.0], [0.0, np.inf, 1.0]])
    np.testing.assert_array_equal(finite_mask(cloud), [True, False, False])


def test_point_indices_and_coefficients():
    indices = PointIndices(np.array([3, 1, 2]))
    assert len(indices) == 3
    assert list(indices) == [3, 1, 2]
    assert indices.to_array().dtype == np.int64

    assert len(PointIndices()) == 0
    assert len(ModelCoefficients()) == 0

    coefficients = ModelCoefficients(np.array([0.0, 0.0, 1.0, -0.5], dtype=np.float32))
    assert coefficients.values == [0.0, 0.0, 1.0, -0.5]
    assert all(isinstance(v, float) for v in coefficients)
