import numpy as np
import pytest

from sacseg.synthetic import make_cylinder, make_plane


@pytest.fixture
def rng():
    return np.random.default_rng(0)


@pytest.fixture
def plane_with_outliers(rng):
    """1000 points on z = 0.5 followed by 200 uniform outliers."""
    plane = make_plane(1000, normal=(0.0, 0.0, 1.0), d=-0.5, noise=0.001, seed=1)
    outliers = rng.uniform(-1.0, 1.0, size=(200, 3))
    return np.vstack([plane, outliers])


@pytest.fixture
def cylinder_with_normals():
    """Upright cylinder of radius 0.05 with exact radial normals."""
    points = make_cylinder(1000, point=(0.2, -0.1, 0.0), axis=(0.0, 0.0, 1.0), radius=0.05, height=0.5, seed=2)
    radial = points - np.array([0.2, -0.1, 0.0])
    radial[:, 2] = 0.0
    radial /= np.linalg.norm(radial, axis=1, keepdims=True)
    normals = np.column_stack([radial, np.zeros(len(points))])
    return points, normals
