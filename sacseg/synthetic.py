import numpy as np
from typing import Optional


def _rng(seed: Optional[int] = None) -> np.random.Generator:
    return np.random.default_rng(None if seed is None else int(seed))


def _orthonormal_basis(axis: np.ndarray):
    axis = axis / np.linalg.norm(axis)
    helper = np.array([1.0, 0.0, 0.0]) if abs(axis[0]) < 0.9 else np.array([0.0, 1.0, 0.0])
    u = np.cross(axis, helper)
    u /= np.linalg.norm(u)
    v = np.cross(axis, u)
    return axis, u, v


def make_plane(
    n: int,
    normal=(0.0, 0.0, 1.0),
    d: float = 0.0,
    extent: float = 1.0,
    noise: float = 0.0,
    seed: Optional[int] = None,
) -> np.ndarray:
    """Points on the plane normal . p + d = 0, spread over a square of side 2 * extent."""
    rng = _rng(seed)
    normal, u, v = _orthonormal_basis(np.asarray(normal, dtype=np.float64))
    a = rng.uniform(-extent, extent, n)
    b = rng.uniform(-extent, extent, n)
    points = -d * normal + np.outer(a, u) + np.outer(b, v)
    return points + rng.normal(0.0, noise, points.shape) if noise > 0 else points


def make_cylinder(
    n: int,
    point=(0.0, 0.0, 0.0),
    axis=(0.0, 0.0, 1.0),
    radius: float = 0.05,
    height: float = 0.5,
    noise: float = 0.0,
    seed: Optional[int] = None,
) -> np.ndarray:
    """Points on a cylinder surface starting at point and extending height along axis."""
    rng = _rng(seed)
    axis, u, v = _orthonormal_basis(np.asarray(axis, dtype=np.float64))
    theta = rng.uniform(0.0, 2.0 * np.pi, n)
    t = rng.uniform(0.0, height, n)
    points = (
        np.asarray(point, dtype=np.float64)
        + np.outer(t, axis)
        + radius * (np.outer(np.cos(theta), u) + np.outer(np.sin(theta), v))
    )
    return points + rng.normal(0.0, noise, points.shape) if noise > 0 else points


def make_sphere(
    n: int,
    center=(0.0, 0.0, 0.0),
    radius: float = 1.0,
    noise: float = 0.0,
    seed: Optional[int] = None,
) -> np.ndarray:
    rng = _rng(seed)
    directions = rng.normal(size=(n, 3))
    directions /= np.linalg.norm(directions, axis=1, keepdims=True)
    points = np.asarray(center, dtype=np.float64) + radius * directions
    return points + rng.normal(0.0, noise, points.shape) if noise > 0 else points


def make_tabletop_scene(
    n_plane: int = 3000,
    n_cylinder: int = 1000,
    n_clutter: int = 300,
    noise: float = 0.002,
    seed: Optional[int] = None,
) -> np.ndarray:
    """
    A camera-frame scene: a tilted table plane around z = 1, an upright
    cylinder standing on it and uniform clutter, part of it beyond z = 1.5.
    """
    rng = _rng(seed)
    # Table normal points back towards the camera
    normal = np.array([0.0, -0.3, -1.0])
    normal /= np.linalg.norm(normal)
    plane = make_plane(n_plane, normal=normal, d=1.0, extent=0.5, noise=noise, seed=rng.integers(1 << 31))

    foot = np.array([0.1, 0.0, 0.0])
    foot = foot - (foot @ normal + 1.0) * normal
    cylinder = make_cylinder(
        n_cylinder,
        point=foot,
        axis=normal,
        radius=0.05,
        height=0.3,
        noise=noise,
        seed=rng.integers(1 << 31),
    )

    clutter = rng.uniform([-0.6, -0.6, 0.2], [0.6, 0.6, 2.0], size=(n_clutter, 3))
    return np.vstack([plane, cylinder, clutter])
