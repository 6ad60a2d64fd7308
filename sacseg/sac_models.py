"""
Geometric models for sample consensus.

Each model builds coefficients from a minimal sample of points, measures the
distance of every point to a candidate, checks user constraints and refines a
candidate on its inliers. Positions handed around are local to the model's
index subset; the segmenter maps them back to the input cloud.
"""

import numpy as np
from dataclasses import dataclass
from scipy.optimize import least_squares
from typing import Optional

from sacseg.constants import SacModel
from sacseg.exceptions import InitializationError, UnsupportedModelError

_EPS = 1e-10


@dataclass
class PlaneModel:
    """
    Represents a 3D plane: normal * point + d = 0
    """
    # Unit vector with distance parameter to represent plane
    normal: np.ndarray
    d: float

    def distance_to_points(self, points: np.ndarray) -> np.ndarray:
        return np.abs(np.dot(points[:, :3], self.normal) + self.d)

    @property
    def coefficients(self) -> np.ndarray:
        return np.array([*self.normal, self.d], dtype=np.float64)

    @classmethod
    def from_coefficients(cls, coefficients) -> "PlaneModel":
        c = np.asarray(coefficients, dtype=np.float64)
        norm = np.linalg.norm(c[:3])
        if norm < _EPS:
            raise ValueError("Plane normal has zero length")
        return cls(normal=c[:3] / norm, d=float(c[3] / norm))

    @property
    def equation_string(self) -> str:
        return f"{self.normal[0]:.4f}x + {self.normal[1]:.4f}y + {self.normal[2]:.4f}z + {self.d:.4f} = 0"


def fit_plane_from_points(p1: np.ndarray, p2: np.ndarray, p3: np.ndarray) -> PlaneModel:
    """
    Fit a plane through three 3D points.
    """
    v1 = p2 - p1
    v2 = p3 - p1

    normal = np.cross(v1, v2)

    norm = np.linalg.norm(normal)
    if norm < _EPS:
        raise ValueError("Points are collinear")

    normal = normal / norm

    d = -np.dot(normal, p1)

    return PlaneModel(normal=normal, d=d)


def _unit(v: np.ndarray) -> Optional[np.ndarray]:
    norm = np.linalg.norm(v)
    if not np.isfinite(norm) or norm < _EPS:
        return None
    return v / norm


def folded_angles(vectors: np.ndarray, reference: np.ndarray) -> np.ndarray:
    """Angle in [0, pi/2] between each row of vectors and reference (a vector or matching rows)."""
    reference = np.broadcast_to(reference, vectors.shape)
    dots = np.einsum("ij,ij->i", vectors, reference)
    norms = np.linalg.norm(vectors, axis=1) * np.linalg.norm(reference, axis=1)
    with np.errstate(invalid="ignore", divide="ignore"):
        cos = np.clip(np.abs(dots) / norms, 0.0, 1.0)
    return np.arccos(cos)


def folded_angle(a: np.ndarray, b: np.ndarray) -> float:
    return float(folded_angles(np.asarray(a, dtype=np.float64).reshape(1, 3), np.asarray(b, dtype=np.float64))[0])


def _radial(points: np.ndarray, line_pt: np.ndarray, line_dir: np.ndarray):
    diff = points - line_pt
    projections = diff @ line_dir
    radial_vec = diff - np.outer(projections, line_dir)
    return projections, radial_vec, np.linalg.norm(radial_vec, axis=1)


class SampleConsensusModel:
    sample_size = 0
    model_size = 0
    needs_normals = False

    def __init__(self, xyz: np.ndarray, indices: Optional[np.ndarray] = None, rng: Optional[np.random.Generator] = None):
        self.xyz = xyz
        if indices is None:
            indices = np.arange(len(xyz), dtype=np.int64)
        self.indices = np.asarray(indices, dtype=np.int64)
        self.points = xyz[self.indices]
        self.normals: Optional[np.ndarray] = None
        self.rng = rng if rng is not None else np.random.default_rng()

        self.radius_limits = (-np.inf, np.inf)
        self.axis = np.zeros(3)
        self.eps_angle = 0.0
        self.normal_distance_weight = 0.0

        self.samples_radius = 0.0
        self.samples_search = None

    def __len__(self) -> int:
        return len(self.indices)

    def set_input_normals(self, normals: np.ndarray) -> None:
        if len(normals) != len(self.xyz):
            raise InitializationError(
                f"Normals count ({len(normals)}) does not match cloud size ({len(self.xyz)})"
            )
        self.normals = normals[self.indices]

    def _has_axis(self) -> bool:
        return self.eps_angle > 0 and np.linalg.norm(self.axis) > _EPS

    # Sampling

    def draw_sample(self) -> Optional[np.ndarray]:
        """Unique local positions for one hypothesis, or None if none can be drawn."""
        n = len(self.indices)
        if n < self.sample_size:
            return None
        if self.samples_radius > 0 and self.samples_search is not None:
            return self._draw_sample_within_radius()
        return self.rng.choice(n, self.sample_size, replace=False)

    def _draw_sample_within_radius(self) -> Optional[np.ndarray]:
        n = len(self.indices)
        first = int(self.rng.integers(n))

        neighbors, _ = self.samples_search.radius_search(self.points[first], self.samples_radius)
        neighbors = neighbors[neighbors < len(self.xyz)]

        position_of = np.full(len(self.xyz), -1, dtype=np.int64)
        position_of[self.indices] = np.arange(n)
        candidates = position_of[neighbors]
        candidates = candidates[(candidates >= 0) & (candidates != first)]

        if len(candidates) < self.sample_size - 1:
            return None

        rest = self.rng.choice(candidates, self.sample_size - 1, replace=False)
        return np.concatenate([[first], rest]).astype(np.int64)

    # Model interface

    def compute_model(self, sample: np.ndarray) -> Optional[np.ndarray]:
        raise NotImplementedError

    def _distances(self, coefficients: np.ndarray, pos) -> np.ndarray:
        raise NotImplementedError

    def is_model_valid(self, coefficients: np.ndarray) -> bool:
        return coefficients is not None and len(coefficients) == self.model_size and bool(np.all(np.isfinite(coefficients)))

    def optimize(self, coefficients: np.ndarray, inliers: np.ndarray) -> np.ndarray:
        return coefficients

    def distances(self, coefficients: np.ndarray, subset: Optional[np.ndarray] = None) -> np.ndarray:
        pos = slice(None) if subset is None else subset
        d = self._distances(np.asarray(coefficients, dtype=np.float64), pos)
        return np.where(np.isnan(d), np.inf, d)

    def select_within_distance(self, coefficients: np.ndarray, threshold: float) -> np.ndarray:
        return np.flatnonzero(self.distances(coefficients) <= threshold)

    def count_within_distance(self, coefficients: np.ndarray, threshold: float) -> int:
        return int(np.count_nonzero(self.distances(coefficients) <= threshold))

    # Helpers for the normal-weighted models

    def _require_normals(self) -> np.ndarray:
        if self.normals is None:
            raise InitializationError(f"{type(self).__name__} requires input normals")
        return self.normals

    def _weighted(self, d_euclid: np.ndarray, d_normal: np.ndarray, pos) -> np.ndarray:
        curvature = self._require_normals()[pos, 3]
        weight = self.normal_distance_weight * (1.0 - np.abs(curvature))
        return np.abs(weight * d_normal + (1.0 - weight) * d_euclid)

    def _least_squares(self, residual, x0: np.ndarray, points: np.ndarray) -> Optional[np.ndarray]:
        if len(points) <= len(x0):
            return None
        result = least_squares(residual, x0, args=(points,), method="lm")
        if not result.success or not np.all(np.isfinite(result.x)):
            return None
        return result.x


class PlaneSacModel(SampleConsensusModel):
    sample_size = 3
    model_size = 4

    def compute_model(self, sample):
        p1, p2, p3 = self.points[sample]
        try:
            plane = fit_plane_from_points(p1, p2, p3)
        except ValueError:
            return None
        return plane.coefficients

    def _distances(self, coefficients, pos):
        return np.abs(self.points[pos] @ coefficients[:3] + coefficients[3])

    def optimize(self, coefficients, inliers):
        pts = self.points[inliers]
        if len(pts) < 3:
            return coefficients

        centroid = pts.mean(axis=0)
        _, _, vh = np.linalg.svd(pts - centroid, full_matrices=False)
        normal = vh[-1]
        if normal @ coefficients[:3] < 0:
            normal = -normal
        return np.array([*normal, -normal @ centroid])


class PerpendicularPlaneSacModel(PlaneSacModel):
    """Plane whose normal lies within eps_angle of the axis."""

    def is_model_valid(self, coefficients):
        if not super().is_model_valid(coefficients):
            return False
        if self._has_axis() and folded_angle(coefficients[:3], self.axis) > self.eps_angle:
            return False
        return True


class ParallelPlaneSacModel(PlaneSacModel):
    """Plane containing the axis direction, within eps_angle."""

    def is_model_valid(self, coefficients):
        if not super().is_model_valid(coefficients):
            return False
        if self._has_axis():
            axis = self.axis / np.linalg.norm(self.axis)
            if abs(axis @ coefficients[:3]) > np.sin(self.eps_angle):
                return False
        return True


class NormalPlaneSacModel(PlaneSacModel):
    needs_normals = True

    def _distances(self, coefficients, pos):
        d_euclid = super()._distances(coefficients, pos)
        d_normal = folded_angles(self._require_normals()[pos, :3], coefficients[:3])
        return self._weighted(d_euclid, d_normal, pos)


class NormalParallelPlaneSacModel(NormalPlaneSacModel):
    """Normal plane whose normal is parallel to the axis and, optionally, at a given distance from the origin."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.distance_from_origin = 0.0
        self.eps_dist = 0.0

    def is_model_valid(self, coefficients):
        if not super().is_model_valid(coefficients):
            return False
        if self._has_axis():
            axis = self.axis / np.linalg.norm(self.axis)
            if abs(axis @ coefficients[:3]) < np.cos(self.eps_angle):
                return False
        if self.eps_dist > 0 and abs(-coefficients[3] - self.distance_from_origin) > self.eps_dist:
            return False
        return True


class LineSacModel(SampleConsensusModel):
    sample_size = 2
    model_size = 6

    def compute_model(self, sample):
        p1, p2 = self.points[sample]
        direction = _unit(p2 - p1)
        if direction is None:
            return None
        return np.array([*p1, *direction])

    def _distances(self, coefficients, pos):
        diff = self.points[pos] - coefficients[:3]
        return np.linalg.norm(np.cross(diff, coefficients[3:6]), axis=1)

    def optimize(self, coefficients, inliers):
        pts = self.points[inliers]
        if len(pts) < 2:
            return coefficients

        centroid = pts.mean(axis=0)
        _, _, vh = np.linalg.svd(pts - centroid, full_matrices=False)
        direction = vh[0]
        if direction @ coefficients[3:6] < 0:
            direction = -direction
        return np.array([*centroid, *direction])


class ParallelLineSacModel(LineSacModel):
    def is_model_valid(self, coefficients):
        if not super().is_model_valid(coefficients):
            return False
        if self._has_axis() and folded_angle(coefficients[3:6], self.axis) > self.eps_angle:
            return False
        return True


class _RadiusLimited(SampleConsensusModel):
    # index of the radius within the coefficients
    radius_index = -1

    def is_model_valid(self, coefficients):
        if not super().is_model_valid(coefficients):
            return False
        low, high = self.radius_limits
        radius = coefficients[self.radius_index]
        return low <= radius <= high


class Circle2DSacModel(_RadiusLimited):
    sample_size = 3
    model_size = 3

    def compute_model(self, sample):
        p1, p2, p3 = self.points[sample][:, :2]
        a = np.array([p2 - p1, p3 - p1]) * 2.0
        if abs(np.linalg.det(a)) < _EPS:
            return None
        b = np.array([p2 @ p2 - p1 @ p1, p3 @ p3 - p1 @ p1])
        center = np.linalg.solve(a, b)
        return np.array([*center, np.linalg.norm(p1 - center)])

    def _distances(self, coefficients, pos):
        xy = self.points[pos][:, :2]
        return np.abs(np.linalg.norm(xy - coefficients[:2], axis=1) - coefficients[2])

    def optimize(self, coefficients, inliers):
        def residual(x, pts):
            return np.linalg.norm(pts - x[:2], axis=1) - x[2]

        x = self._least_squares(residual, coefficients, self.points[inliers][:, :2])
        if x is None:
            return coefficients
        x[2] = abs(x[2])
        return x


class SphereSacModel(_RadiusLimited):
    sample_size = 4
    model_size = 4

    def compute_model(self, sample):
        pts = self.points[sample]
        a = np.column_stack([2.0 * pts, np.ones(4)])
        if abs(np.linalg.det(a)) < _EPS:
            return None
        b = np.sum(pts ** 2, axis=1)
        solution = np.linalg.solve(a, b)
        center = solution[:3]
        r2 = solution[3] + center @ center
        if r2 <= 0:
            return None
        return np.array([*center, np.sqrt(r2)])

    def _distances(self, coefficients, pos):
        return np.abs(np.linalg.norm(self.points[pos] - coefficients[:3], axis=1) - coefficients[3])

    def optimize(self, coefficients, inliers):
        def residual(x, pts):
            return np.linalg.norm(pts - x[:3], axis=1) - x[3]

        x = self._least_squares(residual, coefficients, self.points[inliers])
        if x is None:
            return coefficients
        x[3] = abs(x[3])
        return x


class NormalSphereSacModel(SphereSacModel):
    needs_normals = True

    def _distances(self, coefficients, pos):
        d_euclid = super()._distances(coefficients, pos)
        d_normal = folded_angles(self._require_normals()[pos, :3], self.points[pos] - coefficients[:3])
        return self._weighted(d_euclid, d_normal, pos)


class CylinderSacModel(_RadiusLimited):
    """
    Cylinder from two points and their normals.

    The axis is the shortest segment between the two normal lines, the radius
    is the distance from the first sample point to that axis.
    """
    sample_size = 2
    model_size = 7
    needs_normals = True

    def compute_model(self, sample):
        normals = self._require_normals()
        p1, p2 = self.points[sample]
        n1, n2 = normals[sample, :3]

        if np.allclose(p1, p2, atol=_EPS) or not np.all(np.isfinite([n1, n2])):
            return None

        w = n1 + p1 - p2
        a = n1 @ n1
        b = n1 @ n2
        c = n2 @ n2
        d = n1 @ w
        e = n2 @ w
        denominator = a * c - b * b

        if denominator < 1e-8:
            sc = 0.0
            tc = d / b if b > c else e / c
        else:
            sc = (b * e - c * d) / denominator
            tc = (a * e - b * d) / denominator

        line_pt = p1 + n1 + sc * n1
        line_dir = _unit(p2 + tc * n2 - line_pt)
        if line_dir is None:
            return None

        radius = np.linalg.norm(np.cross(p1 - line_pt, line_dir))
        return np.array([*line_pt, *line_dir, radius])

    def is_model_valid(self, coefficients):
        if not super().is_model_valid(coefficients):
            return False
        if self._has_axis() and folded_angle(coefficients[3:6], self.axis) > self.eps_angle:
            return False
        return True

    def _distances(self, coefficients, pos):
        _, radial_vec, radial_dist = _radial(self.points[pos], coefficients[:3], coefficients[3:6])
        d_euclid = np.abs(radial_dist - coefficients[6])
        d_normal = folded_angles(self._require_normals()[pos, :3], radial_vec)
        return self._weighted(d_euclid, d_normal, pos)

    def optimize(self, coefficients, inliers):
        def residual(x, pts):
            direction = x[3:6] / max(np.linalg.norm(x[3:6]), _EPS)
            _, _, radial_dist = _radial(pts, x[:3], direction)
            return radial_dist - x[6]

        x = self._least_squares(residual, coefficients, self.points[inliers])
        if x is None:
            return coefficients

        direction = _unit(x[3:6])
        if direction is None:
            return coefficients
        if direction @ coefficients[3:6] < 0:
            direction = -direction
        return np.array([*x[:3], *direction, abs(x[6])])


class ConeSacModel(SampleConsensusModel):
    """
    Cone from three points and their normals.

    The apex is where the three tangent planes meet. Coefficients are the apex,
    the unit axis pointing into the cone and the half opening angle.
    """
    sample_size = 3
    model_size = 7
    needs_normals = True

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.min_angle = 0.0
        self.max_angle = np.pi / 2

    def compute_model(self, sample):
        normals = self._require_normals()
        p1, p2, p3 = self.points[sample]
        n1, n2, n3 = normals[sample, :3]
        if not np.all(np.isfinite([n1, n2, n3])):
            return None

        ortho12 = np.cross(n1, n2)
        ortho23 = np.cross(n2, n3)
        ortho31 = np.cross(n3, n1)
        denominator = n1 @ ortho23
        if abs(denominator) < _EPS:
            return None

        apex = ((n1 @ p1) * ortho23 + (n2 @ p2) * ortho31 + (n3 @ p3) * ortho12) / denominator

        spokes = []
        for p in (p1, p2, p3):
            spoke = _unit(p - apex)
            if spoke is None:
                return None
            spokes.append(spoke)

        axis = _unit(np.cross(spokes[1] - spokes[0], spokes[2] - spokes[0]))
        if axis is None:
            return None
        if axis @ spokes[0] < 0:
            axis = -axis

        opening_angle = np.mean([np.arccos(np.clip(s @ axis, -1.0, 1.0)) for s in spokes])
        return np.array([*apex, *axis, opening_angle])

    def is_model_valid(self, coefficients):
        if not super().is_model_valid(coefficients):
            return False
        opening_angle = coefficients[6]
        if opening_angle < self.min_angle or opening_angle > self.max_angle:
            return False
        if self._has_axis() and folded_angle(coefficients[3:6], self.axis) > self.eps_angle:
            return False
        return True

    @staticmethod
    def _surface_distance(x, points):
        axis = x[3:6] / max(np.linalg.norm(x[3:6]), _EPS)
        heights, _, radial_dist = _radial(points, x[:3], axis)
        return radial_dist * np.cos(x[6]) - heights * np.sin(x[6])

    def _distances(self, coefficients, pos):
        points = self.points[pos]
        apex, axis, angle = coefficients[:3], coefficients[3:6], coefficients[6]
        d_euclid = np.abs(self._surface_distance(coefficients, points))

        _, radial_vec, radial_dist = _radial(points, apex, axis)
        with np.errstate(invalid="ignore", divide="ignore"):
            radial_dir = radial_vec / radial_dist[:, None]
        surface_normal = np.cos(angle) * radial_dir - np.sin(angle) * axis
        d_normal = folded_angles(self._require_normals()[pos, :3], surface_normal)
        return self._weighted(d_euclid, d_normal, pos)

    def optimize(self, coefficients, inliers):
        x = self._least_squares(self._surface_distance, coefficients, self.points[inliers])
        if x is None:
            return coefficients

        axis = _unit(x[3:6])
        if axis is None:
            return coefficients
        if axis @ coefficients[3:6] < 0:
            axis = -axis
        return np.array([*x[:3], *axis, abs(x[6])])


MODEL_CLASSES = {
    SacModel.PLANE: PlaneSacModel,
    SacModel.LINE: LineSacModel,
    SacModel.CIRCLE2D: Circle2DSacModel,
    SacModel.SPHERE: SphereSacModel,
    SacModel.CYLINDER: CylinderSacModel,
    SacModel.CONE: ConeSacModel,
    SacModel.PARALLEL_LINE: ParallelLineSacModel,
    SacModel.PERPENDICULAR_PLANE: PerpendicularPlaneSacModel,
    SacModel.NORMAL_PLANE: NormalPlaneSacModel,
    SacModel.NORMAL_SPHERE: NormalSphereSacModel,
    SacModel.PARALLEL_PLANE: ParallelPlaneSacModel,
    SacModel.NORMAL_PARALLEL_PLANE: NormalParallelPlaneSacModel,
}


def create_model(model_type, xyz: np.ndarray, indices=None, rng=None) -> SampleConsensusModel:
    try:
        model_type = SacModel(model_type)
    except ValueError:
        raise UnsupportedModelError(model_type) from None
    return MODEL_CLASSES[model_type](xyz, indices, rng)
