import logging
import numpy as np
from typing import Optional, Tuple

from sacseg.base import CloudProcessor
from sacseg.exceptions import InitializationError
from sacseg.point_cloud import to_xyz
from sacseg.search import KdTree

logger = logging.getLogger(__name__)


def compute_point_normal(neighbors: np.ndarray) -> Tuple[np.ndarray, float]:
    """
    Normal and curvature of a neighbourhood from its covariance.

    The normal is the eigenvector of the smallest eigenvalue; curvature is
    that eigenvalue over the sum of all three. Fewer than three points give NaN.
    """
    if len(neighbors) < 3:
        return np.full(3, np.nan), np.nan

    centered = neighbors - neighbors.mean(axis=0)
    covariance = centered.T @ centered / len(neighbors)
    eigenvalues, eigenvectors = np.linalg.eigh(covariance)

    total = eigenvalues.sum()
    curvature = float(eigenvalues[0] / total) if total > 0 else 0.0
    return eigenvectors[:, 0], curvature


def flip_normal_towards_viewpoint(point: np.ndarray, viewpoint: np.ndarray, normal: np.ndarray) -> np.ndarray:
    if np.dot(viewpoint - point, normal) < 0:
        return -normal
    return normal


class NormalEstimation(CloudProcessor):
    """
    Estimate surface normals and curvature for every point of the input cloud.

    Output is an (N, 4) array of normal_x, normal_y, normal_z, curvature, one
    row per index. Neighbours are taken from the whole input cloud.
    """

    def __init__(self):
        super().__init__()
        self._search: Optional[KdTree] = None
        self._k = 0
        self._radius = 0.0
        self._view_point = np.zeros(3)

    def set_input_cloud(self, cloud) -> None:
        self._input = to_xyz(cloud)

    def set_search_method(self, search: KdTree) -> None:
        self._search = search

    def get_search_method(self) -> Optional[KdTree]:
        return self._search

    def set_k_search(self, k: int) -> None:
        self._k = int(k)

    def get_k_search(self) -> int:
        return self._k

    def set_radius_search(self, radius: float) -> None:
        self._radius = float(radius)

    def get_radius_search(self) -> float:
        return self._radius

    def set_view_point(self, vpx: float, vpy: float, vpz: float) -> None:
        self._view_point = np.array([vpx, vpy, vpz], dtype=np.float64)

    def get_view_point(self) -> Tuple[float, float, float]:
        return tuple(self._view_point)

    def _neighborhoods(self, query: np.ndarray):
        if self._k > 0:
            return self._search.nearest_k_search_many(query, self._k)
        return self._search.radius_search_many(query, self._radius)

    def compute(self) -> np.ndarray:
        xyz = self._require_input()

        if (self._k > 0) == (self._radius > 0):
            raise InitializationError(
                "Exactly one of k search or radius search must be set "
                f"(k={self._k}, radius={self._radius})"
            )

        indices = self.get_indices()
        if len(indices) == 0:
            return np.zeros((0, 4))

        if self._search is None:
            self._search = KdTree()
        if self._search.get_input_cloud() is not xyz:
            self._search.set_input_cloud(xyz)

        query = xyz[indices]
        output = np.full((len(indices), 4), np.nan)

        # Non-finite query points keep NaN normals
        valid = np.flatnonzero(np.all(np.isfinite(query), axis=1))
        if len(valid) > 0:
            for row, neighbors in zip(valid, self._neighborhoods(query[valid])):
                normal, curvature = compute_point_normal(xyz[neighbors])
                if np.all(np.isfinite(normal)):
                    normal = flip_normal_towards_viewpoint(query[row], self._view_point, normal)
                output[row, :3] = normal
                output[row, 3] = curvature

        invalid = int(np.count_nonzero(np.isnan(output[:, 0])))
        if invalid:
            logger.debug("%d of %d points had no valid normal", invalid, len(indices))
        return output
