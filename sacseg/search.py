import numpy as np
from scipy.spatial import cKDTree
from typing import Optional, Tuple

from sacseg.exceptions import InitializationError
from sacseg.point_cloud import to_xyz


class KdTree:
    """
    Nearest neighbour search over the xyz part of a cloud.
    Results are (indices, squared_distances), closest first.

    Rows with non-finite coordinates are left out of the tree; returned indices
    always refer to rows of the input cloud.
    """

    def __init__(self, sorted_results: bool = True):
        self.sorted_results = sorted_results
        self.epsilon = 0.0
        self._xyz: Optional[np.ndarray] = None
        self._finite = np.zeros(0, dtype=np.int64)
        self._tree: Optional[cKDTree] = None

    def set_input_cloud(self, cloud) -> None:
        self._xyz = to_xyz(cloud)
        self._finite = np.flatnonzero(np.all(np.isfinite(self._xyz), axis=1))
        self._tree = cKDTree(self._xyz[self._finite])

    def get_input_cloud(self) -> Optional[np.ndarray]:
        return self._xyz

    def set_epsilon(self, eps: float) -> None:
        if eps < 0:
            raise ValueError("epsilon must be non-negative")
        self.epsilon = eps

    def get_epsilon(self) -> float:
        return self.epsilon

    def _require_tree(self) -> cKDTree:
        if self._tree is None:
            raise InitializationError("KdTree has no input cloud")
        return self._tree

    def nearest_k_search(self, point, k: int) -> Tuple[np.ndarray, np.ndarray]:
        tree = self._require_tree()
        if k <= 0:
            raise ValueError(f"k must be positive, got {k}")

        query = np.asarray(point, dtype=np.float64)[:3]
        k = min(k, len(self._finite))
        if k == 0 or not np.all(np.isfinite(query)):
            return np.zeros(0, dtype=np.int64), np.zeros(0)

        distances, indices = tree.query(query, k=k, eps=self.epsilon)
        indices = self._finite[np.atleast_1d(indices).astype(np.int64)]
        distances = np.atleast_1d(distances)
        return indices, distances ** 2

    def radius_search(self, point, radius: float, max_nn: int = 0) -> Tuple[np.ndarray, np.ndarray]:
        tree = self._require_tree()
        query = np.asarray(point, dtype=np.float64)[:3]
        if len(self._finite) == 0 or not np.all(np.isfinite(query)):
            return np.zeros(0, dtype=np.int64), np.zeros(0)

        local = np.asarray(tree.query_ball_point(query, radius, eps=self.epsilon), dtype=np.int64)
        indices = self._finite[local]
        sq_distances = np.sum((self._xyz[indices] - query) ** 2, axis=1)

        if self.sorted_results or max_nn > 0:
            order = np.argsort(sq_distances, kind="stable")
            indices = indices[order]
            sq_distances = sq_distances[order]

        if max_nn > 0:
            indices = indices[:max_nn]
            sq_distances = sq_distances[:max_nn]

        return indices, sq_distances

    def radius_search_many(self, points, radius: float) -> list:
        """Neighbour indices within radius for each query point; empty for non-finite queries."""
        tree = self._require_tree()
        points = to_xyz(points)
        result = [np.zeros(0, dtype=np.int64) for _ in range(len(points))]

        valid = np.flatnonzero(np.all(np.isfinite(points), axis=1))
        if len(valid) == 0 or len(self._finite) == 0:
            return result
        for row, local in zip(valid, tree.query_ball_point(points[valid], radius, eps=self.epsilon)):
            result[row] = self._finite[np.asarray(local, dtype=np.int64)]
        return result

    def nearest_k_search_many(self, points, k: int) -> np.ndarray:
        """
        Indices of the k nearest neighbours of each query point, shape (M, k).
        Rows of non-finite query points are filled with -1.
        """
        tree = self._require_tree()
        if k <= 0:
            raise ValueError(f"k must be positive, got {k}")
        points = to_xyz(points)
        k = min(k, len(self._finite))
        result = np.full((len(points), k), -1, dtype=np.int64)

        valid = np.flatnonzero(np.all(np.isfinite(points), axis=1))
        if len(valid) == 0 or k == 0:
            return result
        _, local = tree.query(points[valid], k=k, eps=self.epsilon)
        result[valid] = self._finite[np.asarray(local, dtype=np.int64).reshape(len(valid), k)]
        return result
