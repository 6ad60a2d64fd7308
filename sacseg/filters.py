import logging
import numpy as np
from typing import Optional, Tuple

from sacseg.base import CloudProcessor
from sacseg.exceptions import InitializationError
from sacseg.point_cloud import field_values, finite_mask, is_structured, nan_like, to_xyz
from sacseg.search import KdTree

logger = logging.getLogger(__name__)


class IndicesFilter(CloudProcessor):
    """Filters that pick rows of the input cloud by a mask over the processed indices."""

    def __init__(self):
        super().__init__()
        self._negative = False
        self._keep_organized = False
        self._removed = np.zeros(0, dtype=np.int64)

    def set_negative(self, negative: bool) -> None:
        self._negative = bool(negative)

    def get_negative(self) -> bool:
        return self._negative

    def set_keep_organized(self, keep_organized: bool) -> None:
        self._keep_organized = bool(keep_organized)

    def get_keep_organized(self) -> bool:
        return self._keep_organized

    def get_removed_indices(self) -> np.ndarray:
        return self._removed

    def _select(self) -> np.ndarray:
        raise NotImplementedError

    def filter_indices(self) -> np.ndarray:
        """Indices of the input cloud kept by the filter."""
        self._require_input()
        kept = self._select()
        processed = self.get_indices()
        self._removed = np.setdiff1d(processed, kept)
        return kept

    def filter(self) -> np.ndarray:
        cloud = self._require_input()
        kept = self.filter_indices()

        if not self._keep_organized:
            return cloud[kept]

        output = cloud.copy()
        if not is_structured(cloud) and not np.issubdtype(cloud.dtype, np.floating):
            output = output.astype(np.float64)
        dropped = np.setdiff1d(np.arange(len(cloud)), kept)
        output[dropped] = nan_like(output)
        return output


class PassThrough(IndicesFilter):
    """
    Keep points whose field value lies within [min, max].
    Points with non-finite xyz are always dropped.
    """

    def __init__(self):
        super().__init__()
        self._field_name = ""
        self._min = -np.finfo(np.float32).max
        self._max = np.finfo(np.float32).max

    def set_filter_field_name(self, field_name: str) -> None:
        self._field_name = field_name

    def get_filter_field_name(self) -> str:
        return self._field_name

    def set_filter_limits(self, limit_min: float, limit_max: float) -> None:
        self._min = float(limit_min)
        self._max = float(limit_max)

    def get_filter_limits(self) -> Tuple[float, float]:
        return self._min, self._max

    def _select(self) -> np.ndarray:
        cloud = self._input
        indices = self.get_indices()
        finite = finite_mask(cloud)[indices]

        if not self._field_name:
            return indices[finite]

        values = field_values(cloud, self._field_name)[indices]
        with np.errstate(invalid="ignore"):
            inside = (values >= self._min) & (values <= self._max)
        if self._negative:
            inside = ~inside
        keep = finite & np.isfinite(values) & inside
        return indices[keep]


class ExtractIndices(IndicesFilter):
    """Keep (or with negative, drop) the rows listed in the indices. Works on any row-oriented cloud."""

    def _select(self) -> np.ndarray:
        selected = self.get_indices()
        if not self._negative:
            return selected
        return np.setdiff1d(np.arange(len(self._input)), selected)

    def filter_indices(self) -> np.ndarray:
        self._require_input()
        kept = self._select()
        self._removed = np.setdiff1d(np.arange(len(self._input)), kept)
        return kept


class VoxelGrid(CloudProcessor):
    """
    Downsample point cloud using voxel grid filtering.
    """

    def __init__(self):
        super().__init__()
        self._leaf_size = np.zeros(3)

    def set_leaf_size(self, lx: float, ly: float, lz: float) -> None:
        self._leaf_size = np.array([lx, ly, lz], dtype=np.float64)

    def get_leaf_size(self) -> Tuple[float, float, float]:
        return tuple(self._leaf_size)

    def filter(self) -> np.ndarray:
        cloud = self._require_input()
        if np.any(self._leaf_size <= 0):
            raise InitializationError(f"Leaf size must be positive, got {tuple(self._leaf_size)}")

        xyz = to_xyz(cloud)[self.get_indices()]
        xyz = xyz[np.all(np.isfinite(xyz), axis=1)]
        if len(xyz) == 0:
            return np.zeros((0, 3))

        # Compute voxel indices for each point
        # Then shift indices to handle negative values
        # Then create unique hash for each voxel
        # Find unique voxels and compute centroids
        voxel_indices = np.floor(xyz / self._leaf_size).astype(np.int64)

        min_indices = voxel_indices.min(axis=0)
        shifted_indices = voxel_indices - min_indices

        max_dim = shifted_indices.max(axis=0) + 1
        voxel_hash = (shifted_indices[:, 0] * (max_dim[1] * max_dim[2]) + shifted_indices[:, 1] * max_dim[2] + shifted_indices[:, 2])

        unique_hashes, inverse_indices = np.unique(voxel_hash, return_inverse=True)
        num_voxels = len(unique_hashes)

        counts = np.bincount(inverse_indices)
        centroids = np.zeros((num_voxels, 3))

        for dim in range(3):
            centroids[:, dim] = np.bincount(inverse_indices, weights=xyz[:, dim]) / counts

        logger.debug("VoxelGrid: %d points -> %d voxels", len(xyz), num_voxels)
        return centroids


class RadiusOutlierRemoval(IndicesFilter):
    """
    Drop points with fewer than min_neighbors other points within the search radius.
    """

    def __init__(self):
        super().__init__()
        self._radius = 0.0
        self._min_neighbors = 1
        self._search: Optional[KdTree] = None

    def set_radius_search(self, radius: float) -> None:
        self._radius = float(radius)

    def get_radius_search(self) -> float:
        return self._radius

    def set_min_neighbors_in_radius(self, min_neighbors: int) -> None:
        self._min_neighbors = int(min_neighbors)

    def get_min_neighbors_in_radius(self) -> int:
        return self._min_neighbors

    def set_search_method(self, search: KdTree) -> None:
        self._search = search

    def _select(self) -> np.ndarray:
        if self._radius <= 0:
            raise InitializationError("RadiusOutlierRemoval needs a positive search radius")

        xyz = to_xyz(self._input)
        indices = self.get_indices()
        finite = np.all(np.isfinite(xyz), axis=1)

        if self._search is None:
            self._search = KdTree()
        self._search.set_input_cloud(xyz)

        keep_mask = np.zeros(len(indices), dtype=bool)
        for row, i in enumerate(indices):
            if not finite[i]:
                continue
            neighbors, _ = self._search.radius_search(xyz[i], self._radius)
            keep_mask[row] = len(neighbors) - 1 >= self._min_neighbors

        if self._negative:
            keep_mask = ~keep_mask & finite[indices]
        return indices[keep_mask]
