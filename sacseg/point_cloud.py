import numpy as np
from dataclasses import dataclass, field
from typing import Iterator, List

from sacseg.exceptions import PointCloudError

XYZ_FIELDS = ("x", "y", "z")
NORMAL_FIELDS = ("normal_x", "normal_y", "normal_z", "curvature")


def is_structured(cloud: np.ndarray) -> bool:
    return cloud.dtype.names is not None


def to_xyz(cloud) -> np.ndarray:
    """
    Convert a cloud with any supported field layout to an (N, 3) float64 array.

    Plain arrays must have at least three columns, the first three being x, y, z.
    Structured arrays must carry x, y and z fields; other fields are dropped.
    """
    cloud = np.asarray(cloud)

    if is_structured(cloud):
        missing = [name for name in XYZ_FIELDS if name not in cloud.dtype.names]
        if missing:
            raise PointCloudError(f"Structured cloud is missing fields: {', '.join(missing)}")
        return np.column_stack([cloud[name].astype(np.float64) for name in XYZ_FIELDS]).reshape(-1, 3)

    if cloud.ndim != 2 or cloud.shape[1] < 3:
        raise PointCloudError(f"Expected an (N, >=3) array, got shape {cloud.shape}")

    return np.ascontiguousarray(cloud[:, :3], dtype=np.float64)


def to_normals(normals) -> np.ndarray:
    """
    Convert normals to an (N, 4) array of normal_x, normal_y, normal_z, curvature.
    A missing curvature column is filled with zeros.
    """
    normals = np.asarray(normals)

    if is_structured(normals):
        missing = [name for name in NORMAL_FIELDS[:3] if name not in normals.dtype.names]
        if missing:
            raise PointCloudError(f"Structured normals are missing fields: {', '.join(missing)}")
        columns = [normals[name].astype(np.float64) for name in NORMAL_FIELDS[:3]]
        if "curvature" in normals.dtype.names:
            columns.append(normals["curvature"].astype(np.float64))
        else:
            columns.append(np.zeros(len(normals)))
        return np.column_stack(columns).reshape(-1, 4)

    if normals.ndim != 2 or normals.shape[1] < 3:
        raise PointCloudError(f"Expected an (N, >=3) normals array, got shape {normals.shape}")

    out = np.zeros((len(normals), 4), dtype=np.float64)
    out[:, : min(4, normals.shape[1])] = normals[:, :4]
    return out


def field_values(cloud: np.ndarray, name: str) -> np.ndarray:
    """Return the values of a named field for every point."""
    cloud = np.asarray(cloud)
    if is_structured(cloud):
        if name not in cloud.dtype.names:
            raise PointCloudError(f"Unknown field '{name}', cloud has {cloud.dtype.names}")
        return cloud[name].astype(np.float64)

    if name not in XYZ_FIELDS:
        raise PointCloudError(f"Unknown field '{name}', plain arrays only expose x, y, z")
    return to_xyz(cloud)[:, XYZ_FIELDS.index(name)]


def finite_mask(cloud) -> np.ndarray:
    return np.all(np.isfinite(to_xyz(cloud)), axis=1)


def nan_like(cloud: np.ndarray) -> np.ndarray:
    """A single point of the cloud's layout with every float field set to NaN."""
    if is_structured(cloud):
        point = np.zeros(1, dtype=cloud.dtype)
        for name in cloud.dtype.names:
            if np.issubdtype(cloud.dtype[name], np.floating):
                point[name] = np.nan
        return point[0]
    return np.full(cloud.shape[1:], np.nan)


@dataclass
class PointIndices:
    indices: List[int] = field(default_factory=list)

    def __post_init__(self):
        self.indices = [int(i) for i in np.asarray(self.indices, dtype=np.int64).ravel()]

    def __len__(self) -> int:
        return len(self.indices)

    def __iter__(self) -> Iterator[int]:
        return iter(self.indices)

    def to_array(self) -> np.ndarray:
        return np.asarray(self.indices, dtype=np.int64)


@dataclass
class ModelCoefficients:
    values: List[float] = field(default_factory=list)

    def __post_init__(self):
        self.values = [float(v) for v in np.asarray(self.values, dtype=np.float64).ravel()]

    def __len__(self) -> int:
        return len(self.values)

    def __iter__(self) -> Iterator[float]:
        return iter(self.values)

    def to_array(self) -> np.ndarray:
        return np.asarray(self.values, dtype=np.float64)


def as_index_array(indices) -> np.ndarray:
    if isinstance(indices, PointIndices):
        return indices.to_array()
    return np.asarray(indices, dtype=np.int64).ravel()
