import numpy as np
from typing import Optional

from sacseg.exceptions import InitializationError
from sacseg.point_cloud import as_index_array


class CloudProcessor:
    """Holds an input cloud and an optional subset of indices to work on."""

    def __init__(self):
        self._input: Optional[np.ndarray] = None
        self._indices: Optional[np.ndarray] = None

    def set_input_cloud(self, cloud) -> None:
        self._input = np.asarray(cloud)

    def get_input_cloud(self) -> Optional[np.ndarray]:
        return self._input

    def set_indices(self, indices) -> None:
        if indices is None:
            self._indices = None
            return
        self._indices = as_index_array(indices)

    def get_indices(self) -> np.ndarray:
        if self._indices is not None:
            return self._indices
        if self._input is None:
            return np.zeros(0, dtype=np.int64)
        return np.arange(len(self._input), dtype=np.int64)

    def _require_input(self) -> np.ndarray:
        if self._input is None:
            raise InitializationError(f"{type(self).__name__} has no input cloud")

        if self._indices is not None and len(self._indices) > 0:
            if self._indices.min() < 0 or self._indices.max() >= len(self._input):
                raise InitializationError(
                    f"Indices out of range for a cloud of {len(self._input)} points"
                )
        return self._input
