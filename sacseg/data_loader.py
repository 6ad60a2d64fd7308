import numpy as np
from pathlib import Path
from typing import Union

CLOUD_SUFFIXES = (".txt", ".xyz", ".npy")


def load_xyz_txt(file_path: Union[str, Path]) -> np.ndarray:
    """
    Load a point cloud from a whitespace separated text file, one point per row
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Point cloud file not found: {file_path}")

    points = np.loadtxt(file_path, dtype=np.float64, ndmin=2)
    return points


def load_xyz_npy(file_path: Union[str, Path]) -> np.ndarray:
    """
    Load a point cloud saved with numpy.save. Structured arrays are returned as is.
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Point cloud file not found: {file_path}")

    return np.load(file_path, allow_pickle=False)


def load_cloud(file_path: Union[str, Path]) -> np.ndarray:
    file_path = Path(file_path)
    suffix = file_path.suffix.lower()
    if suffix == ".npy":
        return load_xyz_npy(file_path)
    if suffix in (".txt", ".xyz"):
        return load_xyz_txt(file_path)
    raise ValueError(f"Unsupported point cloud format '{suffix}', expected one of {CLOUD_SUFFIXES}")


def discover_clouds(directory: Union[str, Path]) -> list[Path]:
    """
    All loadable point cloud files in a directory, sorted by name.
    """
    directory = Path(directory)

    if not directory.is_dir():
        return []

    return sorted(p for p in directory.iterdir() if p.suffix.lower() in CLOUD_SUFFIXES)
