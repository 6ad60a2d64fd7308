import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Union

import numpy as np

from sacseg.config import Config
from sacseg.constants import SacMethod, SacModel
from sacseg.data_loader import discover_clouds, load_cloud
from sacseg.features import NormalEstimation
from sacseg.filters import ExtractIndices, PassThrough
from sacseg.point_cloud import ModelCoefficients, PointIndices, to_xyz
from sacseg.search import KdTree
from sacseg.segmentation import SACSegmentationFromNormals

logger = logging.getLogger(__name__)


def _method(name: str) -> SacMethod:
    try:
        return SacMethod[name.upper()]
    except KeyError:
        raise ValueError(f"Unknown sample consensus method '{name}'") from None


@dataclass
class CylinderSegmentationParams:
    """Parameters for the plane + cylinder segmentation pipeline."""
    # Pass-through
    filter_field: str = "z"
    filter_min: float = 0.0
    filter_max: float = 1.5
    # Normals
    k_search: int = 50
    radius_search: float = 0.0
    # Plane
    plane_weight: float = 0.1
    plane_method: SacMethod = SacMethod.RANSAC
    plane_iters: int = 100
    plane_thresh: float = 0.03
    # Cylinder
    cylinder_weight: float = 0.1
    cylinder_method: SacMethod = SacMethod.RANSAC
    cylinder_iters: int = 10000
    cylinder_thresh: float = 0.05
    min_radius: float = 0.0
    max_radius: float = 0.1
    # Shared
    optimize_coefficients: bool = True
    random: bool = False

    @classmethod
    def from_config(cls, cfg: Config) -> "CylinderSegmentationParams":
        return cls(
            filter_field=cfg.pass_through.field_name,
            filter_min=cfg.pass_through.limit_min,
            filter_max=cfg.pass_through.limit_max,
            k_search=cfg.normals.k_search,
            radius_search=cfg.normals.radius_search,
            plane_weight=cfg.plane.normal_distance_weight,
            plane_method=_method(cfg.plane.method),
            plane_iters=cfg.plane.max_iterations,
            plane_thresh=cfg.plane.distance_threshold,
            cylinder_weight=cfg.cylinder.normal_distance_weight,
            cylinder_method=_method(cfg.cylinder.method),
            cylinder_iters=cfg.cylinder.max_iterations,
            cylinder_thresh=cfg.cylinder.distance_threshold,
            min_radius=cfg.cylinder.min_radius,
            max_radius=cfg.cylinder.max_radius,
            optimize_coefficients=cfg.plane.optimize_coefficients and cfg.cylinder.optimize_coefficients,
            random=cfg.random,
        )


@dataclass
class CylinderSegmentationResult:
    """Result of segmenting one cloud."""
    # Sizes at each stage
    original_size: int
    filtered_size: int
    plane_size: int
    cylinder_size: int

    # Models
    plane_coefficients: list
    cylinder_coefficients: Optional[list]

    # Points
    filtered_points: np.ndarray = field(repr=False)
    plane_points: np.ndarray = field(repr=False)
    remaining_points: np.ndarray = field(repr=False)
    cylinder_points: np.ndarray = field(repr=False)

    source: Optional[str] = None

    @property
    def found_cylinder(self) -> bool:
        return self.cylinder_coefficients is not None


def _extract(cloud: np.ndarray, inliers: PointIndices, negative: bool, extractor: ExtractIndices) -> np.ndarray:
    extractor.set_input_cloud(cloud)
    extractor.set_indices(inliers)
    extractor.set_negative(negative)
    return extractor.filter()


def segment_cylinder(
    cloud,
    params: Optional[CylinderSegmentationParams] = None,
    source: Optional[str] = None,
) -> CylinderSegmentationResult:
    """
    Segment a table plane and then a cylinder standing on it.

    Runs a pass-through filter, estimates normals, fits a normal-weighted plane,
    removes it and fits a cylinder to the rest.
    """
    params = params or CylinderSegmentationParams()
    cloud = to_xyz(cloud)
    logger.info("Point cloud has %d points", len(cloud))

    # Pass-through to drop the background
    pass_through = PassThrough()
    pass_through.set_input_cloud(cloud)
    pass_through.set_filter_field_name(params.filter_field)
    pass_through.set_filter_limits(params.filter_min, params.filter_max)
    cloud_filtered = pass_through.filter()
    logger.info("After filtering: %d points", len(cloud_filtered))

    # Normals
    ne = NormalEstimation()
    ne.set_search_method(KdTree())
    ne.set_input_cloud(cloud_filtered)
    if params.radius_search > 0:
        ne.set_radius_search(params.radius_search)
    else:
        ne.set_k_search(params.k_search)
    cloud_normals = ne.compute()

    # Plane
    seg = SACSegmentationFromNormals(random=params.random)
    seg.set_optimize_coefficients(params.optimize_coefficients)
    seg.set_model_type(SacModel.NORMAL_PLANE)
    seg.set_normal_distance_weight(params.plane_weight)
    seg.set_method_type(params.plane_method)
    seg.set_max_iterations(params.plane_iters)
    seg.set_distance_threshold(params.plane_thresh)
    seg.set_input_cloud(cloud_filtered)
    seg.set_input_normals(cloud_normals)
    inliers_plane, coefficients_plane = seg.segment()
    logger.info("Plane coefficients: %s", _format(coefficients_plane))

    extract = ExtractIndices()
    extract_normals = ExtractIndices()

    cloud_plane = _extract(cloud_filtered, inliers_plane, False, extract)
    logger.info("Plane component: %d points", len(cloud_plane))

    # Remove the plane and fit a cylinder to what is left
    cloud_filtered2 = _extract(cloud_filtered, inliers_plane, True, extract)
    cloud_normals2 = _extract(cloud_normals, inliers_plane, True, extract_normals)

    seg.set_optimize_coefficients(params.optimize_coefficients)
    seg.set_model_type(SacModel.CYLINDER)
    seg.set_method_type(params.cylinder_method)
    seg.set_normal_distance_weight(params.cylinder_weight)
    seg.set_max_iterations(params.cylinder_iters)
    seg.set_distance_threshold(params.cylinder_thresh)
    seg.set_radius_limits(params.min_radius, params.max_radius)
    seg.set_input_cloud(cloud_filtered2)
    seg.set_input_normals(cloud_normals2)
    inliers_cylinder, coefficients_cylinder = seg.segment()
    logger.info("Cylinder coefficients: %s", _format(coefficients_cylinder))

    cloud_cylinder = _extract(cloud_filtered2, inliers_cylinder, False, extract)
    if len(cloud_cylinder) == 0:
        logger.info("Can't find the cylindrical component")
    else:
        logger.info("Cylinder component: %d points", len(cloud_cylinder))

    return CylinderSegmentationResult(
        original_size=len(cloud),
        filtered_size=len(cloud_filtered),
        plane_size=len(cloud_plane),
        cylinder_size=len(cloud_cylinder),
        plane_coefficients=list(coefficients_plane.values),
        cylinder_coefficients=list(coefficients_cylinder.values) if len(cloud_cylinder) > 0 else None,
        filtered_points=cloud_filtered,
        plane_points=cloud_plane,
        remaining_points=cloud_filtered2,
        cylinder_points=cloud_cylinder,
        source=source,
    )


def _format(coefficients: ModelCoefficients) -> str:
    if len(coefficients) == 0:
        return "none"
    return ", ".join(f"{v:.4f}" for v in coefficients)


def segment_cylinder_file(
    path: Union[str, Path],
    params: Optional[CylinderSegmentationParams] = None,
) -> CylinderSegmentationResult:
    return segment_cylinder(load_cloud(path), params, source=str(path))


def segment_cylinder_directory(
    directory: Union[str, Path],
    params: Optional[CylinderSegmentationParams] = None,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> list[CylinderSegmentationResult]:
    """
    Run the segmentation on every cloud file in a directory.
    """
    files = discover_clouds(directory)
    if not files:
        return []

    results = []
    for i, path in enumerate(files):
        if progress_callback:
            progress_callback(i, len(files))
        results.append(segment_cylinder_file(path, params))

    if progress_callback:
        progress_callback(len(files), len(files))

    return results
