import logging
import sys
import numpy as np
from typing import Optional, Tuple

from sacseg.base import CloudProcessor
from sacseg.constants import DEFAULT_SEED, NORMAL_MODELS, SacMethod, SacModel
from sacseg.exceptions import (
    InitializationError,
    ModelNotFoundError,
    UnsupportedMethodError,
    UnsupportedModelError,
)
from sacseg.point_cloud import ModelCoefficients, PointIndices, to_normals, to_xyz
from sacseg.sac_estimators import create_estimator
from sacseg.sac_models import SampleConsensusModel, create_model
from sacseg.search import KdTree

logger = logging.getLogger(__name__)


class SACSegmentation(CloudProcessor):
    """
    Segment the points of a cloud that fit a geometric model.

    The input cloud may use any field layout; it is reduced to xyz once when set.
    `segment()` returns the inlier indices into the input cloud and the model
    coefficients. Both are empty when no model could be found.
    """

    def __init__(self, random: bool = False):
        super().__init__()
        self.random = random
        self._rng = np.random.default_rng(None if random else DEFAULT_SEED)

        self._model_type = SacModel.PLANE
        self._method_type = SacMethod.RANSAC
        self._optimize_coefficients = True
        self._eps_angle = 0.0
        self._axis = np.zeros(3)
        self._threshold = 0.0
        self._max_iterations = 50
        self._probability = 0.99
        self._samples_radius = 0.0
        self._samples_radius_search: Optional[KdTree] = None
        self._min_radius = sys.float_info.min
        self._max_radius = sys.float_info.max

    def set_model_type(self, model) -> None:
        try:
            self._model_type = SacModel(model)
        except ValueError:
            raise UnsupportedModelError(model) from None

    def get_model_type(self) -> SacModel:
        return self._model_type

    def set_method_type(self, method) -> None:
        try:
            self._method_type = SacMethod(method)
        except ValueError:
            raise UnsupportedMethodError(method) from None

    def get_method_type(self) -> SacMethod:
        return self._method_type

    def set_distance_threshold(self, threshold: float) -> None:
        self._threshold = float(threshold)

    def get_distance_threshold(self) -> float:
        return self._threshold

    def set_max_iterations(self, max_iterations: int) -> None:
        self._max_iterations = int(max_iterations)

    def get_max_iterations(self) -> int:
        return self._max_iterations

    def set_probability(self, probability: float) -> None:
        self._probability = float(probability)

    def get_probability(self) -> float:
        return self._probability

    def set_radius_limits(self, min_radius: float, max_radius: float) -> None:
        self._min_radius = float(min_radius)
        self._max_radius = float(max_radius)

    def get_radius_limits(self) -> dict:
        return {"min_radius": self._min_radius, "max_radius": self._max_radius}

    def set_samples_max_dist(self, radius: float, search: KdTree) -> None:
        """Draw every sample after the first within radius of the first, using search."""
        self._samples_radius = float(radius)
        self._samples_radius_search = search

    def get_samples_max_dist(self) -> dict:
        return {"radius": self._samples_radius, "search": self._samples_radius_search}

    def set_eps_angle(self, eps_angle: float) -> None:
        self._eps_angle = float(eps_angle)

    def get_eps_angle(self) -> float:
        return self._eps_angle

    def set_axis(self, axis) -> None:
        axis = np.asarray(axis, dtype=np.float64).ravel()
        if axis.shape != (3,):
            raise ValueError(f"axis must have 3 components, got {axis.shape}")
        self._axis = axis

    def get_axis(self) -> np.ndarray:
        return self._axis.copy()

    def set_optimize_coefficients(self, optimize_coefficients: bool) -> None:
        self._optimize_coefficients = bool(optimize_coefficients)

    def get_optimize_coefficients(self) -> bool:
        return self._optimize_coefficients

    def set_input_cloud(self, cloud) -> None:
        """Accepts any field layout; only xyz is kept."""
        self._input = to_xyz(cloud)

    def _supports(self, model_type: SacModel) -> bool:
        return model_type not in NORMAL_MODELS

    def _init_model(self) -> SampleConsensusModel:
        model = create_model(self._model_type, self._input, self.get_indices(), self._rng)
        model.radius_limits = (self._min_radius, self._max_radius)
        model.axis = self._axis
        model.eps_angle = self._eps_angle
        model.samples_radius = self._samples_radius
        model.samples_search = self._samples_radius_search
        return model

    def segment(self) -> Tuple[PointIndices, ModelCoefficients]:
        self._require_input()
        if not self._supports(self._model_type):
            raise UnsupportedModelError(
                self._model_type, f"{type(self).__name__} cannot run models that need normals"
            )

        model = self._init_model()
        estimator = create_estimator(
            self._method_type, model, self._threshold, self._max_iterations, self._probability
        )

        try:
            result = estimator.compute_model()
        except ModelNotFoundError as e:
            logger.warning("%s: %s", type(self).__name__, e)
            return PointIndices(), ModelCoefficients()

        coefficients = result.coefficients
        inliers = result.inliers

        if self._optimize_coefficients and len(inliers) > 0:
            refined = model.optimize(coefficients, inliers)
            if len(refined) != len(coefficients):
                logger.error("Optimized coefficients have the wrong size, keeping the estimate")
            else:
                coefficients = refined
                inliers = model.select_within_distance(coefficients, self._threshold)

        if len(inliers) == 0:
            logger.warning("%s: model has no inliers within %.4f", type(self).__name__, self._threshold)
            return PointIndices(), ModelCoefficients()

        logger.debug("%s found %d inliers", type(self).__name__, len(inliers))
        return PointIndices(model.indices[inliers]), ModelCoefficients(coefficients)


class SACSegmentationFromNormals(SACSegmentation):
    """
    SACSegmentation for models that weigh the angle between point normals and
    the model surface against the euclidean distance.
    """

    def __init__(self, random: bool = False):
        super().__init__(random)
        self._normals: Optional[np.ndarray] = None
        self._normal_distance_weight = 0.1
        self._distance_from_origin = 0.0
        self._eps_dist = 0.0
        self._min_angle = 0.0
        self._max_angle = np.pi / 2

    def set_input_normals(self, normals) -> None:
        self._normals = to_normals(normals)

    def get_input_normals(self) -> Optional[np.ndarray]:
        return self._normals

    def set_normal_distance_weight(self, weight: float) -> None:
        self._normal_distance_weight = float(weight)

    def get_normal_distance_weight(self) -> float:
        return self._normal_distance_weight

    def set_min_max_opening_angle(self, min_angle: float, max_angle: float) -> None:
        self._min_angle = float(min_angle)
        self._max_angle = float(max_angle)

    def get_min_max_opening_angle(self) -> dict:
        return {"min_angle": self._min_angle, "max_angle": self._max_angle}

    def set_distance_from_origin(self, distance: float) -> None:
        self._distance_from_origin = float(distance)

    def get_distance_from_origin(self) -> float:
        return self._distance_from_origin

    def set_eps_dist(self, eps_dist: float) -> None:
        self._eps_dist = float(eps_dist)

    def get_eps_dist(self) -> float:
        return self._eps_dist

    def _supports(self, model_type: SacModel) -> bool:
        return True

    def _init_model(self) -> SampleConsensusModel:
        model = super()._init_model()
        if not model.needs_normals:
            return model

        if self._normals is None:
            raise InitializationError(f"Model {self._model_type.name} requires input normals")
        model.set_input_normals(self._normals)
        model.normal_distance_weight = self._normal_distance_weight

        if self._model_type == SacModel.CONE:
            model.min_angle = self._min_angle
            model.max_angle = self._max_angle
        elif self._model_type == SacModel.NORMAL_PARALLEL_PLANE:
            model.distance_from_origin = self._distance_from_origin
            model.eps_dist = self._eps_dist
        return model
