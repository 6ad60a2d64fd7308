import math

import numpy as np
import pytest

from sacseg.constants import SacMethod
from sacseg.exceptions import ModelNotFoundError, UnsupportedMethodError
from sacseg.sac_estimators import (
    LeastMedianSquares,
    RandomSampleConsensus,
    adaptive_iterations,
    create_estimator,
)
from sacseg.sac_models import PlaneSacModel, SphereSacModel
from sacseg.synthetic import make_plane, make_sphere


def _plane_model(n=500, seed=3):
    cloud = make_plane(n, normal=(0, 0, 1), d=-0.5, seed=seed)
    return PlaneSacModel(cloud, rng=np.random.default_rng(0))


def test_adaptive_iterations():
    expected = math.log(1 - 0.99) / math.log(1 - 0.5 ** 3)
    assert adaptive_iterations(500, 1000, 3, 0.99) == pytest.approx(expected)
    assert adaptive_iterations(1000, 1000, 3, 0.99) < 1
    assert adaptive_iterations(10, 1000, 3, 1.0) == math.inf


def test_clean_plane_stops_early():
    estimator = RandomSampleConsensus(_plane_model(), 0.01, max_iterations=1000, probability=0.99)
    result = estimator.compute_model()

    assert result.iterations < 5
    assert len(result.inliers) == 500
    np.testing.assert_allclose(np.abs(result.coefficients), [0, 0, 1, 0.5], atol=1e-9)


def test_certain_probability_runs_full_budget():
    estimator = RandomSampleConsensus(_plane_model(), 0.01, max_iterations=50, probability=1.0)
    assert estimator.compute_model().iterations == 50


def test_lmeds_runs_full_budget():
    estimator = LeastMedianSquares(_plane_model(), 0.01, max_iterations=20)
    result = estimator.compute_model()
    assert result.iterations == 20
    assert len(result.inliers) == 500


def test_no_valid_hypothesis_raises():
    model = SphereSacModel(make_sphere(100, radius=0.5, seed=1), rng=np.random.default_rng(0))
    model.radius_limits = (1.0, 2.0)
    estimator = RandomSampleConsensus(model, 0.01, max_iterations=10)
    with pytest.raises(ModelNotFoundError):
        estimator.compute_model()


def test_create_estimator():
    model = _plane_model()
    assert isinstance(create_estimator(SacMethod.LMEDS, model, 0.01, 10, 0.99), LeastMedianSquares)
    with pytest.raises(UnsupportedMethodError) as excinfo:
        create_estimator(7, model, 0.01, 10, 0.99)
    assert excinfo.value.method == 7
