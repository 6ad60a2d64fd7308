import logging
import math
import numpy as np
from dataclasses import dataclass
from typing import Optional, Tuple

from sacseg.constants import SacMethod
from sacseg.exceptions import ModelNotFoundError, UnsupportedMethodError
from sacseg.sac_models import SampleConsensusModel

logger = logging.getLogger(__name__)

# Share of points checked before a full evaluation in RRANSAC
PRETEST_FRACTION = 0.1


@dataclass
class ConsensusResult:
    coefficients: np.ndarray
    inliers: np.ndarray
    iterations: int


def adaptive_iterations(inlier_count: int, total: int, sample_size: int, probability: float) -> float:
    """Number of iterations needed to draw one all-inlier sample with the given probability."""
    if probability >= 1.0:
        return math.inf
    w = inlier_count / float(total)
    p_no_outliers = 1.0 - w ** sample_size
    p_no_outliers = min(max(p_no_outliers, np.finfo(float).eps), 1.0 - np.finfo(float).eps)
    return math.log(1.0 - probability) / math.log(p_no_outliers)


class SampleConsensus:
    """Base estimator: hypothesise from minimal samples, keep the best scoring model."""

    def __init__(
        self,
        model: SampleConsensusModel,
        threshold: float,
        max_iterations: int = 1000,
        probability: float = 0.99,
    ):
        self.model = model
        self.threshold = threshold
        self.max_iterations = max_iterations
        self.probability = probability

    @property
    def max_skip(self) -> int:
        return self.max_iterations * 10

    def _hypotheses(self):
        """Yield valid candidate coefficients until the skip budget is spent."""
        skipped = 0
        while skipped < self.max_skip:
            sample = self.model.draw_sample()
            if sample is None:
                if len(self.model) < self.model.sample_size:
                    return
                skipped += 1
                continue
            coefficients = self.model.compute_model(sample)
            if coefficients is None or not self.model.is_model_valid(coefficients):
                skipped += 1
                continue
            yield coefficients

    def compute_model(self) -> ConsensusResult:
        raise NotImplementedError

    def _finish(self, best: Optional[np.ndarray], iterations: int) -> ConsensusResult:
        if best is None:
            raise ModelNotFoundError(
                f"{type(self).__name__} found no valid model after {iterations} iterations",
                iterations=iterations,
            )
        inliers = self.model.select_within_distance(best, self.threshold)
        logger.debug("%s: %d iterations, %d inliers", type(self).__name__, iterations, len(inliers))
        return ConsensusResult(coefficients=best, inliers=inliers, iterations=iterations)


class RandomSampleConsensus(SampleConsensus):
    def _score(self, coefficients: np.ndarray) -> Tuple[float, int]:
        count = self.model.count_within_distance(coefficients, self.threshold)
        return float(count), count

    def _is_better(self, score: float, best_score: float) -> bool:
        return score > best_score

    def compute_model(self) -> ConsensusResult:
        n = len(self.model)
        best = None
        best_score = -np.inf
        iterations = 0
        k = float(self.max_iterations)

        for coefficients in self._hypotheses():
            if iterations >= k or iterations >= self.max_iterations:
                break
            iterations += 1

            score, inlier_count = self._score(coefficients)
            if self._is_better(score, best_score):
                best_score = score
                best = coefficients
                if inlier_count > 0:
                    k = adaptive_iterations(inlier_count, n, self.model.sample_size, self.probability)

        return self._finish(best, iterations)


class MEstimatorSampleConsensus(RandomSampleConsensus):
    """RANSAC scored by the truncated quadratic cost sum(min(d^2, t^2))."""

    def _score(self, coefficients):
        d = self.model.distances(coefficients)
        cost = float(np.sum(np.fmin(d ** 2, self.threshold ** 2)))
        return cost, int(np.count_nonzero(d <= self.threshold))

    def _is_better(self, score, best_score):
        return best_score == -np.inf or score < best_score


class RandomizedRandomSampleConsensus(RandomSampleConsensus):
    """RANSAC that only scores hypotheses whose random pre-test points are all inliers."""

    def __init__(self, *args, pretest_fraction: float = PRETEST_FRACTION, **kwargs):
        super().__init__(*args, **kwargs)
        self.pretest_fraction = pretest_fraction
        self._evaluated = 0

    def compute_model(self) -> ConsensusResult:
        self._evaluated = 0
        return super().compute_model()

    def _score(self, coefficients):
        # The first hypothesis is always scored in full
        if self._evaluated == 0:
            self._evaluated += 1
            return super()._score(coefficients)

        n = len(self.model)
        pretest_size = max(1, int(n * self.pretest_fraction))
        pretest = self.model.rng.choice(n, min(pretest_size, n), replace=False)
        if np.any(self.model.distances(coefficients, pretest) > self.threshold):
            return -np.inf, 0
        self._evaluated += 1
        return super()._score(coefficients)


class LeastMedianSquares(SampleConsensus):
    """Pick the model with the smallest median squared distance."""

    def compute_model(self) -> ConsensusResult:
        best = None
        best_median = np.inf
        iterations = 0

        for coefficients in self._hypotheses():
            if iterations >= self.max_iterations:
                break
            iterations += 1

            median = float(np.median(self.model.distances(coefficients) ** 2))
            if median < best_median:
                best_median = median
                best = coefficients

        return self._finish(best, iterations)


ESTIMATORS = {
    SacMethod.RANSAC: RandomSampleConsensus,
    SacMethod.LMEDS: LeastMedianSquares,
    SacMethod.MSAC: MEstimatorSampleConsensus,
    SacMethod.RRANSAC: RandomizedRandomSampleConsensus,
}


def create_estimator(method, model: SampleConsensusModel, threshold: float, max_iterations: int, probability: float) -> SampleConsensus:
    try:
        method = SacMethod(method)
    except ValueError:
        raise UnsupportedMethodError(method) from None
    return ESTIMATORS[method](model, threshold, max_iterations=max_iterations, probability=probability)
