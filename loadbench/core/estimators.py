"""
Percentile Estimators for Trend Metrics

This module provides interchangeable strategies for answering percentile
queries over a stream of numeric observations:
- Exact: keeps every value, sorts on query (small runs and tests)
- Histogram: log-bucketed counts with bounded relative error
- Reservoir: bounded uniform random sample
- Auto: exact until a size limit, then migrates to the histogram

Only Exact and Auto (below its limit) match a full-sort reference exactly.
Histogram estimates stay within `relative_accuracy` of the true value
(0.5% by default) no matter how long the run, and do not depend on insertion
order.
"""

import logging
import math
import random
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class PercentileStrategy(str, Enum):
    """Available percentile estimation strategies."""

    EXACT = "exact"
    HISTOGRAM = "histogram"
    RESERVOIR = "reservoir"
    AUTO = "auto"


def interpolated_percentile(sorted_values: list[float], q: float) -> Optional[float]:
    """
    Percentile of pre-sorted values with linear interpolation between ranks.

    Args:
        sorted_values: Values in ascending order
        q: Quantile in [0.0, 1.0]
    """
    n = len(sorted_values)
    if n == 0:
        return None

    k = (n - 1) * q
    f = int(k)
    c = k - f

    if f + 1 < n:
        return sorted_values[f] * (1 - c) + sorted_values[f + 1] * c
    return sorted_values[f]


class PercentileEstimator(ABC):
    """Streaming estimator answering quantile queries."""

    strategy: PercentileStrategy
    degraded: bool = False

    def __init__(self) -> None:
        self.count = 0

    @abstractmethod
    def add(self, value: float) -> None:
        """Ingest one observation."""

    @abstractmethod
    def quantile(self, q: float) -> Optional[float]:
        """Estimate the q-quantile (q in [0, 1]); None when empty."""

    @property
    def exact(self) -> bool:
        return False


class ExactEstimator(PercentileEstimator):
    """Keeps every observation; memory grows with the run."""

    strategy = PercentileStrategy.EXACT

    def __init__(self) -> None:
        super().__init__()
        self.values: list[float] = []
        self._sorted = True

    def add(self, value: float) -> None:
        if self.values and value < self.values[-1]:
            self._sorted = False
        self.values.append(value)
        self.count += 1

    def quantile(self, q: float) -> Optional[float]:
        if not self._sorted:
            self.values.sort()
            self._sorted = True
        return interpolated_percentile(self.values, q)

    @property
    def exact(self) -> bool:
        return True


class HistogramEstimator(PercentileEstimator):
    """
    Log-bucketed histogram with bounded relative error.

    A positive value x lands in bucket ceil(log_gamma(x)) with
    gamma = (1 + a) / (1 - a); the bucket's representative value is within a
    relative distance `a` of every value in it. Negative values use a mirrored
    store, values near zero share a zero bucket.

    When more than `max_buckets` buckets are live, the lowest buckets are
    collapsed into one: high percentiles keep full precision, low ones lose it.
    """

    strategy = PercentileStrategy.HISTOGRAM

    def __init__(
        self,
        relative_accuracy: float = 0.005,
        max_buckets: int = 2048,
        min_indexable: float = 1e-9,
    ):
        super().__init__()
        if not 0.0 < relative_accuracy < 1.0:
            raise ValueError("relative_accuracy must be in (0, 1)")
        if max_buckets < 2:
            raise ValueError("max_buckets must be >= 2")
        self.relative_accuracy = relative_accuracy
        self.max_buckets = max_buckets
        self.min_indexable = min_indexable
        self._gamma = (1 + relative_accuracy) / (1 - relative_accuracy)
        self._log_gamma = math.log(self._gamma)
        self._positive: dict[int, int] = {}
        self._negative: dict[int, int] = {}
        self._zero = 0
        self._min: Optional[float] = None
        self._max: Optional[float] = None

    def _key(self, magnitude: float) -> int:
        return math.ceil(math.log(magnitude) / self._log_gamma)

    def _value(self, key: int) -> float:
        return 2.0 * self._gamma**key / (self._gamma + 1.0)

    def add(self, value: float) -> None:
        self.count += 1
        if self._min is None or value < self._min:
            self._min = value
        if self._max is None or value > self._max:
            self._max = value

        if value > self.min_indexable:
            store = self._positive
            key = self._key(value)
        elif value < -self.min_indexable:
            store = self._negative
            key = self._key(-value)
        else:
            self._zero += 1
            return

        store[key] = store.get(key, 0) + 1
        if len(self._positive) + len(self._negative) > self.max_buckets:
            self._collapse()

    def _collapse(self) -> None:
        """Fold the lowest buckets together until back under capacity."""
        if not self.degraded:
            logger.warning(
                "Histogram exceeded %d buckets; collapsing lowest buckets",
                self.max_buckets,
            )
        self.degraded = True

        # The most negative values sit in the highest negative keys.
        while len(self._positive) + len(self._negative) > self.max_buckets:
            if len(self._negative) >= 2:
                keys = sorted(self._negative, reverse=True)
                top, nxt = keys[0], keys[1]
                self._negative[nxt] += self._negative.pop(top)
            elif self._negative:
                self._zero += self._negative.pop(next(iter(self._negative)))
            else:
                keys = sorted(self._positive)
                low, nxt = keys[0], keys[1]
                self._positive[nxt] += self._positive.pop(low)

    def quantile(self, q: float) -> Optional[float]:
        if self.count == 0:
            return None

        rank = q * (self.count - 1)
        seen = 0
        estimate: Optional[float] = None

        for key in sorted(self._negative, reverse=True):
            seen += self._negative[key]
            if seen > rank:
                estimate = -self._value(key)
                break
        if estimate is None:
            seen += self._zero
            if seen > rank:
                estimate = 0.0
        if estimate is None:
            for key in sorted(self._positive):
                seen += self._positive[key]
                if seen > rank:
                    estimate = self._value(key)
                    break
        if estimate is None:
            estimate = self._max

        # Never report outside the observed range.
        return min(max(estimate, self._min), self._max)

    @property
    def bucket_count(self) -> int:
        return len(self._positive) + len(self._negative) + (1 if self._zero else 0)


class ReservoirEstimator(PercentileEstimator):
    """
    Uniform random sample of fixed size (Vitter's algorithm R).

    Percentiles are exact until the reservoir fills, then approximate with an
    error that depends on the reservoir size, not the run length.
    """

    strategy = PercentileStrategy.RESERVOIR

    def __init__(self, size: int = 10000, rng: Optional[random.Random] = None):
        super().__init__()
        if size < 1:
            raise ValueError("reservoir size must be >= 1")
        self.size = size
        self._rng = rng or random.Random()
        self._reservoir: list[float] = []

    def add(self, value: float) -> None:
        self.count += 1
        if len(self._reservoir) < self.size:
            self._reservoir.append(value)
            return
        if not self.degraded:
            logger.info("Reservoir full (%d); sampling further values", self.size)
        self.degraded = True
        slot = self._rng.randrange(self.count)
        if slot < self.size:
            self._reservoir[slot] = value

    def quantile(self, q: float) -> Optional[float]:
        return interpolated_percentile(sorted(self._reservoir), q)

    @property
    def exact(self) -> bool:
        return self.count <= self.size


class AutoEstimator(PercentileEstimator):
    """Exact for the first `exact_limit` values, histogram afterwards."""

    strategy = PercentileStrategy.AUTO

    def __init__(
        self,
        exact_limit: int = 10000,
        relative_accuracy: float = 0.005,
        max_buckets: int = 2048,
    ):
        super().__init__()
        self.exact_limit = exact_limit
        self._relative_accuracy = relative_accuracy
        self._max_buckets = max_buckets
        self._inner: PercentileEstimator = ExactEstimator()

    def add(self, value: float) -> None:
        self.count += 1
        self._inner.add(value)
        if isinstance(self._inner, ExactEstimator) and self._inner.count > self.exact_limit:
            histogram = HistogramEstimator(
                relative_accuracy=self._relative_accuracy,
                max_buckets=self._max_buckets,
            )
            for v in self._inner.values:
                histogram.add(v)
            logger.debug(
                "Switched to histogram percentiles after %d samples", self._inner.count
            )
            self._inner = histogram

    def quantile(self, q: float) -> Optional[float]:
        return self._inner.quantile(q)

    @property
    def degraded(self) -> bool:
        return self._inner.degraded

    @property
    def exact(self) -> bool:
        return self._inner.exact


def create_estimator(
    strategy: PercentileStrategy | str,
    *,
    exact_limit: int = 10000,
    relative_accuracy: float = 0.005,
    max_buckets: int = 2048,
    reservoir_size: int = 10000,
    rng: Optional[random.Random] = None,
) -> PercentileEstimator:
    """
    Factory function to create a percentile estimator.

    Args:
        strategy: Strategy name or enum member
        exact_limit: Samples kept exactly before AUTO switches to a histogram
        relative_accuracy: Histogram relative error bound
        max_buckets: Histogram capacity before collapsing
        reservoir_size: Reservoir capacity
        rng: Random source for the reservoir

    Returns:
        PercentileEstimator instance
    """
    strategy = PercentileStrategy(strategy)

    if strategy == PercentileStrategy.EXACT:
        return ExactEstimator()

    elif strategy == PercentileStrategy.HISTOGRAM:
        return HistogramEstimator(
            relative_accuracy=relative_accuracy, max_buckets=max_buckets
        )

    elif strategy == PercentileStrategy.RESERVOIR:
        return ReservoirEstimator(size=reservoir_size, rng=rng)

    elif strategy == PercentileStrategy.AUTO:
        return AutoEstimator(
            exact_limit=exact_limit,
            relative_accuracy=relative_accuracy,
            max_buckets=max_buckets,
        )

    else:
        raise ValueError(f"Unknown percentile strategy: {strategy}")
