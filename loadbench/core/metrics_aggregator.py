"""
Metrics Aggregator

Streaming aggregation of samples from any number of concurrent virtual users
into per-metric summaries (counters, rates, trends with percentiles).
"""

import logging
import math
import random
import threading
from typing import Any, Dict, List, Mapping, Optional, Union

from loadbench.config import settings
from loadbench.core.errors import AggregationOverflow
from loadbench.core.estimators import (
    PercentileEstimator,
    PercentileStrategy,
    create_estimator,
)
from loadbench.models import (
    CounterSummary,
    MetricKind,
    RateSummary,
    Sample,
    TrendSummary,
)

logger = logging.getLogger(__name__)

_PERCENTILES = {"p50": 0.50, "p90": 0.90, "p95": 0.95, "p99": 0.99}


class _ExactSum:
    """
    Exactly rounded running sum (Shewchuk partials).

    The result does not depend on the order values are added in.
    """

    __slots__ = ("_partials",)

    def __init__(self) -> None:
        self._partials: List[float] = []

    def add(self, x: float) -> None:
        partials = self._partials
        i = 0
        for y in partials:
            if abs(x) < abs(y):
                x, y = y, x
            hi = x + y
            lo = y - (hi - x)
            if lo:
                partials[i] = lo
                i += 1
            x = hi
        partials[i:] = [x]

    @property
    def value(self) -> float:
        return math.fsum(self._partials)


class _CounterState:
    __slots__ = ("count", "total")

    def __init__(self) -> None:
        self.count = 0
        self.total = _ExactSum()

    def add(self, value: float) -> None:
        self.count += 1
        self.total.add(value)

    def summary(self) -> CounterSummary:
        return CounterSummary(count=self.count, total=self.total.value)


class _RateState:
    __slots__ = ("passes", "fails")

    def __init__(self) -> None:
        self.passes = 0
        self.fails = 0

    def add(self, value: bool) -> None:
        if value:
            self.passes += 1
        else:
            self.fails += 1

    def summary(self) -> RateSummary:
        return RateSummary(passes=self.passes, fails=self.fails)


class _TrendState:
    __slots__ = ("count", "sum", "min", "max", "estimator")

    def __init__(self, estimator: PercentileEstimator) -> None:
        self.count = 0
        self.sum = _ExactSum()
        self.min: Optional[float] = None
        self.max: Optional[float] = None
        self.estimator = estimator

    def add(self, value: float) -> None:
        self.count += 1
        self.sum.add(value)
        if self.min is None or value < self.min:
            self.min = value
        if self.max is None or value > self.max:
            self.max = value
        self.estimator.add(value)

    def summary(self) -> TrendSummary:
        if self.count == 0:
            return TrendSummary(strategy=self.estimator.strategy.value)
        percentiles = {k: self.estimator.quantile(q) for k, q in _PERCENTILES.items()}
        total = self.sum.value
        return TrendSummary(
            count=self.count,
            sum=total,
            min=self.min,
            max=self.max,
            mean=total / self.count,
            strategy=self.estimator.strategy.value,
            exact=self.estimator.exact,
            degraded=self.estimator.degraded,
            **percentiles,
        )


_State = Union[_CounterState, _RateState, _TrendState]
Summary = Union[CounterSummary, RateSummary, TrendSummary]


class MetricsAggregator:
    """
    Collects and aggregates samples in real-time.

    Features:
    - Lazily created per-metric folds (counter, rate, trend)
    - Order-independent count/sum/min/max/rate
    - Pluggable bounded-memory percentile estimation
    - Thread-safe recording with a short critical section
    """

    def __init__(
        self,
        *,
        strategy: Optional[Union[PercentileStrategy, str]] = None,
        exact_limit: Optional[int] = None,
        relative_accuracy: Optional[float] = None,
        max_buckets: Optional[int] = None,
        reservoir_size: Optional[int] = None,
        max_metrics: Optional[int] = None,
        kinds: Optional[Mapping[str, MetricKind]] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize the aggregator.

        Args:
            strategy: Percentile strategy for trend metrics
            exact_limit: Samples kept exactly by the AUTO strategy
            relative_accuracy: Histogram relative error bound
            max_buckets: Histogram capacity before collapsing
            reservoir_size: Reservoir capacity for the RESERVOIR strategy
            max_metrics: Maximum number of distinct metric names
            kinds: Pre-declared metric kinds (built-ins, custom metrics)
            rng: Random source for reservoir sampling
        """
        self.strategy = PercentileStrategy(strategy or settings.PERCENTILE_STRATEGY)
        self._estimator_options: Dict[str, Any] = {
            "exact_limit": exact_limit or settings.EXACT_PERCENTILE_LIMIT,
            "relative_accuracy": relative_accuracy or settings.HISTOGRAM_RELATIVE_ACCURACY,
            "max_buckets": max_buckets or settings.MAX_HISTOGRAM_BUCKETS,
            "reservoir_size": reservoir_size or settings.RESERVOIR_SIZE,
        }
        self.max_metrics = max_metrics or settings.MAX_METRICS
        self._rng = rng or random.Random()

        self._lock = threading.Lock()
        self._kinds: Dict[str, MetricKind] = dict(kinds or {})
        self._states: Dict[str, _State] = {}

        # Diagnostics
        self.dropped_samples = 0
        self.overflows: List[AggregationOverflow] = []
        self._overflowed: set[str] = set()

        logger.debug(
            "MetricsAggregator initialized: strategy=%s, max_metrics=%d",
            self.strategy.value,
            self.max_metrics,
        )

    def declare(self, metric: str, kind: MetricKind) -> None:
        """Register the kind of a metric before any sample arrives."""
        with self._lock:
            existing = self._kinds.get(metric)
            if existing is not None and existing != kind:
                raise ValueError(
                    f"metric {metric!r} already declared as {existing.value}"
                )
            self._kinds[metric] = kind

    def record(self, sample: Sample) -> None:
        """
        Record a single sample.

        Never raises for bad samples: a sample whose kind conflicts with the
        metric's kind, whose value is not finite, or that would exceed the
        metric cardinality limit is dropped and counted.

        Args:
            sample: Sample to fold into its metric's summary
        """
        kind = MetricKind(sample.kind)
        try:
            value = self._coerce(kind, sample.value)
        except (TypeError, ValueError):
            self._drop(sample.metric, f"unusable value {sample.value!r}")
            return

        with self._lock:
            state = self._states.get(sample.metric)
            if state is None:
                declared = self._kinds.get(sample.metric)
                if declared is not None and declared != kind:
                    self._drop_locked(
                        sample.metric,
                        f"{kind.value} sample for {declared.value} metric",
                    )
                    return
                if len(self._states) >= self.max_metrics:
                    self._overflow_locked(
                        sample.metric,
                        f"metric limit of {self.max_metrics} reached; samples dropped",
                    )
                    self.dropped_samples += 1
                    return
                state = self._new_state(kind)
                self._states[sample.metric] = state
                self._kinds[sample.metric] = kind
            elif self._kinds[sample.metric] != kind:
                self._drop_locked(
                    sample.metric,
                    f"{kind.value} sample for {self._kinds[sample.metric].value} metric",
                )
                return

            state.add(value)
            if isinstance(state, _TrendState) and state.estimator.degraded:
                self._overflow_locked(
                    sample.metric, "percentile estimator over capacity; precision reduced"
                )

    def add(self, metric: str, kind: MetricKind, value: Union[float, bool]) -> None:
        """Record a value without building a Sample first."""
        self.record(Sample(metric, kind, value))

    def record_many(self, samples: List[Sample]) -> None:
        for sample in samples:
            self.record(sample)

    def summarize(self, metric: str) -> Summary:
        """
        Get the current summary of one metric.

        Declared metrics without samples return an empty summary.

        Raises:
            KeyError: If the metric was never declared nor recorded
        """
        with self._lock:
            state = self._states.get(metric)
            if state is not None:
                return state.summary()
            kind = self._kinds.get(metric)
            if kind is None:
                raise KeyError(metric)
            return self._new_state(kind).summary()

    def snapshot_all(self) -> Dict[str, Summary]:
        """
        Get summaries of every declared or recorded metric.

        Returns:
            Dict mapping metric name to its summary, sorted by name
        """
        with self._lock:
            names = sorted(set(self._kinds) | set(self._states))
            out: Dict[str, Summary] = {}
            for name in names:
                state = self._states.get(name)
                if state is None:
                    state = self._new_state(self._kinds[name])
                out[name] = state.summary()
            return out

    @property
    def kinds(self) -> Dict[str, MetricKind]:
        with self._lock:
            return dict(self._kinds)

    def get_summary(self) -> Dict[str, Any]:
        """
        Get a compact dict of headline statistics, for logging.
        """
        snapshot = self.snapshot_all()
        out: Dict[str, Any] = {}
        for name, summary in snapshot.items():
            if isinstance(summary, CounterSummary):
                out[name] = {"count": summary.total}
            elif isinstance(summary, RateSummary):
                out[name] = {"rate": summary.rate, "total": summary.total}
            else:
                out[name] = {
                    "count": summary.count,
                    "mean": summary.mean,
                    "p95": summary.p95,
                }
        out["_dropped_samples"] = self.dropped_samples
        return out

    def _new_state(self, kind: MetricKind) -> _State:
        if kind == MetricKind.COUNTER:
            return _CounterState()
        if kind == MetricKind.RATE:
            return _RateState()
        return _TrendState(
            create_estimator(self.strategy, rng=self._rng, **self._estimator_options)
        )

    @staticmethod
    def _coerce(kind: MetricKind, value: Any) -> Union[float, bool]:
        if kind == MetricKind.RATE:
            return bool(value)
        number = float(value)
        if not math.isfinite(number):
            raise ValueError(value)
        return number

    def _drop(self, metric: str, reason: str) -> None:
        with self._lock:
            self._drop_locked(metric, reason)

    def _drop_locked(self, metric: str, reason: str) -> None:
        self.dropped_samples += 1
        if metric not in self._overflowed:
            logger.warning("Dropping sample for metric '%s': %s", metric, reason)
            self._overflowed.add(metric)

    def _overflow_locked(self, metric: str, reason: str) -> None:
        key = f"overflow:{metric}"
        if key in self._overflowed:
            return
        self._overflowed.add(key)
        overflow = AggregationOverflow(metric, reason)
        self.overflows.append(overflow)
        logger.warning("Aggregation overflow: %s", overflow)
