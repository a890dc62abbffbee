"""
Metrics Models

Samples flowing from virtual users into the aggregator, and the Pydantic
summaries the aggregator produces from them.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Dict, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, computed_field


class MetricKind(str, Enum):
    """Kinds of metrics the aggregator understands."""

    COUNTER = "counter"
    RATE = "rate"
    TREND = "trend"


@dataclass(frozen=True, slots=True)
class Sample:
    """A single immutable observation for one metric."""

    metric: str
    kind: MetricKind
    value: float | bool
    timestamp: float = field(default_factory=time.monotonic)

    @classmethod
    def counter(cls, metric: str, value: float = 1.0) -> "Sample":
        return cls(metric, MetricKind.COUNTER, value)

    @classmethod
    def rate(cls, metric: str, value: bool) -> "Sample":
        return cls(metric, MetricKind.RATE, bool(value))

    @classmethod
    def trend(cls, metric: str, value: float) -> "Sample":
        return cls(metric, MetricKind.TREND, value)


@dataclass(frozen=True, slots=True)
class IterationResult:
    """Outcome of one scenario invocation."""

    success: bool
    duration_ms: float
    samples: Tuple[Sample, ...] = ()
    scenario: Optional[str] = None
    fault: Optional[str] = None


# Metrics every run produces regardless of the scenarios involved.
BUILTIN_METRICS: Dict[str, MetricKind] = {
    "errors": MetricKind.RATE,
    "response_time": MetricKind.TREND,
    "iterations": MetricKind.COUNTER,
    "iteration_duration": MetricKind.TREND,
    "checks": MetricKind.RATE,
    "dispatch_fallbacks": MetricKind.COUNTER,
    "scenario_faults": MetricKind.COUNTER,
    "iteration_timeouts": MetricKind.COUNTER,
}


class CounterSummary(BaseModel):
    """Running total of a counter metric."""

    kind: Literal["counter"] = "counter"
    count: int = Field(0, description="Number of samples recorded")
    total: float = Field(0.0, description="Sum of sample values")

    def statistic(self, name: str) -> Optional[float]:
        if name == "count":
            return self.total
        raise KeyError(name)


class RateSummary(BaseModel):
    """Fraction of true observations."""

    kind: Literal["rate"] = "rate"
    passes: int = Field(0, description="True observations")
    fails: int = Field(0, description="False observations")

    @computed_field
    @property
    def total(self) -> int:
        return self.passes + self.fails

    @computed_field
    @property
    def rate(self) -> float:
        """Calculate the true-observation rate (0.0-1.0)."""
        if self.total == 0:
            return 0.0
        return self.passes / self.total

    def statistic(self, name: str) -> Optional[float]:
        if name == "rate":
            return self.rate
        raise KeyError(name)


class TrendSummary(BaseModel):
    """Distribution summary of a trend metric (values usually in ms)."""

    kind: Literal["trend"] = "trend"
    count: int = Field(0, description="Number of samples recorded")
    sum: float = Field(0.0, description="Sum of sample values")
    min: Optional[float] = Field(None, description="Minimum value")
    max: Optional[float] = Field(None, description="Maximum value")
    mean: Optional[float] = Field(None, description="Arithmetic mean")
    p50: Optional[float] = Field(None, description="50th percentile (median)")
    p90: Optional[float] = Field(None, description="90th percentile")
    p95: Optional[float] = Field(None, description="95th percentile")
    p99: Optional[float] = Field(None, description="99th percentile")
    strategy: str = Field("exact", description="Percentile estimator in use")
    exact: bool = Field(True, description="Percentiles are exact")
    degraded: bool = Field(False, description="Estimator ran over capacity")

    def statistic(self, name: str) -> Optional[float]:
        if name in ("mean", "min", "max", "p50", "p90", "p95", "p99"):
            return getattr(self, name)
        raise KeyError(name)


MetricSummary = Annotated[
    Union[CounterSummary, RateSummary, TrendSummary], Field(discriminator="kind")
]
