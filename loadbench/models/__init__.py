"""
Data models for LoadBench.

This package contains models for:
- Run configuration (executor profiles, scenarios, thresholds)
- Samples, iteration results and metric summaries
- Run state, threshold results and the final report
"""

from loadbench.models.metrics import (
    BUILTIN_METRICS,
    CounterSummary,
    IterationResult,
    MetricKind,
    MetricSummary,
    RateSummary,
    Sample,
    TrendSummary,
)

from loadbench.models.run_config import (
    ConstantVUsProfile,
    ExecutorProfile,
    RampingVUsProfile,
    RunConfig,
    ScenarioSpec,
    Stage,
    ThinkTime,
)

from loadbench.models.run_result import (
    EvaluationResult,
    ExecutorState,
    RunPhase,
    RunReport,
    RunState,
    ThresholdResult,
    Violation,
)

__all__ = [
    # metrics
    "BUILTIN_METRICS",
    "CounterSummary",
    "IterationResult",
    "MetricKind",
    "MetricSummary",
    "RateSummary",
    "Sample",
    "TrendSummary",
    # run_config
    "ConstantVUsProfile",
    "ExecutorProfile",
    "RampingVUsProfile",
    "RunConfig",
    "ScenarioSpec",
    "Stage",
    "ThinkTime",
    # run_result
    "EvaluationResult",
    "ExecutorState",
    "RunPhase",
    "RunReport",
    "RunState",
    "ThresholdResult",
    "Violation",
]
