"""
Threshold parsing and evaluation.

Thresholds are k6-style pass/fail conditions bound to one metric, e.g.
``{"response_time": ["p(95)<2000"], "errors": ["rate<0.1"]}``. Expressions are
parsed once when the run configuration is validated; evaluation is a pure
function of the parsed thresholds and a metrics snapshot.
"""

import logging
import operator
import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from loadbench.core.errors import ConfigurationError
from loadbench.models import (
    CounterSummary,
    EvaluationResult,
    MetricKind,
    RateSummary,
    ThresholdResult,
    TrendSummary,
    Violation,
)

logger = logging.getLogger(__name__)

_EXPRESSION_RE = re.compile(
    r"^\s*(?P<stat>p\(\s*(?P<pct>\d+(?:\.\d+)?)\s*\)|[a-z]+)\s*"
    r"(?P<cmp><=|>=|<|>)\s*"
    r"(?P<operand>[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?)\s*$"
)

_COMPARATORS: Dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    ">": operator.gt,
    "<=": operator.le,
    ">=": operator.ge,
}

_PERCENTILES = {50: "p50", 90: "p90", 95: "p95", 99: "p99"}

_STAT_ALIASES = {"avg": "mean", "med": "p50"}

# Statistics each metric kind can answer.
_STATISTICS: Dict[MetricKind, frozenset[str]] = {
    MetricKind.TREND: frozenset({"p50", "p90", "p95", "p99", "mean", "min", "max"}),
    MetricKind.RATE: frozenset({"rate"}),
    MetricKind.COUNTER: frozenset({"count"}),
}


@dataclass(frozen=True)
class Threshold:
    """A parsed threshold expression."""

    metric: str
    expression: str
    kind: MetricKind
    statistic: str
    comparator: str
    operand: float

    def check(self, observed: Optional[float]) -> bool:
        if observed is None:
            return False
        return _COMPARATORS[self.comparator](observed, self.operand)


def parse_threshold(metric: str, expression: str, kind: MetricKind) -> Threshold:
    """
    Parse one threshold expression bound to `metric`.

    Raises:
        ConfigurationError: For malformed expressions, unsupported
            percentiles, or a statistic the metric kind cannot provide.
    """
    field = f"thresholds.{metric}"
    if not isinstance(expression, str):
        raise ConfigurationError(
            f"threshold for '{metric}' must be a string, got {expression!r}", field=field
        )

    match = _EXPRESSION_RE.match(expression.strip().lower())
    if match is None:
        raise ConfigurationError(
            f"malformed threshold expression '{expression}' for '{metric}' "
            "(expected e.g. 'p(95)<2000', 'rate<0.1', 'count>100')",
            field=field,
        )

    if match.group("pct") is not None:
        pct = float(match.group("pct"))
        statistic = _PERCENTILES.get(int(pct)) if pct.is_integer() else None
        if statistic is None:
            raise ConfigurationError(
                f"unsupported percentile p({match.group('pct')}) in '{expression}'; "
                f"supported: {', '.join(f'p({p})' for p in _PERCENTILES)}",
                field=field,
            )
    else:
        statistic = _STAT_ALIASES.get(match.group("stat"), match.group("stat"))

    kind = MetricKind(kind)
    if statistic not in _STATISTICS[kind]:
        raise ConfigurationError(
            f"statistic '{statistic}' in '{expression}' is not valid for "
            f"{kind.value} metric '{metric}'",
            field=field,
        )

    return Threshold(
        metric=metric,
        expression=expression.strip(),
        kind=kind,
        statistic=statistic,
        comparator=match.group("cmp"),
        operand=float(match.group("operand")),
    )


def parse_thresholds(
    declarations: Mapping[str, Iterable[str]],
    kinds: Mapping[str, MetricKind],
) -> List[Threshold]:
    """
    Parse every threshold declaration, in declaration order.

    Args:
        declarations: metric name -> threshold expressions
        kinds: Kind of every metric a threshold may reference

    Raises:
        ConfigurationError: On the first invalid declaration
    """
    parsed: List[Threshold] = []
    for metric, expressions in declarations.items():
        kind = kinds.get(metric)
        if kind is None:
            raise ConfigurationError(
                f"threshold references undeclared metric '{metric}'",
                field=f"thresholds.{metric}",
            )
        for expression in expressions:
            parsed.append(parse_threshold(metric, expression, kind))
    return parsed


def _empty_summary(kind: MetricKind):
    if kind == MetricKind.COUNTER:
        return CounterSummary()
    if kind == MetricKind.RATE:
        return RateSummary()
    return TrendSummary()


def evaluate(thresholds: Iterable[Threshold], snapshot: Mapping[str, object]) -> EvaluationResult:
    """
    Evaluate thresholds against a metrics snapshot.

    Every threshold is evaluated; all failing ones are reported in declaration
    order. A metric without samples reads as an empty summary: counters and
    rates observe 0, trend statistics observe nothing and fail.

    Args:
        thresholds: Parsed thresholds
        snapshot: metric name -> summary (from MetricsAggregator.snapshot_all)

    Returns:
        EvaluationResult with per-threshold results and violations
    """
    results: List[ThresholdResult] = []
    violations: List[Violation] = []

    for threshold in thresholds:
        summary = snapshot.get(threshold.metric)
        if summary is None:
            summary = _empty_summary(threshold.kind)
        observed = summary.statistic(threshold.statistic)
        passed = threshold.check(observed)

        results.append(
            ThresholdResult(
                metric_name=threshold.metric,
                expression=threshold.expression,
                passed=passed,
                observed_value=observed,
            )
        )
        if not passed:
            violations.append(
                Violation(
                    metric_name=threshold.metric,
                    expression=threshold.expression,
                    observed_value=observed,
                )
            )
            logger.debug(
                "Threshold failed: %s %s (observed=%s)",
                threshold.metric,
                threshold.expression,
                observed,
            )

    return EvaluationResult(
        overall_pass=not violations, results=results, violations=violations
    )
