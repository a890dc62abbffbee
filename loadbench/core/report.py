"""
Report output.

The engine hands its final RunReport to a ReportSink; this module provides a
JSON file writer and the plain-text summary logged at the end of a run.
"""

import logging
from pathlib import Path
from typing import List, Protocol, Union

from loadbench.models import CounterSummary, RateSummary, RunReport

logger = logging.getLogger(__name__)


class ReportSink(Protocol):
    """Receives the final report of a run."""

    def emit(self, report: RunReport) -> None: ...


class JsonReportWriter:
    """Writes the report as an indented JSON document."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def emit(self, report: RunReport) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(report.model_dump_json(indent=2), encoding="utf-8")
        logger.info("Report written to %s", self.path)


def _fmt(value) -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


def format_summary(report: RunReport) -> str:
    """
    Render a compact human-readable summary of a report.

    One line per metric, then one line per threshold.
    """
    lines: List[str] = [
        f"run {report.run_id} "
        f"({report.duration_seconds:.1f}s{', aborted' if report.aborted else ''})"
    ]

    for name, summary in report.metrics.items():
        if isinstance(summary, CounterSummary):
            detail = f"count={_fmt(summary.total)}"
        elif isinstance(summary, RateSummary):
            detail = f"rate={summary.rate * 100:.2f}% ({summary.passes}/{summary.total})"
        else:
            if summary.count == 0:
                detail = "count=0"
            else:
                detail = (
                    f"avg={_fmt(summary.mean)} min={_fmt(summary.min)} "
                    f"med={_fmt(summary.p50)} p(90)={_fmt(summary.p90)} "
                    f"p(95)={_fmt(summary.p95)} p(99)={_fmt(summary.p99)} "
                    f"max={_fmt(summary.max)} count={summary.count}"
                )
                if not summary.exact:
                    detail += f" [{summary.strategy}]"
        lines.append(f"  {name:.<28} {detail}")

    if report.scenario_counts:
        counts = ", ".join(f"{k}={v}" for k, v in report.scenario_counts.items())
        lines.append(f"  scenarios: {counts}")

    for result in report.thresholds.results:
        status = "PASS" if result.passed else "FAIL"
        lines.append(
            f"  [{status}] {result.metric_name}: {result.expression} "
            f"(observed {_fmt(result.observed_value)})"
        )

    for notice in report.diagnostics:
        lines.append(f"  ! {notice}")

    lines.append(f"  overall: {'PASS' if report.overall_pass else 'FAIL'}")
    return "\n".join(lines)
