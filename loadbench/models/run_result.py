"""
Run Result Models

Defines the run lifecycle state and the Pydantic models for threshold
results and the final run report.
"""

import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, computed_field

from loadbench.models.metrics import MetricSummary


class RunPhase(str, Enum):
    """Run lifecycle phases, in order."""

    IDLE = "idle"
    SETUP = "setup"
    RUNNING = "running"
    TEARING_DOWN = "tearing_down"
    DONE = "done"


_PHASE_ORDER = list(RunPhase)


@dataclass
class ExecutorState:
    """Live counters of one executor, written only by its control loop."""

    target_vus: int = 0
    active_vus: int = 0
    elapsed_ms: float = 0.0
    forced_retirements: int = 0


@dataclass
class RunState:
    """Process-wide state of a single run."""

    phase: RunPhase = RunPhase.IDLE
    executors: Dict[str, ExecutorState] = field(default_factory=dict)
    started_mono: Optional[float] = None
    finished_mono: Optional[float] = None

    def advance(self, phase: RunPhase) -> None:
        """Move forward to `phase`; the lifecycle never goes backwards."""
        if _PHASE_ORDER.index(phase) <= _PHASE_ORDER.index(self.phase):
            raise RuntimeError(
                f"invalid run phase transition: {self.phase.value} -> {phase.value}"
            )
        self.phase = phase

    @property
    def elapsed_ms(self) -> float:
        if self.started_mono is None:
            return 0.0
        end = self.finished_mono if self.finished_mono is not None else time.monotonic()
        return (end - self.started_mono) * 1000.0

    @property
    def current_target_vu(self) -> int:
        return sum(s.target_vus for s in self.executors.values())

    @property
    def active_vu_count(self) -> int:
        return sum(s.active_vus for s in self.executors.values())


class Violation(BaseModel):
    """A threshold whose comparison did not hold."""

    metric_name: str
    expression: str
    observed_value: Optional[float] = None


class ThresholdResult(BaseModel):
    """Outcome of one threshold evaluation."""

    metric_name: str = Field(..., description="Metric the threshold is bound to")
    expression: str = Field(..., description="Expression as declared")
    passed: bool = Field(..., description="Comparator held")
    observed_value: Optional[float] = Field(None, description="Statistic read")


class EvaluationResult(BaseModel):
    """Result of evaluating every threshold against one snapshot."""

    overall_pass: bool = True
    results: List[ThresholdResult] = Field(default_factory=list)
    violations: List[Violation] = Field(default_factory=list)


class RunReport(BaseModel):
    """
    Final structured document of a run.

    Output formats are left to a ReportSink; this model only fixes the
    contract: per-metric summaries and per-threshold outcomes.
    """

    run_id: UUID = Field(default_factory=uuid4, description="Unique run ID")
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC), description="Run start (UTC)"
    )
    finished_at: Optional[datetime] = Field(None, description="Run end (UTC)")
    duration_seconds: float = Field(0.0, description="Wall-clock run duration")
    phase: RunPhase = Field(RunPhase.DONE, description="Phase the run ended in")
    aborted: bool = Field(False, description="Run was stopped by the user")
    executors: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict, description="Per-executor final state"
    )
    metrics: Dict[str, MetricSummary] = Field(
        default_factory=dict, description="Per-metric summaries"
    )
    thresholds: EvaluationResult = Field(default_factory=EvaluationResult)
    scenario_counts: Dict[str, int] = Field(
        default_factory=dict, description="Iterations dispatched per scenario"
    )
    diagnostics: List[str] = Field(
        default_factory=list, description="Degradation notices raised during the run"
    )

    @computed_field
    @property
    def overall_pass(self) -> bool:
        return self.thresholds.overall_pass

    @property
    def exit_code(self) -> int:
        """Process exit status: 0 iff every threshold passed."""
        return 0 if self.overall_pass else 1
