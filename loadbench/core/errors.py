"""
Error taxonomy for the load-test engine.

Only ConfigurationError (and SetupError) stop a run. Per-iteration faults are
absorbed into metrics by the dispatcher; aggregation overflows only degrade
precision.
"""

from __future__ import annotations

from typing import Any, Iterable


class LoadBenchError(Exception):
    """Base class for engine errors."""


class ConfigurationError(LoadBenchError):
    """
    Invalid run configuration, surfaced before any virtual user starts.

    Attributes:
        field: Dotted path of the first invalid field (or None)
        errors: Every (field, message) pair found during validation
    """

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        errors: Iterable[tuple[str, str]] | None = None,
    ):
        self.field = field
        self.errors: list[tuple[str, str]] = list(errors or [])
        if field is not None and not self.errors:
            self.errors.append((field, message))
        super().__init__(message)

    @classmethod
    def from_validation_error(cls, exc: Any) -> "ConfigurationError":
        """Build from a pydantic ValidationError, keeping every field path."""
        errors: list[tuple[str, str]] = []
        for err in exc.errors():
            loc = ".".join(str(part) for part in err.get("loc", ()) if part != "")
            errors.append((loc or "<root>", str(err.get("msg", "invalid value"))))
        if not errors:
            return cls(str(exc))
        lines = [f"{loc}: {msg}" for loc, msg in errors]
        return cls(
            "invalid configuration:\n  - " + "\n  - ".join(lines),
            field=errors[0][0],
            errors=errors,
        )


class SetupError(LoadBenchError):
    """The setup hook failed; the run never enters the running phase."""


class ScenarioFault(LoadBenchError):
    """A scenario callable raised or returned something that is not a result."""

    category = "scenario_fault"

    def __init__(self, scenario: str, cause: BaseException | str):
        self.scenario = scenario
        self.cause = cause
        super().__init__(f"scenario '{scenario}' failed: {cause}")


class IterationCancelled(LoadBenchError):
    """Raised inside a scenario once its cancellation token is set."""

    category = "cancelled"


class TimeoutFault(ScenarioFault):
    """A scenario callable exceeded its timeout budget."""

    category = "timeout"

    def __init__(self, scenario: str, timeout_ms: float):
        self.timeout_ms = timeout_ms
        super().__init__(scenario, f"timed out after {timeout_ms:.0f} ms")


class AggregationOverflow(LoadBenchError):
    """
    A metric exceeded the aggregator's configured capacity.

    Never raised out of the aggregator; instances are logged and kept as
    diagnostics while the metric continues with reduced precision.
    """

    def __init__(self, metric: str, reason: str):
        self.metric = metric
        self.reason = reason
        super().__init__(f"metric '{metric}': {reason}")
