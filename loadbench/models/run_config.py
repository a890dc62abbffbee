"""
Run Configuration Models

Defines Pydantic models for a load-test run:
- Stages and executor profiles (constant / ramping virtual users)
- Weighted scenarios and think time
- Threshold declarations and custom metric kinds
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from loadbench.config import settings
from loadbench.core.errors import ConfigurationError
from loadbench.core.helpers import parse_duration_ms
from loadbench.models.metrics import BUILTIN_METRICS, MetricKind


def _duration(value: Any) -> Any:
    if value is None:
        return value
    return parse_duration_ms(value)


class Stage(BaseModel):
    """One window of a ramping profile: reach `target` VUs over `duration_ms`."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    duration_ms: int = Field(..., ge=0, alias="duration", description="Stage length (ms)")
    target: int = Field(..., ge=0, description="VU count at the end of the stage")

    @field_validator("duration_ms", mode="before")
    @classmethod
    def parse_duration(cls, v: Any) -> Any:
        return _duration(v)


class ConstantVUsProfile(BaseModel):
    """A fixed number of VUs for a fixed duration."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    executor: Literal["constant-vus"] = "constant-vus"
    vus: int = Field(..., ge=1, description="Number of virtual users")
    duration_ms: int = Field(..., gt=0, alias="duration", description="Run length (ms)")
    graceful_ramp_down_ms: Optional[int] = Field(
        None,
        ge=0,
        alias="graceful_ramp_down",
        description="Grace for in-flight iterations once VUs retire",
    )

    @field_validator("duration_ms", "graceful_ramp_down_ms", mode="before")
    @classmethod
    def parse_durations(cls, v: Any) -> Any:
        return _duration(v)

    @property
    def total_duration_ms(self) -> int:
        return self.duration_ms


class RampingVUsProfile(BaseModel):
    """A VU count that moves through ordered stages."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    executor: Literal["ramping-vus"] = "ramping-vus"
    start_vus: int = Field(0, ge=0, description="VU count at time zero")
    stages: List[Stage] = Field(..., description="Ordered ramp/hold stages")
    graceful_ramp_down_ms: Optional[int] = Field(
        None,
        ge=0,
        alias="graceful_ramp_down",
        description="Grace for in-flight iterations once VUs retire",
    )

    @field_validator("graceful_ramp_down_ms", mode="before")
    @classmethod
    def parse_durations(cls, v: Any) -> Any:
        return _duration(v)

    @field_validator("stages")
    @classmethod
    def validate_stages(cls, v: List[Stage]) -> List[Stage]:
        if not v:
            raise ValueError("ramping profile requires at least one stage")
        return v

    @property
    def total_duration_ms(self) -> int:
        return sum(stage.duration_ms for stage in self.stages)


ExecutorProfile = Annotated[
    Union[ConstantVUsProfile, RampingVUsProfile], Field(discriminator="executor")
]


class ScenarioSpec(BaseModel):
    """A named unit of work and its relative selection weight."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Unique scenario name")
    weight: float = Field(..., gt=0, description="Relative selection weight")


class ThinkTime(BaseModel):
    """Uniform pause between iterations of one VU."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    min_ms: int = Field(
        default_factory=lambda: settings.THINK_TIME_MIN_MS, ge=0, alias="min"
    )
    max_ms: int = Field(
        default_factory=lambda: settings.THINK_TIME_MAX_MS, ge=0, alias="max"
    )

    @field_validator("min_ms", "max_ms", mode="before")
    @classmethod
    def parse_durations(cls, v: Any) -> Any:
        return _duration(v)

    @model_validator(mode="after")
    def validate_bounds(self):
        if self.max_ms < self.min_ms:
            raise ValueError(
                f"think time max ({self.max_ms} ms) must be >= min ({self.min_ms} ms)"
            )
        return self

    @classmethod
    def fixed(cls, ms: int) -> "ThinkTime":
        return cls(min_ms=ms, max_ms=ms)


class RunConfig(BaseModel):
    """
    Complete configuration of one load-test run.

    Validation happens at construction; use `RunConfig.from_mapping()` to get
    a ConfigurationError naming every invalid field instead of a raw
    pydantic ValidationError.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    executors: Dict[str, ExecutorProfile] = Field(
        ..., description="Named executor profiles, run concurrently"
    )
    scenarios: List[ScenarioSpec] = Field(..., description="Weighted scenarios")
    think_time: ThinkTime = Field(default_factory=ThinkTime)
    request_timeout_ms: int = Field(
        default_factory=lambda: settings.REQUEST_TIMEOUT_MS,
        gt=0,
        alias="request_timeout",
    )
    graceful_ramp_down_ms: int = Field(
        default_factory=lambda: settings.GRACEFUL_RAMP_DOWN_MS,
        ge=0,
        alias="graceful_ramp_down",
    )
    thresholds: Dict[str, List[str]] = Field(
        default_factory=dict, description="metric -> threshold expressions"
    )
    metrics: Dict[str, MetricKind] = Field(
        default_factory=dict, description="Custom metrics emitted by scenarios"
    )
    base_url: Optional[str] = Field(default_factory=lambda: settings.BASE_URL)
    seed: Optional[int] = Field(None, description="Seed for the run's random source")

    @field_validator("request_timeout_ms", "graceful_ramp_down_ms", mode="before")
    @classmethod
    def parse_durations(cls, v: Any) -> Any:
        return _duration(v)

    @field_validator("thresholds", mode="before")
    @classmethod
    def normalize_thresholds(cls, v: Any) -> Any:
        # A single expression may be given as a bare string.
        if isinstance(v, dict):
            return {k: [e] if isinstance(e, str) else e for k, e in v.items()}
        return v

    @field_validator("executors")
    @classmethod
    def validate_executors(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        if not v:
            raise ValueError("at least one executor profile is required")
        return v

    @field_validator("scenarios")
    @classmethod
    def validate_scenarios(cls, v: List[ScenarioSpec]) -> List[ScenarioSpec]:
        if not v:
            raise ValueError("at least one scenario is required")
        seen: set[str] = set()
        for scenario in v:
            if scenario.name in seen:
                raise ValueError(f"duplicate scenario name: {scenario.name!r}")
            seen.add(scenario.name)
        return v

    @field_validator("metrics")
    @classmethod
    def validate_metrics(cls, v: Dict[str, MetricKind]) -> Dict[str, MetricKind]:
        for name, kind in v.items():
            builtin = BUILTIN_METRICS.get(name)
            if builtin is not None and builtin != kind:
                raise ValueError(
                    f"metric {name!r} is built in as {builtin.value}, not {kind.value}"
                )
        return v

    @model_validator(mode="after")
    def validate_thresholds(self):
        from loadbench.core.thresholds import parse_thresholds

        # Raises ConfigurationError; surfaced as-is by from_mapping().
        parse_thresholds(self.thresholds, self.metric_kinds)
        return self

    @property
    def metric_kinds(self) -> Dict[str, MetricKind]:
        """Kinds of every metric a threshold may reference."""
        kinds = dict(BUILTIN_METRICS)
        kinds.update(self.metrics)
        return kinds

    def graceful_ramp_down_for(self, profile: Any) -> int:
        """Grace window for a profile, falling back to the run-level value."""
        if profile.graceful_ramp_down_ms is not None:
            return int(profile.graceful_ramp_down_ms)
        return self.graceful_ramp_down_ms

    @classmethod
    def from_mapping(cls, raw: Any) -> "RunConfig":
        """
        Validate a raw mapping (parsed YAML/JSON) into a RunConfig.

        Raises:
            ConfigurationError: With the path of every invalid field.
        """
        if not isinstance(raw, dict):
            raise ConfigurationError(
                "run configuration must be a mapping at the top level", field="<root>"
            )
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            raise ConfigurationError.from_validation_error(exc) from exc
