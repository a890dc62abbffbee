"""
Tests for the Pydantic run-configuration and result models.

Validates model creation, validation failures surfaced as ConfigurationError,
and serialization of the report.
"""

import pytest

from loadbench.core.errors import ConfigurationError
from loadbench.models import (
    ConstantVUsProfile,
    CounterSummary,
    EvaluationResult,
    ExecutorState,
    MetricKind,
    RampingVUsProfile,
    RateSummary,
    RunConfig,
    RunPhase,
    RunReport,
    RunState,
    Sample,
    ThinkTime,
    TrendSummary,
    Violation,
)


def _raw(**overrides):
    raw = {
        "executors": {"main": {"executor": "constant-vus", "vus": 2, "duration": "10s"}},
        "scenarios": [{"name": "a", "weight": 70}, {"name": "b", "weight": 30}],
    }
    raw.update(overrides)
    return raw


class TestExecutorProfiles:
    """Tests for executor profile models."""

    def test_constant_profile_parses_durations(self) -> None:
        profile = ConstantVUsProfile.model_validate(
            {"vus": 5, "duration": "1m", "graceful_ramp_down": "5s"}
        )
        assert profile.duration_ms == 60_000
        assert profile.graceful_ramp_down_ms == 5000
        assert profile.total_duration_ms == 60_000

    def test_ramping_total_duration(self) -> None:
        profile = RampingVUsProfile.model_validate(
            {
                "start_vus": 0,
                "stages": [
                    {"duration": "30s", "target": 10},
                    {"duration": 0, "target": 50},
                    {"duration": "1m", "target": 0},
                ],
            }
        )
        assert profile.total_duration_ms == 90_000
        assert profile.graceful_ramp_down_ms is None

    def test_ramping_requires_stages(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            RunConfig.from_mapping(
                _raw(executors={"ramp": {"executor": "ramping-vus", "stages": []}})
            )
        assert exc_info.value.field.startswith("executors.ramp")

    def test_constant_requires_positive_vus_and_duration(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            RunConfig.from_mapping(
                _raw(executors={"main": {"executor": "constant-vus", "vus": 0, "duration": 0}})
            )
        fields = [loc for loc, _ in exc_info.value.errors]
        assert any(f.endswith("vus") for f in fields)
        assert any("duration" in f for f in fields)

    def test_unknown_executor_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            RunConfig.from_mapping(_raw(executors={"x": {"executor": "per-vu-iterations"}}))


class TestRunConfig:
    """Tests for RunConfig validation."""

    def test_valid_config(self) -> None:
        config = RunConfig.from_mapping(
            _raw(
                think_time={"min": "1s", "max": "3s"},
                request_timeout="10s",
                thresholds={"response_time": "p(95)<2000", "errors": ["rate<0.1"]},
            )
        )
        assert config.think_time == ThinkTime(min_ms=1000, max_ms=3000)
        assert config.request_timeout_ms == 10_000
        # A bare string is normalised to a one-element list
        assert config.thresholds["response_time"] == ["p(95)<2000"]

    def test_empty_scenarios_rejected(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            RunConfig.from_mapping(_raw(scenarios=[]))
        assert exc_info.value.field == "scenarios"

    def test_zero_weight_rejected(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            RunConfig.from_mapping(_raw(scenarios=[{"name": "a", "weight": 0}]))
        assert exc_info.value.field == "scenarios.0.weight"

    def test_duplicate_scenario_names_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            RunConfig.from_mapping(
                _raw(scenarios=[{"name": "a", "weight": 1}, {"name": "a", "weight": 2}])
            )

    def test_think_time_max_below_min_rejected(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            RunConfig.from_mapping(_raw(think_time={"min": 3000, "max": 1000}))
        assert exc_info.value.field == "think_time"

    def test_empty_executors_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            RunConfig.from_mapping(_raw(executors={}))

    def test_non_mapping_rejected(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            RunConfig.from_mapping(["not", "a", "mapping"])
        assert exc_info.value.field == "<root>"

    def test_threshold_on_undeclared_metric_rejected(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            RunConfig.from_mapping(_raw(thresholds={"http_req_duration": ["p(95)<100"]}))
        assert exc_info.value.field == "thresholds.http_req_duration"

    def test_threshold_on_custom_metric_accepted(self) -> None:
        config = RunConfig.from_mapping(
            _raw(
                metrics={"flight_search_success": "rate"},
                thresholds={"flight_search_success": ["rate>0.8"]},
            )
        )
        assert config.metric_kinds["flight_search_success"] == MetricKind.RATE
        assert config.metric_kinds["errors"] == MetricKind.RATE

    def test_custom_metric_cannot_redefine_builtin(self) -> None:
        with pytest.raises(ConfigurationError):
            RunConfig.from_mapping(_raw(metrics={"errors": "trend"}))

    def test_graceful_ramp_down_falls_back_to_run_level(self) -> None:
        config = RunConfig.from_mapping(
            _raw(
                graceful_ramp_down="20s",
                executors={
                    "a": {"executor": "constant-vus", "vus": 1, "duration": 1000},
                    "b": {
                        "executor": "constant-vus",
                        "vus": 1,
                        "duration": 1000,
                        "graceful_ramp_down": "2s",
                    },
                },
            )
        )
        assert config.graceful_ramp_down_for(config.executors["a"]) == 20_000
        assert config.graceful_ramp_down_for(config.executors["b"]) == 2000


class TestRunState:
    """Tests for the run lifecycle state."""

    def test_phases_advance_linearly(self) -> None:
        state = RunState()
        for phase in (RunPhase.SETUP, RunPhase.RUNNING, RunPhase.TEARING_DOWN, RunPhase.DONE):
            state.advance(phase)
        assert state.phase == RunPhase.DONE

    def test_backward_transition_rejected(self) -> None:
        state = RunState()
        state.advance(RunPhase.SETUP)
        state.advance(RunPhase.RUNNING)
        with pytest.raises(RuntimeError):
            state.advance(RunPhase.SETUP)
        with pytest.raises(RuntimeError):
            state.advance(RunPhase.RUNNING)

    def test_vu_counts_sum_over_executors(self) -> None:
        state = RunState(
            executors={
                "a": ExecutorState(target_vus=3, active_vus=2),
                "b": ExecutorState(target_vus=5, active_vus=5),
            }
        )
        assert state.current_target_vu == 8
        assert state.active_vu_count == 7


class TestSummariesAndReport:
    """Tests for metric summaries and report serialization."""

    def test_sample_builders(self) -> None:
        assert Sample.counter("c").value == 1.0
        assert Sample.rate("r", 1).value is True
        assert Sample.trend("t", 12.5).kind == MetricKind.TREND

    def test_summary_statistics(self) -> None:
        assert CounterSummary(count=3, total=7).statistic("count") == 7
        assert RateSummary(passes=1, fails=3).statistic("rate") == 0.25
        assert RateSummary().rate == 0.0
        assert TrendSummary(count=1, p95=10.0).statistic("p95") == 10.0
        with pytest.raises(KeyError):
            CounterSummary().statistic("rate")

    def test_report_round_trips_through_json(self) -> None:
        report = RunReport(
            metrics={
                "errors": RateSummary(passes=0, fails=10),
                "response_time": TrendSummary(count=1, sum=5, min=5, max=5, mean=5, p50=5),
                "iterations": CounterSummary(count=10, total=10),
            },
            thresholds=EvaluationResult(
                overall_pass=False,
                violations=[
                    Violation(metric_name="errors", expression="rate<0.1", observed_value=0.5)
                ],
            ),
        )
        restored = RunReport.model_validate_json(report.model_dump_json())
        assert isinstance(restored.metrics["errors"], RateSummary)
        assert isinstance(restored.metrics["response_time"], TrendSummary)
        assert restored.overall_pass is False
        assert restored.exit_code == 1
        assert report.model_dump()["overall_pass"] is False
