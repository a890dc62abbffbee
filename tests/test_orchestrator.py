"""
End-to-end tests for RunController.

These run real (short) load tests against in-process scenario callables.
"""

from __future__ import annotations

import asyncio
import time

import pytest

from loadbench.core.dispatcher import IterationContext
from loadbench.core.errors import ConfigurationError, SetupError
from loadbench.core.orchestrator import RunController, run_load_test
from loadbench.models import IterationResult, RunPhase, RunReport, Sample

TICK = 0.01


async def sleeping_scenario(ctx: IterationContext) -> IterationResult:
    await asyncio.sleep(0.1)
    return IterationResult(success=True, duration_ms=100.0)


async def quick_scenario(ctx: IterationContext) -> IterationResult:
    await asyncio.sleep(0.001)
    return IterationResult(success=True, duration_ms=1.0)


async def faulting_scenario(ctx: IterationContext) -> IterationResult:
    await asyncio.sleep(0.001)
    raise ConnectionError("refused")


class ListSink:
    def __init__(self) -> None:
        self.reports: list[RunReport] = []

    def emit(self, report: RunReport) -> None:
        self.reports.append(report)


@pytest.mark.asyncio
class TestRunLifecycle:
    """Tests for a complete run."""

    async def test_constant_single_vu_end_to_end(self, make_config) -> None:
        config = make_config(
            vus=1,
            duration=5000,
            thresholds={"response_time": ["p(95)<2000"], "errors": ["rate<0.1"]},
        )
        controller = RunController(
            config, {"default": sleeping_scenario}, control_tick_seconds=TICK
        )

        report = await controller.run()

        assert controller.phase == RunPhase.DONE
        assert report.phase == RunPhase.DONE
        iterations = report.metrics["iterations"].total
        assert iterations >= 10
        assert report.metrics["errors"].rate == 0.0
        assert report.metrics["response_time"].mean == pytest.approx(100.0)
        assert report.overall_pass is True
        assert report.exit_code == 0
        assert report.scenario_counts == {"default": iterations}
        assert report.executors["main"]["active_vus"] == 0

    async def test_weighted_mix(self, make_config) -> None:
        config = make_config(
            vus=4,
            duration=500,
            seed=7,
            scenarios=[{"name": "a", "weight": 70}, {"name": "b", "weight": 30}],
        )
        report = await RunController(
            config, {"a": quick_scenario, "b": quick_scenario}, control_tick_seconds=TICK
        ).run()

        counts = report.scenario_counts
        total = counts["a"] + counts["b"]
        assert total == report.metrics["iterations"].total
        assert total > 100
        assert counts["a"] / total == pytest.approx(0.7, abs=0.1)

    async def test_always_faulting_scenario_reaches_done(self, make_config) -> None:
        config = make_config(duration=200, thresholds={"errors": ["rate<0.1"]})
        controller = RunController(
            config, {"default": faulting_scenario}, control_tick_seconds=TICK
        )

        report = await controller.run()

        assert controller.phase == RunPhase.DONE
        assert report.metrics["errors"].rate == 1.0
        assert report.metrics["scenario_faults"].total == report.metrics["response_time"].count
        assert report.overall_pass is False
        assert report.exit_code == 1
        assert [v.expression for v in report.thresholds.violations] == ["rate<0.1"]

    async def test_custom_metric_threshold(self, make_config) -> None:
        async def scenario(ctx: IterationContext) -> IterationResult:
            await asyncio.sleep(0.001)
            return IterationResult(
                success=True,
                duration_ms=1.0,
                samples=(Sample.trend("search_latency", 10.0), Sample.rate("search_ok", True)),
            )

        config = make_config(
            duration=100,
            metrics={"search_latency": "trend", "search_ok": "rate"},
            thresholds={"search_latency": ["p(95)<50"], "search_ok": ["rate>0.9"]},
        )
        report = await RunController(
            config, {"default": scenario}, control_tick_seconds=TICK
        ).run()

        assert report.metrics["search_latency"].p95 == 10.0
        assert report.overall_pass is True

    async def test_multiple_executors_run_concurrently(self, make_config) -> None:
        config = make_config(
            executors={
                "steady": {"executor": "constant-vus", "vus": 1, "duration": 300},
                "ramp": {
                    "executor": "ramping-vus",
                    "stages": [{"duration": 150, "target": 2}, {"duration": 150, "target": 0}],
                },
            }
        )
        started = time.perf_counter()
        report = await RunController(
            config, {"default": quick_scenario}, control_tick_seconds=TICK
        ).run()

        assert time.perf_counter() - started < 2.0
        assert set(report.executors) == {"steady", "ramp"}
        assert report.metrics["iterations"].total > 0

    async def test_run_twice_rejected(self, make_config) -> None:
        controller = RunController(
            make_config(duration=20), {"default": quick_scenario}, control_tick_seconds=TICK
        )
        await controller.run()
        with pytest.raises(RuntimeError):
            await controller.run()

    async def test_run_load_test_wrapper(self, make_config) -> None:
        report = await run_load_test(
            make_config(duration=50), {"default": quick_scenario}, control_tick_seconds=TICK
        )
        assert report.phase == RunPhase.DONE


@pytest.mark.asyncio
class TestConfigurationErrors:
    """A configuration error stops the run before any VU starts."""

    async def test_invalid_mapping(self, make_config) -> None:
        calls = 0

        async def scenario(ctx: IterationContext) -> IterationResult:
            nonlocal calls
            calls += 1
            return IterationResult(success=True, duration_ms=1)

        controller = RunController(
            make_config(think_time={"min": 3000, "max": 1000}), {"default": scenario}
        )
        with pytest.raises(ConfigurationError):
            await controller.run()
        assert calls == 0
        assert controller.phase == RunPhase.SETUP

    async def test_missing_scenario_callable(self, make_config) -> None:
        config = make_config(scenarios=[{"name": "a", "weight": 1}, {"name": "b", "weight": 1}])
        with pytest.raises(ConfigurationError) as exc_info:
            await RunController(config, {"a": quick_scenario}).run()
        assert exc_info.value.field == "scenarios"

    async def test_invalid_threshold(self, make_config) -> None:
        config = make_config(thresholds={"errors": ["p(95)<2000"]})
        with pytest.raises(ConfigurationError, match="not valid"):
            await RunController(config, {"default": quick_scenario}).run()

    async def test_kind_conflict_with_injected_aggregator(self, make_config) -> None:
        from loadbench.core.metrics_aggregator import MetricsAggregator
        from loadbench.models import MetricKind

        aggregator = MetricsAggregator(strategy="exact")
        aggregator.declare("search_ok", MetricKind.TREND)
        config = make_config(metrics={"search_ok": "rate"})
        with pytest.raises(ConfigurationError) as exc_info:
            await RunController(
                config, {"default": quick_scenario}, aggregator=aggregator
            ).run()
        assert exc_info.value.field == "metrics.search_ok"


@pytest.mark.asyncio
class TestHooks:
    """Tests for setup, teardown and the report sink."""

    async def test_setup_data_reaches_iterations_and_teardown(self, make_config) -> None:
        seen: list[object] = []
        torn_down: list[tuple] = []

        def setup():
            return {"token": "abc"}

        async def scenario(ctx: IterationContext) -> IterationResult:
            seen.append(ctx.setup_data)
            await asyncio.sleep(0.001)
            return IterationResult(success=True, duration_ms=1)

        async def teardown(data, snapshot):
            torn_down.append((data, snapshot))

        await RunController(
            make_config(duration=50),
            {"default": scenario},
            setup=setup,
            teardown=teardown,
            control_tick_seconds=TICK,
        ).run()

        assert seen and all(s == {"token": "abc"} for s in seen)
        assert len(torn_down) == 1
        data, snapshot = torn_down[0]
        assert data == {"token": "abc"}
        assert snapshot["iterations"].total == len(seen)

    async def test_setup_failure_is_fatal(self, make_config) -> None:
        calls = 0
        teardown_calls = 0

        async def setup():
            raise RuntimeError("target down")

        async def scenario(ctx: IterationContext) -> IterationResult:
            nonlocal calls
            calls += 1
            return IterationResult(success=True, duration_ms=1)

        def teardown(data, snapshot):
            nonlocal teardown_calls
            teardown_calls += 1

        with pytest.raises(SetupError, match="target down"):
            await RunController(
                make_config(), {"default": scenario}, setup=setup, teardown=teardown
            ).run()
        assert calls == 0
        assert teardown_calls == 0

    async def test_teardown_failure_still_reports(self, make_config, caplog) -> None:
        sink = ListSink()

        def teardown(data, snapshot):
            raise ValueError("cleanup failed")

        with caplog.at_level("ERROR"):
            report = await RunController(
                make_config(duration=20),
                {"default": quick_scenario},
                teardown=teardown,
                report_sink=sink,
                control_tick_seconds=TICK,
            ).run()

        assert report.phase == RunPhase.DONE
        assert sink.reports == [report]
        assert "Teardown hook failed" in caplog.text

    async def test_sink_failure_is_logged(self, make_config, caplog) -> None:
        class BrokenSink:
            def emit(self, report):
                raise OSError("disk full")

        with caplog.at_level("ERROR"):
            report = await RunController(
                make_config(duration=20),
                {"default": quick_scenario},
                report_sink=BrokenSink(),
                control_tick_seconds=TICK,
            ).run()

        assert report.phase == RunPhase.DONE
        assert "Report emission failed" in caplog.text


@pytest.mark.asyncio
async def test_abort_ends_run_with_report(make_config) -> None:
    controller = RunController(
        make_config(vus=2, duration=60_000),
        {"default": quick_scenario},
        control_tick_seconds=TICK,
    )
    task = asyncio.create_task(controller.run())
    await asyncio.sleep(0.2)
    assert controller.phase == RunPhase.RUNNING
    controller.abort()

    report = await asyncio.wait_for(task, timeout=3.0)

    assert report.aborted is True
    assert report.phase == RunPhase.DONE
    assert report.duration_seconds < 5
    assert report.metrics["iterations"].total > 0
