"""
Run Controller

Drives one load-test run through its lifecycle:
idle -> setup -> running -> tearing_down -> done.

Only configuration and setup failures stop a run; everything that happens
once virtual users are running is absorbed into metrics, so a started run
always ends with a report.
"""

import asyncio
import dataclasses
import inspect
import logging
import random
import time
from datetime import UTC, datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from loadbench.config import settings
from loadbench.core.dispatcher import RunContext, ScenarioCallable, ScenarioDispatcher
from loadbench.core.errors import ConfigurationError, SetupError
from loadbench.core.metrics_aggregator import MetricsAggregator
from loadbench.core.report import ReportSink, format_summary
from loadbench.core.stage_executor import StageExecutor
from loadbench.core.thresholds import evaluate, parse_thresholds
from loadbench.models import (
    EvaluationResult,
    ExecutorState,
    RunConfig,
    RunPhase,
    RunReport,
    RunState,
)

logger = logging.getLogger(__name__)


SetupHook = Callable[[], Any]
TeardownHook = Callable[[Any, Dict[str, Any]], Any]


async def _call_hook(hook: Callable[..., Any], *args: Any) -> Any:
    result = hook(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class RunController:
    """
    Orchestrates a load-test run.

    Manages:
    - Configuration validation (before any VU starts)
    - Setup/teardown hooks
    - One StageExecutor per named executor profile, run concurrently
    - Threshold evaluation and report emission
    """

    def __init__(
        self,
        config: Union[RunConfig, Mapping[str, Any]],
        scenarios: Mapping[str, ScenarioCallable],
        *,
        setup: Optional[SetupHook] = None,
        teardown: Optional[TeardownHook] = None,
        report_sink: Optional[ReportSink] = None,
        aggregator: Optional[MetricsAggregator] = None,
        rng: Optional[random.Random] = None,
        control_tick_seconds: Optional[float] = None,
    ):
        """
        Initialize the run controller.

        Args:
            config: Validated RunConfig or a raw mapping to validate
            scenarios: scenario name -> callable, for every declared scenario
            setup: One-time hook run before VUs start; its result is forwarded
            teardown: Hook receiving the setup data and the final snapshot
            report_sink: Destination of the final report
            aggregator: Aggregator to use (a fresh one per run by default)
            rng: Random source (defaults to one seeded from `config.seed`)
            control_tick_seconds: Executor control loop interval
        """
        self._raw_config = config
        self.config: Optional[RunConfig] = config if isinstance(config, RunConfig) else None
        self._scenarios = dict(scenarios)
        self._setup = setup
        self._teardown = teardown
        self._report_sink = report_sink
        self._rng = rng
        self._tick_seconds = control_tick_seconds or settings.CONTROL_TICK_SECONDS

        self.aggregator = aggregator
        self.dispatcher: Optional[ScenarioDispatcher] = None
        self.state = RunState()
        self.executors: Dict[str, StageExecutor] = {}
        self.report: Optional[RunReport] = None
        self._aborted = False

    @property
    def phase(self) -> RunPhase:
        return self.state.phase

    def abort(self) -> None:
        """
        Stop the run: no VU starts another iteration, in-flight iterations
        get the graceful ramp-down window. The run still produces a report.
        """
        if self._aborted:
            return
        self._aborted = True
        logger.warning("Run abort requested (phase=%s)", self.state.phase.value)
        for executor in self.executors.values():
            executor.stop()

    def _validate(self) -> RunConfig:
        if self.config is None:
            self.config = RunConfig.from_mapping(self._raw_config)
        config = self.config

        missing = [s.name for s in config.scenarios if s.name not in self._scenarios]
        if missing:
            raise ConfigurationError(
                f"no callable registered for scenario(s): {', '.join(missing)}",
                field="scenarios",
            )
        return config

    async def run(self) -> RunReport:
        """
        Execute the run from setup to report.

        Returns:
            The final RunReport

        Raises:
            ConfigurationError: Invalid configuration; no VU was started
            SetupError: The setup hook failed; no VU was started
        """
        if self.state.phase != RunPhase.IDLE:
            raise RuntimeError("a RunController can only run once")

        started_at = datetime.now(UTC)
        self.state.started_mono = time.monotonic()
        self.state.advance(RunPhase.SETUP)

        try:
            config = self._validate()
            thresholds = parse_thresholds(config.thresholds, config.metric_kinds)
        except ConfigurationError as e:
            logger.error("Invalid run configuration: %s", e)
            raise

        aggregator = self._prepare_aggregator(config)
        rng = self._rng or random.Random(config.seed)

        logger.info(
            "Run setup: %d executor(s), %d scenario(s), %d threshold(s)",
            len(config.executors),
            len(config.scenarios),
            len(thresholds),
        )
        setup_data = await self._run_setup()

        self.dispatcher = ScenarioDispatcher(
            config.scenarios,
            self._scenarios,
            aggregator,
            context=RunContext(
                base_url=config.base_url,
                request_timeout_ms=config.request_timeout_ms,
                setup_data=setup_data,
            ),
            timeout_ms=config.request_timeout_ms,
            rng=random.Random(rng.getrandbits(64)),
        )

        self.state.advance(RunPhase.RUNNING)
        await self._run_executors(config, aggregator, rng, self.dispatcher)

        self.state.advance(RunPhase.TEARING_DOWN)
        snapshot = aggregator.snapshot_all()
        await self._run_teardown(setup_data, snapshot)

        evaluation = evaluate(thresholds, snapshot)
        self.state.finished_mono = time.monotonic()
        self.state.advance(RunPhase.DONE)

        self.report = self._build_report(started_at, snapshot, evaluation, aggregator)
        logger.info("Run finished\n%s", format_summary(self.report))
        self._emit_report(self.report)
        return self.report

    def _prepare_aggregator(self, config: RunConfig) -> MetricsAggregator:
        if self.aggregator is None:
            self.aggregator = MetricsAggregator(kinds=config.metric_kinds)
        else:
            for name, kind in config.metric_kinds.items():
                try:
                    self.aggregator.declare(name, kind)
                except ValueError as e:
                    raise ConfigurationError(str(e), field=f"metrics.{name}") from e
        return self.aggregator

    async def _run_setup(self) -> Any:
        if self._setup is None:
            return None
        try:
            return await _call_hook(self._setup)
        except Exception as e:
            logger.error("Setup hook failed: %s", e)
            raise SetupError(f"setup hook failed: {e}") from e

    async def _run_executors(
        self,
        config: RunConfig,
        aggregator: MetricsAggregator,
        rng: random.Random,
        dispatcher: ScenarioDispatcher,
    ) -> None:
        for name, profile in config.executors.items():
            state = self.state.executors.setdefault(name, ExecutorState())
            self.executors[name] = StageExecutor(
                name,
                aggregator,
                state=state,
                think_time=config.think_time,
                graceful_ramp_down_ms=config.graceful_ramp_down_for(profile),
                tick_seconds=self._tick_seconds,
                rng=random.Random(rng.getrandbits(64)),
            )
            if self._aborted:
                self.executors[name].stop()

        results = await asyncio.gather(
            *(
                self.executors[name].start(profile, dispatcher.run_iteration)
                for name, profile in config.executors.items()
            ),
            return_exceptions=True,
        )
        for name, result in zip(config.executors, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.error("Executor '%s' failed: %s", name, result, exc_info=result)

    async def _run_teardown(self, setup_data: Any, snapshot: Dict[str, Any]) -> None:
        if self._teardown is None:
            return
        try:
            await _call_hook(self._teardown, setup_data, snapshot)
        except Exception as e:
            logger.error("Teardown hook failed: %s", e, exc_info=True)

    def _build_report(
        self,
        started_at: datetime,
        snapshot: Dict[str, Any],
        evaluation: EvaluationResult,
        aggregator: MetricsAggregator,
    ) -> RunReport:
        diagnostics: List[str] = [str(overflow) for overflow in aggregator.overflows]
        if aggregator.dropped_samples:
            diagnostics.append(f"{aggregator.dropped_samples} sample(s) dropped")
        if self.dispatcher is not None and self.dispatcher.fallbacks:
            diagnostics.append(
                f"weighted draw fell back to the first scenario {self.dispatcher.fallbacks} time(s)"
            )

        return RunReport(
            started_at=started_at,
            finished_at=datetime.now(UTC),
            duration_seconds=self.state.elapsed_ms / 1000.0,
            phase=self.state.phase,
            aborted=self._aborted,
            executors={
                name: dataclasses.asdict(state) for name, state in self.state.executors.items()
            },
            metrics=snapshot,
            thresholds=evaluation,
            scenario_counts=self.dispatcher.scenario_counts if self.dispatcher else {},
            diagnostics=diagnostics,
        )

    def _emit_report(self, report: RunReport) -> None:
        if self._report_sink is None:
            return
        try:
            self._report_sink.emit(report)
        except Exception as e:
            logger.error("Report emission failed: %s", e, exc_info=True)


async def run_load_test(
    config: Union[RunConfig, Mapping[str, Any]],
    scenarios: Mapping[str, ScenarioCallable],
    **kwargs: Any,
) -> RunReport:
    """Convenience wrapper: build a RunController and run it."""
    return await RunController(config, scenarios, **kwargs).run()

