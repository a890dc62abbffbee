"""
Scenario Dispatcher

Selects a scenario per iteration with a cumulative-weight draw and invokes
the caller-supplied scenario callable, absorbing faults and timeouts into
metrics so that one failing scenario never unwinds a virtual user.
"""

import asyncio
import dataclasses
import inspect
import logging
import math
import random
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Union

from loadbench.core.errors import (
    ConfigurationError,
    IterationCancelled,
    ScenarioFault,
    TimeoutFault,
)
from loadbench.core.helpers import classify_fault, truncate_str_for_log
from loadbench.core.metrics_aggregator import MetricsAggregator
from loadbench.models import IterationResult, MetricKind, ScenarioSpec

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    Cooperative cancellation flag handed to each scenario invocation.

    Set by the dispatcher when the iteration's timeout budget expires.
    Safe to poll from worker threads running synchronous scenarios.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise IterationCancelled("iteration cancelled")


@dataclass(frozen=True)
class RunContext:
    """Immutable data shared by every iteration of a run."""

    base_url: Optional[str] = None
    request_timeout_ms: int = 30000
    setup_data: Any = None


@dataclass(frozen=True)
class IterationRequest:
    """Identifies one iteration requested by a virtual user."""

    executor: str
    vu_id: int
    iteration: int


@dataclass
class IterationContext:
    """Argument passed to a scenario callable."""

    run: RunContext
    scenario: str
    executor: str = ""
    vu_id: int = 0
    iteration: int = 0
    token: CancellationToken = field(default_factory=CancellationToken)
    rng: random.Random = field(default_factory=random.Random)

    @property
    def base_url(self) -> Optional[str]:
        return self.run.base_url

    @property
    def setup_data(self) -> Any:
        return self.run.setup_data

    @property
    def timeout_seconds(self) -> float:
        return self.run.request_timeout_ms / 1000.0


ScenarioCallable = Callable[
    [IterationContext], Union[IterationResult, Awaitable[IterationResult]]
]


def _discard_late_result(task: "asyncio.Future[Any]") -> None:
    # Retrieve the outcome of an abandoned invocation so it is never reported
    # as an unhandled task exception.
    if not task.cancelled():
        task.exception()


class ScenarioDispatcher:
    """
    Weighted scenario selection and fault-isolated invocation.

    Stateless apart from selection counts and the injected random source;
    one instance is shared by every executor of a run.
    """

    def __init__(
        self,
        scenarios: Iterable[ScenarioSpec],
        callables: Mapping[str, ScenarioCallable],
        aggregator: MetricsAggregator,
        *,
        context: Optional[RunContext] = None,
        timeout_ms: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Args:
            scenarios: Weighted scenarios in declaration order
            callables: scenario name -> callable
            aggregator: Destination of every emitted sample
            context: Immutable run context forwarded to each invocation
            timeout_ms: Per-invocation timeout budget
            rng: Random source for the weighted draw and each iteration's `ctx.rng`

        Raises:
            ConfigurationError: If a scenario has no callable or no scenario
                is declared
        """
        self.scenarios: List[ScenarioSpec] = list(scenarios)
        if not self.scenarios:
            raise ConfigurationError("at least one scenario is required", field="scenarios")
        missing = [s.name for s in self.scenarios if s.name not in callables]
        if missing:
            raise ConfigurationError(
                f"no callable registered for scenario(s): {', '.join(missing)}",
                field="scenarios",
            )

        self._callables = dict(callables)
        self._aggregator = aggregator
        self.context = context or RunContext()
        self.timeout_ms = timeout_ms if timeout_ms is not None else self.context.request_timeout_ms
        self._rng = rng or random.Random()

        self.selection_counts: Counter[str] = Counter()
        self.fallbacks = 0
        self._logged_faults: set[tuple[str, str]] = set()

    def select(self, scenarios: Optional[Iterable[ScenarioSpec]] = None) -> str:
        """
        Pick a scenario name with probability weight / total weight.

        Walks the scenarios in declaration order accumulating weight and
        returns the first whose cumulative weight reaches a uniform draw in
        [0, total). If rounding leaves no match, falls back to the first
        scenario and counts the event.

        Raises:
            ConfigurationError: If `scenarios` is empty or its weights sum to zero
        """
        specs = self.scenarios if scenarios is None else list(scenarios)
        total = math.fsum(s.weight for s in specs)
        if not specs or total <= 0:
            raise ConfigurationError(
                "no selectable scenario (empty list or zero total weight)", field="scenarios"
            )
        r = self._rng.random() * total

        cumulative = 0.0
        for spec in specs:
            cumulative += spec.weight
            if cumulative >= r:
                return spec.name

        self.fallbacks += 1
        self._aggregator.add("dispatch_fallbacks", MetricKind.COUNTER, 1)
        logger.warning(
            "Weighted draw matched no scenario (r=%r, total=%r); using '%s'",
            r,
            total,
            specs[0].name,
        )
        return specs[0].name

    async def dispatch(self, name: str, context: IterationContext) -> IterationResult:
        """
        Invoke the scenario callable `name` and record its outcome.

        Never raises for scenario faults or timeouts; only cancellation of
        the calling task propagates.
        """
        fn = self._callables[name]
        timeout_s = self.timeout_ms / 1000.0
        started = time.perf_counter()

        task = asyncio.ensure_future(self._invoke(fn, context))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_s)
        except asyncio.CancelledError:
            context.token.cancel()
            task.cancel()
            raise

        if not done:
            # Abandon the in-flight invocation; a late result is discarded.
            context.token.cancel()
            task.cancel()
            task.add_done_callback(_discard_late_result)
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            fault = TimeoutFault(name, self.timeout_ms)
            self._aggregator.add("iteration_timeouts", MetricKind.COUNTER, 1)
            self._log_fault(fault)
            result = IterationResult(
                success=False,
                duration_ms=elapsed_ms,
                scenario=name,
                fault=fault.category,
            )
        else:
            try:
                if task.cancelled():
                    # CancelledError raised by the scenario itself, not by the caller.
                    raise ScenarioFault(name, "cancelled from inside the scenario")
                outcome = task.result()
                if not isinstance(outcome, IterationResult):
                    raise ScenarioFault(
                        name, f"returned {type(outcome).__name__}, expected IterationResult"
                    )
                result = outcome
                if result.scenario is None:
                    result = dataclasses.replace(result, scenario=name)
            except Exception as exc:
                self._aggregator.add("scenario_faults", MetricKind.COUNTER, 1)
                self._log_fault(exc if isinstance(exc, ScenarioFault) else ScenarioFault(name, exc))
                result = IterationResult(
                    success=False,
                    duration_ms=0.0,
                    scenario=name,
                    fault=classify_fault(exc),
                )

        self._emit(result)
        return result

    async def run_iteration(self, request: IterationRequest) -> IterationResult:
        """Select a scenario and dispatch one iteration for a virtual user."""
        name = self.select()
        self.selection_counts[name] += 1
        context = IterationContext(
            run=self.context,
            scenario=name,
            executor=request.executor,
            vu_id=request.vu_id,
            iteration=request.iteration,
            rng=random.Random(self._rng.getrandbits(64)),
        )
        return await self.dispatch(name, context)

    @staticmethod
    async def _invoke(fn: ScenarioCallable, context: IterationContext) -> Any:
        if inspect.iscoroutinefunction(fn):
            return await fn(context)
        outcome = await asyncio.to_thread(fn, context)
        if inspect.isawaitable(outcome):
            return await outcome
        return outcome

    def _emit(self, result: IterationResult) -> None:
        for sample in result.samples:
            self._aggregator.record(sample)
        self._aggregator.add("errors", MetricKind.RATE, not result.success)
        self._aggregator.add("response_time", MetricKind.TREND, result.duration_ms)

    def _log_fault(self, fault: ScenarioFault) -> None:
        cause = fault.cause
        category = classify_fault(cause) if isinstance(cause, BaseException) else fault.category
        key = (fault.scenario, category)
        message = truncate_str_for_log(fault, max_chars=300)
        if key not in self._logged_faults:
            self._logged_faults.add(key)
            logger.warning("Scenario fault [%s]: %s", category, message)
        else:
            logger.debug("Scenario fault [%s]: %s", category, message)

    @property
    def scenario_counts(self) -> Dict[str, int]:
        return {spec.name: self.selection_counts.get(spec.name, 0) for spec in self.scenarios}
