"""
Stage Executor

Owns the virtual users of one executor profile: computes the target
concurrency from the profile's stages on every control tick, spawns and
drains virtual users to match, and runs each VU's iteration loop.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional, Union

from loadbench.config import settings
from loadbench.core.dispatcher import IterationRequest
from loadbench.core.executor.controllers import ControllersMixin
from loadbench.core.executor.workers import WorkersMixin
from loadbench.core.load_patterns import LoadPattern, create_load_pattern
from loadbench.core.metrics_aggregator import MetricsAggregator
from loadbench.core.worker_pool import VirtualUserPool
from loadbench.models import (
    ConstantVUsProfile,
    ExecutorState,
    RampingVUsProfile,
    ThinkTime,
)

logger = logging.getLogger(__name__)

OnIteration = Callable[[IterationRequest], Awaitable[Any]]


class StageExecutor(WorkersMixin, ControllersMixin):
    """
    Schedules the virtual users of one executor profile.

    Manages:
    - The control tick computing target VUs from elapsed time
    - The VU pool (immediate scale-up, draining scale-down)
    - Per-VU iteration loops with think time
    - Graceful ramp-down with forced retirement after the grace window
    """

    def __init__(
        self,
        name: str,
        aggregator: MetricsAggregator,
        *,
        state: Optional[ExecutorState] = None,
        think_time: Optional[ThinkTime] = None,
        graceful_ramp_down_ms: Optional[int] = None,
        tick_seconds: Optional[float] = None,
        max_vus: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize the executor.

        Args:
            name: Executor name, used in logs and iteration requests
            aggregator: Run-scoped metrics aggregator
            state: Live state entry to update (owned by this executor only)
            think_time: Pause between iterations of one VU
            graceful_ramp_down_ms: Grace for in-flight iterations once a VU retires
            tick_seconds: Control loop interval
            max_vus: Optional cap on concurrently running VUs
            rng: Random source for think time
        """
        self.name = name
        self.aggregator = aggregator
        self.state = state if state is not None else ExecutorState()
        self.think_time = think_time or ThinkTime()
        self.graceful_ramp_down_ms = (
            graceful_ramp_down_ms
            if graceful_ramp_down_ms is not None
            else settings.GRACEFUL_RAMP_DOWN_MS
        )
        self.tick_seconds = tick_seconds or settings.CONTROL_TICK_SECONDS
        self.max_vus = max_vus
        self._rng = rng or random.Random()

        self.pool: Optional[VirtualUserPool] = None
        self._stop_event = asyncio.Event()
        self._on_iteration: Optional[OnIteration] = None
        self._started = False

    async def start(
        self,
        profile: Union[ConstantVUsProfile, RampingVUsProfile, LoadPattern],
        on_iteration: OnIteration,
    ) -> ExecutorState:
        """
        Run the profile to completion.

        Returns once the profile's duration has elapsed (or `stop()` was
        called) and every virtual user has retired.

        Args:
            profile: Executor profile (or a prebuilt load pattern)
            on_iteration: Coroutine function performing one iteration

        Returns:
            The executor's final state
        """
        if self._started:
            raise RuntimeError(f"executor '{self.name}' already started")
        self._started = True

        pattern = profile if isinstance(profile, LoadPattern) else create_load_pattern(profile)
        if (
            not isinstance(profile, LoadPattern)
            and profile.graceful_ramp_down_ms is not None
        ):
            self.graceful_ramp_down_ms = profile.graceful_ramp_down_ms

        self._on_iteration = on_iteration
        self.pool = VirtualUserPool(
            self._vu_loop, max_workers=self.max_vus, on_workers_changed=self._sync_state
        )
        try:
            await self._run_stage_controller(pattern, self.pool)
        except asyncio.CancelledError:
            await self.pool.drain(0)
            raise
        return self.state

    def stop(self) -> None:
        """Request graceful shutdown: no new iterations, drain with grace."""
        if self._stop_event.is_set():
            return
        logger.info("Executor '%s' stop requested", self.name)
        self._stop_event.set()
        if self.pool is not None:
            self.pool.signal_all()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()
