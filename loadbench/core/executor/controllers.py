"""
Stage controller for the stage executor.
"""

import asyncio
import logging
from typing import Optional

from loadbench.core.load_patterns import LoadPattern
from loadbench.core.metrics_aggregator import MetricsAggregator
from loadbench.core.worker_pool import VirtualUserPool
from loadbench.models import ExecutorState

logger = logging.getLogger(__name__)


class ControllersMixin:
    """Mixin providing the target-VU control loop for StageExecutor."""

    # These attributes are defined in the main StageExecutor class
    name: str
    aggregator: MetricsAggregator
    state: ExecutorState
    tick_seconds: float
    graceful_ramp_down_ms: int
    pool: Optional[VirtualUserPool]
    _stop_event: asyncio.Event

    def _sync_state(self) -> None:
        if self.pool is not None:
            self.state.active_vus = self.pool.count

    async def _run_stage_controller(self, pattern: LoadPattern, pool: VirtualUserPool) -> None:
        """
        Converge the VU pool to the pattern's target until the pattern ends.

        Each tick computes the target from elapsed time, scales the pool and
        cancels draining VUs that overran the graceful ramp-down. The loop
        never waits on VU completion; it only sleeps until the next tick or
        a stop request.

        Args:
            pattern: Concurrency-over-time curve for this executor
            pool: VU pool owned by this executor
        """
        controller_logger = logging.LoggerAdapter(logger, {"executor": self.name})
        loop = asyncio.get_running_loop()
        grace_seconds = self.graceful_ramp_down_ms / 1000.0
        started = loop.time()

        controller_logger.info(
            "Executor '%s' starting (%s, %.1fs, peak %d VUs)",
            self.name,
            type(pattern).__name__,
            pattern.duration_ms / 1000.0,
            pattern.peak_vus,
        )

        last_target: Optional[int] = None
        while not self._stop_event.is_set():
            elapsed_ms = (loop.time() - started) * 1000.0
            self.state.elapsed_ms = elapsed_ms
            if pattern.is_complete(elapsed_ms):
                break

            target = pattern.target_vus_at(elapsed_ms)
            self.state.target_vus = await pool.scale_to(target)
            forced = pool.retire_overdue(grace_seconds)
            self.state.forced_retirements += forced
            self._sync_state()

            if target != last_target:
                controller_logger.debug(
                    "Executor '%s' t=%.1fs target=%d active=%d",
                    self.name,
                    elapsed_ms / 1000.0,
                    target,
                    pool.active_count,
                )
                last_target = target
            if controller_logger.isEnabledFor(logging.DEBUG):
                controller_logger.debug(
                    "Executor '%s' metrics: %s", self.name, self.aggregator.get_summary()
                )

            remaining = (pattern.duration_ms - elapsed_ms) / 1000.0
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=max(0.0, min(self.tick_seconds, remaining))
                )
            except asyncio.TimeoutError:
                pass

        # Ramp-down: target drops to zero, in-flight iterations get the grace window.
        self.state.target_vus = 0
        self.state.elapsed_ms = (loop.time() - started) * 1000.0
        controller_logger.info(
            "Executor '%s' ramping down %d VU(s) (grace %.1fs)",
            self.name,
            pool.count,
            grace_seconds,
        )
        forced = await pool.drain(grace_seconds)
        self.state.forced_retirements += forced
        self.state.active_vus = 0

        controller_logger.info(
            "Executor '%s' finished after %.1fs (forced retirements: %d)",
            self.name,
            (loop.time() - started),
            self.state.forced_retirements,
        )
