"""
Virtual-user loop for the stage executor.
"""

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Optional

from loadbench.core.dispatcher import IterationRequest
from loadbench.core.metrics_aggregator import MetricsAggregator
from loadbench.models import MetricKind, ThinkTime

logger = logging.getLogger(__name__)


class WorkersMixin:
    """Mixin providing the virtual-user loop for StageExecutor."""

    # These attributes are defined in the main StageExecutor class
    name: str
    aggregator: MetricsAggregator
    think_time: ThinkTime
    _rng: random.Random
    _stop_event: asyncio.Event
    _on_iteration: Optional[Callable[[IterationRequest], Awaitable[Any]]]

    def _draw_think_time_seconds(self) -> float:
        low, high = self.think_time.min_ms, self.think_time.max_ms
        if high <= low:
            return low / 1000.0
        return self._rng.uniform(low, high) / 1000.0

    async def _vu_loop(self, vu_id: int, stop_signal: asyncio.Event) -> None:
        """
        Run iterations for one virtual user until signalled.

        Iterations of one VU are strictly sequential. The stop signal is only
        checked between iterations, so an in-flight iteration always finishes
        unless the task is cancelled.

        Args:
            vu_id: Unique identifier for this VU within its executor
            stop_signal: Event set when this VU should retire
        """
        logger.debug("VU %s/%d started", self.name, vu_id)
        iteration = 0

        while not stop_signal.is_set() and not self._stop_event.is_set():
            request = IterationRequest(executor=self.name, vu_id=vu_id, iteration=iteration)
            started = time.perf_counter()
            try:
                await self._on_iteration(request)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Scenario faults never reach here; the dispatcher absorbs them.
                logger.exception("VU %s/%d iteration error: %s", self.name, vu_id, e)

            duration_ms = (time.perf_counter() - started) * 1000.0
            self.aggregator.add("iterations", MetricKind.COUNTER, 1)
            self.aggregator.add("iteration_duration", MetricKind.TREND, duration_ms)
            iteration += 1

            # Think time between iterations
            think = self._draw_think_time_seconds()
            if think > 0:
                try:
                    await asyncio.wait_for(stop_signal.wait(), timeout=think)
                except asyncio.TimeoutError:
                    pass
            else:
                await asyncio.sleep(0)

        logger.debug("VU %s/%d stopped after %d iterations", self.name, vu_id, iteration)
