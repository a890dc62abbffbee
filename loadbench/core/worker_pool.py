"""
Virtual-user pool with dynamic scaling.

Each virtual user is an asyncio task paired with its own stop signal.
Scaling down never interrupts an in-flight iteration: excess VUs are only
signalled ("draining") and exit after their current iteration, unless they
overrun the graceful ramp-down window and are cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

WorkerFactory = Callable[[int, asyncio.Event], Awaitable[None]]


class VirtualUserPool:
    """
    Owns the tasks of one executor's virtual users.

    Only the owning executor's control loop calls the scaling methods, so no
    locking is needed here.
    """

    def __init__(
        self,
        worker_factory: WorkerFactory,
        *,
        max_workers: Optional[int] = None,
        on_workers_changed: Optional[Callable[[], None]] = None,
    ):
        """
        Args:
            worker_factory: Coroutine function `(vu_id, stop_signal)` running one VU
            max_workers: Optional cap on concurrently running VUs
            on_workers_changed: Called after every spawn, signal or retirement
        """
        self._worker_factory = worker_factory
        self.max_workers = max_workers
        self._on_workers_changed = on_workers_changed

        self._worker_tasks: dict[int, tuple[asyncio.Task, asyncio.Event]] = {}
        self._draining_since: dict[int, float] = {}
        self._next_worker_id = 0

    def _notify(self) -> None:
        if self._on_workers_changed is not None:
            self._on_workers_changed()

    def prune_completed(self) -> None:
        """Forget VUs whose task has finished."""
        for wid, (task, _) in list(self._worker_tasks.items()):
            if task.done():
                self._worker_tasks.pop(wid, None)
                self._draining_since.pop(wid, None)
                if not task.cancelled() and task.exception() is not None:
                    logger.error(
                        "Virtual user %d exited with error: %s", wid, task.exception()
                    )

    def running_worker_ids(self) -> list[int]:
        """IDs of VUs that are alive and not signalled to stop."""
        out: list[int] = []
        for wid, (task, stop_signal) in self._worker_tasks.items():
            if task.done() or stop_signal.is_set():
                continue
            out.append(wid)
        return out

    def draining_worker_ids(self) -> list[int]:
        """IDs of VUs signalled to stop whose current iteration is still running."""
        return [
            wid
            for wid, (task, stop_signal) in self._worker_tasks.items()
            if stop_signal.is_set() and not task.done()
        ]

    @property
    def count(self) -> int:
        """VUs whose task is still alive, draining ones included."""
        return sum(1 for task, _ in self._worker_tasks.values() if not task.done())

    @property
    def active_count(self) -> int:
        return len(self.running_worker_ids())

    async def spawn_one(self) -> int:
        """
        Start one virtual user.

        Returns:
            The new VU's ID (IDs increase monotonically and are never reused)
        """
        wid = self._next_worker_id
        self._next_worker_id += 1
        stop_signal = asyncio.Event()
        task = asyncio.create_task(
            self._worker_factory(wid, stop_signal), name=f"vu-{wid}"
        )
        self._worker_tasks[wid] = (task, stop_signal)
        self._notify()
        return wid

    async def scale_to(self, target: int) -> int:
        """
        Converge the number of running VUs to `target`.

        Scale-up starts new VUs immediately. Scale-down signals the
        highest-numbered running VUs; they finish their current iteration
        before exiting.

        Returns:
            The effective target after applying `max_workers`
        """
        self.prune_completed()
        target = max(0, target)
        if self.max_workers is not None:
            target = min(self.max_workers, target)

        running_ids = sorted(self.running_worker_ids())
        running = len(running_ids)

        if running < target:
            for _ in range(target - running):
                await self.spawn_one()
        elif running > target:
            stop_ids = list(reversed(running_ids))[: running - target]
            self._signal(stop_ids)
            logger.debug("Draining %d virtual user(s): %s", len(stop_ids), stop_ids)

        return target

    def signal_all(self) -> None:
        """Ask every VU to stop after its current iteration."""
        self._signal(list(self._worker_tasks))

    def _signal(self, worker_ids: list[int]) -> None:
        now = asyncio.get_running_loop().time()
        for wid in worker_ids:
            entry = self._worker_tasks.get(wid)
            if entry is None:
                continue
            _, stop_signal = entry
            if not stop_signal.is_set():
                stop_signal.set()
                self._draining_since[wid] = now
        self._notify()

    def retire_overdue(self, grace_seconds: float) -> int:
        """
        Cancel draining VUs whose iteration outlived the grace window.

        Returns:
            Number of VUs forcibly retired
        """
        now = asyncio.get_running_loop().time()
        forced = 0
        for wid in self.draining_worker_ids():
            since = self._draining_since.get(wid, now)
            if now - since >= grace_seconds:
                task, _ = self._worker_tasks[wid]
                task.cancel()
                forced += 1
        if forced:
            logger.warning(
                "Forcibly retired %d virtual user(s) after %.1fs graceful ramp-down",
                forced,
                grace_seconds,
            )
            self._notify()
        return forced

    async def drain(self, grace_seconds: float) -> int:
        """
        Stop every VU: signal all, wait up to `grace_seconds` for in-flight
        iterations, then cancel the rest.

        Returns:
            Number of VUs forcibly retired
        """
        self.prune_completed()
        self.signal_all()
        tasks = [task for task, _ in self._worker_tasks.values() if not task.done()]
        forced = 0

        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=max(0.0, grace_seconds))
            if pending:
                logger.warning(
                    "%d virtual user(s) still busy after %.1fs graceful ramp-down; cancelling",
                    len(pending),
                    grace_seconds,
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                forced = len(pending)

        self.prune_completed()
        self._worker_tasks.clear()
        self._draining_since.clear()
        self._notify()
        return forced

