"""
GrowthScheduler — delay-staggered, cancellable asyncio tasks.

Every task is owned by a *scope* (the id of the node it grows from) so that
removing a subtree can cancel exactly the continuations that would have grown
into it.  ``cancel_all`` also bumps an epoch: a task that already woke up but
has not started its step yet sees the new epoch and does nothing.
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable

from loguru import logger

StepFactory = Callable[[], Awaitable[None]]


@dataclass
class ScheduledTask:
    id: int
    scope: str
    epoch: int
    delay: float
    task: "asyncio.Task[None]" = field(repr=False)


class GrowthScheduler:
    def __init__(self, time_scale: float = 1.0) -> None:
        self.time_scale = time_scale
        self._tasks: dict[int, ScheduledTask] = {}
        self._ids = itertools.count(1)
        self._epoch = 0

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def pending_scopes(self) -> set[str]:
        return {t.scope for t in self._tasks.values()}

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule(self, delay_ms: float, step: StepFactory, scope: str) -> ScheduledTask:
        """
        Run ``step()`` after ``delay_ms`` (scaled by ``time_scale``).

        ``step`` is a factory so nothing is created for steps cancelled
        before they start.  Must be called from a running event loop.
        """
        task_id = next(self._ids)
        delay = max(0.0, delay_ms) / 1000.0 * self.time_scale
        epoch = self._epoch
        task = asyncio.get_running_loop().create_task(self._run(epoch, delay, step))
        # A task cancelled before its first step never runs its body, so untrack on done.
        task.add_done_callback(lambda _t: self._tasks.pop(task_id, None))
        scheduled = ScheduledTask(id=task_id, scope=scope, epoch=epoch, delay=delay, task=task)
        self._tasks[task_id] = scheduled
        return scheduled

    async def _run(self, epoch: int, delay: float, step: StepFactory) -> None:
        await asyncio.sleep(delay)
        if epoch != self._epoch:
            return
        try:
            await step()
        except Exception as e:
            logger.error(f"Scheduler: step failed: {e}")

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_scope(self, scopes: Iterable[str]) -> int:
        """Cancel every pending task owned by one of ``scopes``."""
        wanted = set(scopes)
        cancelled = 0
        for scheduled in list(self._tasks.values()):
            if scheduled.scope in wanted and not scheduled.task.done():
                scheduled.task.cancel()
                cancelled += 1
        if cancelled:
            logger.debug(f"Scheduler: cancelled {cancelled} tasks for {len(wanted)} scopes")
        return cancelled

    def cancel_all(self) -> int:
        self._epoch += 1
        cancelled = 0
        for scheduled in list(self._tasks.values()):
            if not scheduled.task.done():
                scheduled.task.cancel()
                cancelled += 1
        if cancelled:
            logger.debug(f"Scheduler: cancelled all {cancelled} pending tasks")
        return cancelled

    # ------------------------------------------------------------------
    # Waiting
    # ------------------------------------------------------------------

    async def drain(self) -> None:
        """Wait until no task is pending, including tasks scheduled while waiting."""
        while self._tasks:
            tasks = [t.task for t in self._tasks.values()]
            await asyncio.gather(*tasks, return_exceptions=True)
            for task_id in [i for i, t in self._tasks.items() if t.task.done()]:
                self._tasks.pop(task_id, None)
