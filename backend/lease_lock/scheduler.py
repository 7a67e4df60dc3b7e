"""Periodic task scheduling on the running asyncio loop."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[None]]


class PeriodicTask:
    """Handle for a callback that runs every `interval` seconds until cancelled.

    `cancel` is idempotent and may be called from any task, including from
    inside the callback itself.
    """

    def __init__(self, interval: float, callback: TickCallback, name: str | None = None):
        self.interval = interval
        self.name = name or "periodic-task"
        self._callback = callback
        self._cancelled = False
        self._task: asyncio.Task[None] | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        return self._task is None or self._task.done()

    def start(self) -> None:
        if self._task is not None or self._cancelled:
            return
        self._task = asyncio.create_task(self._run_loop(), name=self.name)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        task = self._task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # A tick cancelling itself exits at the next loop check instead.
        if task is not current and not task.get_loop().is_closed():
            task.cancel()

    async def join(self) -> None:
        """Wait until the underlying task has finished, without raising."""
        task = self._task
        if task is None or task is asyncio.current_task():
            return
        await asyncio.wait({task})

    async def _run_loop(self) -> None:
        while not self._cancelled:
            await asyncio.sleep(self.interval)
            if self._cancelled:
                break
            try:
                await self._callback()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("periodic task callback failed name=%s", self.name)


class Scheduler(Protocol):
    def schedule_periodic(
        self, interval: float, callback: TickCallback, *, name: str | None = None
    ) -> PeriodicTask:
        """Run `callback` every `interval` seconds until cancelled."""

    def cancel(self, task: PeriodicTask) -> None:
        """Stop a scheduled task; safe to call repeatedly."""


class AsyncioScheduler:
    """Scheduler running each periodic task as its own asyncio task."""

    def __init__(self) -> None:
        self._tasks: set[PeriodicTask] = set()

    def schedule_periodic(
        self, interval: float, callback: TickCallback, *, name: str | None = None
    ) -> PeriodicTask:
        if interval <= 0:
            msg = f"interval must be positive, got {interval}"
            raise ValueError(msg)
        self._prune()
        task = PeriodicTask(interval, callback, name=name)
        task.start()
        self._tasks.add(task)
        return task

    def cancel(self, task: PeriodicTask) -> None:
        task.cancel()
        self._tasks.discard(task)

    def active(self) -> list[PeriodicTask]:
        self._prune()
        return [task for task in self._tasks if not task.cancelled]

    def _prune(self) -> None:
        self._tasks = {task for task in self._tasks if not (task.cancelled and task.done)}

    async def shutdown(self) -> None:
        """Cancel every task still scheduled and wait for them to exit."""
        tasks = list(self._tasks)
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            await task.join()
