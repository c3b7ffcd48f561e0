"""Interval timers driving the engine's cooperative loops."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class IntervalTask:
    """Named handler fired every ``interval`` seconds."""

    name: str
    interval: float
    handler: Callable[[], Awaitable[Any]]
    in_progress: bool = False
    runs: int = 0
    failures: int = 0
    skipped_overlaps: int = 0


class IntervalScheduler:
    """Runs each task on its own loop; a task never overlaps with itself.

    ``tick`` executes one invocation directly, which lets tests drive cycles
    without wall-clock timers.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, IntervalTask] = {}
        self._running: list[asyncio.Task] = []
        self._stopping = False

    def add(self, name: str, interval: float, handler: Callable[[], Awaitable[Any]]) -> IntervalTask:
        if name in self._tasks:
            raise ValueError(f"duplicate task name: {name}")
        if interval <= 0:
            raise ValueError("interval must be > 0")
        task = IntervalTask(name=name, interval=interval, handler=handler)
        self._tasks[name] = task
        return task

    def task(self, name: str) -> IntervalTask:
        return self._tasks[name]

    async def tick(self, name: str) -> Optional[Any]:
        """Run ``name`` once; returns ``None`` and logs when the previous run is still active."""
        task = self._tasks[name]
        if task.in_progress:
            task.skipped_overlaps += 1
            logger.debug("tick_skipped task=%s reason=in_progress", name)
            return None
        task.in_progress = True
        try:
            result = await task.handler()
            task.runs += 1
            return result
        except asyncio.CancelledError:
            raise
        except Exception:
            task.failures += 1
            logger.exception("task_failed task=%s", name)
            return None
        finally:
            task.in_progress = False

    async def _loop(self, task: IntervalTask) -> None:
        while True:
            await self.tick(task.name)
            await asyncio.sleep(task.interval)

    async def run(self) -> None:
        """Drive every task until ``stop`` is called or the caller is cancelled."""
        self._stopping = False
        self._running = [asyncio.create_task(self._loop(t), name=t.name) for t in self._tasks.values()]
        try:
            await asyncio.gather(*self._running)
        except asyncio.CancelledError:
            if not self._stopping:
                raise
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Clear pending timers; in-flight handlers finish or are cancelled at their next await."""
        self._stopping = True
        running, self._running = self._running, []
        for t in running:
            t.cancel()
        for t in running:
            try:
                await t
            except asyncio.CancelledError:
                pass

    @property
    def is_running(self) -> bool:
        return any(not t.done() for t in self._running)
