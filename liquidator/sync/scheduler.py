"""Rate-limited FIFO task scheduler for initial account fetches."""
from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from typing import Any, Callable

logger = logging.getLogger(__name__)

Task = Callable[[], Any]


class RateLimitedScheduler:
    """Run at most one queued task per interval, in submission order.

    The ledger endpoint refuses clients that burst too many requests, so every
    initial fetch goes through this queue. A task returning a coroutine has it
    spawned as a background task; the loop never awaits it.
    """

    def __init__(self, interval: float) -> None:
        if interval <= 0:
            raise ValueError("Scheduler interval must be positive")
        self.interval = interval
        self._tasks: deque[Task] = deque()
        self._spawned: set[asyncio.Task[Any]] = set()
        self._running = False

    def __len__(self) -> int:
        return len(self._tasks)

    def submit(self, task: Task) -> None:
        self._tasks.append(task)

    async def run(self) -> None:
        """Drain the queue until ``stop()`` is called."""
        self._running = True
        logger.info("Scheduler started (interval %.3fs)", self.interval)
        while self._running:
            if self._tasks:
                self._run_one(self._tasks.popleft())
            await asyncio.sleep(self.interval)
        logger.info("Scheduler stopped")

    def stop(self) -> None:
        self._running = False

    def _run_one(self, task: Task) -> None:
        try:
            result = task()
        except Exception:
            logger.exception("Scheduled task failed")
            return
        if inspect.isawaitable(result):
            spawned = asyncio.ensure_future(result)
            self._spawned.add(spawned)
            spawned.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._spawned.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Scheduled task failed: %s", task.exception())
