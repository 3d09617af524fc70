"""Fire-and-forget task runner with bounded concurrency and observable failures."""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Coroutine

from pydantic import BaseModel

MAX_RECORDED_FAILURES = 100


class TaskFailure(BaseModel):
    name: str
    error: str
    failed_at: float


class BackgroundTaskRunner:
    """Runs coroutines in the background.

    Failures are logged and kept in `failures` (newest last) instead of
    disappearing with the task.
    """

    def __init__(self, logger: logging.Logger, concurrency: int = 2) -> None:
        self.logging = logger
        self._sem = asyncio.Semaphore(max(1, int(concurrency)))
        self._tasks: set[asyncio.Task] = set()
        self.failures: deque[TaskFailure] = deque(maxlen=MAX_RECORDED_FAILURES)

    def submit(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Schedule a coroutine.

        Args:
            name (str): Label used in logs and in recorded failures.
            coro (Coroutine): The work to run.

        Returns:
            asyncio.Task: The scheduled task.
        """
        task = asyncio.create_task(self._run(coro), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def _run(self, coro: Coroutine[Any, Any, Any]) -> Any:
        async with self._sem:
            return await coro

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logging.error("Background task '%s' failed: %s", task.get_name(), exc)
            self.failures.append(TaskFailure(name=task.get_name(), error=str(exc), failed_at=time.time()))

    def pending_count(self) -> int:
        return len(self._tasks)

    async def do_drain(self) -> None:
        """Wait until every submitted task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel all running tasks and wait for them to stop."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
