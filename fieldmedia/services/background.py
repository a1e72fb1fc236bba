"""Best-effort background channel for fire-and-forget side effects.

Work submitted here never blocks the caller and never propagates errors:
failures are logged and counted. Tests can assert that a task was
attempted without waiting on what it does.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[object]]


class BackgroundDispatcher:
    def __init__(self, workers: int = 2):
        self._worker_count = workers
        self._queue: asyncio.Queue[tuple[str, Job]] | None = None
        self._workers: list[asyncio.Task] = []
        self._closed = False
        self.submitted: list[str] = []
        self.attempted = 0
        self.failed = 0

    def _ensure_workers(self):
        if self._queue is None:
            self._queue = asyncio.Queue()
        if not self._workers:
            self._workers = [
                asyncio.create_task(self._worker(), name=f"background-{i}")
                for i in range(self._worker_count)
            ]

    def submit(self, label: str, job: Job) -> bool:
        """Queue a job; returns False if the dispatcher is closed."""
        if self._closed:
            logger.warning("Background dispatcher closed; dropping %s", label)
            return False
        self._ensure_workers()
        self.submitted.append(label)
        self._queue.put_nowait((label, job))
        return True

    async def _worker(self):
        while True:
            label, job = await self._queue.get()
            self.attempted += 1
            try:
                await job()
            except Exception:
                self.failed += 1
                logger.exception("Background task %s failed", label)
            finally:
                self._queue.task_done()

    async def join(self):
        """Wait until every submitted job has run."""
        if self._queue is not None:
            await self._queue.join()

    async def close(self, drain: bool = True):
        self._closed = True
        if drain:
            await self.join()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
