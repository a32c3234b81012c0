"""
In-process queue for notification jobs.

The reconciler only enqueues; a consumer task sends. A failed job is logged
and kept in `failures`, it never reaches the code that enqueued it.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from appointments.errors import BookingEngineError

logger = logging.getLogger(__name__)


@dataclass
class Job:
    name: str
    run: Callable[[], Awaitable[object]]


@dataclass
class JobFailure:
    name: str
    error: Exception


class NotificationQueue:
    def __init__(self) -> None:
        self._queue: asyncio.Queue[Job] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self.failures: list[JobFailure] = []

    def enqueue(self, name: str, run: Callable[[], Awaitable[object]]) -> None:
        self._queue.put_nowait(Job(name=name, run=run))

    def __len__(self) -> int:
        return self._queue.qsize()

    async def _execute(self, job: Job) -> None:
        try:
            await job.run()
        except BookingEngineError as exc:
            logger.warning("Notification job %s failed: %s", job.name, exc)
            self.failures.append(JobFailure(name=job.name, error=exc))
        except Exception as exc:
            logger.exception("Notification job %s crashed", job.name)
            self.failures.append(JobFailure(name=job.name, error=exc))

    async def _consume(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._execute(job)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._consume())

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None

    async def join(self) -> None:
        """Wait until the consumer task has handled everything enqueued so far."""
        await self._queue.join()

    async def run_pending(self) -> None:
        """Handle queued jobs in the calling task, without a consumer running."""
        while not self._queue.empty():
            job = self._queue.get_nowait()
            try:
                await self._execute(job)
            finally:
                self._queue.task_done()
