"""Enqueue-then-notify front door for generation jobs."""

import asyncio
from typing import Optional
from uuid import UUID

import structlog

from jsongen.jobs.dispatcher import WorkerDispatcher
from jsongen.repositories.jobs import JobStore
from jsongen.routers.metrics import record_job_created

logger = structlog.get_logger(__name__)


class GenerationQueue:
    """Persists jobs, then nudges the dispatcher.

    The store write is the commit point. Notification is best effort: if it
    is disabled or the drain fails, the periodic backup drain still picks the
    job up.
    """

    def __init__(
        self,
        store: JobStore,
        dispatcher: WorkerDispatcher,
        eager: bool = True,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.eager = eager
        self._pending_drain: Optional[asyncio.Task] = None
        self._rerun = False
        self._tasks: set[asyncio.Task] = set()

    async def enqueue(self, prompt: str) -> UUID:
        """Validate and persist a job, then schedule a drain.

        Raises:
            ValidationError: bad prompt (nothing persisted)
        """
        job_id = await self.store.create(prompt)
        record_job_created()
        self.notify()
        return job_id

    def notify(self) -> None:
        """Schedule a drain on the running loop.

        A notify that arrives mid-drain makes that drain run once more instead
        of starting a second one.
        """
        if not self.eager:
            return
        if self._pending_drain is not None and not self._pending_drain.done():
            self._rerun = True
            return
        task = asyncio.create_task(self._drain())
        self._pending_drain = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _drain(self) -> None:
        while True:
            self._rerun = False
            try:
                await self.dispatcher.drain()
            except Exception as e:
                logger.error("eager_drain_failed", error=str(e), error_type=type(e).__name__)
            if not self._rerun:
                return

    async def wait_idle(self) -> None:
        """Wait for in-flight eager drains (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.wait_idle()
