"""Caller-side helper for waiting on a job."""

import asyncio
import time
from typing import Any

from jsongen.jobs.models import JobView
from jsongen.repositories.jobs import JobStore


class JobPollTimeout(TimeoutError):
    """The job was still running when the caller's budget ran out."""

    def __init__(self, job_id: Any, last_view: JobView, timeout_s: float):
        self.job_id = job_id
        self.last_view = last_view
        self.timeout_s = timeout_s
        super().__init__(
            f"Job {job_id} still {last_view.status.value} after {timeout_s}s"
        )


async def wait_for_job(
    store: JobStore,
    job_id: Any,
    timeout_s: float = 120.0,
    interval_s: float = 2.0,
) -> JobView:
    """Poll get_status until the job is terminal.

    Read-only: a timeout leaves the job exactly as it was.

    Raises:
        ValidationError: malformed job id
        NotFound: unknown job id
        JobPollTimeout: job not terminal within timeout_s
    """
    deadline = time.monotonic() + timeout_s
    while True:
        view = await store.get_status(job_id)
        if view.status.is_terminal:
            return view
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise JobPollTimeout(job_id, view, timeout_s)
        await asyncio.sleep(min(interval_s, remaining))
