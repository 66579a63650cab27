"""Job system package."""

from jsongen.jobs.types import JobStatus
from jsongen.jobs.models import Job, JobView

__all__ = [
    "JobStatus",
    "Job",
    "JobView",
]
