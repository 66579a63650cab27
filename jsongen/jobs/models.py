"""Job system data models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from jsongen.jobs.types import JobStatus


@dataclass
class Job:
    """A generation request in the queue."""

    id: UUID
    prompt: str
    status: JobStatus = JobStatus.PENDING

    # Outcome (result only when completed, error only when failed)
    result: Optional[Any] = None
    error: Optional[str] = None
    model_used: Optional[str] = None

    # Lifecycle timestamps
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def view(self) -> "JobView":
        return JobView(
            status=self.status,
            result=self.result,
            error=self.error,
            model_used=self.model_used,
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
        )


@dataclass(frozen=True)
class JobView:
    """Read-only projection of a job returned to polling callers."""

    status: JobStatus
    created_at: datetime
    result: Optional[Any] = None
    error: Optional[str] = None
    model_used: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_response(self) -> dict[str, Any]:
        """Camel-cased payload for the job-status endpoint (None fields dropped)."""
        payload: dict[str, Any] = {
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "modelUsed": self.model_used,
            "createdAt": self.created_at.isoformat(),
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }
        return {k: v for k, v in payload.items() if v is not None}
