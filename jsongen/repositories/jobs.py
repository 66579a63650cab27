"""Repository for the generation job queue.

Two implementations share the JobStore interface:

- JobRepository: PostgreSQL via asyncpg. Durable, safe across processes.
- InMemoryJobRepository: process-local dict, for single-instance deployments
  and tests.

Lifecycle mutations are conditional updates. A job only moves
pending -> processing -> completed|failed; anything else raises
InvalidTransitionError instead of being silently corrected.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

import structlog

from jsongen.errors import InvalidTransitionError, NotFound
from jsongen.jobs.models import Job, JobView
from jsongen.jobs.types import JobStatus
from jsongen.utils.validation import MAX_PROMPT_LENGTH, parse_job_id, validate_prompt

logger = structlog.get_logger(__name__)

SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS generation_jobs (
        id UUID PRIMARY KEY,
        prompt TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
        result JSONB,
        error TEXT,
        model_used TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        started_at TIMESTAMPTZ,
        completed_at TIMESTAMPTZ
    );

    CREATE INDEX IF NOT EXISTS idx_generation_jobs_pending
        ON generation_jobs (created_at) WHERE status = 'pending';
"""


class JobStore(ABC):
    """Interface for the authoritative record of generation jobs."""

    backend: str = "base"

    def __init__(self, max_prompt_length: int = MAX_PROMPT_LENGTH):
        self._max_prompt_length = max_prompt_length

    @abstractmethod
    async def create(self, prompt: str) -> UUID:
        """Validate and insert a pending job. Returns its id."""

    @abstractmethod
    async def get(self, job_id: UUID) -> Optional[Job]:
        """Get a job by ID."""

    @abstractmethod
    async def fetch_pending(self, limit: int) -> list[Job]:
        """Read up to `limit` pending jobs, oldest first. Does not claim."""

    @abstractmethod
    async def claim_pending(self, limit: int) -> list[Job]:
        """Atomically move up to `limit` oldest pending jobs to processing."""

    @abstractmethod
    async def mark_processing(self, job_id: UUID) -> Job:
        """pending -> processing."""

    @abstractmethod
    async def mark_completed(self, job_id: UUID, result: Any, model_used: str) -> Job:
        """processing -> completed."""

    @abstractmethod
    async def mark_failed(self, job_id: UUID, error: str) -> Job:
        """processing -> failed."""

    async def get_status(self, job_id: Any) -> JobView:
        """Read-only projection for polling callers.

        Raises:
            ValidationError: malformed id
            NotFound: well-formed id with no job
        """
        parsed = parse_job_id(job_id)
        job = await self.get(parsed)
        if job is None:
            raise NotFound("Job not found")
        return job.view()

    def _validate(self, prompt: str) -> str:
        return validate_prompt(prompt, self._max_prompt_length)


class JobRepository(JobStore):
    """PostgreSQL-backed job store."""

    backend = "postgres"

    def __init__(self, pool, max_prompt_length: int = MAX_PROMPT_LENGTH):
        super().__init__(max_prompt_length)
        self._pool = pool

    async def ensure_schema(self) -> None:
        """Create the jobs table and pending index if missing."""
        async with self._pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("job_schema_ready", table="generation_jobs")

    async def create(self, prompt: str) -> UUID:
        prompt = self._validate(prompt)
        query = """
            INSERT INTO generation_jobs (id, prompt, status)
            VALUES ($1, $2, 'pending')
            RETURNING id
        """
        async with self._pool.acquire() as conn:
            job_id = await conn.fetchval(query, uuid4(), prompt)
        logger.info("job_created", job_id=str(job_id), prompt_length=len(prompt))
        return job_id

    async def get(self, job_id: UUID) -> Optional[Job]:
        query = "SELECT * FROM generation_jobs WHERE id = $1"
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(query, job_id)
        return self._row_to_job(row) if row else None

    async def fetch_pending(self, limit: int) -> list[Job]:
        query = """
            SELECT * FROM generation_jobs
            WHERE status = 'pending'
            ORDER BY created_at
            LIMIT $1
        """
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, limit)
        return [self._row_to_job(row) for row in rows]

    async def claim_pending(self, limit: int) -> list[Job]:
        """Claim pending jobs using FOR UPDATE SKIP LOCKED.

        A concurrent claimer skips rows already locked by this statement, so
        each job is handed to at most one dispatcher.
        """
        query = """
            WITH cte AS (
                SELECT id FROM generation_jobs
                WHERE status = 'pending'
                ORDER BY created_at
                FOR UPDATE SKIP LOCKED
                LIMIT $1
            )
            UPDATE generation_jobs j SET
                status = 'processing',
                started_at = now()
            FROM cte
            WHERE j.id = cte.id
            RETURNING j.*
        """
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, limit)

        # UPDATE ... RETURNING does not preserve the CTE ordering
        jobs = sorted((self._row_to_job(row) for row in rows), key=lambda j: j.created_at)
        if jobs:
            logger.info("jobs_claimed", count=len(jobs), job_ids=[str(j.id) for j in jobs])
        return jobs

    async def mark_processing(self, job_id: UUID) -> Job:
        query = """
            UPDATE generation_jobs SET
                status = 'processing',
                started_at = now()
            WHERE id = $1 AND status = 'pending'
            RETURNING *
        """
        return await self._transition(query, job_id, JobStatus.PROCESSING)

    async def mark_completed(self, job_id: UUID, result: Any, model_used: str) -> Job:
        query = """
            UPDATE generation_jobs SET
                status = 'completed',
                result = $2::jsonb,
                model_used = $3,
                completed_at = now()
            WHERE id = $1 AND status = 'processing'
            RETURNING *
        """
        job = await self._transition(
            query, job_id, JobStatus.COMPLETED, json.dumps(result), model_used
        )
        logger.info("job_completed", job_id=str(job_id), model_used=model_used)
        return job

    async def mark_failed(self, job_id: UUID, error: str) -> Job:
        query = """
            UPDATE generation_jobs SET
                status = 'failed',
                error = $2,
                completed_at = now()
            WHERE id = $1 AND status = 'processing'
            RETURNING *
        """
        job = await self._transition(query, job_id, JobStatus.FAILED, error)
        logger.warning("job_failed", job_id=str(job_id), error=error)
        return job

    async def _transition(self, query: str, job_id: UUID, target: JobStatus, *args) -> Job:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(query, job_id, *args)
            if row:
                return self._row_to_job(row)
            current = await conn.fetchval(
                "SELECT status FROM generation_jobs WHERE id = $1", job_id
            )
        if current is None:
            raise NotFound(f"Job {job_id} not found")
        raise InvalidTransitionError(
            f"Job {job_id} cannot move from {current} to {target.value}"
        )

    def _row_to_job(self, row) -> Job:
        """Convert a database row to a Job model."""
        result = row["result"]
        if isinstance(result, str):
            result = json.loads(result)
        return Job(
            id=row["id"],
            prompt=row["prompt"],
            status=JobStatus(row["status"]),
            result=result,
            error=row["error"],
            model_used=row["model_used"],
            created_at=row["created_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
        )


class InMemoryJobRepository(JobStore):
    """Process-local job store.

    One lock serializes mutations, which makes claim_pending atomic within
    the process. Jobs do not survive a restart.
    """

    backend = "memory"

    def __init__(self, max_prompt_length: int = MAX_PROMPT_LENGTH):
        super().__init__(max_prompt_length)
        self._jobs: dict[UUID, Job] = {}
        self._lock = asyncio.Lock()

    async def create(self, prompt: str) -> UUID:
        prompt = self._validate(prompt)
        job = Job(id=uuid4(), prompt=prompt)
        async with self._lock:
            self._jobs[job.id] = job
        logger.info("job_created", job_id=str(job.id), prompt_length=len(prompt))
        return job.id

    async def get(self, job_id: UUID) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return _copy(job) if job else None

    async def fetch_pending(self, limit: int) -> list[Job]:
        pending = sorted(
            (j for j in self._jobs.values() if j.status == JobStatus.PENDING),
            key=lambda j: j.created_at,
        )
        return [_copy(j) for j in pending[:limit]]

    async def claim_pending(self, limit: int) -> list[Job]:
        async with self._lock:
            pending = sorted(
                (j for j in self._jobs.values() if j.status == JobStatus.PENDING),
                key=lambda j: j.created_at,
            )[:limit]
            for job in pending:
                self._apply(job, JobStatus.PROCESSING)
            claimed = [_copy(j) for j in pending]
        if claimed:
            logger.info(
                "jobs_claimed", count=len(claimed), job_ids=[str(j.id) for j in claimed]
            )
        return claimed

    async def mark_processing(self, job_id: UUID) -> Job:
        async with self._lock:
            job = self._require(job_id)
            self._apply(job, JobStatus.PROCESSING)
            return _copy(job)

    async def mark_completed(self, job_id: UUID, result: Any, model_used: str) -> Job:
        async with self._lock:
            job = self._require(job_id)
            self._apply(job, JobStatus.COMPLETED)
            job.result = result
            job.model_used = model_used
            snapshot = _copy(job)
        logger.info("job_completed", job_id=str(job_id), model_used=model_used)
        return snapshot

    async def mark_failed(self, job_id: UUID, error: str) -> Job:
        async with self._lock:
            job = self._require(job_id)
            self._apply(job, JobStatus.FAILED)
            job.error = error
            snapshot = _copy(job)
        logger.warning("job_failed", job_id=str(job_id), error=error)
        return snapshot

    def _require(self, job_id: UUID) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFound(f"Job {job_id} not found")
        return job

    def _apply(self, job: Job, target: JobStatus) -> None:
        if not job.status.can_transition_to(target):
            raise InvalidTransitionError(
                f"Job {job.id} cannot move from {job.status.value} to {target.value}"
            )
        # Clamp so timestamps never run backwards within a job
        now = max(datetime.now(timezone.utc), job.started_at or job.created_at)
        if target == JobStatus.PROCESSING:
            job.started_at = now
        else:
            job.completed_at = now
        job.status = target


def _copy(job: Job) -> Job:
    return Job(
        id=job.id,
        prompt=job.prompt,
        status=job.status,
        result=job.result,
        error=job.error,
        model_used=job.model_used,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
    )
