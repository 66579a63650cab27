"""Worker dispatcher - claims pending jobs and runs them through the engine."""

import asyncio
import traceback
from dataclasses import dataclass, field
from typing import Any, Literal, Optional
from uuid import UUID

import structlog

from jsongen.jobs.models import Job
from jsongen.repositories.jobs import JobStore
from jsongen.routers.metrics import record_drain
from jsongen.services.generation.engine import GenerationEngine

logger = structlog.get_logger(__name__)


@dataclass
class JobOutcome:
    """What happened to one job during a drain."""

    job_id: UUID
    status: Literal["success", "failed"]
    model_used: Optional[str] = None
    items_generated: Optional[int] = None
    error: Optional[str] = None

    def to_response(self) -> dict[str, Any]:
        payload = {
            "jobId": str(self.job_id),
            "status": self.status,
            "modelUsed": self.model_used,
            "itemsGenerated": self.items_generated,
            "error": self.error,
        }
        return {k: v for k, v in payload.items() if v is not None}


@dataclass
class DrainSummary:
    """Aggregate result of one drain."""

    processed_jobs: int = 0
    successful: int = 0
    failed: int = 0
    details: list[JobOutcome] = field(default_factory=list)

    def add(self, outcome: JobOutcome) -> None:
        self.details.append(outcome)
        if outcome.status == "success":
            self.successful += 1
        else:
            self.failed += 1

    def to_response(self) -> dict[str, Any]:
        if self.processed_jobs == 0:
            return {"message": "No pending jobs"}
        return {
            "processedJobs": self.processed_jobs,
            "successful": self.successful,
            "failed": self.failed,
            "details": [d.to_response() for d in self.details],
        }


class WorkerDispatcher:
    """Drains the job store in bounded, concurrent groups."""

    def __init__(
        self,
        store: JobStore,
        engine: GenerationEngine,
        batch_size: int = 20,
        concurrency: int = 5,
    ):
        self.store = store
        self.engine = engine
        self.batch_size = batch_size
        self.concurrency = concurrency

    async def drain(
        self, batch_size: Optional[int] = None, concurrency: Optional[int] = None
    ) -> DrainSummary:
        """Claim up to batch_size pending jobs and process them.

        Jobs run `concurrency` at a time in claim (FIFO) order; a group fully
        settles before the next one starts.
        """
        batch_size = batch_size or self.batch_size
        concurrency = concurrency or self.concurrency

        jobs = await self.store.claim_pending(batch_size)
        summary = DrainSummary(processed_jobs=len(jobs))
        if not jobs:
            logger.debug("drain_empty")
            return summary

        groups = [jobs[i : i + concurrency] for i in range(0, len(jobs), concurrency)]
        logger.info("drain_started", jobs=len(jobs), groups=len(groups), concurrency=concurrency)

        for number, group in enumerate(groups, 1):
            results = await asyncio.gather(
                *(self.process_job(job) for job in group), return_exceptions=True
            )
            for job, result in zip(group, results):
                if isinstance(result, BaseException):
                    # process_job records its own failures; this is a bug path
                    logger.error(
                        "job_outcome_lost",
                        job_id=str(job.id),
                        error=str(result),
                        error_type=type(result).__name__,
                    )
                    result = JobOutcome(job_id=job.id, status="failed", error=str(result))
                summary.add(result)
            logger.info("drain_group_complete", group=number, groups=len(groups), size=len(group))

        record_drain(summary.processed_jobs, summary.successful, summary.failed)
        logger.info(
            "drain_complete",
            processed_jobs=summary.processed_jobs,
            successful=summary.successful,
            failed=summary.failed,
        )
        return summary

    async def process_job(self, job: Job) -> JobOutcome:
        """Generate one claimed job and record the result."""
        log = logger.bind(job_id=str(job.id))
        log.info("job_executing", prompt_length=len(job.prompt))

        try:
            result = await self.engine.generate(job.prompt)
            await self.store.mark_completed(job.id, result.data, result.model_used)
        except Exception as e:
            error = str(e) or type(e).__name__
            log.error("job_generation_failed", error=error, traceback=traceback.format_exc())
            try:
                await self.store.mark_failed(job.id, error)
            except Exception as record_error:
                log.exception("job_failure_not_recorded", error=str(record_error))
                error = f"{error} (failure not recorded: {record_error})"
            return JobOutcome(job_id=job.id, status="failed", error=error)

        log.info(
            "job_succeeded",
            model_used=result.model_used,
            items_generated=result.items_generated,
        )
        return JobOutcome(
            job_id=job.id,
            status="success",
            model_used=result.model_used,
            items_generated=result.items_generated,
        )
