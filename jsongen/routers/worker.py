"""Worker trigger: drain one batch of pending jobs."""

from typing import Any

import structlog
from fastapi import APIRouter, Depends

from jsongen.core.lifespan import AppServices, get_services
from jsongen.deps.security import require_worker_secret

router = APIRouter(prefix="/api")
logger = structlog.get_logger(__name__)


@router.get("/worker")
async def run_worker(
    _: bool = Depends(require_worker_secret),
    services: AppServices = Depends(get_services),
) -> dict[str, Any]:
    """
    Claim and process up to one batch of pending jobs.

    Intended for an external scheduler (cron) as a backup to the eager
    drain. Per-job failures are reported in `details`, not raised.
    """
    summary = await services.dispatcher.drain()
    logger.info(
        "worker_triggered",
        processed_jobs=summary.processed_jobs,
        successful=summary.successful,
        failed=summary.failed,
    )
    return summary.to_response()
