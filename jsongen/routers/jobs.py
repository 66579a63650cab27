"""Job endpoints: create a generation job and poll its status."""

from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request, Response

from jsongen.config import Settings, get_settings
from jsongen.core.lifespan import AppServices, get_services
from jsongen.deps.security import enforce_rate_limit
from jsongen.schemas import CreateJobResponse, PromptRequest
from jsongen.services.rate_limit import CREATE_JOB, request_cost
from jsongen.utils.validation import validate_prompt

router = APIRouter(prefix="/api")
logger = structlog.get_logger(__name__)


@router.post("/create-job", response_model=CreateJobResponse)
async def create_job(
    body: PromptRequest,
    request: Request,
    response: Response,
    services: AppServices = Depends(get_services),
    settings: Settings = Depends(get_settings),
) -> CreateJobResponse:
    """
    Queue a generation job.

    The prompt is validated before any tokens are spent; bigger requests
    cost more tokens from the create-job bucket.
    """
    prompt = validate_prompt(body.prompt, settings.max_prompt_length)

    decision = await enforce_rate_limit(
        request, services.limiter, settings, CREATE_JOB, cost=request_cost(prompt)
    )
    if decision is not None:
        response.headers.update(decision.headers())

    job_id = await services.queue.enqueue(prompt)
    logger.info("create_job_accepted", job_id=str(job_id), prompt_length=len(prompt))
    return CreateJobResponse(jobId=str(job_id))


@router.get("/job-status")
async def job_status(
    id: Optional[str] = Query(None, description="Job ID returned by create-job"),
    services: AppServices = Depends(get_services),
) -> dict[str, Any]:
    """Current state of a job; result or error once it is terminal."""
    view = await services.store.get_status(id)
    return view.to_response()
