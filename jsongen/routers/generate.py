"""Synchronous generation for small requests."""

import time

import structlog
from fastapi import APIRouter, Depends, Request, Response

from jsongen.config import Settings, get_settings
from jsongen.core.lifespan import AppServices, get_services
from jsongen.deps.security import enforce_rate_limit
from jsongen.schemas import GenerateResponse, PromptRequest
from jsongen.services.rate_limit import GENERATE
from jsongen.utils.time import epoch_to_iso
from jsongen.utils.validation import validate_prompt

router = APIRouter(prefix="/api")
logger = structlog.get_logger(__name__)


@router.post("/generate", response_model=GenerateResponse)
async def generate(
    body: PromptRequest,
    request: Request,
    response: Response,
    services: AppServices = Depends(get_services),
    settings: Settings = Depends(get_settings),
) -> GenerateResponse:
    """
    Enhance the prompt and generate the dataset inline.

    Uses the stricter `generate` tier. Large requests should go through
    create-job instead; this path holds the connection for the whole
    generation.
    """
    prompt = validate_prompt(body.prompt, settings.max_prompt_length)

    decision = await enforce_rate_limit(request, services.limiter, settings, GENERATE)
    if decision is not None:
        response.headers.update(decision.headers())
        remaining, reset_at = decision.remaining, decision.reset_at
    else:
        # Load-test bypass: report a full bucket
        tier = services.limiter.tiers[GENERATE]
        remaining, reset_at = tier.capacity, time.time() + tier.interval_s

    result = await services.engine.generate(prompt, enhance=True)
    logger.info(
        "generate_completed",
        model_used=result.model_used,
        items_generated=result.items_generated,
    )

    return GenerateResponse(
        generatedData=result.data,
        modelUsed=result.model_used,
        promptEnhanced=result.metadata.get("prompt_enhanced", False),
        enhancementMethod=result.metadata.get("enhancement_method", "none"),
        metadata=result.metadata,
        remainingTokens=remaining,
        resetTime=epoch_to_iso(reset_at),
    )
