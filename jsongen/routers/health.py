"""Health check endpoint."""

import time
from typing import Optional

import asyncpg
import structlog
from fastapi import APIRouter, Depends

from jsongen import __version__
from jsongen.config import Settings, get_settings
from jsongen.core.lifespan import AppServices, get_db_pool, get_services
from jsongen.schemas import DependencyHealth, HealthResponse, ModelHealth

router = APIRouter()
logger = structlog.get_logger(__name__)


async def check_database_health() -> Optional[DependencyHealth]:
    """Round-trip the job store's pool. None when running in-memory."""
    pool = get_db_pool()
    if pool is None:
        return None
    start = time.perf_counter()
    try:
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
        return DependencyHealth(status="ok", latency_ms=(time.perf_counter() - start) * 1000)
    except (OSError, asyncpg.PostgresError) as e:
        latency = (time.perf_counter() - start) * 1000
        logger.warning("health_database_error", error=str(e))
        return DependencyHealth(status="error", latency_ms=latency, error=str(e))


@router.get("/health", response_model=HealthResponse)
async def health_check(
    services: AppServices = Depends(get_services),
    settings: Settings = Depends(get_settings),
) -> HealthResponse:
    """
    Service health: job store, rate limiter and model registry.

    Returns "degraded" when the database is unreachable or no model is
    currently healthy.
    """
    database = await check_database_health()
    models = [ModelHealth(**state) for state in services.registry.snapshot()]

    status = "ok"
    if database is not None and database.status != "ok":
        status = "degraded"
    elif not any(m.healthy for m in models):
        status = "degraded"

    return HealthResponse(
        status=status,
        version=__version__,
        environment=settings.environment,
        job_store=services.store.backend,
        rate_limit_backend=services.limiter.backend,
        llm_enabled=services.llm_enabled,
        database=database,
        models=models,
    )
