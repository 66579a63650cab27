"""Application lifespan management - startup and shutdown logic."""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator, Optional

import asyncpg
import structlog
from fastapi import FastAPI

from jsongen import __version__
from jsongen.config import Settings, get_settings
from jsongen.errors import ServerError
from jsongen.jobs.dispatcher import WorkerDispatcher
from jsongen.jobs.queue import GenerationQueue
from jsongen.jobs.scheduler import run_periodic_drain
from jsongen.repositories.jobs import InMemoryJobRepository, JobRepository, JobStore
from jsongen.services.generation.engine import GenerationEngine
from jsongen.services.llm_base import BaseLLMClient
from jsongen.services.llm_factory import get_llm, get_llm_status
from jsongen.services.model_registry import ModelRegistry
from jsongen.services.rate_limit import RateLimiter, build_rate_limiter

logger = structlog.get_logger(__name__)


@dataclass
class AppServices:
    """Everything the routers need, built once per process."""

    settings: Settings
    store: JobStore
    limiter: RateLimiter
    registry: ModelRegistry
    engine: GenerationEngine
    dispatcher: WorkerDispatcher
    queue: GenerationQueue
    llm_enabled: bool = False


# Global state - accessed by routers through get_services
_db_pool: Optional[asyncpg.Pool] = None
_services: Optional[AppServices] = None
_drain_task: Optional[asyncio.Task] = None


def get_db_pool() -> Optional[asyncpg.Pool]:
    """Get the database connection pool."""
    return _db_pool


def set_services(services: Optional[AppServices]) -> None:
    global _services
    _services = services


def get_services() -> AppServices:
    """FastAPI dependency: the wired service graph."""
    if _services is None:
        raise ServerError("Service not initialized")
    return _services


def build_services(
    settings: Settings,
    store: JobStore,
    llm: Optional[BaseLLMClient] = None,
    limiter: Optional[RateLimiter] = None,
) -> AppServices:
    """Wire store, limiter, engine, dispatcher and queue together."""
    registry = ModelRegistry(settings.model_chain)
    engine = GenerationEngine(
        llm,
        registry,
        chunk_delay_s=settings.chunk_delay_s,
        max_output_tokens=settings.llm_max_output_tokens,
    )
    dispatcher = WorkerDispatcher(
        store,
        engine,
        batch_size=settings.worker_batch_size,
        concurrency=settings.worker_concurrency,
    )
    queue = GenerationQueue(store, dispatcher, eager=settings.eager_drain_enabled)
    return AppServices(
        settings=settings,
        store=store,
        limiter=limiter or build_rate_limiter(settings),
        registry=registry,
        engine=engine,
        dispatcher=dispatcher,
        queue=queue,
        llm_enabled=llm is not None,
    )


async def _init_database(settings: Settings) -> Optional[asyncpg.Pool]:
    """Create the asyncpg pool and make sure the jobs table exists."""
    if not settings.database_url:
        logger.warning(
            "Database not configured, using in-memory job store (single process only)"
        )
        return None

    logger.info("Attempting database connection", url_prefix=settings.database_url[:30] + "...")
    try:
        pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            timeout=10,
            command_timeout=30,
        )
    except (OSError, asyncpg.PostgresError) as e:
        # A configured but unreachable job store is fatal
        logger.error("Failed to initialize database pool", error=str(e))
        raise

    logger.info(
        "Database pool initialized",
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
    )
    return pool


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    global _db_pool, _drain_task

    settings = get_settings()
    logger.info(
        "Starting jsongen service",
        version=__version__,
        environment=settings.environment,
        host=settings.service_host,
        port=settings.service_port,
    )

    _db_pool = await _init_database(settings)
    if _db_pool is not None:
        store: JobStore = JobRepository(_db_pool, settings.max_prompt_length)
        await store.ensure_schema()
    else:
        store = InMemoryJobRepository(settings.max_prompt_length)

    llm_status = get_llm_status()
    logger.info(
        "LLM configuration",
        llm_enabled=llm_status.enabled,
        provider=llm_status.provider,
        model_chain=llm_status.model_chain,
    )

    services = build_services(settings, store, llm=get_llm())
    set_services(services)

    if settings.worker_poll_interval_s > 0:
        _drain_task = asyncio.create_task(
            run_periodic_drain(services.dispatcher, settings.worker_poll_interval_s)
        )
    else:
        logger.info("Periodic drain disabled (WORKER_POLL_INTERVAL_S=0)")

    yield

    logger.info("Shutting down jsongen service")

    if _drain_task:
        _drain_task.cancel()
        try:
            await _drain_task
        except asyncio.CancelledError:
            pass
        _drain_task = None

    await services.queue.close()
    await services.limiter.close()
    set_services(None)

    if _db_pool:
        await _db_pool.close()
        _db_pool = None
        logger.info("Database pool closed")
