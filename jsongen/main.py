"""jsongen - FastAPI Application."""

import logging

import structlog
from fastapi import FastAPI

from jsongen import __version__
from jsongen.config import get_settings
from jsongen.core.lifespan import lifespan
from jsongen.core.middleware import setup_middleware
from jsongen.routers import generate, health, jobs, metrics, worker

settings = get_settings()

logging.basicConfig(format="%(message)s", level=settings.log_level.upper())

# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

app = FastAPI(
    title="jsongen",
    description="Turns free-text prompts into structured JSON datasets via a durable job queue",
    version=__version__,
    lifespan=lifespan,
)

setup_middleware(app)

app.include_router(health.router, tags=["Health"])
app.include_router(jobs.router, tags=["Jobs"])
app.include_router(worker.router, tags=["Worker"])
app.include_router(generate.router, tags=["Generate"])
app.include_router(metrics.router, tags=["Metrics"])


@app.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": "jsongen",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "jsongen.main:app",
        host=settings.service_host,
        port=settings.service_port,
        reload=not settings.is_production,
    )
