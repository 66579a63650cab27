"""Prometheus metrics endpoint for the generation service."""

from fastapi import APIRouter, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

router = APIRouter()

# Request metrics
REQUEST_COUNT = Counter(
    "jsongen_requests_total",
    "Total number of requests",
    ["method", "endpoint", "status_code"],
)

REQUEST_LATENCY = Histogram(
    "jsongen_request_latency_seconds",
    "Request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

# Job metrics
JOBS_CREATED = Counter(
    "jsongen_jobs_created_total",
    "Total number of generation jobs created",
)

JOBS_PROCESSED = Counter(
    "jsongen_jobs_processed_total",
    "Total number of jobs processed by the worker",
    ["status"],
)

DRAIN_BATCH_SIZE = Histogram(
    "jsongen_drain_batch_size",
    "Jobs claimed per drain",
    buckets=[0, 1, 2, 5, 10, 20, 50],
)

# Generation metrics
GENERATION_CHUNKS = Counter(
    "jsongen_generation_chunks_total",
    "Chunk outcomes in chunked generation",
    ["outcome"],
)

GENERATION_REQUESTS = Counter(
    "jsongen_generation_requests_total",
    "Generation engine calls",
    ["mode", "status"],
)

MODEL_HEALTHY = Gauge(
    "jsongen_model_healthy",
    "Model health in the fallback chain (1=healthy, 0=deprioritized)",
    ["model"],
)

# Rate limit metrics
RATE_LIMIT_DECISIONS = Counter(
    "jsongen_rate_limit_decisions_total",
    "Rate limiter decisions",
    ["tier", "allowed"],
)

RATE_LIMIT_FALLBACKS = Counter(
    "jsongen_rate_limit_fallbacks_total",
    "Decisions made by the local fixed-window fallback",
    ["tier", "reason"],
)


def record_request(method: str, endpoint: str, status_code: int, duration: float):
    """Record request metrics."""
    REQUEST_COUNT.labels(
        method=method, endpoint=endpoint, status_code=status_code
    ).inc()
    REQUEST_LATENCY.labels(method=method, endpoint=endpoint).observe(duration)


def record_job_created():
    JOBS_CREATED.inc()


def record_drain(claimed: int, successful: int, failed: int):
    """Record one worker drain."""
    DRAIN_BATCH_SIZE.observe(claimed)
    if successful:
        JOBS_PROCESSED.labels(status="completed").inc(successful)
    if failed:
        JOBS_PROCESSED.labels(status="failed").inc(failed)


def record_chunk(outcome: str):
    """outcome: ok, retried or dropped."""
    GENERATION_CHUNKS.labels(outcome=outcome).inc()


def record_generation(mode: str, status: str):
    GENERATION_REQUESTS.labels(mode=mode, status=status).inc()


def set_model_health(model: str, healthy: bool):
    MODEL_HEALTHY.labels(model=model).set(1 if healthy else 0)


def record_rate_limit(tier: str, allowed: bool):
    RATE_LIMIT_DECISIONS.labels(tier=tier, allowed=str(allowed).lower()).inc()


def record_rate_limit_fallback(tier: str, reason: str):
    RATE_LIMIT_FALLBACKS.labels(tier=tier, reason=reason).inc()


@router.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus metrics endpoint.

    Returns metrics in Prometheus text format for scraping.
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
