"""Middleware and exception handlers for the FastAPI application."""

import os
import time
import uuid

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from jsongen import __version__
from jsongen.errors import JsonGenError, RateLimited
from jsongen.routers import metrics
from jsongen.utils.time import epoch_to_iso

logger = structlog.get_logger(__name__)


def setup_cors(app: FastAPI) -> None:
    """Configure CORS middleware."""
    cors_origins_str = os.environ.get("CORS_ORIGINS", "*")
    if cors_origins_str == "*":
        cors_origins = ["*"]
        logger.warning(
            "CORS_ORIGINS not set, allowing all origins (not for production)"
        )
    else:
        cors_origins = [origin.strip() for origin in cors_origins_str.split(",")]
        logger.info("CORS origins configured", origins=cors_origins)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )


async def request_middleware(request: Request, call_next):
    """Add request ID, timing and metrics to all requests."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

    # Bind request context to logger
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    start_time = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception as e:
        logger.exception("Request failed", error=str(e))
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error"},
            headers={"X-Request-ID": request_id, "X-API-Version": __version__},
        )

    duration_ms = (time.perf_counter() - start_time) * 1000

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Response-Time-Ms"] = f"{duration_ms:.2f}"
    response.headers["X-API-Version"] = __version__

    # Skip /metrics endpoint to avoid recursion
    if request.url.path != "/metrics":
        metrics.record_request(
            method=request.method,
            endpoint=request.url.path,
            status_code=response.status_code,
            duration=duration_ms / 1000,
        )

    logger.info(
        "Request completed",
        status_code=response.status_code,
        duration_ms=round(duration_ms, 2),
    )
    return response


async def jsongen_error_handler(request: Request, exc: JsonGenError) -> JSONResponse:
    """Render domain errors as {"error": ...} with their status code."""
    content: dict = {"error": exc.message}
    headers: dict[str, str] = {}

    if isinstance(exc, RateLimited):
        reset_at = exc.reset_at if exc.reset_at is not None else time.time() + exc.retry_after
        content.update(
            retryAfter=exc.retry_after,
            resetTime=epoch_to_iso(reset_at),
            remainingTokens=exc.remaining,
        )
        headers = {
            "Retry-After": str(exc.retry_after),
            "X-RateLimit-Remaining": str(exc.remaining),
            "X-RateLimit-Reset": str(int(reset_at)),
        }

    if exc.status_code >= 500:
        logger.error(
            "request_error",
            error=exc.message,
            error_type=type(exc).__name__,
            status_code=exc.status_code,
        )
    else:
        logger.info(
            "request_rejected",
            error=exc.message,
            error_type=type(exc).__name__,
            status_code=exc.status_code,
        )
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies get the same 400 shape as domain validation errors."""
    logger.info("request_body_invalid", errors=exc.errors()[:3])
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


def setup_middleware(app: FastAPI) -> None:
    """Set up all middleware and exception handlers for the application."""
    setup_cors(app)
    app.middleware("http")(request_middleware)
    app.add_exception_handler(JsonGenError, jsongen_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]
