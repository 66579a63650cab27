"""Security dependencies for FastAPI routes.

Provides:
- Worker secret authentication (constant-time compare, fails closed)
- Load-test bypass detection
- Client identification for rate limiting
- Rate-limit enforcement that raises RateLimited
"""

import hmac
from typing import Optional

import structlog
from fastapi import Depends, Request

from jsongen.config import Settings, get_settings
from jsongen.errors import RateLimited, Unauthorized
from jsongen.services.rate_limit import RateLimitDecision, RateLimiter

logger = structlog.get_logger(__name__)

WORKER_SECRET_HEADER = "X-Worker-Secret"
LOAD_TEST_HEADER = "X-Load-Test-Secret"

# Checked in order; the first usable value identifies the client
CLIENT_IP_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip", "x-client-ip")
DEFAULT_CLIENT_IP = "127.0.0.1"


def _matches(provided: Optional[str], expected: Optional[str]) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def require_worker_secret(
    request: Request, settings: Settings = Depends(get_settings)
) -> bool:
    """
    Require the shared worker secret.

    Accepts the X-Worker-Secret header (preferred) or the `secret` query
    parameter. With no secret configured every request is refused.

    Usage:
        @router.get("/api/worker")
        async def worker(_: bool = Depends(require_worker_secret)):
            ...
    """
    if not settings.worker_secret:
        logger.error("worker_secret_not_configured", path=request.url.path)
        raise Unauthorized()

    provided = request.headers.get(WORKER_SECRET_HEADER) or request.query_params.get("secret")
    if not _matches(provided, settings.worker_secret):
        logger.warning(
            "worker_auth_failed",
            path=request.url.path,
            client=get_client_ip(request),
            secret_provided=bool(provided),
        )
        raise Unauthorized()
    return True


def is_load_test_request(request: Request, settings: Settings) -> bool:
    """True when the request carries the configured load-test secret."""
    return _matches(request.headers.get(LOAD_TEST_HEADER), settings.load_test_secret)


def get_client_ip(request: Request) -> str:
    """Best-effort client address for rate-limit keys."""
    for header in CLIENT_IP_HEADERS:
        value = request.headers.get(header)
        if value:
            # x-forwarded-for may be a chain: client, proxy1, proxy2
            candidate = value.split(",")[0].strip()
            if candidate and candidate.lower() != "unknown":
                return candidate
    if request.client and request.client.host:
        return request.client.host
    return DEFAULT_CLIENT_IP


async def enforce_rate_limit(
    request: Request,
    limiter: RateLimiter,
    settings: Settings,
    tier: str,
    cost: int = 1,
) -> Optional[RateLimitDecision]:
    """Admit the request against `tier` or raise RateLimited.

    Returns None when the load-test bypass applies.
    """
    if is_load_test_request(request, settings):
        logger.info("rate_limit_bypassed", reason="load_test", tier=tier)
        return None

    decision = await limiter.admit(get_client_ip(request), cost=cost, tier=tier)
    if not decision.allowed:
        raise RateLimited(
            "Rate limit exceeded. Please try again later.",
            retry_after=decision.retry_after,
            reset_at=decision.reset_at,
            remaining=decision.remaining,
        )
    return decision
