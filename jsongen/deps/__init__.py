"""FastAPI dependencies for auth and rate limiting."""

from jsongen.deps.security import (
    enforce_rate_limit,
    get_client_ip,
    is_load_test_request,
    require_worker_secret,
)

__all__ = [
    "enforce_rate_limit",
    "get_client_ip",
    "is_load_test_request",
    "require_worker_secret",
]
