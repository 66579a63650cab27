"""Rate limiting: token buckets, daily caps and their stores."""

from jsongen.services.rate_limit.limiter import (
    CREATE_JOB,
    GENERATE,
    PUBLISH,
    FixedWindowCounter,
    RateLimiter,
    build_rate_limiter,
    request_cost,
    tiers_from_settings,
)
from jsongen.services.rate_limit.memory import InMemoryRateLimiterStore
from jsongen.services.rate_limit.store import (
    RateLimitDecision,
    RateLimiterBackendError,
    RateLimiterStore,
    RateLimitRecord,
    TierConfig,
)

__all__ = [
    "CREATE_JOB",
    "GENERATE",
    "PUBLISH",
    "FixedWindowCounter",
    "RateLimiter",
    "build_rate_limiter",
    "request_cost",
    "tiers_from_settings",
    "InMemoryRateLimiterStore",
    "RateLimitDecision",
    "RateLimiterBackendError",
    "RateLimiterStore",
    "RateLimitRecord",
    "TierConfig",
]
