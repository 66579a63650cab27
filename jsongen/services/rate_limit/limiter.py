"""Tiered rate limiter with a local fallback.

Usage:
    limiter = build_rate_limiter(get_settings())
    decision = await limiter.admit(client_ip, request_cost(prompt), "create_job")
    if not decision.allowed:
        ...

The primary store decides in production. Outside production, or whenever the
primary store raises RateLimiterBackendError, a process-local
FixedWindowCounter decides instead, so a limiter outage never turns into an
open door or a hard failure.
"""

import math
import time
from typing import Callable, Optional

import structlog

from jsongen.config import Settings
from jsongen.routers.metrics import record_rate_limit, record_rate_limit_fallback
from jsongen.services.generation.counting import first_integer
from jsongen.services.rate_limit.memory import InMemoryRateLimiterStore
from jsongen.services.rate_limit.store import (
    RateLimiterBackendError,
    RateLimiterStore,
    RateLimitDecision,
    TierConfig,
)

logger = structlog.get_logger(__name__)

DAILY_WINDOW_S = 24 * 60 * 60

CREATE_JOB = "create_job"
GENERATE = "generate"
PUBLISH = "publish"


def request_cost(prompt: str) -> int:
    """Token cost by requested item count (first standalone integer, default 5)."""
    count = first_integer(prompt)
    if count <= 10:
        return 1
    if count <= 25:
        return 2
    if count <= 50:
        return 3
    return 5


def tiers_from_settings(settings: Settings) -> dict[str, TierConfig]:
    return {
        CREATE_JOB: TierConfig(
            CREATE_JOB,
            settings.create_job_capacity,
            settings.create_job_refill_rate,
            settings.create_job_interval_s,
        ),
        GENERATE: TierConfig(
            GENERATE,
            settings.generate_capacity,
            settings.generate_refill_rate,
            settings.generate_interval_s,
        ),
        PUBLISH: TierConfig(
            PUBLISH,
            settings.publish_capacity,
            settings.publish_refill_rate,
            settings.publish_interval_s,
            daily_limit=settings.publish_daily_limit,
        ),
    }


class FixedWindowCounter:
    """Per-key request counter over fixed windows. Process-local, never fails."""

    def __init__(self, max_keys: int = 10_000):
        # key -> (window_start, window_s, used)
        self._windows: dict[str, tuple[float, int, int]] = {}
        self._max_keys = max_keys

    def hit(self, key: str, cost: int, limit: int, window_s: int, now: float) -> RateLimitDecision:
        if key not in self._windows:
            self._prune(now)
        start, _, used = self._windows.get(key, (now, window_s, 0))
        if now - start >= window_s:
            start, used = now, 0

        reset_at = start + window_s
        allowed = used + cost <= limit
        if allowed:
            used += cost
        self._windows[key] = (start, window_s, used)
        return RateLimitDecision(
            allowed=allowed,
            remaining=max(limit - used, 0),
            reset_at=reset_at,
            retry_after=0 if allowed else max(1, math.ceil(reset_at - now)),
        )

    def _prune(self, now: float) -> None:
        """Drop windows that have already elapsed."""
        if len(self._windows) < self._max_keys:
            return
        expired = [
            key for key, (start, window_s, _) in self._windows.items()
            if now - start >= window_s
        ]
        for key in expired:
            del self._windows[key]
        logger.debug("rate_limit_windows_pruned", removed=len(expired), remaining=len(self._windows))


class RateLimiter:
    """Token-bucket and daily admission across named tiers."""

    def __init__(
        self,
        store: RateLimiterStore,
        tiers: dict[str, TierConfig],
        local_only: bool = False,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            store: Primary bucket/window store
            tiers: Tier name -> quota
            local_only: Skip the primary store and use the fixed-window counter
            enabled: False admits everything (decisions still carry quota info)
            clock: Epoch-seconds source (tests inject a fake)
        """
        self.store = store
        self.tiers = tiers
        self.local_only = local_only
        self.enabled = enabled
        self._clock = clock
        self._fallback = FixedWindowCounter()

    @property
    def backend(self) -> str:
        return "local" if self.local_only else self.store.backend

    def _tier(self, name: str) -> TierConfig:
        try:
            return self.tiers[name]
        except KeyError:
            raise ValueError(f"Unknown rate limit tier: {name}")

    async def admit(self, identifier: str, cost: int = 1, tier: str = CREATE_JOB) -> RateLimitDecision:
        """Spend `cost` tokens from the identifier's bucket for `tier`. Never blocks."""
        config = self._tier(tier)
        now = self._clock()
        if not self.enabled:
            return RateLimitDecision(True, config.capacity, now + config.interval_s)

        key = f"ratelimit:{tier}:{identifier}"
        decision = await self._decide(
            key,
            tier,
            primary=lambda: self.store.consume(key, cost, config, now),
            fallback=lambda: self._fallback.hit(
                key, cost, config.capacity, config.interval_s, now
            ),
        )
        self._log(decision, tier, identifier, cost)
        return decision

    async def admit_daily(self, identifier: str, tier: str = PUBLISH) -> RateLimitDecision:
        """Count one action against the rolling 24h cap for `tier`."""
        config = self._tier(tier)
        if config.daily_limit is None:
            raise ValueError(f"Tier {tier} has no daily limit")
        now = self._clock()
        if not self.enabled:
            return RateLimitDecision(True, config.daily_limit, now + DAILY_WINDOW_S)

        key = f"ratelimit:daily:{tier}:{identifier}"
        decision = await self._decide(
            key,
            f"{tier}_daily",
            primary=lambda: self.store.consume_window(key, config.daily_limit, DAILY_WINDOW_S, now),
            fallback=lambda: self._fallback.hit(key, 1, config.daily_limit, DAILY_WINDOW_S, now),
        )
        self._log(decision, f"{tier}_daily", identifier, 1)
        return decision

    async def _decide(self, key: str, tier: str, primary, fallback) -> RateLimitDecision:
        if self.local_only:
            return fallback()
        try:
            return await primary()
        except RateLimiterBackendError as e:
            logger.warning("rate_limit_backend_unavailable", tier=tier, key=key, error=str(e))
            record_rate_limit_fallback(tier, "backend_error")
            return fallback()

    def _log(self, decision: RateLimitDecision, tier: str, identifier: str, cost: int) -> None:
        record_rate_limit(tier, decision.allowed)
        if not decision.allowed:
            logger.warning(
                "rate_limit_exceeded",
                tier=tier,
                identifier=identifier,
                cost=cost,
                retry_after=decision.retry_after,
                backend=self.backend,
            )

    async def close(self) -> None:
        await self.store.close()


def build_rate_limiter(settings: Settings, store: Optional[RateLimiterStore] = None) -> RateLimiter:
    """Build the limiter the settings describe."""
    if store is None:
        if settings.rate_limit_backend == "redis" and settings.redis_url:
            from jsongen.services.rate_limit.redis_store import RedisRateLimiterStore

            store = RedisRateLimiterStore(redis_url=settings.redis_url)
        else:
            if settings.rate_limit_backend == "redis":
                logger.warning("rate_limit_redis_unconfigured", fallback="memory")
            store = InMemoryRateLimiterStore()

    limiter = RateLimiter(
        store,
        tiers_from_settings(settings),
        local_only=not settings.is_production,
        enabled=settings.rate_limit_enabled,
    )
    logger.info(
        "rate_limiter_initialized",
        backend=limiter.backend,
        store=store.backend,
        enabled=limiter.enabled,
    )
    return limiter
