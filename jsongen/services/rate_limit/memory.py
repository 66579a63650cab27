"""Process-local rate-limit store.

Correct only for a single-process deployment; use the Redis store when
several instances share one quota.
"""

import asyncio
from typing import Optional

import structlog

from jsongen.services.rate_limit.store import (
    RateLimiterStore,
    RateLimitDecision,
    RateLimitRecord,
    TierConfig,
    bucket_decision,
    window_decision,
)

logger = structlog.get_logger(__name__)


class InMemoryRateLimiterStore(RateLimiterStore):
    backend = "memory"

    def __init__(self, max_keys: int = 10_000):
        self._buckets: dict[str, RateLimitRecord] = {}
        # key -> (window_s, event timestamps oldest first)
        self._windows: dict[str, tuple[int, list[float]]] = {}
        self._max_keys = max_keys
        self._lock = asyncio.Lock()

    async def consume(
        self, key: str, cost: int, tier: TierConfig, now: float
    ) -> RateLimitDecision:
        async with self._lock:
            record = self._buckets.get(key)
            if record is None:
                self._prune(now)
                record = self._buckets[key] = RateLimitRecord.fresh(tier, now)
            record.refill(now)

            allowed = record.tokens >= cost
            if allowed:
                record.tokens -= cost
            return bucket_decision(allowed, record.tokens, record.last_refill, cost, tier, now)

    async def consume_window(
        self, key: str, limit: int, window_s: int, now: float
    ) -> RateLimitDecision:
        async with self._lock:
            if key not in self._windows:
                self._prune_windows(now)
            _, previous = self._windows.get(key, (window_s, []))
            cutoff = now - window_s
            events = [t for t in previous if t > cutoff]
            allowed = len(events) < limit
            if allowed:
                events.append(now)
            if events:
                self._windows[key] = (window_s, events)
            else:
                self._windows.pop(key, None)
            oldest: Optional[float] = events[0] if events else None
            return window_decision(allowed, len(events), oldest, limit, window_s, now)

    def _prune(self, now: float) -> None:
        """Recycle buckets that have refilled completely."""
        if len(self._buckets) < self._max_keys:
            return
        idle = [k for k, record in self._buckets.items() if record.is_idle(now)]
        for key in idle:
            del self._buckets[key]
        logger.debug("rate_limit_buckets_pruned", removed=len(idle), remaining=len(self._buckets))

    def _prune_windows(self, now: float) -> None:
        """Drop windows whose newest event has aged out."""
        if len(self._windows) < self._max_keys:
            return
        expired = [
            key for key, (window_s, events) in self._windows.items()
            if events[-1] <= now - window_s
        ]
        for key in expired:
            del self._windows[key]
        logger.debug("rate_limit_windows_pruned", removed=len(expired), remaining=len(self._windows))
