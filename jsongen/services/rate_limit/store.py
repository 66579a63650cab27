"""Rate-limit state types and the store interface.

Token bucket semantics (shared by every store):
    - a bucket starts full (tokens = capacity)
    - every full `interval_s` elapsed adds `refill_rate` tokens, capped at capacity
    - a request of `cost` is admitted iff tokens >= cost, and then spends them
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


class RateLimiterBackendError(Exception):
    """The store could not be reached or answered garbage."""


@dataclass(frozen=True)
class TierConfig:
    """Quota for one class of entry point."""

    name: str
    capacity: int
    refill_rate: int
    interval_s: int
    daily_limit: Optional[int] = None


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one admission check."""

    allowed: bool
    remaining: int
    reset_at: float  # epoch seconds
    retry_after: int = 0  # whole seconds, >= 1 on denial

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at)),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


@dataclass
class RateLimitRecord:
    """Per-identifier bucket state."""

    tokens: float
    capacity: int
    refill_rate: int
    interval_s: int
    last_refill: float

    @classmethod
    def fresh(cls, tier: TierConfig, now: float) -> "RateLimitRecord":
        return cls(
            tokens=tier.capacity,
            capacity=tier.capacity,
            refill_rate=tier.refill_rate,
            interval_s=tier.interval_s,
            last_refill=now,
        )

    def refill(self, now: float) -> None:
        elapsed = now - self.last_refill
        if elapsed < self.interval_s:
            return
        periods = int(elapsed // self.interval_s)
        self.tokens = min(self.capacity, self.tokens + periods * self.refill_rate)
        self.last_refill += periods * self.interval_s

    def is_idle(self, now: float) -> bool:
        """Full again after refilling; equivalent to a fresh record."""
        self.refill(now)
        return self.tokens >= self.capacity


def bucket_decision(
    allowed: bool, tokens: float, last_refill: float, cost: int, tier: TierConfig, now: float
) -> RateLimitDecision:
    """Build a decision from post-consume bucket state."""
    reset_at = last_refill + tier.interval_s
    retry_after = 0
    if not allowed:
        missing = max(cost - tokens, 0)
        periods = max(1, math.ceil(missing / tier.refill_rate)) if tier.refill_rate else 1
        retry_after = max(1, math.ceil(last_refill + periods * tier.interval_s - now))
    return RateLimitDecision(
        allowed=allowed,
        remaining=max(int(tokens), 0),
        reset_at=reset_at,
        retry_after=retry_after,
    )


def window_decision(
    allowed: bool, used: int, oldest: Optional[float], limit: int, window_s: int, now: float
) -> RateLimitDecision:
    """Build a decision for a rolling window holding `used` entries."""
    reset_at = (oldest if oldest is not None else now) + window_s
    return RateLimitDecision(
        allowed=allowed,
        remaining=max(limit - used, 0),
        reset_at=reset_at,
        retry_after=0 if allowed else max(1, math.ceil(reset_at - now)),
    )


class RateLimiterStore(ABC):
    """Where bucket and window state lives."""

    backend: str = "base"

    @abstractmethod
    async def consume(
        self, key: str, cost: int, tier: TierConfig, now: float
    ) -> RateLimitDecision:
        """Atomically refill and try to spend `cost` tokens from the bucket at `key`.

        Raises:
            RateLimiterBackendError: store unavailable
        """

    @abstractmethod
    async def consume_window(
        self, key: str, limit: int, window_s: int, now: float
    ) -> RateLimitDecision:
        """Count one event in a rolling window of `window_s` seconds, if under `limit`.

        Raises:
            RateLimiterBackendError: store unavailable
        """

    async def close(self) -> None:
        """Release connections, if any."""
