"""Redis-backed rate-limit store for multi-instance deployments.

Both operations run as Lua scripts so refill-check-spend is atomic on the
server:

    ratelimit:<tier>:<identifier>        HASH  tokens, last_refill
    ratelimit:daily:<tier>:<identifier>  ZSET  member=<ts>:<nonce> score=<ts>
"""

from typing import Optional
from uuid import uuid4

import redis.asyncio as redis_async
import structlog
from redis.exceptions import RedisError

from jsongen.services.rate_limit.store import (
    RateLimiterBackendError,
    RateLimiterStore,
    RateLimitDecision,
    TierConfig,
    bucket_decision,
    window_decision,
)

logger = structlog.get_logger(__name__)

# Numbers come back as strings: Lua integer replies would truncate fractions
BUCKET_LUA = """
local capacity = tonumber(ARGV[1])
local refill = tonumber(ARGV[2])
local interval = tonumber(ARGV[3])
local cost = tonumber(ARGV[4])
local now = tonumber(ARGV[5])

local state = redis.call('HMGET', KEYS[1], 'tokens', 'last_refill')
local tokens = tonumber(state[1])
local last = tonumber(state[2])
if tokens == nil or last == nil then
    tokens = capacity
    last = now
end

local elapsed = now - last
if elapsed >= interval then
    local periods = math.floor(elapsed / interval)
    tokens = math.min(capacity, tokens + periods * refill)
    last = last + periods * interval
end

local allowed = 0
if tokens >= cost then
    tokens = tokens - cost
    allowed = 1
end

redis.call('HSET', KEYS[1], 'tokens', tostring(tokens), 'last_refill', tostring(last))
local ttl = interval * (math.ceil(capacity / math.max(refill, 1)) + 1)
redis.call('EXPIRE', KEYS[1], math.ceil(ttl))
return {allowed, tostring(tokens), tostring(last)}
"""

WINDOW_LUA = """
local limit = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local now = tonumber(ARGV[3])

redis.call('ZREMRANGEBYSCORE', KEYS[1], '-inf', now - window)
local used = redis.call('ZCARD', KEYS[1])
local allowed = 0
if used < limit then
    redis.call('ZADD', KEYS[1], now, ARGV[4])
    used = used + 1
    allowed = 1
end
redis.call('EXPIRE', KEYS[1], math.ceil(window))

local oldest = redis.call('ZRANGE', KEYS[1], 0, 0, 'WITHSCORES')
local oldest_score = ''
if oldest[2] then
    oldest_score = oldest[2]
end
return {allowed, used, oldest_score}
"""


class RedisRateLimiterStore(RateLimiterStore):
    backend = "redis"

    def __init__(
        self,
        redis_url: Optional[str] = None,
        client: Optional[redis_async.Redis] = None,
    ):
        """
        Args:
            redis_url: Redis connection URL (redis://host:port/db or rediss://...)
            client: Pre-built client (tests inject a mock)
        """
        if client is None and not redis_url:
            raise ValueError("RedisRateLimiterStore needs redis_url or client")
        self._redis_url = redis_url
        self._redis = client
        self._bucket_script = None
        self._window_script = None

    def _get_redis(self) -> redis_async.Redis:
        if self._redis is None:
            self._redis = redis_async.from_url(
                self._redis_url,
                decode_responses=True,
                socket_connect_timeout=2.0,
                socket_timeout=2.0,
            )
            logger.info("redis_rate_limiter_connected", url=self._redis_url[:30] + "...")
        if self._bucket_script is None:
            self._bucket_script = self._redis.register_script(BUCKET_LUA)
            self._window_script = self._redis.register_script(WINDOW_LUA)
        return self._redis

    async def consume(
        self, key: str, cost: int, tier: TierConfig, now: float
    ) -> RateLimitDecision:
        self._get_redis()
        try:
            allowed, tokens, last = await self._bucket_script(
                keys=[key],
                args=[tier.capacity, tier.refill_rate, tier.interval_s, cost, now],
            )
            return bucket_decision(
                bool(int(allowed)), float(tokens), float(last), cost, tier, now
            )
        except (RedisError, OSError) as e:
            raise RateLimiterBackendError(f"Redis bucket script failed: {e}") from e
        except (TypeError, ValueError) as e:
            raise RateLimiterBackendError(f"Unexpected bucket script reply: {e}") from e

    async def consume_window(
        self, key: str, limit: int, window_s: int, now: float
    ) -> RateLimitDecision:
        self._get_redis()
        try:
            allowed, used, oldest = await self._window_script(
                keys=[key],
                args=[limit, window_s, now, f"{now}:{uuid4().hex}"],
            )
            return window_decision(
                bool(int(allowed)),
                int(used),
                float(oldest) if oldest not in ("", None) else None,
                limit,
                window_s,
                now,
            )
        except (RedisError, OSError) as e:
            raise RateLimiterBackendError(f"Redis window script failed: {e}") from e
        except (TypeError, ValueError) as e:
            raise RateLimiterBackendError(f"Unexpected window script reply: {e}") from e

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self._bucket_script = None
            self._window_script = None
            logger.info("redis_rate_limiter_closed")
