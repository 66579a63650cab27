"""Tests for the tiered rate limiter."""

from unittest.mock import AsyncMock

import pytest

from jsongen.config import Settings
from jsongen.services.rate_limit import (
    CREATE_JOB,
    GENERATE,
    PUBLISH,
    FixedWindowCounter,
    InMemoryRateLimiterStore,
    RateLimiter,
    RateLimiterBackendError,
    TierConfig,
    build_rate_limiter,
    request_cost,
    tiers_from_settings,
)


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


TIERS = {
    CREATE_JOB: TierConfig(CREATE_JOB, capacity=15, refill_rate=10, interval_s=60),
    GENERATE: TierConfig(GENERATE, capacity=3, refill_rate=2, interval_s=60),
    PUBLISH: TierConfig(PUBLISH, capacity=3, refill_rate=2, interval_s=60, daily_limit=10),
}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(InMemoryRateLimiterStore(), TIERS, clock=clock)


class TestRequestCost:
    @pytest.mark.parametrize(
        "prompt,cost",
        [
            ("some users", 1),
            ("Generate 10 users", 1),
            ("Generate 11 users", 2),
            ("Generate 25 users", 2),
            ("Generate 50 users", 3),
            ("Generate 51 users", 5),
        ],
    )
    def test_cost_by_item_count(self, prompt, cost):
        assert request_cost(prompt) == cost


class TestTokenBucket:
    @pytest.mark.asyncio
    async def test_capacity_plus_one_is_denied(self, limiter):
        for _ in range(15):
            assert (await limiter.admit("1.2.3.4")).allowed

        denied = await limiter.admit("1.2.3.4")

        assert not denied.allowed
        assert denied.remaining == 0
        assert denied.retry_after >= 1

    @pytest.mark.asyncio
    async def test_refill_after_interval(self, limiter, clock):
        for _ in range(15):
            await limiter.admit("ip")
        assert not (await limiter.admit("ip")).allowed

        clock.advance(60)

        decision = await limiter.admit("ip")
        assert decision.allowed
        assert decision.remaining == 9

    @pytest.mark.asyncio
    async def test_no_partial_refill_before_interval(self, limiter, clock):
        for _ in range(15):
            await limiter.admit("ip")

        clock.advance(59)

        assert not (await limiter.admit("ip")).allowed

    @pytest.mark.asyncio
    async def test_refill_capped_at_capacity(self, limiter, clock):
        await limiter.admit("ip", cost=5)

        clock.advance(600)

        decision = await limiter.admit("ip")
        assert decision.remaining == 14

    @pytest.mark.asyncio
    async def test_cost_spends_multiple_tokens(self, limiter):
        decision = await limiter.admit("ip", cost=5, tier=GENERATE)
        assert not decision.allowed

        decision = await limiter.admit("ip", cost=3, tier=GENERATE)
        assert decision.allowed
        assert decision.remaining == 0

    @pytest.mark.asyncio
    async def test_identifiers_and_tiers_are_independent(self, limiter):
        for _ in range(3):
            await limiter.admit("a", tier=GENERATE)

        assert not (await limiter.admit("a", tier=GENERATE)).allowed
        assert (await limiter.admit("b", tier=GENERATE)).allowed
        assert (await limiter.admit("a", tier=CREATE_JOB)).allowed

    @pytest.mark.asyncio
    async def test_retry_after_points_at_next_refill(self, limiter, clock):
        for _ in range(3):
            await limiter.admit("ip", tier=GENERATE)
        clock.advance(20)

        denied = await limiter.admit("ip", tier=GENERATE)

        assert denied.retry_after == 40
        assert denied.headers()["Retry-After"] == "40"

    @pytest.mark.asyncio
    async def test_unknown_tier(self, limiter):
        with pytest.raises(ValueError):
            await limiter.admit("ip", tier="nope")

    @pytest.mark.asyncio
    async def test_disabled_admits_everything(self, clock):
        limiter = RateLimiter(InMemoryRateLimiterStore(), TIERS, enabled=False, clock=clock)
        for _ in range(50):
            assert (await limiter.admit("ip", tier=GENERATE)).allowed


class TestDailyCap:
    @pytest.mark.asyncio
    async def test_daily_limit(self, limiter, clock):
        for _ in range(10):
            assert (await limiter.admit_daily("ip")).allowed
            clock.advance(60)

        denied = await limiter.admit_daily("ip")

        assert not denied.allowed
        assert denied.remaining == 0

    @pytest.mark.asyncio
    async def test_window_rolls(self, limiter, clock):
        for _ in range(10):
            await limiter.admit_daily("ip")

        clock.advance(24 * 60 * 60 + 1)

        assert (await limiter.admit_daily("ip")).allowed

    @pytest.mark.asyncio
    async def test_tier_without_daily_limit(self, limiter):
        with pytest.raises(ValueError):
            await limiter.admit_daily("ip", tier=GENERATE)


class TestFallback:
    @pytest.mark.asyncio
    async def test_backend_error_uses_local_counter(self, clock):
        store = InMemoryRateLimiterStore()
        store.consume = AsyncMock(side_effect=RateLimiterBackendError("redis down"))
        limiter = RateLimiter(store, TIERS, clock=clock)

        results = [(await limiter.admit("ip", tier=GENERATE)).allowed for _ in range(4)]

        assert results == [True, True, True, False]
        assert store.consume.await_count == 4

    @pytest.mark.asyncio
    async def test_local_only_never_touches_store(self, clock):
        store = InMemoryRateLimiterStore()
        store.consume = AsyncMock()
        limiter = RateLimiter(store, TIERS, local_only=True, clock=clock)

        decision = await limiter.admit("ip")

        assert decision.allowed
        store.consume.assert_not_awaited()
        assert limiter.backend == "local"

    def test_fixed_window_resets(self):
        counter = FixedWindowCounter()
        assert counter.hit("k", 1, 1, 60, now=0).allowed
        assert not counter.hit("k", 1, 1, 60, now=30).allowed
        assert counter.hit("k", 1, 1, 60, now=60).allowed

    def test_fixed_window_prunes_elapsed_windows(self):
        counter = FixedWindowCounter(max_keys=10)
        for i in range(500):
            counter.hit(f"ip-{i}", 1, 5, 60, now=i * 1000)

        assert len(counter._windows) <= 10

    def test_fixed_window_prune_keeps_live_windows(self):
        counter = FixedWindowCounter(max_keys=2)
        counter.hit("a", 1, 1, 60, now=0)
        counter.hit("b", 1, 1, 60, now=10)
        counter.hit("c", 1, 1, 60, now=20)

        assert set(counter._windows) == {"a", "b", "c"}
        assert not counter.hit("a", 1, 1, 60, now=30).allowed


class TestBuildRateLimiter:
    def test_tiers_from_settings(self):
        tiers = tiers_from_settings(Settings(generate_capacity=7, publish_daily_limit=4))

        assert tiers[GENERATE].capacity == 7
        assert tiers[PUBLISH].daily_limit == 4
        assert tiers[CREATE_JOB].capacity == 15

    def test_production_uses_store(self):
        limiter = build_rate_limiter(Settings(environment="production"))
        assert limiter.backend == "memory"

    def test_non_production_is_local(self):
        limiter = build_rate_limiter(Settings(environment="development"))
        assert limiter.backend == "local"

    def test_redis_without_url_falls_back_to_memory(self):
        limiter = build_rate_limiter(
            Settings(environment="production", rate_limit_backend="redis", redis_url=None)
        )
        assert limiter.store.backend == "memory"
