"""Tests for token bucket rate limiting."""

import asyncio
from unittest.mock import patch

import pytest

from relay.core.rate_limit import RateLimitConfig, RateLimiterManager, TokenBucketLimiter
from relay.exceptions import InvalidConfigurationError


class TestRateLimitConfig:
    """Test configuration validation."""

    def test_defaults(self):
        config = RateLimitConfig(max_tokens=5, refill_rate=1)
        assert config.refill_interval_ms == 1000

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_tokens": 0, "refill_rate": 1},
            {"max_tokens": 5, "refill_rate": 0},
            {"max_tokens": 5, "refill_rate": -1},
            {"max_tokens": 5, "refill_rate": 1, "refill_interval_ms": 0},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(InvalidConfigurationError):
            RateLimitConfig(**kwargs)


class TestTokenBucketLimiter:
    """Tests for the single-bucket limiter."""

    @pytest.fixture
    def limiter(self, clock):
        return TokenBucketLimiter(
            RateLimitConfig(max_tokens=10, refill_rate=2, refill_interval_ms=1000),
            clock=clock,
        )

    def test_starts_full(self, limiter):
        assert limiter.get_tokens() == 10
        assert limiter.capacity == 10

    def test_drain_then_refill(self, limiter, clock):
        """10 tokens, 2 per second: drained bucket regains one token in 500ms."""
        assert limiter.try_consume(10) is True
        assert limiter.try_consume(1) is False
        assert limiter.get_wait_time(1) == 1000

        clock.advance_ms(500)
        assert limiter.get_tokens() == pytest.approx(1.0)
        assert limiter.try_consume(1) is True
        assert limiter.try_consume(1) is False

    def test_failed_consume_deducts_nothing(self, limiter):
        assert limiter.try_consume(8) is True
        assert limiter.try_consume(3) is False
        assert limiter.get_tokens() == 2

    def test_wait_time_rounds_up_to_whole_intervals(self, limiter):
        limiter.try_consume(10)
        assert limiter.get_wait_time(3) == 2000
        assert limiter.get_wait_time(4) == 2000
        assert limiter.get_wait_time(5) == 3000

    def test_wait_time_zero_when_available(self, limiter):
        assert limiter.get_wait_time(10) == 0

    def test_refill_capped_at_capacity(self, limiter, clock):
        limiter.try_consume(4)
        clock.advance_ms(60_000)
        assert limiter.get_tokens() == 10

    def test_tokens_never_negative(self, limiter, clock):
        for _ in range(20):
            limiter.try_consume(3)
            clock.advance_ms(100)
            assert 0 <= limiter.get_tokens() <= 10

    def test_negative_consume_rejected(self, limiter):
        """A negative amount must not push the bucket above capacity."""
        with pytest.raises(ValueError):
            limiter.try_consume(-5)
        assert limiter.get_tokens() == 10

    @pytest.mark.asyncio
    async def test_negative_async_consume_rejected(self, limiter):
        with pytest.raises(ValueError):
            await limiter.consume(-1)
        assert limiter.get_tokens() == 10

    def test_reset(self, limiter):
        limiter.try_consume(7)
        limiter.reset()
        assert limiter.get_tokens() == 10

    def test_get_stats(self, limiter):
        limiter.try_consume(4)
        stats = limiter.get_stats()
        assert stats == {
            "capacity": 10,
            "tokens": 6,
            "refill_rate": 2,
            "refill_interval_ms": 1000,
        }

    @pytest.mark.asyncio
    async def test_consume_waits_for_refill(self, limiter, clock):
        """consume() sleeps until tokens accrue instead of failing."""
        limiter.try_consume(10)

        with patch("asyncio.sleep", clock.sleep):
            await limiter.consume(3)

        assert clock.now == pytest.approx(2.0)
        assert limiter.get_tokens() == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_consume_immediate_when_available(self, limiter, clock):
        with patch("asyncio.sleep", clock.sleep):
            await limiter.consume(4)
        assert clock.now == 0
        assert limiter.get_tokens() == 6

    @pytest.mark.asyncio
    async def test_consume_more_than_capacity_rejected(self, limiter):
        with pytest.raises(ValueError):
            await limiter.consume(11)

    @pytest.mark.asyncio
    async def test_consume_with_real_clock(self):
        """Second consume on a one-token bucket waits roughly one interval."""
        limiter = TokenBucketLimiter(
            RateLimitConfig(max_tokens=1, refill_rate=1, refill_interval_ms=20)
        )
        loop = asyncio.get_running_loop()
        await limiter.consume()
        start = loop.time()
        await limiter.consume()
        assert loop.time() - start >= 0.01


class TestRateLimiterManager:
    """Tests for per-resource limiters."""

    @pytest.fixture
    def manager(self, clock):
        manager = RateLimiterManager(clock=clock)
        manager.register("threads", RateLimitConfig(max_tokens=2, refill_rate=1))
        manager.register("insights", RateLimitConfig(max_tokens=5, refill_rate=1))
        return manager

    def test_unregistered_name_is_unlimited(self, manager):
        for _ in range(100):
            assert manager.try_consume("unknown", 5) is True
        assert manager.get_wait_time("unknown", 5) == 0

    def test_buckets_are_independent(self, manager):
        assert manager.try_consume("threads", 2) is True
        assert manager.try_consume("threads") is False
        assert manager.try_consume("insights", 5) is True

    def test_register_returns_limiter(self, manager):
        limiter = manager.get("threads")
        assert isinstance(limiter, TokenBucketLimiter)
        assert sorted(manager.names()) == ["insights", "threads"]

    def test_register_replaces_existing(self, manager):
        manager.try_consume("threads", 2)
        manager.register("threads", RateLimitConfig(max_tokens=3, refill_rate=1))
        assert manager.get("threads").get_tokens() == 3

    def test_wait_time(self, manager):
        manager.try_consume("threads", 2)
        assert manager.get_wait_time("threads") == 1000

    def test_reset_and_reset_all(self, manager):
        manager.try_consume("threads", 2)
        manager.try_consume("insights", 5)
        manager.reset("threads")
        assert manager.get("threads").get_tokens() == 2
        assert manager.get("insights").get_tokens() == 0
        manager.reset_all()
        assert manager.get("insights").get_tokens() == 5

    @pytest.mark.asyncio
    async def test_consume(self, manager, clock):
        manager.try_consume("threads", 2)
        with patch("asyncio.sleep", clock.sleep):
            await manager.consume("threads")
            await manager.consume("unknown", 50)
        assert clock.now == pytest.approx(1.0)
