"""
Tests for crmflow rate limiting module.
"""

import asyncio

import pytest

from crmflow.keys import ServiceKey
from crmflow.pipeline import (
    DEFAULT_RATE_LIMITS,
    RateLimitConfig,
    RateLimitDecision,
    RateLimiter,
    RateLimitState,
    scoped_key,
)

# =============================================================================
# RateLimitConfig Tests
# =============================================================================


class TestRateLimitConfig:
    """Tests for RateLimitConfig."""

    def test_day_limit_optional(self):
        config = RateLimitConfig(requests_per_minute=10, requests_per_hour=100)
        assert config.requests_per_day is None

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"requests_per_minute": 0, "requests_per_hour": 10},
            {"requests_per_minute": 1, "requests_per_hour": -1},
            {"requests_per_minute": 1, "requests_per_hour": 10, "requests_per_day": 0},
        ],
    )
    def test_rejects_non_positive(self, kwargs):
        with pytest.raises(ValueError):
            RateLimitConfig(**kwargs)

    def test_defaults_cover_every_service(self):
        assert set(DEFAULT_RATE_LIMITS) == set(ServiceKey)
        assert DEFAULT_RATE_LIMITS[ServiceKey.AIRTABLE].requests_per_minute == 5
        assert DEFAULT_RATE_LIMITS[ServiceKey.QUICKBOOKS].requests_per_hour == 500


# =============================================================================
# RateLimitState Tests
# =============================================================================


class TestRateLimitState:
    """Tests for RateLimitState."""

    def test_prune_drops_expired_timestamps(self):
        state = RateLimitState(minute=[0.0, 30.0], hour=[0.0, 30.0], day=[0.0])
        state.prune(60.0)

        assert state.minute == [30.0]
        assert state.hour == [0.0, 30.0]
        assert state.day == [0.0]

    def test_is_empty(self):
        assert RateLimitState().is_empty
        assert not RateLimitState(day=[1.0]).is_empty


# =============================================================================
# RateLimiter Tests
# =============================================================================


class TestRateLimiter:
    """Tests for RateLimiter."""

    @pytest.fixture
    def limiter(self, clock):
        return RateLimiter(
            {"demo": RateLimitConfig(requests_per_minute=2, requests_per_hour=100)},
            clock=clock,
        )

    @pytest.mark.asyncio
    async def test_unconfigured_service_always_allowed(self, limiter):
        for _ in range(50):
            decision = await limiter.check_limit("unknown")
            assert decision == RateLimitDecision(allowed=True)

    @pytest.mark.asyncio
    async def test_minute_limit(self, limiter):
        first = await limiter.check_limit("demo")
        second = await limiter.check_limit("demo")
        third = await limiter.check_limit("demo")

        assert first.allowed and first.remaining == 1
        assert second.allowed and second.remaining == 0
        assert not third.allowed
        assert third.remaining == 0
        assert third.reset_in_seconds == 60

    @pytest.mark.asyncio
    async def test_rejection_is_not_recorded(self, limiter, clock):
        await limiter.check_limit("demo")
        await limiter.check_limit("demo")
        for _ in range(5):
            await limiter.check_limit("demo")

        assert limiter.get_stats("demo")["minute"]["used"] == 2
        assert limiter.get_stats("demo")["hour"]["used"] == 2

    @pytest.mark.asyncio
    async def test_reset_in_counts_down(self, limiter, clock):
        await limiter.check_limit("demo")
        clock.advance(20)
        await limiter.check_limit("demo")
        clock.advance(15.5)

        decision = await limiter.check_limit("demo")

        # Oldest slot frees at t=60, now is t=35.5
        assert decision.reset_in_seconds == 25

    @pytest.mark.asyncio
    async def test_reset_in_is_at_least_one(self, limiter, clock):
        await limiter.check_limit("demo")
        await limiter.check_limit("demo")
        clock.advance(59.99)

        decision = await limiter.check_limit("demo")
        assert not decision.allowed
        assert decision.reset_in_seconds == 1

    @pytest.mark.asyncio
    async def test_window_slides(self, limiter, clock):
        await limiter.check_limit("demo")
        await limiter.check_limit("demo")
        clock.advance(60)

        decision = await limiter.check_limit("demo")
        assert decision.allowed

    @pytest.mark.asyncio
    async def test_hour_limit(self, clock):
        limiter = RateLimiter(
            {"demo": RateLimitConfig(requests_per_minute=10, requests_per_hour=3)},
            clock=clock,
        )
        for _ in range(3):
            assert (await limiter.check_limit("demo")).allowed
            clock.advance(61)

        decision = await limiter.check_limit("demo")
        assert not decision.allowed
        # First request was at t=0, now is t=183
        assert decision.reset_in_seconds == 3600 - 183

    @pytest.mark.asyncio
    async def test_day_limit(self, clock):
        limiter = RateLimiter(
            {"demo": RateLimitConfig(10, 100, requests_per_day=1)},
            clock=clock,
        )
        assert (await limiter.check_limit("demo")).allowed
        clock.advance(3601)

        decision = await limiter.check_limit("demo")
        assert not decision.allowed
        assert decision.reset_in_seconds == 86400 - 3601

    @pytest.mark.asyncio
    async def test_concurrent_checks_never_over_admit(self, clock):
        limiter = RateLimiter({"demo": RateLimitConfig(5, 100)}, clock=clock)

        decisions = await asyncio.gather(*(limiter.check_limit("demo") for _ in range(20)))

        assert sum(d.allowed for d in decisions) == 5

    @pytest.mark.asyncio
    async def test_services_are_independent(self, limiter):
        limiter.set_config("other", RateLimitConfig(1, 10))

        assert (await limiter.check_limit("other")).allowed
        assert (await limiter.check_limit("demo")).allowed
        assert not (await limiter.check_limit("other")).allowed

    def test_set_config_rejects_wrong_type(self, limiter):
        with pytest.raises(TypeError):
            limiter.set_config("demo", {"requests_per_minute": 1})

    def test_accepts_service_key_enum(self, clock):
        limiter = RateLimiter(clock=clock)
        assert limiter.get_config(ServiceKey.STRIPE) == limiter.get_config("stripe")

    @pytest.mark.asyncio
    async def test_reset(self, limiter):
        await limiter.check_limit("demo")
        await limiter.check_limit("demo")

        limiter.reset("demo")

        assert (await limiter.check_limit("demo")).allowed


# =============================================================================
# Scoped Override Tests
# =============================================================================


class TestScopedOverrides:
    """Tests for per-user limits on a shared limiter."""

    @pytest.fixture
    def limiter(self, clock):
        return RateLimiter(
            {"demo": RateLimitConfig(requests_per_minute=2, requests_per_hour=100)},
            clock=clock,
        )

    def test_scoped_key(self):
        assert scoped_key("zapier", "user-1") == "user-1:zapier"
        assert scoped_key(ServiceKey.ZAPIER, None) == "zapier"

    def test_override_visible_only_to_its_scope(self, limiter):
        limiter.set_override("alice", "demo", RateLimitConfig(1, 1))

        assert limiter.get_config("demo", scope="alice") == RateLimitConfig(1, 1)
        assert limiter.get_config("demo", scope="bob") == RateLimitConfig(2, 100)
        assert limiter.get_config("demo") == RateLimitConfig(2, 100)
        assert set(limiter.get_all_stats()) == {"demo"}

    @pytest.mark.asyncio
    async def test_override_has_its_own_window(self, limiter):
        limiter.set_override("alice", "demo", RateLimitConfig(1, 1))

        assert (await limiter.check_limit("demo", scope="alice")).allowed
        assert not (await limiter.check_limit("demo", scope="alice")).allowed
        assert (await limiter.check_limit("demo", scope="bob")).allowed
        assert (await limiter.check_limit("demo", scope="bob")).allowed
        assert not (await limiter.check_limit("demo")).allowed

    @pytest.mark.asyncio
    async def test_clear_override_restores_service_limits(self, limiter):
        limiter.set_override("alice", "demo", RateLimitConfig(1, 1))
        await limiter.check_limit("demo", scope="alice")

        limiter.clear_override("alice", "demo")

        assert limiter.get_config("demo", scope="alice") == RateLimitConfig(2, 100)
        assert limiter.get_stats("alice:demo") is None
        limiter.clear_override("alice", "demo")


# =============================================================================
# Stats and Sweep Tests
# =============================================================================


class TestRateLimiterStats:
    """Tests for stats and background sweep."""

    @pytest.mark.asyncio
    async def test_get_stats(self, clock):
        limiter = RateLimiter({"demo": RateLimitConfig(2, 100, 1000)}, clock=clock)
        await limiter.check_limit("demo")

        stats = limiter.get_stats("demo")

        assert stats == {
            "service": "demo",
            "minute": {"used": 1, "limit": 2, "remaining": 1},
            "hour": {"used": 1, "limit": 100, "remaining": 99},
            "day": {"used": 1, "limit": 1000, "remaining": 999},
        }

    def test_get_stats_unknown_service(self, clock):
        limiter = RateLimiter({}, clock=clock)
        assert limiter.get_stats("nope") is None

    def test_get_stats_omits_day_without_day_limit(self, clock):
        limiter = RateLimiter({"demo": RateLimitConfig(2, 100)}, clock=clock)
        assert "day" not in limiter.get_stats("demo")

    @pytest.mark.asyncio
    async def test_get_stats_does_not_mutate_state(self, clock):
        limiter = RateLimiter({"demo": RateLimitConfig(2, 100)}, clock=clock)
        await limiter.check_limit("demo")
        clock.advance(61)

        assert limiter.get_stats("demo")["minute"]["used"] == 0
        clock.now -= 61
        assert limiter.get_stats("demo")["minute"]["used"] == 1

    @pytest.mark.asyncio
    async def test_sweep_forgets_idle_services(self, clock):
        limiter = RateLimiter({"demo": RateLimitConfig(2, 100)}, clock=clock)
        await limiter.check_limit("demo")

        clock.advance(3600)
        limiter.sweep()

        assert limiter._states == {}

    @pytest.mark.asyncio
    async def test_sweeper_lifecycle(self):
        limiter = RateLimiter(sweep_interval=0.01)
        limiter.start_sweeper()
        task = limiter._sweeper
        limiter.start_sweeper()

        assert limiter._sweeper is task
        await asyncio.sleep(0.03)
        await limiter.stop_sweeper()

        assert task.cancelled()
        assert limiter._sweeper is None

    def test_get_all_stats(self, clock):
        limiter = RateLimiter(clock=clock)
        stats = limiter.get_all_stats()
        assert set(stats) == {key.value for key in ServiceKey}
