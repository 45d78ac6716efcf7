# =============================================================================
# Unit Tests - Rate Limiter
# =============================================================================
#
# Tests the fixed-window counter with an injected clock, the per-kind limits,
# and the Redis backend's behaviour with a mocked client.
# =============================================================================

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

from app.services.rate_limiter import (
    FixedWindowRateLimiter,
    RateLimitConfig,
    RedisRateLimiter,
    enforce_rate_limit,
    get_kind_config,
)


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _limiter(clock: FakeClock, sweep: bool = False) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(
        cleanup_probability=0.01,
        clock=clock,
        rng=(lambda: 0.0) if sweep else (lambda: 1.0),
    )


CONFIG = RateLimitConfig(window_seconds=60, max_requests=3)


class TestFixedWindow:
    """Tests for FixedWindowRateLimiter.check()."""

    def test_first_request_opens_window(self):
        limiter = _limiter(FakeClock())
        result = limiter.check("chat_message:1.2.3.4", CONFIG)
        assert result.allowed is True
        assert result.remaining == 2
        assert result.reset_in == 60

    def test_request_after_max_is_denied(self):
        limiter = _limiter(FakeClock())
        results = [limiter.check("k", CONFIG) for _ in range(CONFIG.max_requests + 1)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]

    def test_denied_requests_do_not_extend_count(self):
        clock = FakeClock()
        limiter = _limiter(clock)
        for _ in range(10):
            limiter.check("k", CONFIG)

        clock.advance(60.001)
        result = limiter.check("k", CONFIG)
        assert result.allowed is True
        assert result.remaining == 2

    def test_reset_in_counts_down(self):
        clock = FakeClock()
        limiter = _limiter(clock)
        limiter.check("k", CONFIG)
        clock.advance(45.5)
        assert limiter.check("k", CONFIG).reset_in == 15

    def test_window_boundary_is_inclusive(self):
        """A request exactly at reset_time still belongs to the old window."""
        clock = FakeClock()
        limiter = _limiter(clock)
        for _ in range(3):
            limiter.check("k", CONFIG)
        clock.advance(60)
        assert limiter.check("k", CONFIG).allowed is False

    def test_keys_are_independent(self):
        limiter = _limiter(FakeClock())
        for _ in range(3):
            limiter.check("chat_message:a", CONFIG)

        assert limiter.check("chat_message:a", CONFIG).allowed is False
        assert limiter.check("chat_message:b", CONFIG).allowed is True
        assert limiter.check("contact_submission:a", CONFIG).allowed is True

    def test_fractional_window_rounds_up(self):
        limiter = _limiter(FakeClock())
        result = limiter.check("k", RateLimitConfig(window_seconds=0.5, max_requests=1))
        assert result.reset_in == 1


class TestCleanup:
    """Tests for the opportunistic sweep of expired entries."""

    def test_cleanup_removes_only_expired(self):
        clock = FakeClock()
        limiter = _limiter(clock)
        limiter.check("old", CONFIG)
        clock.advance(30)
        limiter.check("new", CONFIG)
        clock.advance(31)

        assert limiter.cleanup() == 1
        assert len(limiter) == 1

    def test_sweep_runs_when_rng_hits(self):
        clock = FakeClock()
        limiter = _limiter(clock, sweep=True)
        limiter.check("a", CONFIG)
        limiter.check("b", CONFIG)
        clock.advance(61)

        limiter.check("c", CONFIG)
        assert len(limiter) == 1

    def test_no_sweep_when_rng_misses(self):
        clock = FakeClock()
        limiter = _limiter(clock)
        limiter.check("a", CONFIG)
        limiter.check("b", CONFIG)
        clock.advance(61)

        limiter.check("c", CONFIG)
        assert len(limiter) == 3

    def test_reset_clears_everything(self):
        limiter = _limiter(FakeClock())
        limiter.check("a", CONFIG)
        limiter.reset()
        assert len(limiter) == 0


class TestKindConfig:
    """Tests for per-kind limits."""

    def test_contact_limits(self):
        with patch("app.services.rate_limiter.settings") as mock_settings:
            mock_settings.contact_rate_limit_window_seconds = 60
            mock_settings.contact_rate_limit_max_requests = 5
            config = get_kind_config("contact_submission")
        assert config == RateLimitConfig(window_seconds=60, max_requests=5)

    def test_chat_and_unknown_kinds_share_chat_limits(self):
        with patch("app.services.rate_limiter.settings") as mock_settings:
            mock_settings.chat_rate_limit_window_seconds = 60
            mock_settings.chat_rate_limit_max_requests = 30
            chat = get_kind_config("chat_message")
            other = get_kind_config("feedback")
        assert chat == other == RateLimitConfig(window_seconds=60, max_requests=30)

    def test_enforce_uses_kind_and_client_key(self):
        limiter = _limiter(FakeClock())
        with (
            patch("app.services.rate_limiter.rate_limiter", limiter),
            patch("app.services.rate_limiter.settings") as mock_settings,
        ):
            mock_settings.rate_limit_backend = "memory"
            mock_settings.contact_rate_limit_window_seconds = 60
            mock_settings.contact_rate_limit_max_requests = 5
            results = [
                _run(enforce_rate_limit("contact_submission", "203.0.113.7"))
                for _ in range(6)
            ]

        assert [r.allowed for r in results] == [True] * 5 + [False]
        assert limiter._entries["contact_submission:203.0.113.7"].count == 5


class TestRedisRateLimiter:
    """Tests for the shared Redis backend with a mocked client."""

    def _client(self, count: int, ttl_ms: int = 30_000) -> MagicMock:
        client = MagicMock()
        client.incr = AsyncMock(return_value=count)
        client.pexpire = AsyncMock()
        client.pttl = AsyncMock(return_value=ttl_ms)
        return client

    def test_first_hit_sets_expiry(self):
        limiter = RedisRateLimiter("redis://unused")
        client = self._client(count=1)
        with patch.object(limiter, "_get_redis", return_value=client):
            result = _run(limiter.check("chat_message:a", CONFIG))

        client.incr.assert_awaited_once_with("ratelimit:chat_message:a")
        client.pexpire.assert_awaited_once_with("ratelimit:chat_message:a", 60_000)
        assert result.allowed is True
        assert result.remaining == 2
        assert result.reset_in == 60

    def test_over_limit_is_denied(self):
        limiter = RedisRateLimiter("redis://unused")
        client = self._client(count=4, ttl_ms=12_300)
        with patch.object(limiter, "_get_redis", return_value=client):
            result = _run(limiter.check("k", CONFIG))

        assert result.allowed is False
        assert result.remaining == 0
        assert result.reset_in == 13

    def test_missing_ttl_is_repaired(self):
        limiter = RedisRateLimiter("redis://unused")
        client = self._client(count=2, ttl_ms=-1)
        with patch.object(limiter, "_get_redis", return_value=client):
            result = _run(limiter.check("k", CONFIG))

        client.pexpire.assert_awaited_once_with("ratelimit:k", 60_000)
        assert result.reset_in == 60

    def test_redis_error_allows_request(self):
        limiter = RedisRateLimiter("redis://unused")
        client = MagicMock()
        client.incr = AsyncMock(side_effect=ConnectionError("refused"))
        with patch.object(limiter, "_get_redis", return_value=client):
            result = _run(limiter.check("k", CONFIG))

        assert result.allowed is True
        assert result.remaining == CONFIG.max_requests
