# =============================================================================
# Rate Limiter - Fixed Window Per Key
# =============================================================================
#
# Counts requests per key ("<kind>:<client id>") in fixed windows. The first
# request for a key, or the first one after its window expired, opens a new
# window with count=1. Further requests increment the count until it reaches
# max_requests; from then on requests are denied until the window ends.
#
# Two backends:
#   - FixedWindowRateLimiter: process-local dict. Resets on restart and is
#     per-instance, so N instances allow N x the limit. Entries are swept
#     opportunistically on ~1% of calls to bound memory.
#   - RedisRateLimiter: INCR + PEXPIRE on first hit, shared by all
#     instances. If Redis is unavailable the request is allowed and a
#     warning is logged.
#
# The dict is mutated without locks. Handlers run on one event loop and
# `check()` never awaits, so calls cannot interleave within a process.
# =============================================================================

from __future__ import annotations

import logging
import math
import random
import time
from collections.abc import Callable
from dataclasses import dataclass

from app.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    """Window length and request budget for one kind of request."""

    window_seconds: float = 60.0
    max_requests: int = 30


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_in: int  # Seconds until the window resets (rounded up)


@dataclass
class RateLimitEntry:
    count: int
    reset_time: float


DEFAULT_CONFIG = RateLimitConfig()


class FixedWindowRateLimiter:
    """
    In-memory fixed-window counter.

    `clock` and `rng` are injectable so tests can move time forward and
    force or suppress the cleanup sweep.
    """

    def __init__(
        self,
        cleanup_probability: float = 0.01,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ):
        self.cleanup_probability = cleanup_probability
        self._clock = clock
        self._rng = rng
        self._entries: dict[str, RateLimitEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def check(
        self,
        key: str,
        config: RateLimitConfig = DEFAULT_CONFIG,
    ) -> RateLimitResult:
        """Record one request for `key` and report whether it is allowed."""
        now = self._clock()

        if self._rng() < self.cleanup_probability:
            self.cleanup(now)

        entry = self._entries.get(key)

        if entry is None or now > entry.reset_time:
            self._entries[key] = RateLimitEntry(
                count=1,
                reset_time=now + config.window_seconds,
            )
            return RateLimitResult(
                allowed=True,
                remaining=config.max_requests - 1,
                reset_in=math.ceil(config.window_seconds),
            )

        reset_in = math.ceil(entry.reset_time - now)

        if entry.count >= config.max_requests:
            return RateLimitResult(allowed=False, remaining=0, reset_in=reset_in)

        entry.count += 1
        return RateLimitResult(
            allowed=True,
            remaining=config.max_requests - entry.count,
            reset_in=reset_in,
        )

    def cleanup(self, now: float | None = None) -> int:
        """Drop expired entries. Returns the number removed."""
        now = self._clock() if now is None else now
        expired = [k for k, e in self._entries.items() if now > e.reset_time]
        for k in expired:
            del self._entries[k]
        if expired:
            logger.debug("Rate limiter swept %d expired entries", len(expired))
        return len(expired)

    def reset(self) -> None:
        self._entries.clear()


class RedisRateLimiter:
    """
    Fixed-window counter shared across instances via Redis.

    One key per window: INCR, and on the first hit PEXPIRE sets the window
    length. PTTL gives the time left. Over-limit requests still increment,
    which is harmless since the key expires with the window.
    """

    def __init__(self, redis_url: str, prefix: str = "ratelimit"):
        self.redis_url = redis_url
        self.prefix = prefix
        self._client = None

    def _get_redis(self):
        """Lazily create and cache the async Redis client."""
        if self._client is None:
            import redis.asyncio as aioredis
            self._client = aioredis.from_url(self.redis_url, decode_responses=True)
        return self._client

    async def check(
        self,
        key: str,
        config: RateLimitConfig = DEFAULT_CONFIG,
    ) -> RateLimitResult:
        redis_key = f"{self.prefix}:{key}"
        window_ms = int(config.window_seconds * 1000)

        try:
            r = self._get_redis()
            count = await r.incr(redis_key)
            if count == 1:
                await r.pexpire(redis_key, window_ms)
                ttl_ms = window_ms
            else:
                ttl_ms = await r.pttl(redis_key)
                if ttl_ms is None or ttl_ms < 0:
                    # Key lost its TTL (e.g. crash between INCR and PEXPIRE)
                    await r.pexpire(redis_key, window_ms)
                    ttl_ms = window_ms
        except Exception as e:
            logger.warning(
                "Rate limiter unavailable (Redis error): %s. "
                "Allowing request through.",
                e,
            )
            return RateLimitResult(
                allowed=True,
                remaining=config.max_requests,
                reset_in=math.ceil(config.window_seconds),
            )

        reset_in = math.ceil(ttl_ms / 1000)
        if count > config.max_requests:
            return RateLimitResult(allowed=False, remaining=0, reset_in=reset_in)
        return RateLimitResult(
            allowed=True,
            remaining=config.max_requests - count,
            reset_in=reset_in,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# ---------------------------------------------------------------------------
# Module-level limiter and per-kind configuration
# ---------------------------------------------------------------------------

rate_limiter = FixedWindowRateLimiter(
    cleanup_probability=settings.rate_limit_cleanup_probability,
)

_redis_limiter: RedisRateLimiter | None = None


def check_rate_limit(
    key: str,
    config: RateLimitConfig = DEFAULT_CONFIG,
) -> RateLimitResult:
    """Check `key` against the process-local limiter."""
    return rate_limiter.check(key, config)


def get_kind_config(kind: str) -> RateLimitConfig:
    """Rate limit config for an ingest kind. Unknown kinds get the chat limits."""
    if kind == "contact_submission":
        return RateLimitConfig(
            window_seconds=settings.contact_rate_limit_window_seconds,
            max_requests=settings.contact_rate_limit_max_requests,
        )
    return RateLimitConfig(
        window_seconds=settings.chat_rate_limit_window_seconds,
        max_requests=settings.chat_rate_limit_max_requests,
    )


async def enforce_rate_limit(kind: str, client_id: str) -> RateLimitResult:
    """
    Check the "<kind>:<client id>" key with the configured backend.

    Returns the result; callers turn a denial into a 429.
    """
    global _redis_limiter
    key = f"{kind}:{client_id}"
    config = get_kind_config(kind)

    if settings.rate_limit_backend == "redis":
        if _redis_limiter is None:
            _redis_limiter = RedisRateLimiter(settings.rate_limit_redis_url)
        result = await _redis_limiter.check(key, config)
    else:
        result = check_rate_limit(key, config)

    if not result.allowed:
        logger.info("Rate limited: key=%s reset_in=%ds", key, result.reset_in)
    return result


async def close_rate_limiter() -> None:
    global _redis_limiter
    if _redis_limiter is not None:
        await _redis_limiter.close()
        _redis_limiter = None
