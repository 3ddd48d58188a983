"""Per-brand sliding-window rate limiting for event ingestion.

Two interchangeable backends share the ``RateLimiter`` interface:

* ``InMemorySlidingWindowRateLimiter``: per-key timestamp log guarded by a lock.
  Correct for a single process only.
* ``RedisSlidingWindowRateLimiter``: the same algorithm executed as one Lua
  script against a sorted set, so every replica shares a single counter and
  the prune/count/insert step is atomic.

Usage pattern:
    decision = await rate_limiter.hit(f"ingest:{brand_id}", limit=1000, window_seconds=60)
    if not decision.allowed:
        ...  # reject, decision.retry_after seconds until a slot frees up

Window semantics: a hit at ``now`` counts every accepted hit with timestamp
``> now - window_seconds``. Rejected hits are not recorded, so a client that
keeps retrying does not extend its own lockout.

Headers contract (mirrors common conventions):
    X-RateLimit-Limit: int total allowed in the window
    X-RateLimit-Remaining: int remaining
    X-RateLimit-Reset: epoch seconds when the oldest counted hit expires
"""
from __future__ import annotations

import math
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Protocol

from growth_engine.config import RATE_LIMIT_SETTINGS
from growth_engine.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_epoch: int
    retry_after: float = 0.0

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_epoch),
        }


class RateLimiter(Protocol):
    async def hit(self, key: str, *, limit: int, window_seconds: int) -> RateLimitDecision: ...


class InMemorySlidingWindowRateLimiter:
    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._logs: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    async def hit(self, key: str, *, limit: int, window_seconds: int) -> RateLimitDecision:
        with self._lock:
            now = self._clock()
            log = self._logs.setdefault(key, deque())
            cutoff = now - window_seconds
            while log and log[0] <= cutoff:
                log.popleft()

            if len(log) < limit:
                log.append(now)
                oldest = log[0]
                return RateLimitDecision(
                    allowed=True,
                    limit=limit,
                    remaining=limit - len(log),
                    reset_epoch=math.ceil(oldest + window_seconds),
                )

            oldest = log[0]
            return RateLimitDecision(
                allowed=False,
                limit=limit,
                remaining=0,
                reset_epoch=math.ceil(oldest + window_seconds),
                retry_after=max(0.0, oldest + window_seconds - now),
            )

    def reset(self) -> None:
        """Drop all recorded hits (test isolation)."""
        with self._lock:
            self._logs.clear()


_SLIDING_WINDOW_LUA = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
local member = ARGV[4]

redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
local count = redis.call('ZCARD', key)
local allowed = 0
if count < limit then
    redis.call('ZADD', key, now, member)
    count = count + 1
    allowed = 1
end
redis.call('PEXPIRE', key, math.ceil(window * 1000))

local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
local oldest_score = tostring(now)
if oldest[2] then
    oldest_score = oldest[2]
end
return {allowed, count, oldest_score}
"""


class RedisSlidingWindowRateLimiter:
    def __init__(self, client: Any, *, key_prefix: str | None = None, clock: Callable[[], float] = time.time):
        self._client = client
        self._clock = clock
        self._prefix = key_prefix or str(RATE_LIMIT_SETTINGS.get("key_prefix", "growth:ratelimit"))
        self._script = client.register_script(_SLIDING_WINDOW_LUA)

    async def hit(self, key: str, *, limit: int, window_seconds: int) -> RateLimitDecision:
        now = self._clock()
        member = f"{now:.6f}:{uuid.uuid4().hex[:12]}"
        allowed_raw, count_raw, oldest_raw = await self._script(
            keys=[f"{self._prefix}:{key}"],
            args=[f"{now:.6f}", window_seconds, limit, member],
        )
        allowed = int(allowed_raw) == 1
        count = int(count_raw)
        oldest = float(oldest_raw.decode() if isinstance(oldest_raw, bytes) else oldest_raw)
        reset_epoch = math.ceil(oldest + window_seconds)
        if allowed:
            return RateLimitDecision(True, limit, max(0, limit - count), reset_epoch)
        return RateLimitDecision(
            allowed=False,
            limit=limit,
            remaining=0,
            reset_epoch=reset_epoch,
            retry_after=max(0.0, oldest + window_seconds - now),
        )


def build_rate_limiter() -> RateLimiter:
    """Create the limiter selected by ``RATE_LIMIT_SETTINGS['backend']``."""
    backend = str(RATE_LIMIT_SETTINGS.get("backend", "memory")).lower()
    if backend == "redis":
        import redis.asyncio as aioredis

        redis_url = str(RATE_LIMIT_SETTINGS["redis_url"])
        logger.info("Using Redis sliding-window rate limiter", url=redis_url)
        return RedisSlidingWindowRateLimiter(aioredis.from_url(redis_url))
    if backend != "memory":
        raise ValueError(f"Unknown rate limit backend '{backend}'")
    logger.info("Using in-memory sliding-window rate limiter")
    return InMemorySlidingWindowRateLimiter()


# Singleton instance used application-wide
rate_limiter: RateLimiter = build_rate_limiter()

__all__ = [
    "RateLimitDecision",
    "RateLimiter",
    "InMemorySlidingWindowRateLimiter",
    "RedisSlidingWindowRateLimiter",
    "build_rate_limiter",
    "rate_limiter",
]
