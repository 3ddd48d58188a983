import asyncio

from growth_engine.utils.ratelimiter import (
    InMemorySlidingWindowRateLimiter,
    RedisSlidingWindowRateLimiter,
)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _hit(limiter, key="ingest:brand_a", limit=1000, window=60):
    return asyncio.run(limiter.hit(key, limit=limit, window_seconds=window))


def test_thousandth_allowed_thousand_first_rejected():
    clock = FakeClock()
    limiter = InMemorySlidingWindowRateLimiter(clock=clock)
    decisions = [_hit(limiter) for _ in range(1000)]
    assert all(d.allowed for d in decisions)
    assert decisions[-1].remaining == 0

    rejected = _hit(limiter)
    assert rejected.allowed is False
    assert rejected.retry_after == 60
    assert rejected.headers()["X-RateLimit-Remaining"] == "0"


def test_window_slides_and_rejections_are_not_counted():
    clock = FakeClock()
    limiter = InMemorySlidingWindowRateLimiter(clock=clock)
    assert _hit(limiter, limit=2, window=10).allowed
    clock.now += 4
    assert _hit(limiter, limit=2, window=10).allowed
    clock.now += 1
    blocked = _hit(limiter, limit=2, window=10)
    assert not blocked.allowed
    assert blocked.retry_after == 5

    # first hit expires exactly one window after it was made
    clock.now += 5
    assert _hit(limiter, limit=2, window=10).allowed
    assert not _hit(limiter, limit=2, window=10).allowed


def test_keys_are_independent():
    limiter = InMemorySlidingWindowRateLimiter(clock=FakeClock())
    assert _hit(limiter, key="ingest:a", limit=1).allowed
    assert not _hit(limiter, key="ingest:a", limit=1).allowed
    assert _hit(limiter, key="ingest:b", limit=1).allowed


class FakeRedis:
    """Evaluates the sliding-window script against in-process sorted sets."""

    def __init__(self):
        self.zsets: dict[str, dict[str, float]] = {}

    def register_script(self, script):
        async def _run(keys, args):
            key = keys[0]
            now, window, limit, member = float(args[0]), float(args[1]), int(args[2]), args[3]
            zset = self.zsets.setdefault(key, {})
            for m, score in list(zset.items()):
                if score <= now - window:
                    del zset[m]
            allowed = 0
            if len(zset) < limit:
                zset[member] = now
                allowed = 1
            oldest = min(zset.values()) if zset else now
            return [allowed, len(zset), repr(oldest).encode()]
        return _run


def test_redis_limiter_shares_counter_across_instances():
    clock = FakeClock()
    client = FakeRedis()
    first = RedisSlidingWindowRateLimiter(client, key_prefix="test", clock=clock)
    second = RedisSlidingWindowRateLimiter(client, key_prefix="test", clock=clock)

    assert _hit(first, limit=2).allowed
    assert _hit(second, limit=2).allowed
    blocked = _hit(first, limit=2)
    assert not blocked.allowed
    assert blocked.retry_after == 60
    assert "test:ingest:brand_a" in client.zsets

    clock.now += 60
    assert _hit(second, limit=2).allowed
