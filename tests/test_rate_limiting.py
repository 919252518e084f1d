import uuid

import pytest
from fastapi import HTTPException
from redis.exceptions import ConnectionError as RedisConnectionError

from services.dessert import rate_limiting
from services.dessert.rate_limiting import RateLimiter, check_generation_rate_limit


class FakePipeline:
    def __init__(self, redis):
        self.redis = redis
        self.ops = []

    def zremrangebyscore(self, key, low, high):
        self.ops.append(("zremrangebyscore", key, low, high))

    def zcard(self, key):
        self.ops.append(("zcard", key))

    def expire(self, key, seconds):
        self.ops.append(("expire", key, seconds))

    async def execute(self):
        results = []
        for op, key, *args in self.ops:
            members = self.redis.sets.setdefault(key, {})
            if op == "zremrangebyscore":
                low, high = args
                stale = [m for m, score in members.items() if low <= score <= high]
                for member in stale:
                    del members[member]
                results.append(len(stale))
            elif op == "zcard":
                results.append(len(members))
            else:
                results.append(True)
        return results


class FakeRedis:
    """Sorted-set subset of redis.asyncio.Redis"""

    def __init__(self):
        self.sets = {}

    def pipeline(self):
        return FakePipeline(self)

    async def zadd(self, key, mapping):
        self.sets.setdefault(key, {}).update(mapping)

    async def expire(self, key, seconds):
        return True


@pytest.mark.asyncio
async def test_window_allows_up_to_limit():
    limiter = RateLimiter(FakeRedis())

    results = [await limiter.hit("k", limit=3, window_seconds=60) for _ in range(4)]

    assert results == [True, True, True, False]


@pytest.mark.asyncio
async def test_old_entries_leave_the_window():
    redis = FakeRedis()
    redis.sets["k"] = {"old-1": 1.0, "old-2": 2.0}

    assert await RateLimiter(redis).hit("k", limit=2, window_seconds=60)
    assert "old-1" not in redis.sets["k"]


@pytest.mark.asyncio
async def test_generation_limit_raises_429(monkeypatch):
    redis = FakeRedis()

    async def fake_get_redis():
        return redis

    monkeypatch.setattr(rate_limiting, "get_redis", fake_get_redis)
    user_id = uuid.uuid4()

    for _ in range(rate_limiting.GENERATE_RATE_LIMIT):
        await check_generation_rate_limit(user_id)

    with pytest.raises(HTTPException) as exc_info:
        await check_generation_rate_limit(user_id)
    assert exc_info.value.status_code == 429


@pytest.mark.asyncio
async def test_fails_open_without_redis(monkeypatch):
    async def broken_get_redis():
        raise RedisConnectionError("connection refused")

    monkeypatch.setattr(rate_limiting, "get_redis", broken_get_redis)

    assert await check_generation_rate_limit(uuid.uuid4()) is None
