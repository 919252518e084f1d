# services/dessert/rate_limiting.py
import logging
import time
import uuid
from uuid import UUID

import redis.asyncio as redis
from fastapi import HTTPException
from redis.exceptions import RedisError

from shared.redis_client import get_redis

from services.dessert.config import GENERATE_RATE_LIMIT, RATE_LIMIT_WINDOW_SECONDS

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sliding-window limits backed by Redis sorted sets"""

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    async def hit(self, key: str, limit: int, window_seconds: int) -> bool:
        """Record one request under key. False when the window is already full."""
        now = time.time()

        pipe = self.redis.pipeline()
        pipe.zremrangebyscore(key, 0, now - window_seconds)  # Drop entries outside the window
        pipe.zcard(key)
        pipe.expire(key, window_seconds)

        results = await pipe.execute()
        current_count = results[1]

        if current_count >= limit:
            return False

        # Unique member so requests in the same instant all count
        await self.redis.zadd(key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
        await self.redis.expire(key, window_seconds)
        return True

    async def check_generation_limit(self, user_id: UUID) -> bool:
        return await self.hit(
            f"dessert_gen_limit:{user_id}", GENERATE_RATE_LIMIT, RATE_LIMIT_WINDOW_SECONDS
        )


async def check_generation_rate_limit(user_id: UUID):
    """Raise 429 when the user exceeded the generation limit. Fails open without Redis."""
    try:
        redis_client = await get_redis()
        allowed = await RateLimiter(redis_client).check_generation_limit(user_id)
    except (RedisError, OSError) as e:
        logger.warning(f"⚠️ RATE_LIMIT: Redis unavailable, skipping limit for {user_id}: {e}")
        return

    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=(
                f"Generation limit exceeded: maximum {GENERATE_RATE_LIMIT} desserts "
                f"per {RATE_LIMIT_WINDOW_SECONDS} seconds."
            ),
        )
