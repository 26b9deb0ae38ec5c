import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError

from neptune.models.errors import RateLimitError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window request limiter keyed by actor id.

    INCR is atomic, so concurrent turns from one actor cannot both slip under
    the limit. When Redis is unreachable requests are let through.
    """

    KEY_PREFIX = "ai:chat:"

    def __init__(self, redis: Redis, limit: int = 20, window: int = 60):
        self.redis = redis
        self.limit = limit
        self.window = window

    def _key(self, actor_id: str) -> str:
        return f"{self.KEY_PREFIX}{actor_id}"

    async def check(self, actor_id: str) -> None:
        """Count one request for ``actor_id``; raises RateLimitError once over the limit."""
        key = self._key(actor_id)
        try:
            count = await self.redis.incr(key)
            # Start the window on the first request
            if count == 1:
                await self.redis.expire(key, self.window)
            if count <= self.limit:
                return
            retry_after = await self.redis.ttl(key)
            if retry_after is None or retry_after < 0:
                # Key lost its expiry; restart the window
                await self.redis.expire(key, self.window)
                retry_after = self.window
        except RedisError as e:
            logger.warning(f"Rate limiter unavailable, allowing request for {actor_id}: {e}")
            return

        logger.warning(f"Rate limit exceeded for {actor_id} ({self.limit}/{self.window}s)")
        raise RateLimitError("Rate limit exceeded. Please try again in a moment.", retry_after=int(retry_after))
