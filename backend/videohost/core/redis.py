"""Redis connection configuration."""

from typing import Optional

import redis.asyncio as redis

from videohost.core.config import settings

_redis_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    """Get the shared Redis client, creating it on first use."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis_client
