"""Redis Adapter - Connection and utilities."""
import redis.asyncio as redis
from typing import Optional

_redis_client: Optional[redis.Redis] = None


def get_redis(redis_url: str) -> redis.Redis:
    """Get or create Redis connection."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(redis_url, decode_responses=True)
    return _redis_client


async def close_redis():
    """Close Redis connection."""
    global _redis_client
    if _redis_client:
        await _redis_client.close()
        _redis_client = None
