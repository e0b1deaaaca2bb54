"""Shared Redis connection for the geocode cache and the dispatch queue."""

from functools import lru_cache

from redis.asyncio import Redis

from ..config import settings


@lru_cache()
def get_redis_client() -> Redis:
    """Get cached asyncio Redis client. Connections are opened lazily on first command."""
    return Redis.from_url(settings.redis_url, decode_responses=True)
