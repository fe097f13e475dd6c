"""
Redis connection setup using redis-py async client.

Provides the shared redis instance backing the quote store and the
volatility history.
"""

import redis.asyncio as aioredis

from floatpay.config import settings

redis = aioredis.from_url(
    settings.REDIS_URL,
    decode_responses=True,
    ssl=settings.REDIS_SSL,
)


async def get_redis() -> aioredis.Redis:
    """FastAPI dependency that provides the Redis client."""
    return redis
