"""
Redis connection pool shared by the change feed and the worker lock.

Clients are cheap wrappers around the pool; pub/sub subscriptions take a
dedicated connection of their own for as long as a driver stream is open.
"""

import redis.asyncio as aioredis

from marketplace.config import settings

_pool = aioredis.ConnectionPool.from_url(
    settings.redis_url,
    decode_responses=True,
    max_connections=settings.redis_max_connections,
)


async def get_redis() -> aioredis.Redis:
    """Return a Redis client backed by the shared connection pool."""
    return aioredis.Redis(connection_pool=_pool)


async def close_redis() -> None:
    await _pool.disconnect()
