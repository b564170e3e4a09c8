"""Async Redis client used for event and notification fan-out."""

from redis.asyncio import ConnectionPool, Redis

from .config import settings

_pool: ConnectionPool | None = None


def get_redis_client() -> Redis:
    """Get an async Redis client from the shared pool."""
    global _pool
    if _pool is None:
        _pool = ConnectionPool.from_url(settings.redis_url, max_connections=20, decode_responses=True)
    return Redis(connection_pool=_pool)
