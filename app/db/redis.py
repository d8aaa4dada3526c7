"""
Redis Connection Module

Redis is the broker for the arq background worker, which runs the
expiry sweeper on a cron schedule. The API process only pings it for
health reporting; it never depends on Redis to serve a request.
"""

import logging
from typing import Optional

from redis.asyncio import Redis, ConnectionPool
from arq.connections import RedisSettings

from app.core.config import settings

logger = logging.getLogger(__name__)

_redis_pool: Optional[ConnectionPool] = None


def get_redis_pool() -> ConnectionPool:
    """Get or create the shared Redis connection pool."""
    global _redis_pool

    if _redis_pool is None:
        _redis_pool = ConnectionPool.from_url(
            settings.REDIS_URL,
            max_connections=10,
            socket_connect_timeout=2,
        )
        logger.info(f"Redis connection pool created: {settings.REDIS_URL}")

    return _redis_pool


async def close_redis_pool():
    global _redis_pool

    if _redis_pool is not None:
        await _redis_pool.disconnect()
        _redis_pool = None
        logger.info("Redis connection pool closed")


def get_arq_redis_settings() -> RedisSettings:
    """Redis settings for the arq worker, parsed from REDIS_URL."""
    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)
    redis_settings.conn_timeout = 10
    redis_settings.conn_retries = 5
    redis_settings.conn_retry_delay = 1
    return redis_settings


async def check_redis_connection() -> bool:
    """True if Redis answers PING."""
    try:
        redis = Redis(connection_pool=get_redis_pool())
        return bool(await redis.ping())
    except Exception as e:
        logger.warning(f"Redis health check failed: {e}")
        return False
