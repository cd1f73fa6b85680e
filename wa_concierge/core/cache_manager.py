"""
Core Cache Manager - Redis client management
Provides centralized Redis access for the application
"""

import logging
from typing import Callable, Optional

import redis.asyncio as redis

from .config import settings

logger = logging.getLogger(__name__)

RedisProvider = Callable[[], Optional[redis.Redis]]


class RedisManager:
    """Redis connection manager; the client stays None when Redis is disabled or unreachable"""

    def __init__(self):
        self._client: Optional[redis.Redis] = None
        self._connected = False

    @property
    def client(self) -> Optional[redis.Redis]:
        return self._client

    async def connect(self) -> Optional[redis.Redis]:
        """Initialize Redis connection"""
        if not settings.REDIS_ENABLED:
            logger.info("CACHE_INIT|redis_disabled|using_in_memory")
            return None

        try:
            logger.info(
                "CACHE_INIT|connecting|host=%s|port=%d",
                settings.REDIS_HOST or "localhost",
                settings.REDIS_PORT,
            )
            self._client = redis.from_url(
                settings.redis_url,
                password=settings.REDIS_PASSWORD or None,
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30,
            )

            # Test connection
            await self._client.ping()
            self._connected = True
            logger.info("CACHE_INIT|connected")

        except Exception as e:
            # The client is kept: redis-py reconnects lazily once the server is back
            logger.warning("CACHE_INIT|connection_failed|error=%s", e)
            self._connected = False

        return self._client

    async def is_connected(self) -> bool:
        """Check if Redis is connected"""
        if not self._client:
            return False
        try:
            await self._client.ping()
            self._connected = True
        except Exception:
            self._connected = False
        return self._connected

    async def close(self):
        if self._client is None:
            return
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("CACHE|close_error|error=%s", e)
        self._client = None
        self._connected = False


# Global Redis manager instance
redis_cache = RedisManager()


def get_redis() -> Optional[redis.Redis]:
    """
    Get Redis client instance

    Returns:
        Optional[redis.Redis]: Redis client or None if disabled
    """
    return redis_cache.client
