"""Shared lazy Redis connection for the cache and stats stores."""

import asyncio
import logging

import redis.asyncio as redis

from app.config import settings
from app.services.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


class RedisConnection:
    """Creates the Redis client on first use and hands it to the store adapters."""

    def __init__(self, url: str, client: redis.Redis | None = None, connect_timeout: float = 2.0):
        self._url = url
        self._redis = client
        self._connect_timeout = connect_timeout
        self._lock = asyncio.Lock()

    @property
    def is_configured(self) -> bool:
        return self._redis is not None or bool(self._url)

    async def get(self) -> redis.Redis:
        """Return a live client, raising StoreUnavailableError if Redis is unreachable."""
        if self._redis is not None:
            return self._redis
        if not self._url:
            raise StoreUnavailableError("Redis URL not configured")

        async with self._lock:
            # another coroutine may have connected while we waited
            if self._redis is not None:
                return self._redis
            client = redis.from_url(
                self._url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=self._connect_timeout,
            )
            try:
                await client.ping()
            except redis.RedisError as e:
                logger.warning(f"Redis unavailable: {e}")
                await client.aclose()
                raise StoreUnavailableError(str(e)) from e
            self._redis = client
        return self._redis

    async def close(self):
        if self._redis:
            await self._redis.aclose()
            self._redis = None


redis_connection = RedisConnection(settings.redis_url, connect_timeout=settings.redis_connect_timeout_seconds)
