"""Redis cache service for generated itineraries and the model catalogue."""

import json
import logging
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as redis
from pydantic import ValidationError

from app.schemas.places import CachedItinerary, Place
from app.services.errors import StoreUnavailableError
from app.services.redis_connection import RedisConnection, redis_connection

logger = logging.getLogger(__name__)

# TTLs in seconds
TTL_ITINERARY = 7 * 24 * 60 * 60  # 7 days
TTL_MODELS = 60 * 60              # 1 hour

CACHE_PREFIX = "cache:"

_GLOB_SPECIAL = str.maketrans({c: f"\\{c}" for c in "\\*?[]^"})


def _escape_glob(value: str) -> str:
    return value.translate(_GLOB_SPECIAL)


class CacheService:
    """Redis-backed cache with typed TTLs. Every operation fails soft."""

    def __init__(self, connection: RedisConnection = redis_connection):
        self._connection = connection

    @property
    def is_configured(self) -> bool:
        return self._connection.is_configured

    async def get(self, key: str) -> Any | None:
        """Get a value from cache. Returns None on miss or error."""
        try:
            r = await self._connection.get()
            raw = await r.get(key)
            if raw is None:
                return None
            return json.loads(raw)
        except (StoreUnavailableError, redis.RedisError, json.JSONDecodeError) as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int = TTL_ITINERARY) -> bool:
        """Set a value in cache with TTL. Returns False on error."""
        try:
            r = await self._connection.get()
            await r.set(key, json.dumps(value, default=str), ex=ttl)
            return True
        except (StoreUnavailableError, redis.RedisError) as e:
            logger.error(f"Cache write failed for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        """Delete a key."""
        try:
            r = await self._connection.get()
            await r.delete(key)
            return True
        except (StoreUnavailableError, redis.RedisError) as e:
            logger.error(f"Cache delete failed for {key}: {e}")
            return False

    # Itinerary helpers

    def itinerary_key(self, normalized_name: str, provider_id: str) -> str:
        return f"{CACHE_PREFIX}{normalized_name}:{provider_id}"

    async def _itinerary_keys(self, r: redis.Redis, normalized_name: str) -> list[str]:
        """All cached itinerary keys for one figure, across provider ids."""
        prefix = f"{CACHE_PREFIX}{normalized_name}:"
        keys = []
        async for key in r.scan_iter(match=f"{_escape_glob(prefix)}*"):
            # a figure named "x:y" must not leak into "x"
            if ":" not in key[len(prefix):]:
                keys.append(key)
        return keys

    async def get_itinerary(self, normalized_name: str, provider_id: str) -> CachedItinerary | None:
        data = await self.get(self.itinerary_key(normalized_name, provider_id))
        if data is None:
            return None
        try:
            return CachedItinerary.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable cache entry for {normalized_name}:{provider_id}: {e}")
            return None

    async def set_itinerary(self, normalized_name: str, provider_id: str, places: list[Place]) -> bool:
        record = CachedItinerary(
            places=places,
            model=provider_id,
            cached_at=datetime.now(timezone.utc),
        )
        return await self.set(
            self.itinerary_key(normalized_name, provider_id),
            record.model_dump(mode="json"),
            TTL_ITINERARY,
        )

    async def has_entries(self, normalized_name: str) -> bool:
        """Whether any provider has a cached itinerary for this figure."""
        try:
            r = await self._connection.get()
            return bool(await self._itinerary_keys(r, normalized_name))
        except (StoreUnavailableError, redis.RedisError) as e:
            logger.warning(f"Cache lookup failed for {normalized_name}: {e}")
            return False

    async def purge_figure(self, normalized_name: str) -> bool:
        """Delete every cached itinerary for this figure. Nothing to delete counts as success."""
        try:
            r = await self._connection.get()
            keys = await self._itinerary_keys(r, normalized_name)
            if not keys:
                return True
            await r.delete(*keys)
            logger.info(f"Purged {len(keys)} cached itineraries for {normalized_name}")
            return True
        except (StoreUnavailableError, redis.RedisError) as e:
            logger.error(f"Cache purge failed for {normalized_name}: {e}")
            return False

    # Model catalogue

    def models_key(self) -> str:
        return "models:catalogue"

    async def get_models(self) -> list[dict] | None:
        return await self.get(self.models_key())

    async def set_models(self, data: list[dict]):
        await self.set(self.models_key(), data, TTL_MODELS)

    async def close(self):
        await self._connection.close()


cache_service = CacheService()
