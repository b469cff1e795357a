"""Usage ledger — per-figure request counts kept in Redis.

Each figure has a JSON record under ``stats:<normalized name>`` and is listed
in the ``stats:all_figures`` set. Updates are a plain read-modify-write:
two concurrent requests for the same figure can both read the same count and
one increment is lost. The record is written before the set membership so any
name found in the set resolves to a record; the two writes are not atomic.
"""

import logging
from datetime import datetime, timezone

import redis.asyncio as redis
from pydantic import ValidationError

from app.schemas.stats import FigureStats
from app.services.errors import StoreUnavailableError
from app.services.redis_connection import RedisConnection, redis_connection

logger = logging.getLogger(__name__)

STATS_PREFIX = "stats:"
STATS_LIST_KEY = "stats:all_figures"


def _parse(raw: str | None) -> FigureStats | None:
    if raw is None:
        return None
    try:
        return FigureStats.model_validate_json(raw)
    except ValidationError as e:
        logger.warning(f"Skipping unreadable stats record: {e}")
        return None


class StatsService:
    """Reads and updates figure usage records."""

    def __init__(self, connection: RedisConnection = redis_connection):
        self._connection = connection

    def stats_key(self, normalized_name: str) -> str:
        return f"{STATS_PREFIX}{normalized_name}"

    async def record_hit(self, normalized_name: str, display_name: str, provider_id: str) -> None:
        """Count one completed request. Store failures are logged, never raised."""
        key = self.stats_key(normalized_name)
        try:
            r = await self._connection.get()
            existing = _parse(await r.get(key))

            stats = FigureStats(
                display_name=existing.display_name if existing else display_name,
                normalized_name=normalized_name,
                request_count=(existing.request_count + 1) if existing else 1,
                last_provider_id=provider_id,
                last_requested_at=datetime.now(timezone.utc),
            )

            await r.set(key, stats.model_dump_json())
            await r.sadd(STATS_LIST_KEY, normalized_name)
        except (StoreUnavailableError, redis.RedisError) as e:
            logger.error(f"Stats update failed for {normalized_name}: {e}")

    async def get_all(self) -> list[FigureStats]:
        """All figure records, most requested first. Order among equal counts is arbitrary."""
        try:
            r = await self._connection.get()
            names = await r.smembers(STATS_LIST_KEY)
            if not names:
                return []
            raws = await r.mget([self.stats_key(name) for name in names])
        except (StoreUnavailableError, redis.RedisError) as e:
            logger.error(f"Stats listing failed: {e}")
            return []

        stats = [s for s in (_parse(raw) for raw in raws) if s is not None]
        stats.sort(key=lambda s: s.request_count, reverse=True)
        return stats

    async def delete(self, normalized_name: str) -> bool:
        """Remove a figure's record and its set membership."""
        try:
            r = await self._connection.get()
            await r.srem(STATS_LIST_KEY, normalized_name)
            await r.delete(self.stats_key(normalized_name))
            return True
        except (StoreUnavailableError, redis.RedisError) as e:
            logger.error(f"Stats delete failed for {normalized_name}: {e}")
            return False


stats_service = StatsService()
