"""Places service — turns a figure's name into a cached, provider-sourced itinerary.

Flow: validate → cache lookup → (hit) count and return
                              → (miss) fallback generation → cache + count → return

Not-found or empty answers are returned as-is and never cached or counted.
Nothing here locks across the lookup and the write: two cold requests for the
same figure may both call a provider, and the later cache write wins.
"""

import asyncio
import logging
from dataclasses import dataclass

from app.schemas.places import Place
from app.services.cache_service import CacheService, cache_service
from app.services.errors import (
    InvalidQueryError,
    ProviderError,
    RateLimitedError,
    TransientProviderError,
    UnknownProviderError,
    UpstreamError,
)
from app.services.fallback import FallbackController, fallback_controller
from app.services.names import normalize_name
from app.services.provider_client import resolve_backend
from app.services.stats_service import StatsService, stats_service

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    places: list[Place]
    model: str
    cached: bool
    error: str | None = None


class PlacesService:
    """Coordinates the cache, the usage ledger and the provider fallback."""

    def __init__(
        self,
        cache: CacheService = cache_service,
        stats: StatsService = stats_service,
        fallback: FallbackController = fallback_controller,
    ):
        self._cache = cache
        self._stats = stats
        self._fallback = fallback

    def _validate(self, raw_name: object, requested_provider: str | None) -> str:
        if not isinstance(raw_name, str) or not raw_name.strip():
            raise InvalidQueryError("Name is required")
        provider_id = requested_provider or self._fallback.default_provider
        try:
            resolve_backend(provider_id)
        except UnknownProviderError:
            raise InvalidQueryError(f"Unknown model: {provider_id}")
        return provider_id

    async def fetch_itinerary(self, raw_name: object, requested_provider: str | None = None) -> FetchResult:
        """Return the itinerary for ``raw_name``.

        Raises:
            InvalidQueryError: blank or non-string name, unknown model id.
            RateLimitedError: providers exhausted on rate limit / quota.
            UpstreamError: any other terminal provider failure.
        """
        provider_id = self._validate(raw_name, requested_provider)
        display_name = raw_name.strip()
        normalized = normalize_name(raw_name)

        cached = await self._cache.get_itinerary(normalized, provider_id)
        if cached is not None:
            logger.info(f"Cache hit: {normalized} ({provider_id})")
            await self._stats.record_hit(normalized, display_name, provider_id)
            return FetchResult(places=cached.places, model=provider_id, cached=True)

        logger.info(f"Cache miss: {normalized} ({provider_id})")
        try:
            outcome = await self._fallback.run(display_name, provider_id)
        except ProviderError as e:
            if isinstance(e, TransientProviderError) and e.rate_limited:
                raise RateLimitedError(str(e)) from e
            raise UpstreamError(str(e)) from e

        result = outcome.result
        if not result.is_cacheable:
            logger.info(f"No itinerary for '{display_name}' from {outcome.provider_id}: {result.error or 'empty'}")
            return FetchResult(
                places=[],
                model=outcome.provider_id,
                cached=False,
                error=result.error,
            )

        logger.info(
            f"Generated {len(result.places)} places for '{display_name}' via {outcome.provider_id} "
            f"after {outcome.attempts} attempt(s)"
        )
        await self._cache.set_itinerary(normalized, outcome.provider_id, result.places)
        await self._stats.record_hit(normalized, display_name, outcome.provider_id)
        return FetchResult(
            places=result.places,
            model=outcome.provider_id,
            cached=False,
        )

    async def purge(self, normalized_name: str, include_stats: bool = False) -> bool:
        """Drop every cached itinerary for a figure, and optionally its usage record."""
        normalized = normalize_name(normalized_name)
        success = await self._cache.purge_figure(normalized)
        if include_stats:
            success = await self._stats.delete(normalized) and success
        return success

    async def list_stats(self) -> list[dict]:
        """Usage records, most requested first, each flagged with whether a cache entry exists."""
        stats = await self._stats.get_all()
        flags = await asyncio.gather(*(self._cache.has_entries(s.normalized_name) for s in stats))
        return [
            {**s.model_dump(), "has_cached_data": has_cached}
            for s, has_cached in zip(stats, flags)
        ]


places_service = PlacesService()
