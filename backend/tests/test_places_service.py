"""End-to-end pipeline tests: cache, fallback and usage ledger together."""
import logging

import pytest

from app.schemas.stats import FigureStats
from app.services.errors import (
    InvalidQueryError,
    MalformedResponseError,
    RateLimitedError,
    TransientProviderError,
    UpstreamError,
)

from conftest import CLAUDE, GEMINI, GPT, make_places

NOT_FOUND = {"places": [], "error": "Could not find information about this person"}


def _count(fake_redis, normalized):
    raw = fake_redis.data.get(f"stats:{normalized}")
    return FigureStats.model_validate_json(raw).request_count if raw else 0


class TestScenarios:

    @pytest.mark.asyncio
    async def test_cold_then_warm(self, places, providers, cache, fake_redis):
        providers.script(GEMINI, {"places": make_places("Woolsthorpe", "Cambridge")})

        first = await places.fetch_itinerary("Isaac Newton", GEMINI)

        assert first.cached is False
        assert first.model == GEMINI
        assert len(first.places) == 2
        assert await cache.get_itinerary("isaac newton", GEMINI) is not None
        assert _count(fake_redis, "isaac newton") == 1

        second = await places.fetch_itinerary("  isaac   NEWTON ", GEMINI)

        assert second.cached is True
        assert second.model == GEMINI
        assert [p.name for p in second.places] == ["Woolsthorpe", "Cambridge"]
        assert len(providers.calls) == 1
        assert _count(fake_redis, "isaac newton") == 2

        record = FigureStats.model_validate_json(fake_redis.data["stats:isaac newton"])
        assert record.display_name == "Isaac Newton"

    @pytest.mark.asyncio
    async def test_rate_limit_falls_back_and_caches_under_provider_used(self, places, providers, cache):
        providers.script(GEMINI, TransientProviderError(GEMINI, "429", rate_limited=True))
        providers.script(GPT, {"places": make_places("Warsaw", "Paris")})

        result = await places.fetch_itinerary("Marie Curie", GEMINI)

        assert result.model == GPT
        assert result.cached is False
        assert await cache.get_itinerary("marie curie", GPT) is not None
        assert await cache.get_itinerary("marie curie", GEMINI) is None

        # the requested provider's key still misses, so the fallback runs again
        providers.script(GEMINI, TransientProviderError(GEMINI, "429", rate_limited=True))
        providers.script(GPT, {"places": make_places("Warsaw", "Paris")})

        again = await places.fetch_itinerary("Marie Curie", GEMINI)

        assert again.cached is False
        assert again.model == GPT
        assert [p for p, _ in providers.calls] == [GEMINI, GPT, GEMINI, GPT]

    @pytest.mark.asyncio
    async def test_attempt_count_is_logged(self, places, providers, caplog):
        providers.script(GEMINI, TransientProviderError(GEMINI, "503"))
        providers.script(GPT, {"places": make_places("Warsaw", "Paris")})

        with caplog.at_level(logging.INFO, logger="app.services.places_service"):
            result = await places.fetch_itinerary("Marie Curie", GEMINI)

        assert not hasattr(result, "attempts")
        assert "via gpt-4o-mini after 2 attempt(s)" in caplog.text

    @pytest.mark.asyncio
    async def test_not_found_is_not_cached_or_counted(self, places, providers, cache, fake_redis):
        providers.script(GEMINI, NOT_FOUND)

        result = await places.fetch_itinerary("Xyzzy Nobody", GEMINI)

        assert result.places == []
        assert result.error == NOT_FOUND["error"]
        assert result.cached is False
        assert await cache.has_entries("xyzzy nobody") is False
        assert _count(fake_redis, "xyzzy nobody") == 0

    @pytest.mark.asyncio
    async def test_empty_without_error_is_not_cached_or_counted(self, places, providers, cache, fake_redis):
        providers.script(GEMINI, {"places": []})

        result = await places.fetch_itinerary("Someone Obscure", GEMINI)

        assert result.places == []
        assert result.error is None
        assert await cache.has_entries("someone obscure") is False
        assert _count(fake_redis, "someone obscure") == 0

    @pytest.mark.asyncio
    async def test_purge_makes_next_request_cold(self, places, providers):
        providers.script(GEMINI, {"places": make_places("Cambridge")})
        await places.fetch_itinerary("Isaac Newton", GEMINI)

        assert await places.purge("isaac newton") is True
        assert await places.purge("isaac newton") is True

        providers.script(GEMINI, {"places": make_places("Cambridge")})
        result = await places.fetch_itinerary("Isaac Newton", GEMINI)

        assert result.cached is False
        assert len(providers.calls) == 2


class TestValidation:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["", "   ", None, 42, ["Isaac Newton"]])
    async def test_bad_names_rejected_before_any_access(self, places, providers, fake_redis, name):
        fake_redis.fail = True  # any store access would be visible as a logged failure

        with pytest.raises(InvalidQueryError):
            await places.fetch_itinerary(name, GEMINI)

        assert providers.calls == []
        assert fake_redis.writes == []

    @pytest.mark.asyncio
    async def test_unknown_model_rejected(self, places, providers):
        with pytest.raises(InvalidQueryError):
            await places.fetch_itinerary("Isaac Newton", "mystery-model")
        assert providers.calls == []

    @pytest.mark.asyncio
    async def test_default_provider_used_when_none_requested(self, places, providers, cache):
        providers.script(GEMINI, {"places": make_places("Cambridge")})

        result = await places.fetch_itinerary("Isaac Newton")

        assert result.model == GEMINI
        assert await cache.get_itinerary("isaac newton", GEMINI) is not None


class TestFailures:

    @pytest.mark.asyncio
    async def test_exhausted_on_rate_limit(self, places, providers, cache, fake_redis):
        providers.script(GEMINI, TransientProviderError(GEMINI, "503"))
        providers.script(GPT, TransientProviderError(GPT, "500"))
        providers.script(CLAUDE, TransientProviderError(CLAUDE, "429", rate_limited=True))

        with pytest.raises(RateLimitedError):
            await places.fetch_itinerary("Marie Curie", GEMINI)

        assert await cache.has_entries("marie curie") is False
        assert _count(fake_redis, "marie curie") == 0

    @pytest.mark.asyncio
    async def test_exhausted_on_server_errors(self, places, providers):
        providers.script(GEMINI, TransientProviderError(GEMINI, "429", rate_limited=True))
        providers.script(GPT, TransientProviderError(GPT, "429", rate_limited=True))
        providers.script(CLAUDE, TransientProviderError(CLAUDE, "503"))

        with pytest.raises(UpstreamError):
            await places.fetch_itinerary("Marie Curie", GEMINI)

    @pytest.mark.asyncio
    async def test_malformed_is_upstream_error_after_one_attempt(self, places, providers, fake_redis):
        providers.script(GEMINI, MalformedResponseError(GEMINI, "not json"))
        providers.script(GPT, {"places": make_places("Paris")})

        with pytest.raises(UpstreamError):
            await places.fetch_itinerary("Marie Curie", GEMINI)

        assert len(providers.calls) == 1
        assert _count(fake_redis, "marie curie") == 0

    @pytest.mark.asyncio
    async def test_store_down_still_serves_generation(self, places, providers, fake_redis):
        fake_redis.fail = True
        providers.script(GEMINI, {"places": make_places("Cambridge")})

        result = await places.fetch_itinerary("Isaac Newton", GEMINI)

        assert result.cached is False
        assert [p.name for p in result.places] == ["Cambridge"]


class TestStatsListing:

    @pytest.mark.asyncio
    async def test_list_stats_flags_cached_figures(self, places, providers):
        providers.script(GEMINI, {"places": make_places("Cambridge")}, {"places": make_places("Paris")})
        await places.fetch_itinerary("Isaac Newton", GEMINI)
        await places.fetch_itinerary("Isaac Newton", GEMINI)
        await places.fetch_itinerary("Marie Curie", GEMINI)
        await places.purge("marie curie")

        listing = await places.list_stats()

        assert [(s["normalized_name"], s["request_count"], s["has_cached_data"]) for s in listing] == [
            ("isaac newton", 2, True),
            ("marie curie", 1, False),
        ]

    @pytest.mark.asyncio
    async def test_purge_with_stats(self, places, providers):
        providers.script(GEMINI, {"places": make_places("Cambridge")})
        await places.fetch_itinerary("Isaac Newton", GEMINI)

        assert await places.purge("Isaac  Newton", include_stats=True) is True

        assert await places.list_stats() == []
