import re
import sys
from collections import defaultdict
from pathlib import Path

import pytest
import redis.asyncio as redis

# Ensure the backend package root is on sys.path for direct pytest runs
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from app.schemas.places import ItineraryResult  # noqa: E402
from app.services.cache_service import CacheService  # noqa: E402
from app.services.fallback import FallbackController  # noqa: E402
from app.services.places_service import PlacesService  # noqa: E402
from app.services.redis_connection import RedisConnection  # noqa: E402
from app.services.stats_service import StatsService  # noqa: E402

GEMINI = "gemini-2.0-flash"
GPT = "gpt-4o-mini"
CLAUDE = "claude-sonnet-4-5-20250929"


def _glob_to_regex(pattern: str) -> re.Pattern:
    """Redis MATCH syntax subset: backslash escapes, * and ?."""
    out = []
    chars = iter(pattern)
    for c in chars:
        if c == "\\":
            out.append(re.escape(next(chars, "\\")))
        elif c == "*":
            out.append(".*")
        elif c == "?":
            out.append(".")
        else:
            out.append(re.escape(c))
    return re.compile("".join(out) + r"\Z", re.DOTALL)


class FakeRedis:
    """In-memory stand-in for redis.asyncio.Redis (decode_responses=True)."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.sets: dict[str, set[str]] = defaultdict(set)
        self.writes: list[tuple[str, str]] = []
        self.fail = False

    def _check(self):
        if self.fail:
            raise redis.ConnectionError("Connection refused")

    async def ping(self):
        self._check()
        return True

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def mget(self, keys):
        self._check()
        return [self.data.get(k) for k in keys]

    async def set(self, key, value, ex=None):
        self._check()
        self.data[key] = value
        self.ttls[key] = ex
        self.writes.append(("set", key))
        return True

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        self.writes.append(("delete", ",".join(keys)))
        return removed

    async def scan_iter(self, match=None):
        self._check()
        regex = _glob_to_regex(match) if match else None
        for key in list(self.data):
            if regex is None or regex.match(key):
                yield key

    async def sadd(self, key, *members):
        self._check()
        self.sets[key].update(members)
        self.writes.append(("sadd", key))
        return len(members)

    async def srem(self, key, *members):
        self._check()
        self.sets[key].difference_update(members)
        return len(members)

    async def smembers(self, key):
        self._check()
        return set(self.sets.get(key, set()))

    async def aclose(self):
        pass


class FakeProviderClient:
    """Scripted provider answers. Each call pops the next item for that provider."""

    def __init__(self, configured=(GEMINI, GPT, CLAUDE)):
        self.configured = set(configured)
        self.scripts: dict[str, list] = defaultdict(list)
        self.calls: list[tuple[str, str]] = []

    def script(self, provider_id, *answers):
        self.scripts[provider_id].extend(answers)

    def is_configured(self, provider_id):
        return provider_id in self.configured

    async def invoke(self, provider_id, name):
        self.calls.append((provider_id, name))
        if not self.scripts[provider_id]:
            raise AssertionError(f"unexpected call to {provider_id}")
        answer = self.scripts[provider_id].pop(0)
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, dict):
            return ItineraryResult.model_validate(answer)
        return answer


def make_places(*names):
    return [
        {
            "name": n,
            "years": f"{1600 + i * 10}-{1610 + i * 10}",
            "description": f"Lived in {n}.",
            "lat": 50.0 + i,
            "lng": -1.0 - i,
        }
        for i, n in enumerate(names)
    ]


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def connection(fake_redis):
    return RedisConnection("redis://fake", client=fake_redis)


@pytest.fixture
def cache(connection):
    return CacheService(connection)


@pytest.fixture
def stats(connection):
    return StatsService(connection)


@pytest.fixture
def providers():
    return FakeProviderClient()


@pytest.fixture
def fallback(providers):
    return FallbackController(
        client=providers,
        preference_order=(GEMINI, GPT, CLAUDE),
        default_provider=GEMINI,
        max_attempts=3,
    )


@pytest.fixture
def places(cache, stats, fallback):
    return PlacesService(cache=cache, stats=stats, fallback=fallback)
