"""Models service — which provider ids callers may request."""

import logging
import re
from dataclasses import asdict, dataclass

import httpx

from app.config import Settings, settings
from app.services.cache_service import CacheService, cache_service
from app.services.errors import UnknownProviderError
from app.services.provider_client import ProviderClient, provider_client, resolve_backend

logger = logging.getLogger(__name__)

_EXCLUDED_GEMINI = re.compile(r"robotics|experimental", re.IGNORECASE)


@dataclass
class ModelInfo:
    id: str
    name: str
    backend: str


class ModelsService:
    """Lists configured providers plus the live Gemini catalogue."""

    def __init__(
        self,
        config: Settings = settings,
        client: ProviderClient = provider_client,
        cache: CacheService = cache_service,
    ):
        self._config = config
        self._client = client
        self._cache = cache
        self._http: httpx.AsyncClient | None = None

    async def _get_http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(base_url=self._config.gemini_base_url, timeout=15.0)
        return self._http

    def _configured_models(self) -> list[ModelInfo]:
        ids = [self._config.default_provider, *self._config.provider_fallback_list]
        models = []
        for provider_id in dict.fromkeys(ids):
            if not self._client.is_configured(provider_id):
                continue
            try:
                backend = resolve_backend(provider_id)
            except UnknownProviderError:
                continue
            models.append(ModelInfo(id=provider_id, name=provider_id, backend=backend.value))
        return models

    async def _gemini_models(self) -> list[ModelInfo]:
        """Gemini models that support generateContent, sorted by display name."""
        client = await self._get_http()
        resp = await client.get("/models", params={"key": self._config.gemini_api_key})
        resp.raise_for_status()
        data = resp.json()

        models = [
            ModelInfo(
                id=m["name"].removeprefix("models/"),
                name=m.get("displayName", m["name"]),
                backend="gemini",
            )
            for m in data.get("models", [])
            if "generateContent" in (m.get("supportedGenerationMethods") or [])
            and "Gemini" in (m.get("displayName") or "")
            and not _EXCLUDED_GEMINI.search(m.get("displayName") or "")
        ]
        models.sort(key=lambda m: m.name)
        return models

    async def list_models(self) -> list[dict]:
        cached = await self._cache.get_models()
        if cached is not None:
            return cached

        models = self._configured_models()
        complete = True
        if self._config.gemini_api_key:
            try:
                known = {m.id for m in models}
                models.extend(m for m in await self._gemini_models() if m.id not in known)
            except (httpx.HTTPError, KeyError, ValueError) as e:
                logger.error(f"Gemini model listing failed, using configured models only: {e}")
                complete = False

        result = [asdict(m) for m in models]
        if complete:
            await self._cache.set_models(result)
        return result

    async def close(self):
        if self._http:
            await self._http.aclose()
            self._http = None


models_service = ModelsService()
