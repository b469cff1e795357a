"""Provider client — asks one LLM for the places a historical figure lived.

Provider ids are model ids. The backend serving a model is picked from the id
prefix: Gemini models go through Google's OpenAI-compatible endpoint, GPT
models through OpenAI, Claude models through Anthropic.
"""

import logging
import re
from enum import Enum

import anthropic
import openai
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI
from pydantic import ValidationError

from app.config import Settings, settings
from app.schemas.places import ItineraryResult
from app.services.errors import (
    MalformedResponseError,
    ProviderError,
    ProviderNotConfiguredError,
    TransientProviderError,
    UnknownProviderError,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a historian. You answer only with JSON."

PLACES_PROMPT = """For the historical figure "{name}", list the places where they lived during their
lifetime, in chronological order.

Rules:
- Only include places where the person actually resided, not places they merely visited
- Give the years they lived in each place as a range, e.g. "1706-1723"
- Describe their time in each place in 1-2 sentences
- Include accurate latitude and longitude for each place
- For the final place, mention when and where the person died, and where they are buried if known

If the person is not a recognized historical figure or you cannot find reliable information, return:
{{
    "places": [],
    "error": "Could not find information about this person"
}}

Respond ONLY with valid JSON, no markdown, no preamble:
{{
    "places": [
        {{
            "name": "City, Country",
            "years": "1706-1723",
            "description": "Brief description of their time there",
            "lat": 39.9526,
            "lng": -75.1652
        }}
    ]
}}"""

_CODE_FENCE = re.compile(r"```(?:json)?\s*|\s*```", re.IGNORECASE)

# 408 timeout, 5xx server errors, 529 overloaded (Anthropic)
_TRANSIENT_STATUS = {408, 500, 502, 503, 504, 529}


class Backend(str, Enum):
    GEMINI = "gemini"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


# OpenAI reasoning models take max_completion_tokens and reject temperature
_REASONING_PREFIXES = ("o1", "o3", "o4")

_BACKEND_PREFIXES: list[tuple[tuple[str, ...], Backend]] = [
    (("gemini-",), Backend.GEMINI),
    (("gpt-", "chatgpt-", *_REASONING_PREFIXES), Backend.OPENAI),
    (("claude-",), Backend.ANTHROPIC),
]


def resolve_backend(provider_id: str) -> Backend:
    for prefixes, backend in _BACKEND_PREFIXES:
        if provider_id.startswith(prefixes):
            return backend
    raise UnknownProviderError(provider_id, "no backend serves this model")


def strip_framing(text: str) -> str:
    """Remove markdown code fences around a JSON answer."""
    return _CODE_FENCE.sub("", text).strip()


def parse_itinerary(provider_id: str, text: str | None) -> ItineraryResult:
    """Parse raw provider text into an ItineraryResult or raise MalformedResponseError."""
    if not text or not text.strip():
        raise MalformedResponseError(provider_id, "empty response")
    cleaned = strip_framing(text)
    try:
        return ItineraryResult.model_validate_json(cleaned)
    except ValidationError as e:
        logger.warning(f"{provider_id} returned an unexpected shape: {e}\nRaw: {cleaned[:500]}")
        raise MalformedResponseError(provider_id, f"unexpected response shape ({e.error_count()} errors)") from e


def classify_error(provider_id: str, exc: Exception) -> ProviderError:
    """Map an SDK exception onto the retry taxonomy."""
    if isinstance(exc, (openai.RateLimitError, anthropic.RateLimitError)):
        return TransientProviderError(provider_id, "rate limit or quota exceeded", rate_limited=True)
    if isinstance(exc, (openai.APIConnectionError, anthropic.APIConnectionError)):
        return TransientProviderError(provider_id, f"connection failed: {exc}")
    if isinstance(exc, (openai.APIStatusError, anthropic.APIStatusError)):
        if exc.status_code == 429:
            return TransientProviderError(provider_id, "rate limit or quota exceeded", rate_limited=True)
        if exc.status_code in _TRANSIENT_STATUS or exc.status_code >= 500:
            return TransientProviderError(provider_id, f"HTTP {exc.status_code}")
        return ProviderError(provider_id, f"HTTP {exc.status_code}")
    return ProviderError(provider_id, str(exc))


class ProviderClient:
    """Invokes a single provider with the fixed itinerary prompt."""

    def __init__(self, config: Settings = settings):
        self._config = config
        self._openai_clients: dict[Backend, AsyncOpenAI] = {}
        self._anthropic: AsyncAnthropic | None = None

    def _api_key(self, backend: Backend) -> str:
        return {
            Backend.GEMINI: self._config.gemini_api_key,
            Backend.OPENAI: self._config.openai_api_key,
            Backend.ANTHROPIC: self._config.anthropic_api_key,
        }[backend]

    def is_configured(self, provider_id: str) -> bool:
        try:
            return bool(self._api_key(resolve_backend(provider_id)))
        except UnknownProviderError:
            return False

    def _openai_for(self, backend: Backend) -> AsyncOpenAI:
        if backend not in self._openai_clients:
            kwargs: dict = {
                "api_key": self._api_key(backend),
                "timeout": self._config.provider_timeout_seconds,
                "max_retries": 0,  # the fallback controller owns retries
            }
            if backend is Backend.GEMINI:
                kwargs["base_url"] = self._config.gemini_openai_base_url
            self._openai_clients[backend] = AsyncOpenAI(**kwargs)
        return self._openai_clients[backend]

    def _anthropic_client(self) -> AsyncAnthropic:
        if self._anthropic is None:
            self._anthropic = AsyncAnthropic(
                api_key=self._config.anthropic_api_key,
                timeout=self._config.provider_timeout_seconds,
                max_retries=0,
            )
        return self._anthropic

    async def _complete(self, backend: Backend, provider_id: str, user: str) -> str | None:
        if backend is Backend.ANTHROPIC:
            response = await self._anthropic_client().messages.create(
                model=provider_id,
                max_tokens=self._config.provider_max_tokens,
                temperature=self._config.provider_temperature,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": user}],
            )
            return response.content[0].text if response.content else None

        kwargs: dict = {
            "model": provider_id,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user},
            ],
        }
        if backend is Backend.OPENAI and provider_id.startswith(_REASONING_PREFIXES):
            kwargs["max_completion_tokens"] = self._config.provider_max_tokens
        else:
            kwargs["max_tokens"] = self._config.provider_max_tokens
            kwargs["temperature"] = self._config.provider_temperature
        if backend is Backend.OPENAI:
            kwargs["response_format"] = {"type": "json_object"}
        response = await self._openai_for(backend).chat.completions.create(**kwargs)
        return response.choices[0].message.content if response.choices else None

    async def invoke(self, provider_id: str, name: str) -> ItineraryResult:
        """Ask one provider for the figure's itinerary.

        Raises:
            TransientProviderError: rate limit, quota, overload, timeout, 5xx.
            MalformedResponseError: the answer is not the itinerary JSON shape.
            ProviderError: anything else (unknown model, missing key, 4xx).
        """
        backend = resolve_backend(provider_id)
        if not self._api_key(backend):
            raise ProviderNotConfiguredError(provider_id, f"{backend.value} API key not configured")

        try:
            text = await self._complete(backend, provider_id, PLACES_PROMPT.format(name=name))
        except (openai.OpenAIError, anthropic.AnthropicError) as e:
            raise classify_error(provider_id, e) from e

        return parse_itinerary(provider_id, text)


provider_client = ProviderClient()
