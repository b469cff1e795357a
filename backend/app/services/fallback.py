"""Fallback controller — tries providers one after another for a single request.

Only transient failures (rate limit, overload, 5xx, timeouts) move on to the
next provider. A malformed answer or any other error stops the request at once.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from app.config import settings
from app.schemas.places import ItineraryResult
from app.services.errors import ProviderError
from app.services.provider_client import ProviderClient, provider_client

logger = logging.getLogger(__name__)


def build_attempt_list(
    requested: str | None,
    preference_order: Sequence[str],
    default: str,
    max_attempts: int = 3,
    is_available: Callable[[str], bool] | None = None,
) -> list[str]:
    """Ordered, de-duplicated providers to try, capped at ``max_attempts``.

    The first entry is always the requested provider (or the default). Later
    entries come from ``preference_order``; those rejected by ``is_available``
    are skipped.
    """
    attempts = [requested or default]
    for provider_id in preference_order:
        if len(attempts) >= max_attempts:
            break
        if provider_id in attempts:
            continue
        if is_available is not None and not is_available(provider_id):
            continue
        attempts.append(provider_id)
    return attempts[:max(max_attempts, 1)]


@dataclass
class AttemptOutcome:
    provider_id: str
    result: ItineraryResult
    attempts: int


class FallbackController:
    """Drives sequential provider attempts with the retry table above."""

    def __init__(
        self,
        client: ProviderClient = provider_client,
        preference_order: Sequence[str] = settings.provider_fallback_list,
        default_provider: str = settings.default_provider,
        max_attempts: int = settings.max_provider_attempts,
    ):
        self._client = client
        self._preference_order = tuple(preference_order)
        self._default_provider = default_provider
        self._max_attempts = max_attempts

    @property
    def default_provider(self) -> str:
        return self._default_provider

    def attempt_list(self, requested: str | None) -> list[str]:
        return build_attempt_list(
            requested,
            self._preference_order,
            self._default_provider,
            self._max_attempts,
            is_available=self._client.is_configured,
        )

    async def run(self, name: str, requested: str | None) -> AttemptOutcome:
        """Return the first structurally valid answer.

        Raises:
            ProviderError: the last error once attempts are exhausted, or the
                first non-retryable error.
        """
        attempts = self.attempt_list(requested)
        last_error: ProviderError | None = None

        for i, provider_id in enumerate(attempts):
            try:
                result = await self._client.invoke(provider_id, name)
            except ProviderError as e:
                last_error = e
            except Exception as e:
                logger.error(f"Unexpected error from {provider_id}: {e}", exc_info=True)
                last_error = ProviderError(provider_id, str(e))
            else:
                if i > 0:
                    logger.info(f"Fallback provider {provider_id} answered for '{name}' (attempt {i + 1})")
                return AttemptOutcome(provider_id=provider_id, result=result, attempts=i + 1)

            if not last_error.retryable:
                logger.warning(f"{provider_id} failed with {last_error.kind.value} error, not retrying: {last_error}")
                break
            if i + 1 < len(attempts):
                logger.warning(f"{provider_id} failed ({last_error}), trying {attempts[i + 1]}")
            else:
                logger.warning(f"{provider_id} failed ({last_error}), no providers left")

        raise last_error


fallback_controller = FallbackController()
