"""Error taxonomy for the itinerary pipeline.

Provider failures carry a structured ``kind`` so the fallback controller can
decide whether to move on to the next provider without inspecting messages.
Errors that reach HTTP callers carry a ``status_code`` and a fixed,
user-facing message.
"""

from enum import Enum


class FootstepsError(Exception):
    """Base exception for the Footsteps backend."""

    status_code: int | None = None
    public_message: str = "Something went wrong. Please try again."


class InvalidQueryError(FootstepsError):
    """Raised when the caller's input is unusable."""

    status_code = 400

    def __init__(self, message: str = "Name is required"):
        super().__init__(message)
        self.public_message = message


class StoreUnavailableError(FootstepsError):
    """Raised when Redis cannot be reached. Always handled inside the store adapters."""


# Provider errors


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    MALFORMED = "malformed"
    OTHER = "other"


class ProviderError(FootstepsError):
    """A single provider attempt failed."""

    kind: ErrorKind = ErrorKind.OTHER

    def __init__(self, provider_id: str, message: str):
        super().__init__(f"{provider_id}: {message}")
        self.provider_id = provider_id

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT


class TransientProviderError(ProviderError):
    """Rate limit, quota, overload, timeout or 5xx from a provider."""

    kind = ErrorKind.TRANSIENT

    def __init__(self, provider_id: str, message: str, *, rate_limited: bool = False):
        super().__init__(provider_id, message)
        self.rate_limited = rate_limited


class MalformedResponseError(ProviderError):
    """Provider answered, but not with the itinerary shape."""

    kind = ErrorKind.MALFORMED


class UnknownProviderError(ProviderError):
    """No backend is known for this provider id."""


class ProviderNotConfiguredError(ProviderError):
    """The provider's backend has no API key."""


# Terminal pipeline errors


class PipelineError(FootstepsError):
    """A request that could not be served once every attempt was spent."""


class RateLimitedError(PipelineError):
    status_code = 429
    public_message = "API rate limit exceeded. Please wait a moment and try again."


class UpstreamError(PipelineError):
    status_code = 500
    public_message = "Failed to fetch places. Please try again."
