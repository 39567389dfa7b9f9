"""Error taxonomy for the ISQ pipeline.

Only ConfigurationError and quota errors cross a stage boundary. Every other
failure (overload after retries, upstream errors, malformed model output,
page fetch failures) is absorbed inside the stage and replaced by a fallback.
"""

from typing import Any


class ISQError(Exception):
    """Base exception for the ISQ pipeline."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ConfigurationError(ISQError):
    """A required setting (usually an API key) is missing."""


class GenerationAPIError(ISQError):
    """The generation API answered with a failure status."""

    def __init__(self, message: str, status: int | None = None, context: dict[str, Any] | None = None):
        super().__init__(message, context)
        self.status = status


class UpstreamError(GenerationAPIError):
    """Non-retryable API failure (any non-2xx other than 429/502/503)."""


class OverloadError(GenerationAPIError):
    """429/502/503 persisted through every retry."""


class QuotaExhaustedError(GenerationAPIError):
    """The API key's quota is exhausted. Retrying is futile."""


def is_quota_error(exc: BaseException) -> bool:
    """True when an exception means the credential is rate-limited or out of quota."""
    if isinstance(exc, QuotaExhaustedError):
        return True
    if isinstance(exc, OverloadError) and exc.status == 429:
        return True
    return "quota" in str(exc).lower()


def as_quota_error(exc: BaseException) -> QuotaExhaustedError:
    """Wrap a quota-flavoured exception as QuotaExhaustedError."""
    if isinstance(exc, QuotaExhaustedError):
        return exc
    status = getattr(exc, "status", None)
    return QuotaExhaustedError(
        f"Generation API quota or rate limit exhausted: {exc}",
        status=status,
        context={"cause": type(exc).__name__},
    )
