"""Failure taxonomy for the generation pipeline.

Provider-level errors (``ProviderError`` / ``ProviderUnavailable``) are raised
by provider adapters. The fallback controller turns them into the
request-level outcomes (``ProviderExhausted`` / ``ProviderFatal``) that API
handlers and batch jobs react to.
"""

from __future__ import annotations

from typing import Optional


class ProviderError(Exception):
    """Any failure reported by a generation provider for one model."""

    def __init__(
        self,
        message: str,
        *,
        model: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.model = model
        self.status_code = status_code


class ProviderUnavailable(ProviderError):
    """Rate limit, overload or unknown model: the next candidate may succeed."""


class GenerationError(Exception):
    """Base class for request-level generation failures."""


class ProviderExhausted(GenerationError):
    """Every candidate was rotated away; retry the request later."""

    def __init__(self, last_error: Optional[ProviderError], attempted: list[str]) -> None:
        self.last_error = last_error
        self.attempted = list(attempted)
        detail = str(last_error) if last_error else "no candidates configured"
        super().__init__(f"All models are rate-limited or unavailable ({detail})")


class ProviderFatal(GenerationError):
    """Non rate-limit provider failure; not retried automatically."""

    def __init__(self, cause: Exception, *, model: Optional[str] = None) -> None:
        self.cause = cause
        self.model = model
        super().__init__(f"Provider error from {model or 'unknown model'}: {cause}")


class MalformedOutput(GenerationError):
    """The completed provider output could not be parsed strictly."""


class PersistenceFailure(Exception):
    """Storing a generated payload failed; the payload itself is still valid."""

    def __init__(self, message: str, *, cause: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.cause = cause


class TaxonomyConflict(Exception):
    """A concurrent writer created the same category slug first (internal)."""


__all__ = [
    "ProviderError",
    "ProviderUnavailable",
    "GenerationError",
    "ProviderExhausted",
    "ProviderFatal",
    "MalformedOutput",
    "PersistenceFailure",
    "TaxonomyConflict",
]
