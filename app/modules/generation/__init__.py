"""Provider access: fallback across candidate models and failure taxonomy."""

from .errors import (
    GenerationError,
    MalformedOutput,
    PersistenceFailure,
    ProviderError,
    ProviderExhausted,
    ProviderFatal,
    ProviderUnavailable,
)
from .fallback import FallbackTrace, GenerationResult, ModelFallbackController, build_controller

__all__ = [
    "GenerationError",
    "MalformedOutput",
    "PersistenceFailure",
    "ProviderError",
    "ProviderExhausted",
    "ProviderFatal",
    "ProviderUnavailable",
    "FallbackTrace",
    "GenerationResult",
    "ModelFallbackController",
    "build_controller",
]
