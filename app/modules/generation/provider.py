"""Generation provider backed by pydantic-ai models.

Imports for the LLM provider are kept lazy to avoid import-time errors when
credentials are missing. Every failure leaves this module as either
``ProviderUnavailable`` (rate limit / overload / unknown model) or
``ProviderError``.
"""

from __future__ import annotations

from typing import AsyncIterator, Protocol

from pydantic_ai import Agent

from app.core.config import settings
from app.core.logging import get_logger
from app.modules.generation.envelopes import adapt_response
from app.modules.generation.errors import ProviderError, ProviderUnavailable
from app.modules.generation.retry import is_retryable

logger = get_logger(__name__)


class GenerationProvider(Protocol):
    async def generate(self, model: str, prompt: str) -> str: ...

    def generate_stream(self, model: str, prompt: str) -> AsyncIterator[str]: ...


def _build_google_model(model_name: str):
    """Build the Google Gemini model provider (lazy import)."""
    from pydantic_ai.models.google import GoogleModel
    from pydantic_ai.providers.google import GoogleProvider

    provider = GoogleProvider(api_key=settings.gemini_api_key)
    return GoogleModel(model_name, provider=provider)


def _build_openrouter_model(model_name: str):
    """Build OpenRouter model via OpenAI-compatible provider (lazy import)."""
    from pydantic_ai.models.openai import OpenAIChatModel
    from pydantic_ai.providers.openai import OpenAIProvider

    if not settings.openrouter_api_key:
        raise RuntimeError(
            "OpenRouter API key not configured. Set OPENROUTER_API_KEY in your environment."
        )

    provider = OpenAIProvider(
        api_key=settings.openrouter_api_key,
        base_url="https://openrouter.ai/api/v1",
    )
    return OpenAIChatModel(model_name, provider=provider)


def _build_model(model_name: str):
    provider = (settings.model_provider or "google").lower()
    if provider == "openrouter":
        return _build_openrouter_model(model_name)
    return _build_google_model(model_name)


def classify_error(exc: Exception, model: str) -> ProviderError:
    """Map an SDK exception to the provider error taxonomy."""
    if isinstance(exc, ProviderError):
        return exc
    status_code = getattr(exc, "status_code", None)
    message = str(exc)
    if is_retryable(status_code, message):
        return ProviderUnavailable(message, model=model, status_code=status_code)
    return ProviderError(message, model=model, status_code=status_code)


class PydanticAIProvider:
    """Plain-text generation through a pydantic-ai ``Agent`` per model name."""

    def _agent(self, model: str) -> Agent[None, str]:
        return Agent[None, str](
            model=_build_model(model),
            output_type=str,
        )

    async def generate(self, model: str, prompt: str) -> str:
        try:
            result = await self._agent(model).run(prompt)
            text = adapt_response(result)
        except Exception as exc:  # noqa: BLE001
            raise classify_error(exc, model) from exc
        if not text.strip():
            raise ProviderError("Empty response from model", model=model)
        return text

    async def generate_stream(self, model: str, prompt: str) -> AsyncIterator[str]:
        try:
            async with self._agent(model).run_stream(prompt) as result:
                async for delta in result.stream_text(delta=True):
                    if delta:
                        yield delta
        except ProviderError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise classify_error(exc, model) from exc


__all__ = [
    "GenerationProvider",
    "PydanticAIProvider",
    "classify_error",
]
