"""Model fallback controller.

Candidates are tried in priority order. Rate limit, overload and unknown-model
failures pause for a fixed delay and rotate to the next candidate; any other
failure aborts at once, so unrelated bugs are not masked by rotation.
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Generic, Optional, Sequence, TypeVar

from app.core.config import settings
from app.core.logging import get_logger
from app.modules.generation.errors import (
    GenerationError,
    PersistenceFailure,
    ProviderError,
    ProviderExhausted,
    ProviderFatal,
    ProviderUnavailable,
)
from app.modules.generation.provider import GenerationProvider, PydanticAIProvider

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

Sleeper = Callable[[float], Awaitable[None]]


@dataclass
class FallbackTrace:
    """Which model answered and how many rotations it took."""

    model: Optional[str] = None
    rotations: int = 0
    attempted: list[str] = field(default_factory=list)


@dataclass
class GenerationResult:
    model: str
    text: str
    rotations: int


@dataclass
class BatchItemResult(Generic[T, R]):
    job: T
    status: str  # "ok" | "failed" | "all_models_rate_limited" | "skipped"
    value: Optional[R] = None
    error: Optional[str] = None


@dataclass
class BatchReport(Generic[T, R]):
    items: list[BatchItemResult[T, R]] = field(default_factory=list)
    stopped_early: bool = False


class ModelFallbackController:
    def __init__(
        self,
        provider: GenerationProvider,
        candidates: Sequence[str],
        *,
        rotation_delay: float = 0.0,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.provider = provider
        self.candidates = [c for c in candidates if c]
        self.rotation_delay = max(0.0, float(rotation_delay))
        self._sleep = sleep

    async def _rotate(self, model: str, exc: ProviderUnavailable, index: int) -> None:
        logger.warning(
            "Model %s unavailable (%s); rotating", model, exc, extra={"model": model}
        )
        if self.rotation_delay and index < len(self.candidates) - 1:
            await self._sleep(self.rotation_delay)

    async def generate(self, prompt: str) -> GenerationResult:
        last_error: Optional[ProviderError] = None
        rotations = 0
        for index, model in enumerate(self.candidates):
            try:
                text = await self.provider.generate(model, prompt)
            except ProviderUnavailable as exc:
                last_error = exc
                await self._rotate(model, exc, index)
                rotations += 1
                continue
            except ProviderError as exc:
                logger.error("Fatal provider error from %s: %s", model, exc)
                raise ProviderFatal(exc, model=model) from exc
            logger.info("Generated with %s after %d rotation(s)", model, rotations)
            return GenerationResult(model=model, text=text, rotations=rotations)
        raise ProviderExhausted(last_error, self.candidates)

    async def stream(
        self, prompt: str, trace: Optional[FallbackTrace] = None
    ) -> AsyncIterator[str]:
        """Yield chunks from the first candidate that starts answering.

        Rotation only happens before the first chunk; a failure after output
        started is fatal since consumed chunks cannot be retracted.
        """
        trace = trace if trace is not None else FallbackTrace()
        last_error: Optional[ProviderError] = None
        for index, model in enumerate(self.candidates):
            trace.attempted.append(model)
            started = False
            try:
                async with aclosing(self.provider.generate_stream(model, prompt)) as chunks:
                    async for chunk in chunks:
                        if not started:
                            started = True
                            trace.model = model
                        yield chunk
                if not started:
                    raise ProviderError("Empty response from model", model=model)
                return
            except ProviderUnavailable as exc:
                if started:
                    raise ProviderFatal(exc, model=model) from exc
                last_error = exc
                await self._rotate(model, exc, index)
                trace.rotations += 1
            except ProviderError as exc:
                logger.error("Fatal provider error from %s: %s", model, exc)
                raise ProviderFatal(exc, model=model) from exc
        raise ProviderExhausted(last_error, self.candidates)

    async def run_batch(
        self,
        jobs: Sequence[T],
        worker: Callable[[T], Awaitable[R]],
        *,
        item_delay: float = 0.0,
    ) -> BatchReport[T, R]:
        """Run independent jobs in order with a fixed inter-item delay.

        Exhaustion on one job stops the batch; the remaining jobs are reported
        as skipped instead of spending an already exhausted quota.
        """
        report: BatchReport[T, R] = BatchReport()
        for index, job in enumerate(jobs):
            if report.stopped_early:
                report.items.append(BatchItemResult(job=job, status="skipped"))
                continue
            if index > 0 and item_delay:
                await self._sleep(item_delay)
            try:
                value = await worker(job)
            except ProviderExhausted as exc:
                logger.error("All fallback models exhausted; stopping batch early")
                report.items.append(
                    BatchItemResult(
                        job=job, status="all_models_rate_limited", error=str(exc)
                    )
                )
                report.stopped_early = True
                continue
            except (GenerationError, PersistenceFailure) as exc:
                report.items.append(BatchItemResult(job=job, status="failed", error=str(exc)))
                continue
            report.items.append(BatchItemResult(job=job, status="ok", value=value))
        return report


def build_controller(provider: Optional[GenerationProvider] = None) -> ModelFallbackController:
    """Controller over the configured candidate list."""
    return ModelFallbackController(
        provider or PydanticAIProvider(),
        settings.generation.models,
        rotation_delay=settings.generation.rotation_delay_seconds,
    )


__all__ = [
    "ModelFallbackController",
    "build_controller",
    "FallbackTrace",
    "GenerationResult",
    "BatchItemResult",
    "BatchReport",
]
