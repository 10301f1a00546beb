"""Flashcards pipeline service class.

Provides a high-level class that takes a topic request through generation,
category resolution and unification. Used by API handlers, the CLI and batch
jobs so that all of them share one failure policy.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db.schemas.flashcards import FlashcardSet
from app.core.logging import get_logger
from app.modules.flashcards.cache import TopicCache
from app.modules.flashcards.generator import (
    StreamEvent,
    generate_flashcards,
    stream_flashcards,
)
from app.modules.flashcards.models.flashcards import GenerationPayload
from app.modules.flashcards.unify import UnificationEngine, UnifyResult
from app.modules.generation.errors import PersistenceFailure
from app.modules.generation.fallback import FallbackTrace, ModelFallbackController

logger = get_logger(__name__)


@dataclass
class GenerationRequest:
    topic: str
    count: Optional[int] = None
    category: Optional[str] = None
    contributor_id: Optional[str] = None


@dataclass
class GenerationOutcome:
    """Generated payload plus the storage result.

    ``storage_error`` set means generation succeeded but persisting failed;
    the payload is still valid and can be re-submitted for unification.
    """

    payload: GenerationPayload
    model: Optional[str] = None
    rotations: int = 0
    unified: Optional[UnifyResult] = None
    storage_error: Optional[str] = None

    @property
    def flashcard_set(self) -> Optional[FlashcardSet]:
        return self.unified.flashcard_set if self.unified else None


class FlashcardPipeline:
    def __init__(
        self,
        session: AsyncSession,
        controller: ModelFallbackController,
        *,
        cache: Optional[TopicCache] = None,
    ) -> None:
        self.session = session
        self.controller = controller
        self.cache = cache
        self.engine = UnificationEngine(session)

    async def persist(
        self, request: GenerationRequest, payload: GenerationPayload
    ) -> UnifyResult:
        """Unify a generated payload; raises ``PersistenceFailure``."""
        result = await self.engine.unify(
            normalized_topic=payload.normalized_topic,
            items=list(payload.flashcards),
            original_topic=request.topic,
            category=request.category,
            contributor_id=request.contributor_id,
            fallback_category=payload.category,
        )
        if self.cache is not None:
            self.cache.invalidate(
                payload.normalized_topic,
                request.topic,
                *result.flashcard_set.aliases,
            )
        return result

    async def _persist_outcome(self, request: GenerationRequest, outcome: GenerationOutcome) -> GenerationOutcome:
        try:
            outcome.unified = await self.persist(request, outcome.payload)
        except PersistenceFailure as exc:
            logger.error(
                "Generated %d cards but storage failed: %s",
                len(outcome.payload.flashcards),
                exc,
                extra={"topic": outcome.payload.normalized_topic},
            )
            outcome.storage_error = str(exc)
        return outcome

    async def generate(self, request: GenerationRequest) -> GenerationOutcome:
        """Generate, then unify. Generation errors propagate unchanged."""
        generated = await generate_flashcards(
            self.controller,
            request.topic,
            count=request.count,
            category=request.category,
        )
        outcome = GenerationOutcome(
            payload=generated.payload,
            model=generated.model,
            rotations=generated.rotations,
        )
        return await self._persist_outcome(request, outcome)

    async def stream(
        self, request: GenerationRequest
    ) -> AsyncIterator[StreamEvent | GenerationOutcome]:
        """Yield preview events, then one ``GenerationOutcome``.

        Nothing is persisted unless the completed document parses strictly;
        a caller that stops iterating early discards the partial buffer.
        """
        trace = FallbackTrace()
        async for event in stream_flashcards(
            self.controller,
            request.topic,
            count=request.count,
            category=request.category,
            trace=trace,
        ):
            if event.kind != "payload":
                yield event
                continue
            outcome = GenerationOutcome(
                payload=event.payload,
                model=trace.model,
                rotations=trace.rotations,
            )
            yield await self._persist_outcome(request, outcome)
