from __future__ import annotations

import asyncio
import json

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.apis.deps import get_fallback_controller, get_session_factory, get_topic_cache
from app.core.config import settings
from app.core.db.base import get_session
from app.core.db_services import FlashcardSetStore
from app.core.logging import get_logger
from app.modules.flashcards.cache import TopicCache
from app.modules.flashcards.main import (
    FlashcardPipeline,
    GenerationOutcome,
    GenerationRequest,
)
from app.modules.flashcards.models.flashcards import GenerationPayload
from app.modules.generation.errors import (
    GenerationError,
    PersistenceFailure,
    ProviderExhausted,
)
from app.modules.generation.fallback import ModelFallbackController
from app.modules.generation.retry import RetryState
from .schemas import (
    FlashcardSetRead,
    FlashcardSetSummary,
    GenerateRequest,
    GenerateResponse,
    StorageStatus,
    TopicLookupResponse,
    UnifyRequest,
)

router = APIRouter()
logger = get_logger(__name__)


def _storage_status(outcome: GenerationOutcome) -> StorageStatus:
    if outcome.storage_error:
        return StorageStatus(
            status="failed",
            error="storage_unavailable",
            detail=outcome.storage_error,
        )
    return StorageStatus(status="created" if outcome.unified.created else "merged")


def _response(outcome: GenerationOutcome) -> GenerateResponse:
    db_set = outcome.flashcard_set
    return GenerateResponse(
        normalized_topic=outcome.payload.normalized_topic,
        category=db_set.category if db_set is not None else outcome.payload.category,
        flashcards=list(outcome.payload.flashcards),
        model=outcome.model,
        set_id=db_set.id if db_set is not None else None,
        created=outcome.unified.created if outcome.unified else None,
        storage=_storage_status(outcome),
    )


def _to_request(req: GenerateRequest) -> GenerationRequest:
    return GenerationRequest(
        topic=req.topic.strip(),
        count=req.count,
        category=req.category,
        contributor_id=req.contributor_id,
    )


@router.post(
    f"/{settings.app.version}/flashcards/generate",
    response_model=GenerateResponse,
    status_code=status.HTTP_200_OK,
    tags=["flashcards"],
)
async def generate_flashcards(
    req: GenerateRequest,
    session: AsyncSession = Depends(get_session),
    controller: ModelFallbackController = Depends(get_fallback_controller),
    cache: TopicCache = Depends(get_topic_cache),
) -> GenerateResponse:
    pipeline = FlashcardPipeline(session, controller, cache=cache)
    outcome = await pipeline.generate(_to_request(req))
    return _response(outcome)


@router.post(
    f"/{settings.app.version}/flashcards/unify",
    response_model=GenerateResponse,
    tags=["flashcards"],
)
async def unify_flashcards(
    req: UnifyRequest,
    session: AsyncSession = Depends(get_session),
    controller: ModelFallbackController = Depends(get_fallback_controller),
    cache: TopicCache = Depends(get_topic_cache),
) -> GenerateResponse:
    """Store a previously generated payload without regenerating it."""
    pipeline = FlashcardPipeline(session, controller, cache=cache)
    payload = GenerationPayload(
        normalized_topic=req.normalized_topic,
        category=req.category,
        flashcards=req.flashcards,
    )
    request = GenerationRequest(
        topic=req.topic.strip(),
        category=req.category,
        contributor_id=req.contributor_id,
    )
    outcome = GenerationOutcome(payload=payload)
    try:
        outcome.unified = await pipeline.persist(request, payload)
    except PersistenceFailure as exc:
        outcome.storage_error = str(exc)
    return _response(outcome)


def _sse(event: str | None, data: dict) -> bytes:
    payload = json.dumps(data, ensure_ascii=False)
    parts = []
    if event:
        parts.append(f"event: {event}")
    parts.append(f"data: {payload}")
    parts.append("")
    return ("\n".join(parts) + "\n").encode("utf-8")


def _error_event(exc: GenerationError) -> dict:
    data = {"error": type(exc).__name__, "detail": str(exc)}
    if isinstance(exc, ProviderExhausted):
        delay = settings.generation.retry_after_seconds
        data["retry_after"] = delay
        data["retry"] = RetryState().schedule(delay).to_dict()
    return data


@router.post(
    f"/{settings.app.version}/flashcards/generate/stream",
    tags=["flashcards"],
)
async def stream_flashcards(
    req: GenerateRequest,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    controller: ModelFallbackController = Depends(get_fallback_controller),
    cache: TopicCache = Depends(get_topic_cache),
) -> StreamingResponse:
    request = _to_request(req)

    async def gen():
        try:
            async with session_factory() as session:
                pipeline = FlashcardPipeline(session, controller, cache=cache)
                async for event in pipeline.stream(request):
                    if isinstance(event, GenerationOutcome):
                        yield _sse("done", _response(event).model_dump())
                    elif event.kind == "topic":
                        yield _sse("topic", {"normalized_topic": event.topic})
                    else:
                        yield _sse(
                            "cards",
                            {"flashcards": [c.model_dump() for c in event.items or []]},
                        )
        except GenerationError as exc:
            logger.warning("Stream failed: %s", exc, extra={"topic": request.topic})
            yield _sse("error", _error_event(exc))
        except asyncio.CancelledError:
            # Client disconnected; the partial buffer is discarded
            logger.info("Stream cancelled by client", extra={"topic": request.topic})
            raise

    return StreamingResponse(
        gen(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )


@router.get(
    f"/{settings.app.version}/flashcards/topics",
    response_model=TopicLookupResponse,
    tags=["flashcards"],
)
async def lookup_topic(
    topic: str,
    session: AsyncSession = Depends(get_session),
    cache: TopicCache = Depends(get_topic_cache),
) -> TopicLookupResponse:
    """Find the unified set for a topic by normalized name, alias or original text."""
    cached = cache.get(topic)
    if cached is not None:
        return TopicLookupResponse(found=True, flashcard_set=cached)

    store = FlashcardSetStore(session)
    # An exact normalized topic wins over alias and raw topic matches
    match = await store.find_by_key(topic)
    if match is None:
        matches = await store.find_matching(topic, topic)
        match = matches[0] if matches else None
    if match is None:
        return TopicLookupResponse(found=False)
    found = FlashcardSetRead.from_row(match)
    cache.set(topic, found)
    return TopicLookupResponse(found=True, flashcard_set=found)


@router.get(
    f"/{settings.app.version}/flashcards/sets",
    response_model=list[FlashcardSetSummary],
    tags=["flashcards"],
)
async def list_flashcard_sets(
    limit: int = 50,
    session: AsyncSession = Depends(get_session),
) -> list[FlashcardSetSummary]:
    rows = await FlashcardSetStore(session).list_recent(max(1, min(limit, 200)))
    return [FlashcardSetSummary.from_row(s) for s in rows]


@router.get(
    f"/{settings.app.version}/flashcards/sets/{{set_id:int}}",
    response_model=FlashcardSetRead,
    tags=["flashcards"],
)
async def get_flashcard_set(
    set_id: int,
    session: AsyncSession = Depends(get_session),
) -> FlashcardSetRead:
    s = await FlashcardSetStore(session).get(set_id)
    if not s:
        raise HTTPException(status_code=404, detail="Flashcard set not found")
    return FlashcardSetRead.from_row(s)
