from __future__ import annotations

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.apis.deps import get_fallback_controller, get_topic_cache, require_admin
from app.core.config import settings
from app.core.db.base import get_session
from app.core.db_services import CategoryStore, FlashcardSetStore
from app.core.logging import get_logger
from app.modules.flashcards.backfill import backfill_categories
from app.modules.flashcards.cache import TopicCache
from app.modules.flashcards.categories import UNCATEGORIZED_SLUG
from app.modules.flashcards.category_sync import sync_categories
from app.modules.flashcards.unify import UnificationEngine
from app.modules.generation.fallback import ModelFallbackController
from .schemas import (
    BackfillResponse,
    CategoryRead,
    CategorySyncResponse,
    CategoryUpdate,
    ConsolidationResponse,
)

router = APIRouter(dependencies=[Depends(require_admin)])
logger = get_logger(__name__)

PREFIX = f"/{settings.app.version}/admin"


@router.post(
    f"{PREFIX}/consolidate",
    response_model=ConsolidationResponse,
    tags=["admin"],
)
async def consolidate_sets(
    session: AsyncSession = Depends(get_session),
    cache: TopicCache = Depends(get_topic_cache),
) -> ConsolidationResponse:
    report = await UnificationEngine(session).consolidate()
    cache.clear()
    return ConsolidationResponse(**asdict(report))


@router.post(
    f"{PREFIX}/categories/sync",
    response_model=CategorySyncResponse,
    tags=["admin"],
)
async def sync_category_links(
    session: AsyncSession = Depends(get_session),
    cache: TopicCache = Depends(get_topic_cache),
) -> CategorySyncResponse:
    report = await sync_categories(session)
    cache.clear()
    return CategorySyncResponse(**asdict(report))


@router.post(
    f"{PREFIX}/categories/backfill",
    response_model=BackfillResponse,
    tags=["admin"],
)
async def backfill_set_categories(
    limit: Optional[int] = None,
    session: AsyncSession = Depends(get_session),
    controller: ModelFallbackController = Depends(get_fallback_controller),
    cache: TopicCache = Depends(get_topic_cache),
) -> BackfillResponse:
    report = await backfill_categories(session, controller, limit=limit)
    if any(r.status == "updated" for r in report.results):
        cache.clear()
    return BackfillResponse(**asdict(report))


async def _read(session: AsyncSession, category) -> CategoryRead:
    count = await FlashcardSetStore(session).count_by_category(category.id)
    return CategoryRead(
        id=category.id,
        name=category.name,
        slug=category.slug,
        icon=category.icon,
        color=category.color,
        set_count=count,
    )


@router.get(
    f"{PREFIX}/categories",
    response_model=list[CategoryRead],
    tags=["admin"],
)
async def list_categories(
    session: AsyncSession = Depends(get_session),
) -> list[CategoryRead]:
    return [await _read(session, c) for c in await CategoryStore(session).list_all()]


@router.patch(
    f"{PREFIX}/categories/{{category_id:int}}",
    response_model=CategoryRead,
    tags=["admin"],
)
async def update_category(
    category_id: int,
    body: CategoryUpdate,
    session: AsyncSession = Depends(get_session),
    cache: TopicCache = Depends(get_topic_cache),
) -> CategoryRead:
    store = CategoryStore(session)
    category = await store.get(category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")

    changes = body.model_dump(exclude_none=True)
    if "name" in changes:
        changes["name"] = " ".join(changes["name"].split())
    await store.update(category, **changes)

    if "name" in changes:
        sets = FlashcardSetStore(session)
        for db_set in await sets.list_by_category(category.id):
            if db_set.category != category.name:
                await sets.update(db_set, category=category.name)
        cache.clear()
    logger.info("Corrected category '%s': %s", category.slug, sorted(changes))
    return await _read(session, category)


@router.delete(
    f"{PREFIX}/categories/{{category_id:int}}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["admin"],
)
async def delete_category(
    category_id: int,
    session: AsyncSession = Depends(get_session),
) -> None:
    store = CategoryStore(session)
    category = await store.get(category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    if category.slug == UNCATEGORIZED_SLUG:
        raise HTTPException(status_code=409, detail="The uncategorized category cannot be deleted")
    in_use = await FlashcardSetStore(session).count_by_category(category.id)
    if in_use:
        raise HTTPException(
            status_code=409,
            detail=f"Category is used by {in_use} flashcard sets",
        )
    await store.delete(category)
