"""Categorization backfill for sets that never received a category.

Runs a small batch per call through ``ModelFallbackController.run_batch``: a
fixed pause between sets keeps within provider quota, and exhaustion on one
set stops the batch so the next scheduled run can pick up the rest.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.db_services import CategoryStore, FlashcardSetStore
from app.core.logging import get_logger
from app.modules.flashcards.categories import UNCATEGORIZED_SLUG, CategoryResolver
from app.modules.flashcards.generator import suggest_category
from app.modules.generation.errors import PersistenceFailure
from app.modules.generation.fallback import ModelFallbackController

logger = get_logger(__name__)


@dataclass
class BackfillItem:
    id: int
    topic: str
    status: str  # "updated" | "unresolved" | "failed" | "all_models_rate_limited" | "skipped"
    category: Optional[str] = None
    error: Optional[str] = None


@dataclass
class BackfillReport:
    message: str
    stopped_early: bool = False
    results: list[BackfillItem] = field(default_factory=list)


@dataclass
class _Job:
    id: int
    topic: str


def _item_status(batch_status: str, unresolved: bool) -> str:
    if batch_status != "ok":
        return batch_status
    return "unresolved" if unresolved else "updated"


async def backfill_categories(
    session: AsyncSession,
    controller: ModelFallbackController,
    *,
    limit: Optional[int] = None,
    item_delay: Optional[float] = None,
) -> BackfillReport:
    sets = FlashcardSetStore(session)
    sentinel = await CategoryStore(session).find_by_slug(UNCATEGORIZED_SLUG)
    rows = await sets.list_uncategorized(
        sentinel.id if sentinel else None,
        limit or settings.generation.backfill_batch_size,
    )
    if not rows:
        return BackfillReport(message="No uncategorized sets found. All done!")

    jobs = [_Job(id=r.id, topic=r.normalized_topic or r.topic) for r in rows]
    resolver = CategoryResolver(session)
    # Sets the model could only file under "uncategorized"
    unresolved: set[int] = set()

    async def categorize(job: _Job) -> str:
        label = await suggest_category(controller, job.topic)
        try:
            resolved = await resolver.resolve(label)
            db_set = await sets.get(job.id)
            if db_set is not None:
                await sets.update(db_set, category=resolved.name, category_id=resolved.id)
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            raise PersistenceFailure(f"Failed to store category: {exc}", cause=exc) from exc
        if resolved.slug == UNCATEGORIZED_SLUG:
            unresolved.add(job.id)
            logger.info("No category found for set id=%s", job.id, extra={"topic": job.topic})
            return resolved.name
        logger.info("Categorized set id=%s as '%s'", job.id, resolved.name, extra={"topic": job.topic})
        return resolved.name

    batch = await controller.run_batch(
        jobs,
        categorize,
        item_delay=(
            settings.generation.backfill_item_delay_seconds
            if item_delay is None
            else item_delay
        ),
    )

    results = [
        BackfillItem(
            id=item.job.id,
            topic=item.job.topic,
            status=_item_status(item.status, item.job.id in unresolved),
            category=item.value,
            error=item.error,
        )
        for item in batch.items
    ]
    if batch.stopped_early:
        processed = len([r for r in results if r.status != "skipped"])
        message = f"Stopped early, all models rate-limited. Processed {processed} sets."
    else:
        message = f"Processed {len(results)} sets."
    return BackfillReport(message=message, stopped_early=batch.stopped_early, results=results)
