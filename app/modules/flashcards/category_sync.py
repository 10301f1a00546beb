"""Idempotent category sync pass.

Brings the taxonomy and the sets' category links in line with the current
resolution rules: sentinel aliases collapse onto one row, icons/colors get
filled or corrected, unlinked sets get linked, and display names converge on
the canonical spelling. Running it twice in a row changes nothing the second
time.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db.schemas.categories import Category
from app.core.db_services import CategoryStore, FlashcardSetStore
from app.core.logging import get_logger
from app.modules.flashcards.categories import (
    COLOR_PALETTE,
    FALLBACK_ICON,
    SENTINEL_SLUGS,
    UNCATEGORIZED_COLOR,
    UNCATEGORIZED_ICON,
    UNCATEGORIZED_NAME,
    UNCATEGORIZED_SLUG,
    CategoryResolver,
    best_icon,
    pick_color,
)

logger = get_logger(__name__)

# Icons written by earlier versions that carry no subject information
GENERIC_ICONS = frozenset({"", FALLBACK_ICON, "Tag"})


@dataclass
class CategorySyncReport:
    categories_created: int = 0
    categories_corrected: int = 0
    categories_removed: int = 0
    sets_relinked: int = 0
    sets_renamed: int = 0


def _corrections(category: Category) -> dict:
    if category.slug == UNCATEGORIZED_SLUG:
        wanted = {
            "name": UNCATEGORIZED_NAME,
            "icon": UNCATEGORIZED_ICON,
            "color": UNCATEGORIZED_COLOR,
        }
        return {k: v for k, v in wanted.items() if getattr(category, k) != v}

    changes: dict = {}
    if (category.icon or "") in GENERIC_ICONS:
        icon = best_icon(category.name)
        if icon != (category.icon or ""):
            changes["icon"] = icon
    if not category.color or category.color not in COLOR_PALETTE:
        changes["color"] = pick_color(category.slug)
    return changes


async def sync_categories(session: AsyncSession) -> CategorySyncReport:
    report = CategorySyncReport()
    categories = CategoryStore(session)
    sets = FlashcardSetStore(session)
    resolver = CategoryResolver(session)

    sentinel = await resolver.resolve(None)
    if sentinel.created:
        report.categories_created += 1

    # (a) sentinel aliases ("khac", "other", ...) fold onto the sentinel row
    for category in list(await categories.list_all()):
        if category.slug == UNCATEGORIZED_SLUG or category.slug not in SENTINEL_SLUGS:
            continue
        for db_set in await sets.list_by_category(category.id):
            await sets.update(db_set, category_id=sentinel.id, category=sentinel.name)
            report.sets_relinked += 1
        if await sets.count_by_category(category.id) == 0:
            await categories.delete(category)
            report.categories_removed += 1
            logger.info("Removed sentinel alias category '%s'", category.slug)

    # (b) correct names / icons / colors in place
    for category in await categories.list_all():
        changes = _corrections(category)
        if changes:
            await categories.update(category, **changes)
            report.categories_corrected += 1

    # (c) link sets that have no category row yet
    for db_set in await sets.list_unlinked():
        resolved = await resolver.resolve(db_set.category)
        if resolved.created:
            report.categories_created += 1
        await sets.update(db_set, category_id=resolved.id, category=resolved.name)
        report.sets_relinked += 1

    # (d) display names follow the canonical category name
    names = {c.id: c.name for c in await categories.list_all()}
    for db_set in await sets.list_all():
        canonical = names.get(db_set.category_id)
        if canonical is not None and db_set.category != canonical:
            await sets.update(db_set, category=canonical)
            report.sets_renamed += 1

    await session.commit()
    logger.info(
        "Category sync: %d created, %d corrected, %d removed, %d relinked, %d renamed",
        report.categories_created,
        report.categories_corrected,
        report.categories_removed,
        report.sets_relinked,
        report.sets_renamed,
    )
    return report
