"""Deduplication and unification of flashcard sets.

``UnificationEngine.unify`` folds a fresh payload into the existing record for
the same topic (or creates it). ``consolidate`` is the offline pass that
removes duplicates left behind by concurrent writers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db.schemas.flashcards import FlashcardSet
from app.core.db_services import FlashcardSetStore
from app.core.logging import get_logger
from app.modules.flashcards.categories import CategoryResolver
from app.modules.flashcards.models.flashcards import FlashcardItem, dedupe_items
from app.modules.generation.errors import PersistenceFailure

logger = get_logger(__name__)


def items_from_rows(cards: Iterable[dict]) -> list[FlashcardItem]:
    items: list[FlashcardItem] = []
    for card in cards or []:
        front = str(card.get("front") or "").strip()
        back = str(card.get("back") or "").strip()
        if front and back:
            items.append(FlashcardItem(front=front, back=back))
    return items


def items_to_rows(items: Iterable[FlashcardItem]) -> list[dict]:
    return [{"front": i.front, "back": i.back} for i in items]


def merge_contributors(*groups: Iterable[Optional[str]]) -> list[str]:
    out: list[str] = []
    for group in groups:
        for contributor in group or []:
            if contributor and contributor not in out:
                out.append(contributor)
    return out


def grouping_key(db_set: FlashcardSet) -> str:
    raw = (db_set.normalized_topic or "").strip() or (db_set.topic or "").strip()
    return " ".join(raw.split()).lower()


@dataclass
class UnifyResult:
    flashcard_set: FlashcardSet
    created: bool
    added_items: int


@dataclass
class GroupOutcome:
    key: str
    status: str  # "success" | "partial" | "error"
    survivor_id: Optional[int] = None
    merged_ids: list[int] = field(default_factory=list)
    total_items: int = 0
    aliases: list[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class ConsolidationReport:
    groups_found: int = 0
    merged_groups: int = 0
    details: list[GroupOutcome] = field(default_factory=list)


class UnificationEngine:
    def __init__(self, session: AsyncSession, *, resolver: Optional[CategoryResolver] = None) -> None:
        self.session = session
        self.store = FlashcardSetStore(session)
        self.resolver = resolver or CategoryResolver(session)

    async def find_primary(
        self, normalized_topic: str, original_topic: str
    ) -> Optional[FlashcardSet]:
        matches = await self.store.find_matching(normalized_topic, original_topic)
        if len(matches) > 1:
            logger.info(
                "%d sets match '%s'; using oldest id=%s",
                len(matches),
                normalized_topic,
                matches[0].id,
                extra={"topic": normalized_topic},
            )
        return matches[0] if matches else None

    async def unify(
        self,
        *,
        normalized_topic: str,
        items: list[FlashcardItem],
        original_topic: str,
        category: Optional[str] = None,
        contributor_id: Optional[str] = None,
        fallback_category: Optional[str] = None,
    ) -> UnifyResult:
        """Create or merge the unified set for a topic and commit.

        ``category`` is the caller's label and may recategorize an existing set.
        ``fallback_category`` (the model's own guess) is only used for a new set
        or one that has no category yet.

        Raises ``PersistenceFailure`` when the store rejects the write.
        """
        normalized_topic = (
            " ".join(normalized_topic.split()) or " ".join(original_topic.split()).title()
        )
        original_topic = original_topic.strip()
        try:
            primary = await self.find_primary(normalized_topic, original_topic)
            if primary is None:
                result = await self._create(
                    normalized_topic,
                    items,
                    original_topic,
                    category or fallback_category,
                    contributor_id,
                )
            else:
                result = await self._merge_into(
                    primary,
                    items=items,
                    original_topic=original_topic,
                    category=category,
                    fallback_category=fallback_category,
                    contributors=[contributor_id],
                )
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error(
                "Storage failure while unifying '%s': %s",
                normalized_topic,
                exc,
                extra={"topic": normalized_topic},
            )
            raise PersistenceFailure(f"Failed to store flashcard set: {exc}", cause=exc) from exc
        return result

    async def _create(
        self,
        normalized_topic: str,
        items: list[FlashcardItem],
        original_topic: str,
        category: Optional[str],
        contributor_id: Optional[str],
    ) -> UnifyResult:
        resolved = await self.resolver.resolve(category)
        unique = dedupe_items(items)
        db_set = await self.store.insert(
            topic=original_topic,
            normalized_topic=normalized_topic,
            cards=items_to_rows(unique),
            contributor_ids=merge_contributors([contributor_id]),
            aliases=[original_topic],
            category=resolved.name,
            category_id=resolved.id,
        )
        logger.info(
            "Created set id=%s with %d cards",
            db_set.id,
            len(unique),
            extra={"topic": normalized_topic},
        )
        return UnifyResult(flashcard_set=db_set, created=True, added_items=len(unique))

    async def _merge_into(
        self,
        primary: FlashcardSet,
        *,
        items: list[FlashcardItem],
        original_topic: str,
        category: Optional[str],
        contributors: Iterable[Optional[str]],
        extra_aliases: Iterable[str] = (),
        fallback_category: Optional[str] = None,
    ) -> UnifyResult:
        # Category first: a savepoint rollback must not touch a dirty primary
        changes: dict = {}
        if category or not primary.category_id:
            resolved = await self.resolver.resolve(
                category or primary.category or fallback_category
            )
            if resolved.id != primary.category_id or resolved.name != primary.category:
                changes["category"] = resolved.name
                changes["category_id"] = resolved.id

        existing = items_from_rows(primary.cards)
        merged = dedupe_items(existing, items)
        added = len(merged) - len(dedupe_items(existing))
        if added or len(merged) != len(primary.cards or []):
            changes["cards"] = items_to_rows(merged)

        contributor_ids = merge_contributors(primary.contributor_ids, contributors)
        if contributor_ids != list(primary.contributor_ids or []):
            changes["contributor_ids"] = contributor_ids

        aliases_added = False
        for alias in (original_topic, primary.topic, *extra_aliases):
            if alias and primary.add_alias(alias):
                aliases_added = True

        if changes or aliases_added:
            await self.store.update(primary, **changes)
            logger.info(
                "Merged into set id=%s (+%d cards)",
                primary.id,
                added,
                extra={"topic": primary.normalized_topic},
            )
        return UnifyResult(flashcard_set=primary, created=False, added_items=added)

    async def consolidate(self) -> ConsolidationReport:
        """Fold duplicate sets into the oldest one per topic key and delete the rest.

        Idempotent: a consolidated store yields no groups with more than one set.
        """
        report = ConsolidationReport()
        groups: dict[str, list[int]] = {}
        for db_set in await self.store.list_all():
            groups.setdefault(grouping_key(db_set), []).append(db_set.id)
        report.groups_found = len(groups)

        for key, set_ids in groups.items():
            if len(set_ids) < 2:
                continue
            # Re-read per group; a rollback in an earlier group expires loaded rows
            sets = list(await self.store.get_many(set_ids))
            outcome = await self._consolidate_group(key, sets)
            if outcome.status == "success":
                report.merged_groups += 1
            report.details.append(outcome)

        logger.info(
            "Consolidation: %d groups, %d merged, %d with problems",
            report.groups_found,
            report.merged_groups,
            len([d for d in report.details if d.status != "success"]),
        )
        return report

    async def _consolidate_group(self, key: str, sets: list[FlashcardSet]) -> GroupOutcome:
        survivor, duplicates = sets[0], sets[1:]
        duplicate_ids = [d.id for d in duplicates]
        outcome = GroupOutcome(key=key, status="success", survivor_id=survivor.id, merged_ids=duplicate_ids)
        logger.info("Group '%s' has %d sets; merging into id=%s", key, len(sets), survivor.id)

        try:
            for duplicate in duplicates:
                await self._merge_into(
                    survivor,
                    items=items_from_rows(duplicate.cards),
                    original_topic=duplicate.topic,
                    # A duplicate's label only fills a survivor that has none
                    category=None if survivor.category_id else duplicate.category,
                    contributors=duplicate.contributor_ids,
                    extra_aliases=duplicate.aliases,
                )
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("Merge update failed for '%s': %s", key, exc)
            outcome.status = "error"
            outcome.error = str(exc)
            return outcome

        outcome.total_items = len(survivor.cards or [])
        outcome.aliases = survivor.aliases

        try:
            for duplicate in duplicates:
                await self.store.delete(duplicate)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("Merged '%s' but failed to delete duplicates %s: %s", key, duplicate_ids, exc)
            outcome.status = "partial"
            outcome.error = f"Merged primary but failed to delete duplicates: {exc}"
        return outcome


__all__ = [
    "UnificationEngine",
    "UnifyResult",
    "GroupOutcome",
    "ConsolidationReport",
    "items_from_rows",
    "items_to_rows",
    "merge_contributors",
    "grouping_key",
]
