"""Database service classes for unified flashcard sets and the category taxonomy."""

from __future__ import annotations

from typing import Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import func, or_, select

from app.core.db.schemas.flashcards import (
    FlashcardSet,
    FlashcardSetAlias,
    alias_key,
    utcnow,
)
from app.core.db.schemas.categories import Category


class FlashcardSetStore:
    """Reads and writes of unified flashcard sets.

    Methods flush but never commit; the caller owns the transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, set_id: int) -> Optional[FlashcardSet]:
        result = await self.session.execute(
            select(FlashcardSet).where(FlashcardSet.id == set_id)
        )
        return result.scalar_one_or_none()

    async def find_by_key(self, normalized_topic: str) -> Optional[FlashcardSet]:
        """Earliest set whose normalized topic matches ignoring case and spacing."""
        result = await self.session.execute(
            select(FlashcardSet)
            .where(func.lower(FlashcardSet.normalized_topic) == alias_key(normalized_topic))
            .order_by(FlashcardSet.created_at.asc(), FlashcardSet.id.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_matching(
        self, normalized_topic: str, original_topic: str
    ) -> Sequence[FlashcardSet]:
        """Sets matching by normalized key, alias or original topic; oldest first."""
        key = alias_key(normalized_topic)
        original = alias_key(original_topic)
        alias_match = select(FlashcardSetAlias.flashcard_set_id).where(
            FlashcardSetAlias.alias_key == original
        )
        result = await self.session.execute(
            select(FlashcardSet)
            .where(
                or_(
                    func.lower(FlashcardSet.normalized_topic) == key,
                    FlashcardSet.id.in_(alias_match),
                    func.lower(FlashcardSet.topic) == original,
                )
            )
            .order_by(FlashcardSet.created_at.asc(), FlashcardSet.id.asc())
        )
        return result.scalars().all()

    async def get_many(self, set_ids: Sequence[int]) -> Sequence[FlashcardSet]:
        """Sets by id, oldest first."""
        result = await self.session.execute(
            select(FlashcardSet)
            .where(FlashcardSet.id.in_(list(set_ids)))
            .order_by(FlashcardSet.created_at.asc(), FlashcardSet.id.asc())
        )
        return result.scalars().all()

    async def list_all(self) -> Sequence[FlashcardSet]:
        result = await self.session.execute(
            select(FlashcardSet).order_by(
                FlashcardSet.created_at.asc(), FlashcardSet.id.asc()
            )
        )
        return result.scalars().all()

    async def list_recent(self, limit: int = 50) -> Sequence[FlashcardSet]:
        result = await self.session.execute(
            select(FlashcardSet)
            .order_by(FlashcardSet.updated_at.desc(), FlashcardSet.id.desc())
            .limit(limit)
        )
        return result.scalars().all()

    async def list_uncategorized(
        self, sentinel_category_id: Optional[int], limit: int
    ) -> Sequence[FlashcardSet]:
        """Sets without a real category, least recently touched first."""
        conditions = [FlashcardSet.category.is_(None), FlashcardSet.category == ""]
        if sentinel_category_id is not None:
            conditions.append(FlashcardSet.category_id == sentinel_category_id)
        result = await self.session.execute(
            select(FlashcardSet)
            .where(or_(*conditions))
            .order_by(FlashcardSet.updated_at.asc(), FlashcardSet.id.asc())
            .limit(limit)
        )
        return result.scalars().all()

    async def list_unlinked(self) -> Sequence[FlashcardSet]:
        result = await self.session.execute(
            select(FlashcardSet)
            .where(FlashcardSet.category_id.is_(None))
            .order_by(FlashcardSet.id.asc())
        )
        return result.scalars().all()

    async def list_by_category(self, category_id: int) -> Sequence[FlashcardSet]:
        result = await self.session.execute(
            select(FlashcardSet)
            .where(FlashcardSet.category_id == category_id)
            .order_by(FlashcardSet.id.asc())
        )
        return result.scalars().all()

    async def insert(
        self,
        *,
        topic: str,
        normalized_topic: str,
        cards: list[dict],
        contributor_ids: list[str],
        aliases: Sequence[str],
        category: Optional[str],
        category_id: Optional[int],
    ) -> FlashcardSet:
        db_set = FlashcardSet(
            topic=topic,
            normalized_topic=normalized_topic,
            cards=cards,
            contributor_ids=contributor_ids,
            category=category,
            category_id=category_id,
            alias_rows=[],
        )
        for alias in aliases:
            db_set.add_alias(alias)
        self.session.add(db_set)
        await self.session.flush()
        return db_set

    async def update(self, db_set: FlashcardSet, **changes) -> FlashcardSet:
        for name, value in changes.items():
            setattr(db_set, name, value)
        db_set.updated_at = utcnow()
        await self.session.flush()
        return db_set

    async def delete(self, db_set: FlashcardSet) -> None:
        await self.session.delete(db_set)
        await self.session.flush()

    async def count_by_category(self, category_id: int) -> int:
        result = await self.session.execute(
            select(func.count(FlashcardSet.id)).where(
                FlashcardSet.category_id == category_id
            )
        )
        return int(result.scalar_one())


class CategoryStore:
    """Taxonomy rows keyed by slug."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, category_id: int) -> Optional[Category]:
        result = await self.session.execute(
            select(Category).where(Category.id == category_id)
        )
        return result.scalar_one_or_none()

    async def find_by_slug(self, slug: str) -> Optional[Category]:
        result = await self.session.execute(select(Category).where(Category.slug == slug))
        return result.scalar_one_or_none()

    async def list_all(self) -> Sequence[Category]:
        result = await self.session.execute(select(Category).order_by(Category.name.asc()))
        return result.scalars().all()

    async def insert(self, *, name: str, slug: str, icon: str, color: str) -> Category:
        category = Category(name=name, slug=slug, icon=icon, color=color)
        self.session.add(category)
        await self.session.flush()
        return category

    async def update(self, category: Category, **changes) -> Category:
        for name, value in changes.items():
            setattr(category, name, value)
        await self.session.flush()
        return category

    async def delete(self, category: Category) -> None:
        await self.session.delete(category)
        await self.session.flush()
