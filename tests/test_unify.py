"""Tests for unifying generated payloads into one record per topic."""

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db.schemas.flashcards import FlashcardSet
from app.core.db_services import FlashcardSetStore
from app.modules.flashcards.models.flashcards import FlashcardItem
from app.modules.flashcards.unify import UnificationEngine
from app.modules.generation.errors import PersistenceFailure


def items(*pairs: tuple[str, str]) -> list[FlashcardItem]:
    return [FlashcardItem(front=f, back=b) for f, b in pairs]


async def count_sets(session: AsyncSession) -> int:
    return await session.scalar(select(func.count(FlashcardSet.id)))


class TestUnify:
    """Test suite for create-or-merge of a single payload."""

    @pytest.mark.asyncio
    async def test_case_and_whitespace_variants_share_one_record(
        self, db_session: AsyncSession
    ) -> None:
        """'Python Programming' then 'python programming ' merge into one row."""
        engine = UnificationEngine(db_session)

        first = await engine.unify(
            normalized_topic="Python Programming",
            items=items(("What is PEP 8?", "The style guide")),
            original_topic="Python Programming",
        )
        second = await engine.unify(
            normalized_topic="python programming ",
            items=items(("What is a decorator?", "A function wrapping a function")),
            original_topic="python programming ",
        )

        assert first.created is True
        assert second.created is False
        assert second.flashcard_set.id == first.flashcard_set.id
        assert await count_sets(db_session) == 1
        assert [c["front"] for c in second.flashcard_set.cards] == [
            "What is PEP 8?",
            "What is a decorator?",
        ]

    @pytest.mark.asyncio
    async def test_existing_phrasing_wins(self, db_session: AsyncSession) -> None:
        """A re-cased duplicate keeps the original answer; new cards are appended."""
        engine = UnificationEngine(db_session)
        await engine.unify(
            normalized_topic="JavaScript Promises",
            items=items(("What is a promise?", "An object for a future value")),
            original_topic="js promises",
        )

        result = await engine.unify(
            normalized_topic="JavaScript Promises",
            items=items(
                ("What is a Promise?", "different answer"),
                ("New question", "New answer"),
            ),
            original_topic="JavaScript Promises",
        )

        assert result.added_items == 1
        assert result.flashcard_set.cards == [
            {"front": "What is a promise?", "back": "An object for a future value"},
            {"front": "New question", "back": "New answer"},
        ]

    @pytest.mark.asyncio
    async def test_merging_same_items_twice_adds_nothing(self, db_session: AsyncSession) -> None:
        engine = UnificationEngine(db_session)
        fresh = items(("Q1", "A1"), ("Q2", "A2"))
        await engine.unify(normalized_topic="Topic", items=fresh, original_topic="topic")

        again = await engine.unify(normalized_topic="Topic", items=fresh, original_topic="topic")
        before = list(again.flashcard_set.cards)
        third = await engine.unify(normalized_topic="Topic", items=fresh, original_topic="topic")

        assert again.added_items == 0
        assert third.added_items == 0
        assert third.flashcard_set.cards == before

    @pytest.mark.asyncio
    async def test_duplicates_within_fresh_items_are_dropped(
        self, db_session: AsyncSession
    ) -> None:
        engine = UnificationEngine(db_session)
        result = await engine.unify(
            normalized_topic="Topic",
            items=items(("Q", "first"), (" q ", "second")),
            original_topic="topic",
        )
        assert result.flashcard_set.cards == [{"front": "Q", "back": "first"}]

    @pytest.mark.asyncio
    async def test_alias_match_finds_primary(self, db_session: AsyncSession) -> None:
        """A differently normalized answer still lands on the row the topic was aliased to."""
        engine = UnificationEngine(db_session)
        created = await engine.unify(
            normalized_topic="Machine Learning",
            items=items(("Q", "A")),
            original_topic="ML basics",
        )

        merged = await engine.unify(
            normalized_topic="Machine Learning Basics",
            items=items(("Q2", "A2")),
            original_topic="ml   BASICS",
        )

        assert merged.flashcard_set.id == created.flashcard_set.id
        assert merged.flashcard_set.aliases == ["ML basics"]

    @pytest.mark.asyncio
    async def test_aliases_and_contributors_are_unioned(self, db_session: AsyncSession) -> None:
        engine = UnificationEngine(db_session)
        await engine.unify(
            normalized_topic="World War II",
            items=items(("Q", "A")),
            original_topic="ww2",
            contributor_id="user-1",
        )

        result = await engine.unify(
            normalized_topic="World War II",
            items=[],
            original_topic="second world war",
            contributor_id="user-2",
        )
        await engine.unify(
            normalized_topic="World War II",
            items=[],
            original_topic="WW2",
            contributor_id="",
        )

        db_set = result.flashcard_set
        assert db_set.contributor_ids == ["user-1", "user-2"]
        assert db_set.aliases == ["ww2", "second world war"]

    @pytest.mark.asyncio
    async def test_unlabeled_request_keeps_category(self, db_session: AsyncSession) -> None:
        engine = UnificationEngine(db_session)
        created = await engine.unify(
            normalized_topic="Cell Biology",
            items=items(("Q", "A")),
            original_topic="cell biology",
            category="biology",
        )
        category_id = created.flashcard_set.category_id

        result = await engine.unify(
            normalized_topic="Cell Biology",
            items=items(("Q2", "A2")),
            original_topic="cell biology",
        )

        assert result.flashcard_set.category == "Sinh học"
        assert result.flashcard_set.category_id == category_id

    @pytest.mark.asyncio
    async def test_label_fills_uncategorized_primary(self, db_session: AsyncSession) -> None:
        """A primary created without a label is linked to the sentinel, then relabeled."""
        engine = UnificationEngine(db_session)
        created = await engine.unify(
            normalized_topic="Cell Biology", items=items(("Q", "A")), original_topic="cells"
        )
        assert created.flashcard_set.category == "Chưa phân loại"
        sentinel_id = created.flashcard_set.category_id

        result = await engine.unify(
            normalized_topic="Cell Biology",
            items=[],
            original_topic="cells",
            category="Sinh học",
        )

        assert result.flashcard_set.category == "Sinh học"
        assert result.flashcard_set.category_id not in (None, sentinel_id)

    @pytest.mark.asyncio
    async def test_oldest_match_is_primary(self, db_session: AsyncSession) -> None:
        """With duplicates present the earliest row receives the merge."""
        store = FlashcardSetStore(db_session)
        for topic in ("Topic", "topic"):
            await store.insert(
                topic=topic,
                normalized_topic=topic,
                cards=[],
                contributor_ids=[],
                aliases=[topic],
                category=None,
                category_id=None,
            )
        await db_session.commit()
        oldest = (await store.list_all())[0]

        result = await UnificationEngine(db_session).unify(
            normalized_topic="TOPIC", items=items(("Q", "A")), original_topic="TOPIC"
        )

        assert result.flashcard_set.id == oldest.id
        assert await count_sets(db_session) == 2

    @pytest.mark.asyncio
    async def test_storage_error_becomes_persistence_failure(
        self, db_session: AsyncSession, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        async def broken_insert(self, **kwargs):
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(FlashcardSetStore, "insert", broken_insert)

        with pytest.raises(PersistenceFailure) as exc_info:
            await UnificationEngine(db_session).unify(
                normalized_topic="Topic", items=items(("Q", "A")), original_topic="topic"
            )

        assert isinstance(exc_info.value.cause, OperationalError)
        assert await count_sets(db_session) == 0
