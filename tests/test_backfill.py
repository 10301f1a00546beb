"""Tests for the categorization backfill job."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db_services import FlashcardSetStore
from app.modules.flashcards.backfill import backfill_categories
from app.modules.flashcards.categories import UNCATEGORIZED_NAME, CategoryResolver
from app.modules.generation.errors import ProviderUnavailable
from tests.conftest import make_controller


def rate_limited(model: str) -> ProviderUnavailable:
    return ProviderUnavailable("429 quota exceeded", model=model, status_code=429)


async def add_uncategorized(session: AsyncSession, *topics: str) -> list[int]:
    store = FlashcardSetStore(session)
    ids = []
    for topic in topics:
        db_set = await store.insert(
            topic=topic,
            normalized_topic=topic,
            cards=[],
            contributor_ids=[],
            aliases=[topic],
            category=None,
            category_id=None,
        )
        ids.append(db_set.id)
    await session.commit()
    return ids


class TestBackfillCategories:
    """Test suite for backfilling categories on uncategorized sets."""

    @pytest.mark.asyncio
    async def test_nothing_to_do(self, db_session: AsyncSession) -> None:
        controller, provider, _ = make_controller({"model-a": ["Khoa học"]})

        report = await backfill_categories(db_session, controller)

        assert report.message == "No uncategorized sets found. All done!"
        assert report.results == []
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_categorizes_with_delay_between_items(self, db_session: AsyncSession) -> None:
        ids = await add_uncategorized(db_session, "Photosynthesis", "French Revolution")
        controller, _, sleep = make_controller(
            {"model-a": ['"Sinh học".', "history"]}
        )

        report = await backfill_categories(db_session, controller, item_delay=7.0)

        assert report.message == "Processed 2 sets."
        assert [(r.id, r.status, r.category) for r in report.results] == [
            (ids[0], "updated", "Sinh học"),
            (ids[1], "updated", "Lịch sử"),
        ]
        assert sleep.delays == [7.0]
        store = FlashcardSetStore(db_session)
        first = await store.get(ids[0])
        assert first.category == "Sinh học"
        assert first.category_id is not None

    @pytest.mark.asyncio
    async def test_sentinel_linked_sets_are_picked_up(self, db_session: AsyncSession) -> None:
        [set_id] = await add_uncategorized(db_session, "Stoicism")
        sentinel = await CategoryResolver(db_session).resolve(None)
        store = FlashcardSetStore(db_session)
        await store.update(
            await store.get(set_id), category=sentinel.name, category_id=sentinel.id
        )
        await db_session.commit()
        controller, _, _ = make_controller({"model-a": ["Triết học"]})

        report = await backfill_categories(db_session, controller, item_delay=0)

        assert report.results[0].status == "updated"
        assert (await store.get(set_id)).category == "Triết học"

    @pytest.mark.asyncio
    async def test_exhaustion_stops_batch(self, db_session: AsyncSession) -> None:
        ids = await add_uncategorized(db_session, "A", "B", "C")
        controller, provider, _ = make_controller(
            {"model-a": [rate_limited("model-a")], "model-b": [rate_limited("model-b")]}
        )

        report = await backfill_categories(db_session, controller, limit=3, item_delay=0)

        assert report.stopped_early is True
        assert report.message == "Stopped early, all models rate-limited. Processed 1 sets."
        assert [r.status for r in report.results] == [
            "all_models_rate_limited",
            "skipped",
            "skipped",
        ]
        assert provider.calls == ["model-a", "model-b"]
        assert (await FlashcardSetStore(db_session).get(ids[0])).category is None

    @pytest.mark.asyncio
    async def test_batch_size_limits_work(self, db_session: AsyncSession) -> None:
        await add_uncategorized(db_session, "A", "B", "C", "D")
        controller, _, _ = make_controller({"model-a": ["Khoa học"]})

        report = await backfill_categories(db_session, controller, limit=2, item_delay=0)

        assert len(report.results) == 2

    @pytest.mark.asyncio
    async def test_unresolved_sets_rotate_behind_untried_ones(
        self, db_session: AsyncSession
    ) -> None:
        """A set the model files under "Other" does not block newer sets."""
        ids = await add_uncategorized(db_session, "A", "B", "C", "D")
        controller, _, _ = make_controller({"model-a": ["Other"]})

        first = await backfill_categories(db_session, controller, limit=3, item_delay=0)
        second = await backfill_categories(db_session, controller, limit=3, item_delay=0)

        assert [(r.id, r.status) for r in first.results] == [
            (ids[0], "unresolved"),
            (ids[1], "unresolved"),
            (ids[2], "unresolved"),
        ]
        assert first.results[0].category == UNCATEGORIZED_NAME
        assert [r.id for r in second.results] == [ids[3], ids[0], ids[1]]
