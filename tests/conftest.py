"""Pytest configuration and fixtures."""

import os

# Settings are read at import time; point them at test values first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("ADMIN_SECRET", "test-admin-secret")
os.environ.setdefault("MODE", "test")

import json  # noqa: E402
from collections.abc import AsyncIterator  # noqa: E402
from typing import Any, Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.apis.deps import (  # noqa: E402
    get_fallback_controller,
    get_session_factory,
    get_topic_cache,
)
from app.core.db import schemas  # noqa: E402,F401
from app.core.db.base import Base, get_session  # noqa: E402
from app.modules.flashcards.cache import TopicCache  # noqa: E402
from app.modules.generation.fallback import ModelFallbackController  # noqa: E402
from main import app  # noqa: E402

ADMIN_SECRET = os.environ["ADMIN_SECRET"]


class FakeProvider:
    """Scripted provider: per model, a list of outcomes consumed in order.

    An outcome is a string (whole answer), an exception, or for streaming a
    list of chunks that may contain an exception to raise mid-stream. The last
    outcome of a model repeats once the list is used up.
    """

    def __init__(self, outcomes: Optional[dict[str, list[Any]]] = None) -> None:
        self.outcomes = {k: list(v) for k, v in (outcomes or {}).items()}
        self.calls: list[str] = []
        self.prompts: list[str] = []

    def _next(self, model: str) -> Any:
        script = self.outcomes[model]
        return script.pop(0) if len(script) > 1 else script[0]

    async def generate(self, model: str, prompt: str) -> str:
        self.calls.append(model)
        self.prompts.append(prompt)
        outcome = self._next(model)
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, list):
            return "".join(outcome)
        return outcome

    async def generate_stream(self, model: str, prompt: str):
        self.calls.append(model)
        self.prompts.append(prompt)
        outcome = self._next(model)
        if isinstance(outcome, Exception):
            raise outcome
        chunks = outcome if isinstance(outcome, list) else [outcome]
        for chunk in chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_controller(
    outcomes: dict[str, list[Any]],
    *,
    rotation_delay: float = 0.0,
) -> tuple[ModelFallbackController, FakeProvider, RecordingSleep]:
    provider = FakeProvider(outcomes)
    sleep = RecordingSleep()
    controller = ModelFallbackController(
        provider,
        list(outcomes),
        rotation_delay=rotation_delay,
        sleep=sleep,
    )
    return controller, provider, sleep


@pytest_asyncio.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    """In-memory SQLite engine with working SAVEPOINT support."""
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(test_engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself so nested transactions work
        dbapi_connection.isolation_level = None

    @event.listens_for(test_engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def topic_cache() -> TopicCache:
    return TopicCache(max_size=16, ttl=600)


@pytest.fixture
def controller_box() -> dict[str, ModelFallbackController]:
    """Holds the controller the app uses; tests put theirs under ``"controller"``."""
    controller, _, _ = make_controller({"model-a": ["{}"]})
    return {"controller": controller}


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    topic_cache: TopicCache,
    controller_box: dict[str, ModelFallbackController],
) -> AsyncIterator[AsyncClient]:
    """Create a test client bound to the test database and a scripted provider."""

    async def override_get_session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_topic_cache] = lambda: topic_cache
    app.dependency_overrides[get_fallback_controller] = lambda: controller_box["controller"]

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()


def flashcard_json(topic: str, cards: list[tuple[str, str]], category: Optional[str] = None) -> str:
    document: dict[str, Any] = {"normalized_topic": topic}
    if category is not None:
        document["category"] = category
    document["flashcards"] = [{"front": f, "back": b} for f, b in cards]
    return json.dumps(document, ensure_ascii=False)
