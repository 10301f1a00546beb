from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.db.base import async_session_maker
from app.modules.flashcards.cache import TopicCache
from app.modules.generation.fallback import ModelFallbackController, build_controller


async def require_admin(
    secret: Optional[str] = None,
    authorization: Optional[str] = Header(default=None),
) -> None:
    """Guard maintenance routes with the shared admin secret.

    Accepts ``Authorization: Bearer <secret>`` or a ``secret`` query param, so
    schedulers that cannot set headers still work. With no secret configured
    every call is rejected.
    """
    expected = settings.app.admin_secret
    token: Optional[str] = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1].strip()
    elif secret:
        token = secret

    if not expected or not token or not hmac.compare_digest(token, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def get_topic_cache(request: Request) -> TopicCache:
    return request.app.state.topic_cache


def get_fallback_controller() -> ModelFallbackController:
    return build_controller()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for handlers whose work outlives the request scope (SSE)."""
    return async_session_maker
