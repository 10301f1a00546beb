from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.db.base import Base
from .flashcards import utcnow

if TYPE_CHECKING:
    from .flashcards import FlashcardSet


class Category(Base):
    """Taxonomy entry; ``slug`` is the identity, the rest is correctable."""

    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    slug: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
    icon: Mapped[str] = mapped_column(String, nullable=False, default="LayoutGrid")
    color: Mapped[str] = mapped_column(String, nullable=False, default="slate")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    flashcard_sets: Mapped[list["FlashcardSet"]] = relationship(
        "FlashcardSet", back_populates="category_ref", lazy="noload"
    )


__all__ = ["Category"]
