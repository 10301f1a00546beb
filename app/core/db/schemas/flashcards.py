from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional
from sqlalchemy import (
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
    JSON,
    UniqueConstraint,
    text as sa_text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.db.base import Base

if TYPE_CHECKING:
    from .categories import Category


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def alias_key(alias: str) -> str:
    """Lookup key for alias matching: trimmed, lower-cased."""
    return " ".join((alias or "").split()).lower()


class FlashcardSet(Base):
    """Unified flashcard record; one live row per normalized topic (app-enforced)."""

    __tablename__ = "flashcard_sets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    topic: Mapped[str] = mapped_column(String, nullable=False)
    normalized_topic: Mapped[str] = mapped_column(String, nullable=False, index=True)
    cards: Mapped[list[dict]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        server_default=sa_text("'[]'"),
    )  # JSON array of {front, back}
    contributor_ids: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        server_default=sa_text("'[]'"),
    )
    category: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("categories.id"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    alias_rows: Mapped[list["FlashcardSetAlias"]] = relationship(
        "FlashcardSetAlias",
        back_populates="flashcard_set",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="FlashcardSetAlias.id",
    )
    category_ref: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="flashcard_sets", lazy="noload"
    )

    @property
    def aliases(self) -> list[str]:
        return [row.alias for row in self.alias_rows]

    def add_alias(self, alias: str) -> bool:
        """Attach an alias unless an equivalent one is already present."""
        key = alias_key(alias)
        if not key:
            return False
        if any(row.alias_key == key for row in self.alias_rows):
            return False
        self.alias_rows.append(FlashcardSetAlias(alias=alias.strip(), alias_key=key))
        return True


class FlashcardSetAlias(Base):
    __tablename__ = "flashcard_set_aliases"
    __table_args__ = (
        UniqueConstraint(
            "flashcard_set_id",
            "alias_key",
            name="uq_flashcard_set_alias",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    flashcard_set_id: Mapped[int] = mapped_column(
        ForeignKey("flashcard_sets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    alias: Mapped[str] = mapped_column(Text, nullable=False)
    alias_key: Mapped[str] = mapped_column(String, nullable=False, index=True)

    flashcard_set: Mapped["FlashcardSet"] = relationship(
        "FlashcardSet", back_populates="alias_rows"
    )


__all__ = [
    "FlashcardSet",
    "FlashcardSetAlias",
    "alias_key",
    "utcnow",
]
