from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from app.core.db.schemas.flashcards import FlashcardSet
from app.modules.flashcards.models.flashcards import FlashcardItem


class GenerateRequest(BaseModel):
    topic: str = Field(..., min_length=1, description="Free-text topic to study")
    count: Optional[int] = Field(default=None, ge=1, le=50, description="Number of cards")
    category: Optional[str] = Field(default=None, description="Optional category hint")
    contributor_id: Optional[str] = Field(default=None, description="Requesting user id")


class UnifyRequest(BaseModel):
    """Re-submit an already generated payload when storage failed earlier."""

    topic: str = Field(..., min_length=1)
    normalized_topic: str = Field(..., min_length=1)
    flashcards: list[FlashcardItem] = Field(default_factory=list)
    category: Optional[str] = None
    contributor_id: Optional[str] = None


class StorageStatus(BaseModel):
    status: str  # "created" | "merged" | "failed"
    error: Optional[str] = None
    detail: Optional[str] = None


class GenerateResponse(BaseModel):
    normalized_topic: str
    category: Optional[str] = None
    flashcards: list[FlashcardItem] = Field(default_factory=list)
    model: Optional[str] = None
    set_id: Optional[int] = None
    created: Optional[bool] = None
    storage: StorageStatus


class FlashcardSetSummary(BaseModel):
    id: int
    topic: str
    normalized_topic: str
    category: Optional[str] = None
    category_id: Optional[int] = None
    card_count: int = 0
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, s: FlashcardSet) -> "FlashcardSetSummary":
        return cls(
            id=s.id,
            topic=s.topic,
            normalized_topic=s.normalized_topic,
            category=s.category,
            category_id=s.category_id,
            card_count=len(s.cards or []),
            created_at=s.created_at.isoformat(),
            updated_at=s.updated_at.isoformat(),
        )


class FlashcardSetRead(FlashcardSetSummary):
    aliases: list[str] = Field(default_factory=list)
    contributor_ids: list[str] = Field(default_factory=list)
    flashcards: list[FlashcardItem] = Field(default_factory=list)

    @classmethod
    def from_row(cls, s: FlashcardSet) -> "FlashcardSetRead":
        summary = FlashcardSetSummary.from_row(s)
        return cls(
            **summary.model_dump(),
            aliases=s.aliases,
            contributor_ids=list(s.contributor_ids or []),
            flashcards=[
                FlashcardItem(front=c["front"], back=c["back"]) for c in (s.cards or [])
            ],
        )


class TopicLookupResponse(BaseModel):
    found: bool
    flashcard_set: Optional[FlashcardSetRead] = None
