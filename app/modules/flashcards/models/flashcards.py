"""Pydantic models for flashcard generation and validation.

Note: the provider is asked for plain JSON text rather than structured output,
so validation happens after parsing (see ``stream_parser``).
"""

from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field


class FlashcardItem(BaseModel):
    """Immutable front/back card; identity is the trimmed, lower-cased front."""

    model_config = ConfigDict(frozen=True)

    front: str
    back: str

    @property
    def key(self) -> str:
        return card_key(self.front)


def card_key(front: str) -> str:
    return (front or "").strip().lower()


def dedupe_items(*groups: Iterable[FlashcardItem]) -> list[FlashcardItem]:
    """Fold item groups into one identity-keyed list; first occurrence wins."""
    seen: dict[str, FlashcardItem] = {}
    for group in groups:
        for item in group:
            key = item.key
            if key and key not in seen:
                seen[key] = item
    return list(seen.values())


class GenerationPayload(BaseModel):
    """One generated document: ``{normalized_topic, category?, flashcards}``."""

    normalized_topic: str
    category: Optional[str] = None
    flashcards: list[FlashcardItem] = Field(default_factory=list)
