"""Incremental parsing of a streamed flashcard document.

``parse_partial`` is a pure best-effort parser for a possibly truncated buffer.
``IncrementalResponseParser`` feeds it chunk by chunk and publishes the current
snapshot of fully-formed cards; ``finish`` applies the strict parse that
decides whether the whole generation succeeded.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic_core import from_json

from app.modules.flashcards.models.flashcards import FlashcardItem, GenerationPayload
from app.modules.generation.errors import MalformedOutput

_decoder = json.JSONDecoder()


def _document_start(buffer: str) -> int:
    return buffer.find("{")


def parse_partial(buffer: str, *, trailing_strings: bool = True) -> Any:
    """Best-effort value of the JSON object in ``buffer``; ``None`` if nothing yet.

    Tolerates a code fence or other preamble before the object, trailing text
    after a complete object, and truncation anywhere inside it. With
    ``trailing_strings`` an unterminated string is kept as-is, otherwise it is
    dropped together with its key.
    """
    start = _document_start(buffer)
    if start < 0:
        return None
    try:
        value, _ = _decoder.raw_decode(buffer, start)
        return value
    except ValueError:
        pass
    mode = "trailing-strings" if trailing_strings else "on"
    try:
        return from_json(buffer[start:], allow_partial=mode)
    except ValueError:
        return None


def parse_strict(text: str) -> dict:
    """Parse a complete document or raise ``MalformedOutput``."""
    start = _document_start(text)
    if start < 0:
        raise MalformedOutput("No JSON object found in model output")
    try:
        value, _ = _decoder.raw_decode(text, start)
    except ValueError as exc:
        raise MalformedOutput(f"Failed to parse model output: {exc}") from exc
    if not isinstance(value, dict):
        raise MalformedOutput("Model output is not a JSON object")
    if not isinstance(value.get("flashcards"), list):
        raise MalformedOutput("Model output has no flashcards list")
    return value


def extract_items(value: Any) -> list[FlashcardItem]:
    """Fully-formed ``flashcards[i]`` entries: string front/back, non-empty."""
    if not isinstance(value, dict):
        return []
    cards = value.get("flashcards")
    if not isinstance(cards, list):
        return []
    items: list[FlashcardItem] = []
    for card in cards:
        if not isinstance(card, dict):
            continue
        front = card.get("front")
        back = card.get("back")
        if not isinstance(front, str) or not isinstance(back, str):
            continue
        front, back = front.strip(), back.strip()
        if front and back:
            items.append(FlashcardItem(front=front, back=back))
    return items


def extract_topic(value: Any) -> Optional[str]:
    if not isinstance(value, dict):
        return None
    topic = value.get("normalized_topic")
    if isinstance(topic, str) and topic.strip():
        return " ".join(topic.split())
    return None


def extract_category(value: Any) -> Optional[str]:
    if not isinstance(value, dict):
        return None
    category = value.get("category")
    if isinstance(category, str) and category.strip():
        return category.strip()
    return None


def build_payload(value: dict, *, fallback_topic: str = "") -> GenerationPayload:
    return GenerationPayload(
        normalized_topic=extract_topic(value) or fallback_topic.strip().title(),
        category=extract_category(value),
        flashcards=extract_items(value),
    )


def parse_document(text: str, *, fallback_topic: str = "") -> GenerationPayload:
    """Direct (non-streaming) parse of a complete provider answer."""
    return build_payload(parse_strict(text), fallback_topic=fallback_topic)


@dataclass
class ParseUpdate:
    """What changed after one chunk; ``items`` is the full current snapshot."""

    items: list[FlashcardItem] = field(default_factory=list)
    normalized_topic: Optional[str] = None
    items_changed: bool = False
    topic_changed: bool = False


class IncrementalResponseParser:
    def __init__(self, *, fallback_topic: str = "") -> None:
        self.fallback_topic = fallback_topic
        self.buffer = ""
        self.items: list[FlashcardItem] = []
        self.normalized_topic: Optional[str] = None

    def feed(self, chunk: str) -> ParseUpdate:
        self.buffer += chunk
        update = ParseUpdate(items=self.items, normalized_topic=self.normalized_topic)

        items = extract_items(parse_partial(self.buffer))
        if items != self.items:
            self.items = items
            update.items = items
            update.items_changed = True

        if self.normalized_topic is None:
            # Only a terminated string counts as resolved
            topic = extract_topic(parse_partial(self.buffer, trailing_strings=False))
            if topic:
                self.normalized_topic = topic
                update.normalized_topic = topic
                update.topic_changed = True
        return update

    def finish(self) -> GenerationPayload:
        payload = parse_document(self.buffer, fallback_topic=self.fallback_topic)
        self.items = list(payload.flashcards)
        self.normalized_topic = payload.normalized_topic
        return payload


__all__ = [
    "parse_partial",
    "parse_strict",
    "parse_document",
    "extract_items",
    "ParseUpdate",
    "IncrementalResponseParser",
]
