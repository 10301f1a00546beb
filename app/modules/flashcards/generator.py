"""Flashcard generation on top of the model fallback controller.

The provider is asked for raw JSON text (not structured output) so the same
document can be consumed either whole or incrementally while streaming.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Optional

from app.core.config import settings
from app.modules.flashcards.models.flashcards import FlashcardItem, GenerationPayload
from app.modules.flashcards.stream_parser import IncrementalResponseParser, parse_document
from app.modules.generation.errors import ProviderFatal
from app.modules.generation.fallback import FallbackTrace, ModelFallbackController

SYSTEM_PROMPT = (
    "You are an expert educator who crafts focused, accurate flashcards. "
    "Return a single raw JSON object: "
    '{"normalized_topic": string, "category": string, "flashcards": [{"front": string, "back": string}]}. '
    "Rules: "
    "- normalized_topic: the canonical, Title-Case short name of the subject "
    "  (fix typos, drop filler words). "
    "- category: a short 1-2 word subject label. "
    "- front: a clear, atomic question or term; back: a concise answer or definition. "
    "- No markdown, no code fences, no commentary before or after the JSON."
)


def clamp_count(count: Optional[int]) -> int:
    value = count or settings.generation.default_count
    return max(1, min(int(value), settings.generation.max_count))


def build_instruction(topic: str, count: Optional[int] = None, category: Optional[str] = None) -> str:
    lines = [
        f"Create {clamp_count(count)} educational flashcards about the topic below.",
        f"Language: {settings.generation.language}.",
        f"Topic: {topic.strip()}",
    ]
    if category:
        lines.append(f"Category hint: {category.strip()}")
    return "\n".join(lines)


def build_prompt(topic: str, count: Optional[int] = None, category: Optional[str] = None) -> str:
    return f"{SYSTEM_PROMPT}\n\n{build_instruction(topic, count, category)}"


def build_category_prompt(topic: str) -> str:
    return (
        f"Categorize this study topic into a short 1-2 word {settings.generation.language} "
        "category label.\n"
        "Examples: Công nghệ, Y tế, Lịch sử, Ngôn ngữ, Khoa học, Địa lý, Kinh doanh, Toán học.\n"
        f'Topic: "{topic}"\n'
        "Return ONLY the category label. No punctuation, no markdown."
    )


def clean_category_label(text: str) -> str:
    return text.strip().replace('"', "").replace(".", "").strip()[:50]


@dataclass
class GeneratedFlashcards:
    payload: GenerationPayload
    model: Optional[str]
    rotations: int


async def generate_flashcards(
    controller: ModelFallbackController,
    topic: str,
    *,
    count: Optional[int] = None,
    category: Optional[str] = None,
) -> GeneratedFlashcards:
    """Generate and strictly parse one flashcard document."""
    result = await controller.generate(build_prompt(topic, count, category))
    payload = parse_document(result.text, fallback_topic=topic)
    return GeneratedFlashcards(payload=payload, model=result.model, rotations=result.rotations)


@dataclass
class StreamEvent:
    """``topic`` / ``cards`` are previews; ``payload`` is the final document."""

    kind: str  # "topic" | "cards" | "payload"
    topic: Optional[str] = None
    items: Optional[list[FlashcardItem]] = None
    payload: Optional[GenerationPayload] = None


async def stream_flashcards(
    controller: ModelFallbackController,
    topic: str,
    *,
    count: Optional[int] = None,
    category: Optional[str] = None,
    trace: Optional[FallbackTrace] = None,
) -> AsyncIterator[StreamEvent]:
    """Yield previews while the document streams in, then the parsed payload.

    ``MalformedOutput`` is raised when the completed text fails strict parsing.
    """
    parser = IncrementalResponseParser(fallback_topic=topic)
    async for chunk in controller.stream(build_prompt(topic, count, category), trace):
        update = parser.feed(chunk)
        if update.topic_changed:
            yield StreamEvent(kind="topic", topic=update.normalized_topic)
        if update.items_changed:
            yield StreamEvent(kind="cards", items=list(update.items))
    yield StreamEvent(kind="payload", payload=parser.finish())


async def suggest_category(controller: ModelFallbackController, topic: str) -> str:
    result = await controller.generate(build_category_prompt(topic))
    label = clean_category_label(result.text)
    if not label:
        raise ProviderFatal(ValueError("Empty category label"), model=result.model)
    return label
