"""Flashcards module exports."""

from .models.flashcards import FlashcardItem, GenerationPayload
from .generator import generate_flashcards, stream_flashcards
from .main import FlashcardPipeline, GenerationOutcome, GenerationRequest

__all__ = [
    "FlashcardItem",
    "GenerationPayload",
    "generate_flashcards",
    "stream_flashcards",
    "FlashcardPipeline",
    "GenerationOutcome",
    "GenerationRequest",
]
