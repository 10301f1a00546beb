from .flashcards import FlashcardItem, GenerationPayload, card_key, dedupe_items

__all__ = [
    "FlashcardItem",
    "GenerationPayload",
    "card_key",
    "dedupe_items",
]
