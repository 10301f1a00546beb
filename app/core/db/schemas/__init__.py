# Import models so Base metadata is aware of them
from .flashcards import FlashcardSet, FlashcardSetAlias  # noqa: F401
from .categories import Category  # noqa: F401
