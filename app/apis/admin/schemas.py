from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from app.modules.flashcards.categories import COLOR_PALETTE, UNCATEGORIZED_COLOR


class GroupOutcomeRead(BaseModel):
    key: str
    status: str
    survivor_id: Optional[int] = None
    merged_ids: list[int] = Field(default_factory=list)
    total_items: int = 0
    aliases: list[str] = Field(default_factory=list)
    error: Optional[str] = None


class ConsolidationResponse(BaseModel):
    groups_found: int
    merged_groups: int
    details: list[GroupOutcomeRead] = Field(default_factory=list)


class CategorySyncResponse(BaseModel):
    categories_created: int = 0
    categories_corrected: int = 0
    categories_removed: int = 0
    sets_relinked: int = 0
    sets_renamed: int = 0


class BackfillItemRead(BaseModel):
    id: int
    topic: str
    status: str
    category: Optional[str] = None
    error: Optional[str] = None


class BackfillResponse(BaseModel):
    message: str
    stopped_early: bool = False
    results: list[BackfillItemRead] = Field(default_factory=list)


class CategoryRead(BaseModel):
    id: int
    name: str
    slug: str
    icon: str
    color: str
    set_count: int = 0


class CategoryUpdate(BaseModel):
    """Correct a category in place; the slug is its identity and never changes."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    icon: Optional[str] = Field(default=None, min_length=1)
    color: Optional[str] = None

    @field_validator("color")
    @classmethod
    def _known_color(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in (*COLOR_PALETTE, UNCATEGORIZED_COLOR):
            raise ValueError(f"Unknown color '{value}'")
        return value
