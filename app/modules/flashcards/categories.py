"""Category resolution: label normalization, slugs, icons, colors, find-or-create.

A free-text label goes through normalize -> translate -> slugify. The slug is
the identity of a taxonomy row; when a row exists its stored name is returned
so spelling converges over time. Creation tolerates a concurrent writer that
inserted the same slug first.
"""

from __future__ import annotations

import random
import re
import unicodedata
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db.schemas.categories import Category
from app.core.db_services import CategoryStore
from app.core.logging import get_logger
from app.modules.generation.errors import TaxonomyConflict

logger = get_logger(__name__)


UNCATEGORIZED_NAME = "Chưa phân loại"
UNCATEGORIZED_SLUG = "chua-phan-loai"
UNCATEGORIZED_ICON = "Tag"
UNCATEGORIZED_COLOR = "slate"
FALLBACK_ICON = "LayoutGrid"

# Slugs meaning "other" / "uncategorized"; all collapse onto the sentinel row
SENTINEL_SLUGS = frozenset(
    {
        UNCATEGORIZED_SLUG,
        "khac",
        "other",
        "others",
        "uncategorized",
        "misc",
        "general",
    }
)

CATEGORY_TRANSLATIONS: dict[str, str] = {
    "science": "Khoa học",
    "math": "Toán học",
    "mathematics": "Toán học",
    "literature": "Văn học",
    "history": "Lịch sử",
    "geography": "Địa lý",
    "programming": "Lập trình",
    "technology": "Công nghệ",
    "tech": "Công nghệ",
    "business": "Kinh doanh",
    "health": "Sức khỏe",
    "medicine": "Y tế",
    "language": "Ngôn ngữ",
    "languages": "Ngôn ngữ",
    "art": "Nghệ thuật",
    "music": "Âm nhạc",
    "biology": "Sinh học",
    "chemistry": "Hóa học",
    "physics": "Vật lý",
    "psychology": "Tâm lý học",
    "finance": "Tài chính",
    "economics": "Kinh tế",
    "english": "Tiếng Anh",
    "vietnamese": "Tiếng Việt",
    "politics": "Chính trị",
    "religion": "Tôn giáo",
    "sports": "Thể thao",
    "travel": "Du lịch",
    "cooking": "Nấu ăn",
    "fashion": "Thời trang",
}

# Ordered: specific subjects before generic ones; first match wins
ICON_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Rocket", ("vũ trụ", "thiên văn", "không gian", "space", "astronomy", "rocket", "tên lửa")),
    ("Atom", ("nguyên tử", "năng lượng", "lượng tử", "atom", "quantum", "nuclear")),
    ("Beaker", ("thí nghiệm", "hóa học", "vật lý", "lab", "experiment", "chemistry", "physics")),
    ("Microscope", ("khoa học", "sinh học", "science", "biology", "microscope", "kính hiển vi")),
    ("Cpu", ("lập trình", "phần mềm", "ai", "trí tuệ nhân tạo", "programming", "software", "coding", "it", "cpu", "chip")),
    ("Code", ("công nghệ", "máy tính", "tech", "technology", "computer", "javascript", "python", "react", "web", "database", "server")),
    ("Banknote", ("tài chính", "tiền tệ", "đầu tư", "finance", "currency", "invest", "money")),
    ("TrendingUp", ("chứng khoán", "tăng trưởng", "kinh tế", "stock market", "growth", "economics")),
    ("Briefcase", ("kinh doanh", "quản trị", "công việc", "sự nghiệp", "business", "management", "career", "job")),
    ("Stethoscope", ("bác sĩ", "khám bệnh", "bệnh viện", "doctor", "hospital", "medical", "clinic")),
    ("HeartPulse", ("y tế", "sức khỏe", "y học", "thể dục", "health", "medicine", "heart")),
    ("Dumbbell", ("thể thao", "thể hình", "gym", "sport", "sports", "fitness", "workout")),
    ("Utensils", ("ẩm thực", "nấu ăn", "ăn uống", "cooking", "food", "recipes", "kitchen")),
    ("BookOpen", ("văn học", "đọc sách", "thư viện", "literature", "reading", "library", "book")),
    ("Palette", ("nghệ thuật", "hội họa", "thiết kế", "sáng tạo", "thời trang", "art", "design", "creative", "painting", "fashion")),
    ("Music", ("âm nhạc", "giải trí", "music", "entertainment", "song", "concert")),
    ("Globe", ("địa lý", "du lịch", "văn hóa", "bản đồ", "geography", "travel", "culture", "map")),
    ("Landmark", ("lịch sử", "chính trị", "kiến trúc", "cổ đại", "tôn giáo", "history", "politics", "ancient", "religion")),
    ("Lightbulb", ("ý tưởng", "mẹo vặt", "sáng kiến", "idea", "tips", "innovation")),
    ("Languages", ("ngôn ngữ", "ngoại ngữ", "dịch thuật", "tiếng anh", "tiếng việt", "english", "language", "languages", "translation")),
    ("Brain", ("tâm lý", "tư duy", "trí tuệ", "psychology", "intelligence", "brain")),
    ("GraduationCap", ("giáo dục", "học tập", "trường", "education", "study", "school")),
    ("Calculator", ("toán", "thống kê", "hình học", "math", "mathematics", "statistics", "geometry")),
)

COLOR_PALETTE = (
    "blue",
    "green",
    "amber",
    "purple",
    "cyan",
    "rose",
    "orange",
    "indigo",
    "emerald",
    "teal",
)

SPECIAL_LETTERS = {
    "đ": "d",
    "ø": "o",
    "ß": "ss",
    "æ": "ae",
    "œ": "oe",
    "ł": "l",
    "þ": "th",
}

_ICON_PATTERNS = tuple(
    (
        icon,
        re.compile(r"\b(?:" + "|".join(re.escape(k) for k in keywords) + r")\b"),
    )
    for icon, keywords in ICON_KEYWORDS
)


def normalize_label(label: str) -> str:
    return " ".join((label or "").split()).lower()


def translate_label(normalized: str) -> Optional[str]:
    return CATEGORY_TRANSLATIONS.get(normalized)


def slugify(name: str) -> str:
    text = unicodedata.normalize("NFD", (name or "").lower())
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = "".join(SPECIAL_LETTERS.get(ch, ch) for ch in text)
    text = re.sub(r"[^0-9a-z\-\s]", "", text)
    text = re.sub(r"\s+", "-", text)
    text = re.sub(r"-+", "-", text)
    return text.strip("-")


def best_icon(name: str) -> str:
    lowered = normalize_label(name)
    for icon, pattern in _ICON_PATTERNS:
        if pattern.search(lowered):
            return icon
    return FALLBACK_ICON


def pick_color(slug: str, rng: Optional[random.Random] = None) -> str:
    if slug == UNCATEGORIZED_SLUG:
        return UNCATEGORIZED_COLOR
    return (rng or random).choice(COLOR_PALETTE)


@dataclass(frozen=True)
class CanonicalLabel:
    name: str
    slug: str

    @property
    def is_sentinel(self) -> bool:
        return self.slug == UNCATEGORIZED_SLUG


def canonical_label(label: Optional[str]) -> CanonicalLabel:
    """Normalize, translate and slugify a free-text label."""
    normalized = normalize_label(label or "")
    if not normalized:
        return CanonicalLabel(UNCATEGORIZED_NAME, UNCATEGORIZED_SLUG)
    translated = translate_label(normalized)
    name = translated or " ".join(label.split())
    slug = slugify(name)
    if not slug or slug in SENTINEL_SLUGS:
        return CanonicalLabel(UNCATEGORIZED_NAME, UNCATEGORIZED_SLUG)
    return CanonicalLabel(name, slug)


@dataclass(frozen=True)
class ResolvedCategory:
    id: int
    name: str
    slug: str
    created: bool = False


class CategoryResolver:
    """Find-or-create taxonomy rows by slug within the caller's session."""

    def __init__(self, session: AsyncSession, *, rng: Optional[random.Random] = None) -> None:
        self.session = session
        self.store = CategoryStore(session)
        self.rng = rng

    async def resolve(self, label: Optional[str]) -> ResolvedCategory:
        canonical = canonical_label(label)
        existing = await self.store.find_by_slug(canonical.slug)
        if existing is not None:
            return ResolvedCategory(existing.id, existing.name, existing.slug)

        if canonical.is_sentinel:
            icon, color = UNCATEGORIZED_ICON, UNCATEGORIZED_COLOR
        else:
            icon, color = best_icon(canonical.name), pick_color(canonical.slug, self.rng)

        try:
            row = await self._insert(canonical, icon, color)
        except TaxonomyConflict:
            row = await self.store.find_by_slug(canonical.slug)
            if row is None:
                raise
            logger.info("Category '%s' created concurrently; reusing row %s", row.slug, row.id)
            return ResolvedCategory(row.id, row.name, row.slug)

        logger.info("Created category '%s' (%s, %s)", row.name, row.icon, row.color)
        return ResolvedCategory(row.id, row.name, row.slug, created=True)

    async def _insert(self, canonical: CanonicalLabel, icon: str, color: str) -> Category:
        try:
            async with self.session.begin_nested():
                return await self.store.insert(
                    name=canonical.name, slug=canonical.slug, icon=icon, color=color
                )
        except IntegrityError as exc:
            raise TaxonomyConflict(canonical.slug) from exc


__all__ = [
    "UNCATEGORIZED_NAME",
    "UNCATEGORIZED_SLUG",
    "SENTINEL_SLUGS",
    "CATEGORY_TRANSLATIONS",
    "CanonicalLabel",
    "CategoryResolver",
    "ResolvedCategory",
    "best_icon",
    "canonical_label",
    "normalize_label",
    "pick_color",
    "slugify",
]
