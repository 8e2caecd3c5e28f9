"""Catalog item model shared by storage, the external source and the recommender."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class BookFormat(str, Enum):
    EPUB = "epub"
    MOBI = "mobi"
    PDF = "pdf"
    AZW = "azw"
    CBR = "cbr"
    CBZ = "cbz"
    MP3 = "mp3"
    M4B = "m4b"
    OTHER = "other"


AUDIO_FORMATS = frozenset({BookFormat.MP3, BookFormat.M4B})


class ReadingStatus(str, Enum):
    UNREAD = "unread"
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"
    ABANDONED = "abandoned"


def parse_format(value: Any) -> BookFormat:
    """Map a stored or user-supplied format to BookFormat, falling back to OTHER."""
    if isinstance(value, BookFormat):
        return value
    if not value:
        return BookFormat.OTHER
    try:
        return BookFormat(str(value).strip().lower())
    except ValueError:
        logger.debug(f"Unknown book format '{value}', using 'other'")
        return BookFormat.OTHER


def parse_status(value: Any) -> ReadingStatus:
    """Map a status string to ReadingStatus; 'in-progress' is accepted too."""
    if isinstance(value, ReadingStatus):
        return value
    if not value:
        return ReadingStatus.UNREAD
    normalized = str(value).strip().lower().replace("-", "_")
    try:
        return ReadingStatus(normalized)
    except ValueError:
        logger.warning(f"Unknown reading status '{value}', treating as unread")
        return ReadingStatus.UNREAD


def parse_rating(value: Any) -> float | None:
    """Return a rating in [1, 5] or None when absent/invalid."""
    if value is None or value == "":
        return None
    try:
        rating = float(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-numeric rating '{value}'")
        return None
    if not 1 <= rating <= 5:
        logger.warning(f"Rating value outside range [1-5]: {rating}")
        return None
    return rating


def _int_or_none(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _string_list(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value if v is not None and str(v).strip()]


@dataclass
class CatalogItem:
    """
    A book or audiobook as the recommender sees it.

    Local items carry an ``id``; items found through an external lookup
    have ``id=None`` and usually only a subset of the fields.
    """
    title: str
    author: str | None = None
    id: str | None = None
    genres: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    format: BookFormat = BookFormat.OTHER
    rating: float | None = None
    status: ReadingStatus = ReadingStatus.UNREAD
    isbn: str | None = None
    series: str | None = None
    description: str | None = None
    publisher: str | None = None
    published_year: int | None = None
    total_pages: int | None = None
    cover_url: str | None = None
    current_page: int = 0

    @property
    def is_audio(self) -> bool:
        return self.format in AUDIO_FORMATS

    @property
    def title_key(self) -> str:
        """Case-insensitive title used for duplicate detection."""
        return (self.title or "").strip().lower()

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "CatalogItem":
        """Build an item from a loosely-shaped dict (DB row, import file or API payload)."""
        def pick(*keys: str) -> Any:
            for key in keys:
                if payload.get(key) is not None:
                    return payload[key]
            return None

        year = pick("published_year", "publishedYear")
        pages = pick("total_pages", "totalPages")
        return cls(
            id=str(payload["id"]) if payload.get("id") is not None else None,
            title=str(payload.get("title") or ""),
            author=payload.get("author") or None,
            genres=_string_list(payload.get("genres")),
            tags=_string_list(payload.get("tags")),
            format=parse_format(payload.get("format")),
            rating=parse_rating(payload.get("rating")),
            status=parse_status(payload.get("status")),
            isbn=payload.get("isbn") or None,
            series=payload.get("series") or None,
            description=payload.get("description") or None,
            publisher=payload.get("publisher") or None,
            published_year=_int_or_none(year),
            total_pages=_int_or_none(pages),
            cover_url=pick("cover_url", "coverUrl"),
            current_page=_int_or_none(pick("current_page", "currentPage")) or 0,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "series": self.series,
            "isbn": self.isbn,
            "description": self.description,
            "coverUrl": self.cover_url,
            "publishedYear": self.published_year,
            "publisher": self.publisher,
            "totalPages": self.total_pages,
            "format": self.format.value,
            "genres": list(self.genres),
            "tags": list(self.tags),
            "status": self.status.value,
            "rating": self.rating,
            "currentPage": self.current_page,
        }
