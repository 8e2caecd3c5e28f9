"""
Google Books / Open Library lookups.

Used both as the recommender's external candidate source (search by genre)
and to fill in missing metadata for books already in the library.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

from .catalog import CatalogItem
from .config import (
    GOOGLE_BOOKS_API_KEY,
    GOOGLE_BOOKS_BASE,
    HTTP_TIMEOUT,
    MAX_HTTP_RETRIES,
    OPEN_LIBRARY_BASE,
    RETRY_INITIAL_DELAY,
)
from .utils import looks_like_isbn, normalize_isbn, retry_with_backoff

logger = logging.getLogger(__name__)

MAX_OPEN_LIBRARY_SUBJECTS = 5


def _parse_year(value: Any) -> int | None:
    if not value:
        return None
    digits = str(value).strip()
    try:
        return int(digits[:4])
    except ValueError:
        return None


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _text_list(value: Any) -> list[str]:
    """Only real JSON lists count; a bare string is one value, not its characters."""
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [text for text in (_text(v) for v in value) if text]


def map_volume(volume: dict) -> CatalogItem:
    """
    Map a Google Books volume to a partial CatalogItem.

    Prefers ISBN-13 over ISBN-10 and forces cover URLs to https. Fields of
    the wrong JSON type are coerced to text or dropped.
    """
    info = volume.get("volumeInfo")
    if not isinstance(info, dict):
        info = {}
    raw_identifiers = info.get("industryIdentifiers")
    identifiers = (
        [i for i in raw_identifiers if isinstance(i, dict)] if isinstance(raw_identifiers, list) else []
    )

    isbn13 = next((i.get("identifier") for i in identifiers if i.get("type") == "ISBN_13"), None)
    isbn10 = next((i.get("identifier") for i in identifiers if i.get("type") == "ISBN_10"), None)

    images = info.get("imageLinks")
    if not isinstance(images, dict):
        images = {}
    cover = _text(images.get("thumbnail") or images.get("smallThumbnail"))
    if cover and cover.startswith("http://"):
        cover = "https://" + cover[len("http://"):]

    published = _text(info.get("publishedDate"))
    pages = info.get("pageCount")
    return CatalogItem(
        title=_text(info.get("title")) or "",
        author=", ".join(_text_list(info.get("authors"))) or None,
        description=_text(info.get("description")),
        publisher=_text(info.get("publisher")),
        published_year=_parse_year(published.split("-")[0]) if published else None,
        total_pages=pages if isinstance(pages, int) else None,
        genres=_text_list(info.get("categories")),
        cover_url=cover,
        isbn=_text(isbn13 or isbn10),
    )


def map_open_library(book: dict, isbn: str) -> CatalogItem:
    """
    Map an Open Library ``jscmd=data`` record to a partial CatalogItem.

    Subjects and notes come back either as plain strings or as objects.
    """
    cover_data = book.get("cover") or {}
    cover = cover_data.get("large") or cover_data.get("medium") or cover_data.get("small")

    subjects = (book.get("subjects") or [])[:MAX_OPEN_LIBRARY_SUBJECTS]
    genres = [s if isinstance(s, str) else s.get("name", "") for s in subjects]

    notes = book.get("notes")
    if isinstance(notes, dict):
        notes = notes.get("value")

    publishers = book.get("publishers") or []
    publish_date = book.get("publish_date")

    return CatalogItem(
        title=book.get("title") or "",
        author=", ".join(a.get("name", "") for a in book.get("authors") or []) or None,
        cover_url=cover,
        publisher=publishers[0].get("name") if publishers else None,
        published_year=_parse_year(publish_date[-4:]) if publish_date else None,
        total_pages=book.get("number_of_pages"),
        genres=[g for g in genres if g],
        isbn=isbn,
        description=notes,
    )


class GoogleBooksClient:
    """Synchronous client for the Google Books volumes API with Open Library fallback."""

    def __init__(
        self,
        api_key: str | None = GOOGLE_BOOKS_API_KEY,
        timeout: float = HTTP_TIMEOUT,
        max_retries: int = MAX_HTTP_RETRIES,
        transport: httpx.BaseTransport | None = None,
    ):
        self.api_key = api_key
        self.client = httpx.Client(
            base_url=GOOGLE_BOOKS_BASE,
            headers={"User-Agent": "shelf-rec/0.1"},
            timeout=timeout,
            transport=transport,
        )
        self.ol_client = httpx.Client(
            base_url=OPEN_LIBRARY_BASE,
            headers={"User-Agent": "shelf-rec/0.1"},
            timeout=timeout,
            transport=transport,
        )
        # Only transport-level failures are worth retrying; HTTP status errors are not
        self._get_volumes = retry_with_backoff(
            max_retries=max_retries,
            initial_delay=RETRY_INITIAL_DELAY,
            exceptions=(httpx.TransportError,),
        )(self._get_volumes_once)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        self.client.close()
        self.ol_client.close()

    def _get_volumes_once(self, params: dict[str, str]) -> list[dict]:
        if self.api_key:
            params = {**params, "key": self.api_key}
        resp = self.client.get("/volumes", params=params)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected Google Books response: {type(data).__name__}")
        items = data.get("items") or []
        if not isinstance(items, list):
            raise ValueError(f"Unexpected Google Books items: {type(items).__name__}")
        return [v for v in items if isinstance(v, dict)]

    def search_by_feature(self, label: str, max_results: int = 8) -> list[CatalogItem]:
        """
        Find books for a subject label (e.g. a genre).

        Raises httpx.HTTPError when the lookup fails and ValueError on a
        malformed response; callers decide whether that is fatal.
        """
        volumes = self._get_volumes({
            "q": f"subject:{label}",
            "maxResults": str(max_results),
            "orderBy": "relevance",
            "printType": "books",
        })
        items = [map_volume(v) for v in volumes[:max_results]]
        logger.debug(f"Google Books returned {len(items)} items for subject '{label}'")
        return items

    def fetch_metadata(self, query: str) -> CatalogItem | None:
        """
        Look up a single book by ISBN or title.

        ISBN queries that Google Books cannot answer fall back to Open Library.
        Returns None when nothing is found or every lookup fails.
        """
        is_isbn = looks_like_isbn(query)
        q = f"isbn:{query.strip()}" if is_isbn else f"intitle:{query.strip()}"

        try:
            volumes = self._get_volumes({"q": q, "maxResults": "1"})
        except (httpx.HTTPError, ValueError) as exc:
            logger.error(f"Google Books error for '{query}': {exc}")
            volumes = []

        if volumes:
            return map_volume(volumes[0])

        if is_isbn:
            logger.info(f"Google Books has no match for ISBN {query}, trying Open Library...")
            return self._fetch_from_open_library(query)

        return None

    def _fetch_from_open_library(self, isbn: str) -> CatalogItem | None:
        clean_isbn = normalize_isbn(isbn)
        bibkey = f"ISBN:{clean_isbn}"
        try:
            resp = self.ol_client.get(
                "/api/books",
                params={"bibkeys": bibkey, "format": "json", "jscmd": "data"},
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error(f"Open Library error for {isbn}: {exc}")
            return None

        book = data.get(bibkey) if isinstance(data, dict) else None
        if not book:
            return None
        return map_open_library(book, clean_isbn)
