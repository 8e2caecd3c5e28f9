"""
Content-based recommendations for the local library.

score(item) = dot(item_vector, profile_vector) / |profile_vector|

The item vector is binary (1 when the item has a feature) and only the
profile vector is normalised, so this is deliberately not full cosine
similarity. When the library has too few good matches, books found via
the external source for the user's top genres are blended in.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Protocol

from .catalog import CatalogItem, ReadingStatus
from .utils import normalize_isbn
from .profile import PreferenceProfile, build_profile, feature_value, item_features
from .config import (
    EXTERNAL_MAX_SUGGESTIONS,
    EXTERNAL_RESULTS_PER_GENRE,
    EXTERNAL_TOP_GENRES,
    MIN_LOCAL_CANDIDATES,
    MIN_RATING,
    TOP_N,
)

logger = logging.getLogger(__name__)

CANDIDATE_STATUSES = frozenset({ReadingStatus.UNREAD, ReadingStatus.IN_PROGRESS})


class CandidateSource(Protocol):
    """Best-effort lookup of externally known books for a feature label."""

    def search_by_feature(self, label: str, max_results: int) -> list[CatalogItem]:
        ...


@dataclass
class ScoredItem:
    item: CatalogItem
    score: float
    matched_features: list[str] = field(default_factory=list)
    is_external: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "book": self.item.to_dict(),
            "score": self.score,
            "matchedFeatures": list(self.matched_features),
            "isExternal": self.is_external,
        }


def is_favorite(item: CatalogItem) -> bool:
    """Finished and rated at least MIN_RATING."""
    return (
        item.rating is not None
        and item.rating >= MIN_RATING
        and item.status == ReadingStatus.FINISHED
    )


def is_candidate(item: CatalogItem) -> bool:
    return item.status in CANDIDATE_STATUSES


def score_item(item: CatalogItem, profile: PreferenceProfile) -> tuple[float, list[str]]:
    """
    Score one item against the profile.

    Returns the score and the matched feature values (kind prefix removed,
    de-duplicated in discovery order). An empty profile scores 0.
    """
    dot = 0.0
    matched: list[str] = []

    for _, key in item_features(item):
        weight = profile.get(key)
        if weight > 0:
            dot += weight
            matched.append(feature_value(key))

    magnitude = profile.norm
    score = dot / magnitude if magnitude > 0 else 0.0
    return score, list(dict.fromkeys(matched))


def rank(scored: Iterable[ScoredItem], limit: int) -> list[ScoredItem]:
    """Sort by score descending and truncate; equal scores keep their input order."""
    return sorted(scored, key=lambda s: s.score, reverse=True)[:limit]


def dedupe_by_title(scored: Iterable[ScoredItem]) -> list[ScoredItem]:
    """Collapse entries sharing a case-insensitive title or ISBN, first one wins."""
    seen_titles: set[str] = set()
    seen_isbns: set[str] = set()
    unique: list[ScoredItem] = []
    for entry in scored:
        title = entry.item.title_key
        isbn = normalize_isbn(entry.item.isbn)
        if title in seen_titles or (isbn and isbn in seen_isbns):
            continue
        seen_titles.add(title)
        if isbn:
            seen_isbns.add(isbn)
        unique.append(entry)
    return unique


class Recommender:
    """
    Ranks unread and in-progress books by similarity to the user's favorites.

    Args:
        read_catalog: Returns the full catalog snapshot. Its failures propagate.
        source: Optional external candidate source. Its failures never do.
        top_n: Result cap, never above TOP_N.
    """

    def __init__(
        self,
        read_catalog: Callable[[], list[CatalogItem]],
        source: CandidateSource | None = None,
        top_n: int = TOP_N,
    ):
        self.read_catalog = read_catalog
        self.source = source
        self.top_n = min(top_n, TOP_N)

    def get_recommendations(self) -> list[ScoredItem]:
        catalog = self.read_catalog()

        favorites = [item for item in catalog if is_favorite(item)]
        if not favorites:
            logger.info("No favorites yet, nothing to recommend")
            return []

        candidates = [item for item in catalog if is_candidate(item)]
        if not candidates:
            logger.info("No unread or in-progress books to recommend")
            return []

        profile = build_profile(favorites)
        if profile.is_empty:
            return []

        local_scored = rank(self._score_all(candidates, profile, external=False), TOP_N)

        if len(local_scored) >= MIN_LOCAL_CANDIDATES:
            logger.info(f"Recommendations: {len(local_scored)} local")
            return local_scored[:self.top_n]

        external_scored = self._external_suggestions(profile, catalog)
        combined = rank(local_scored + external_scored, self.top_n)
        logger.info(
            f"Recommendations: {len(local_scored)} local + {len(external_scored)} external"
        )
        return combined

    def _score_all(
        self,
        items: Iterable[CatalogItem],
        profile: PreferenceProfile,
        external: bool,
    ) -> list[ScoredItem]:
        scored = []
        for item in items:
            score, matched = score_item(item, profile)
            if score > 0:
                scored.append(ScoredItem(item, score, matched, is_external=external))
        return scored

    def _external_suggestions(
        self,
        profile: PreferenceProfile,
        catalog: list[CatalogItem],
    ) -> list[ScoredItem]:
        """
        Look up books for the top profile genres that are not in the library.

        Each genre query is isolated: a failing query contributes nothing and
        the remaining queries still run.
        """
        if self.source is None:
            logger.debug("No external source configured, skipping augmentation")
            return []

        top_genres = [genre for genre, _ in profile.top_features("genre", EXTERNAL_TOP_GENRES)]
        if not top_genres:
            return []

        existing_ids = {item.id for item in catalog if item.id}
        existing_isbns = {normalize_isbn(item.isbn) for item in catalog if item.isbn}
        existing_titles = {item.title_key for item in catalog}

        scored: list[ScoredItem] = []
        for genre in top_genres:
            try:
                results = list(self.source.search_by_feature(genre, EXTERNAL_RESULTS_PER_GENRE) or [])
            except Exception as exc:
                logger.warning(f"External search failed for genre '{genre}': {exc}")
                continue

            for item in results:
                # A single malformed item is dropped, never the whole request
                try:
                    if item.id and item.id in existing_ids:
                        continue
                    if item.isbn and normalize_isbn(item.isbn) in existing_isbns:
                        continue
                    if item.title_key in existing_titles:
                        continue
                    score, matched = score_item(item, profile)
                except (AttributeError, TypeError, ValueError) as exc:
                    logger.warning(f"Skipping malformed external item for genre '{genre}': {exc}")
                    continue
                if score > 0:
                    scored.append(ScoredItem(item, score, matched, is_external=True))

        return rank(dedupe_by_title(scored), EXTERNAL_MAX_SUGGESTIONS)
