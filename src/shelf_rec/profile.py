import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from .catalog import CatalogItem
from .config import (
    AUTHOR_BOOST,
    DEFAULT_RATING,
    FORMAT_WEIGHT,
    MAX_RATING,
)

logger = logging.getLogger(__name__)

FEATURE_KINDS = ("genre", "tag", "author", "format")


def feature_key(kind: str, value: str | None) -> str | None:
    """
    Compose a feature key such as ``genre:fantasy``.

    The kind prefix keeps a genre called "epub" apart from the epub format.
    Blank values produce no key.
    """
    if value is None:
        return None
    cleaned = str(value).strip().lower()
    if not cleaned:
        return None
    return f"{kind}:{cleaned}"


def feature_value(key: str) -> str:
    """Strip the kind prefix from a feature key (values may contain ':')."""
    return key.split(":", 1)[1]


def item_features(item: CatalogItem) -> list[tuple[str, str]]:
    """
    Return ``(kind, key)`` pairs for genres, tags, author and format.

    Missing collections are treated as empty so partial items never fail.
    """
    features: list[tuple[str, str]] = []
    for kind, values in (("genre", item.genres or []), ("tag", item.tags or [])):
        for value in values:
            key = feature_key(kind, value)
            if key:
                features.append((kind, key))

    author_key = feature_key("author", item.author)
    if author_key:
        features.append(("author", author_key))

    fmt = getattr(item.format, "value", item.format)
    format_key = feature_key("format", fmt)
    if format_key:
        features.append(("format", format_key))

    return features


@dataclass
class PreferenceProfile:
    """Feature key -> accumulated non-negative weight, rebuilt for every request."""
    weights: dict[str, float] = field(default_factory=dict)
    n_favorites: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.weights

    @property
    def norm(self) -> float:
        """L2 norm over all profile weights."""
        return math.sqrt(sum(w * w for w in self.weights.values()))

    def get(self, key: str) -> float:
        return self.weights.get(key, 0.0)

    def top_features(self, kind: str, n: int) -> list[tuple[str, float]]:
        """
        Highest-weighted ``(value, weight)`` pairs of one kind.

        Equal weights keep insertion order.
        """
        prefix = f"{kind}:"
        ranked = sorted(
            ((feature_value(k), w) for k, w in self.weights.items() if k.startswith(prefix)),
            key=lambda kv: kv[1],
            reverse=True,
        )
        return ranked[:n]


def _base_weight(item: CatalogItem) -> float:
    rating = item.rating
    if rating is None:
        logger.debug(f"Favorite '{item.title}' has no rating, using {DEFAULT_RATING}")
        rating = DEFAULT_RATING
    return rating / MAX_RATING


def build_profile(favorites: list[CatalogItem]) -> PreferenceProfile:
    """
    Build the preference profile from the user's favorite items.

    Weighting strategy (w = rating / 5):
    - Each genre and tag:  +w
    - Author:              +w * 1.5 (more from the same author)
    - Format:              +w * 0.5 (weak signal)

    Weights accumulate across favorites, so three 5-star books by one author
    give that author three times the single-book weight.
    """
    multipliers = {
        "genre": 1.0,
        "tag": 1.0,
        "author": AUTHOR_BOOST,
        "format": FORMAT_WEIGHT,
    }
    scores: dict[str, float] = defaultdict(float)

    for item in favorites:
        weight = _base_weight(item)
        for kind, key in item_features(item):
            scores[key] += weight * multipliers[kind]

    profile = PreferenceProfile(weights=dict(scores), n_favorites=len(favorites))
    logger.debug(f"Built profile with {len(profile.weights)} features from {len(favorites)} favorites")
    return profile
