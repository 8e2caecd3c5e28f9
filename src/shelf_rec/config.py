"""
Configuration constants for the shelf recommender.

This module centralizes all magic numbers and configurable parameters.
Network and storage values can be overridden via environment variables.
"""
import os
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def _number_env(key: str, default, min_val, cast):
    """Read a numeric SHELF_* override; unparsable values keep the default, small ones are clamped."""
    raw = os.environ.get(key, "").strip()
    if not raw:
        return default
    try:
        val = cast(raw)
    except ValueError:
        logger.warning(f"Invalid {key}='{raw}', using default {default}")
        return default
    if val < min_val:
        logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
        return cast(min_val)
    return val


def _get_float_env(key: str, default: float, min_val: float = 0) -> float:
    return _number_env(key, default, min_val, float)


def _get_int_env(key: str, default: int, min_val: int = 1) -> int:
    return _number_env(key, default, min_val, int)


# Database Configuration
DB_PATH = Path(os.environ.get("SHELF_DB", "data/library.db"))

# External metadata lookup
GOOGLE_BOOKS_BASE = "https://www.googleapis.com/books/v1"
OPEN_LIBRARY_BASE = "https://openlibrary.org"
GOOGLE_BOOKS_API_KEY = os.environ.get("SHELF_GOOGLE_BOOKS_API_KEY") or None
HTTP_TIMEOUT = _get_float_env("SHELF_HTTP_TIMEOUT", 10.0, min_val=1.0)
MAX_HTTP_RETRIES = _get_int_env("SHELF_HTTP_RETRIES", 2, min_val=1)
RETRY_INITIAL_DELAY = _get_float_env("SHELF_RETRY_DELAY", 0.5, min_val=0.0)

# Profile weights
DEFAULT_RATING = 3      # Used when a favorite somehow lacks a rating
MAX_RATING = 5
AUTHOR_BOOST = 1.5      # "More from the same author" beats a loose genre match
FORMAT_WEIGHT = 0.5     # Format is a weak signal

# Recommender Configuration
MIN_RATING = 3
TOP_N = 12
MIN_LOCAL_CANDIDATES = 3  # Below this we ask the external source for more

# External augmentation
EXTERNAL_TOP_GENRES = 3
EXTERNAL_RESULTS_PER_GENRE = 8
EXTERNAL_MAX_SUGGESTIONS = 6

# Batch Processing
DEFAULT_ENRICH_LIMIT = 50
IMPORT_CHUNK_SIZE = 200

# Library stats
STATS_TOP_GENRES = 5
