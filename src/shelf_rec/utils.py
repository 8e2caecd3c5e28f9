"""Retry and ISBN helpers shared by the lookup client."""

import time
import logging
from functools import wraps
from typing import TypeVar, Callable

import httpx

logger = logging.getLogger(__name__)

T = TypeVar('T')


def _request_label(exc: Exception) -> str:
    """'GET https://...' for httpx errors that carry their request, else ''."""
    if not isinstance(exc, httpx.RequestError):
        return ""
    try:
        request = exc.request
    except RuntimeError:
        # Raised by httpx when the error was built without a request
        return ""
    return f"{request.method} {request.url}"


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    exceptions: tuple = (httpx.TransportError,),
):
    """
    Retry a call on transient failures, sleeping longer after each one.

    ``max_retries`` counts attempts, so 1 means a single try. Log lines name
    the failing request when the exception is an httpx error. Once every
    attempt is used up the final exception propagates unchanged.
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            delay = initial_delay
            for attempt in range(1, max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    target = _request_label(e) or func.__name__
                    if attempt == max_retries:
                        logger.error(f"{target} gave up after {attempt} attempt(s): {e!r}")
                        raise
                    logger.warning(
                        f"{target} failed ({attempt}/{max_retries}): {e!r}, retrying in {delay:.1f}s"
                    )
                    time.sleep(delay)
                    delay *= backoff_factor
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")

        return wrapper
    return decorator


def normalize_isbn(value: str | None) -> str | None:
    """Strip hyphens and spaces from an ISBN; None when nothing is left."""
    if not value:
        return None
    cleaned = value.replace("-", "").replace(" ", "").strip()
    return cleaned or None


def looks_like_isbn(query: str) -> bool:
    """True for 10-17 characters of digits and hyphens (ISBN-10/13, optionally hyphenated)."""
    stripped = query.strip()
    return 10 <= len(stripped) <= 17 and all(c.isdigit() or c == "-" for c in stripped)
