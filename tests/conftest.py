import importlib
import sys
from pathlib import Path

import pytest

# Ensure the package under test is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from shelf_rec.catalog import BookFormat, CatalogItem, ReadingStatus  # noqa: E402


@pytest.fixture
def fresh_config(monkeypatch, tmp_path):
    """
    Reload config with a temporary database path to keep tests isolated.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("SHELF_DB", str(db_path))
    import shelf_rec.config as config

    importlib.reload(config)
    return config


@pytest.fixture
def fresh_db(monkeypatch, tmp_path):
    """
    Reload config/database modules with a temp DB and cleanly close the pool after use.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("SHELF_DB", str(db_path))

    import shelf_rec.config as config
    import shelf_rec.database as database

    importlib.reload(config)
    importlib.reload(database)

    database.init_db()
    yield database
    database.close_pool()


@pytest.fixture
def make_item():
    """Factory for catalog items with sensible defaults."""
    counter = {"n": 0}

    def _make(
        title: str,
        author: str = "Someone",
        genres=None,
        tags=None,
        format: BookFormat = BookFormat.EPUB,
        rating=None,
        status: ReadingStatus = ReadingStatus.UNREAD,
        **kwargs,
    ) -> CatalogItem:
        counter["n"] += 1
        kwargs.setdefault("id", f"book-{counter['n']}")
        return CatalogItem(
            title=title,
            author=author,
            genres=list(genres or []),
            tags=list(tags or []),
            format=format,
            rating=rating,
            status=status,
            **kwargs,
        )

    return _make
