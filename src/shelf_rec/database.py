import sqlite3
import json
import logging
import threading
import uuid
from collections import Counter
from contextlib import contextmanager
from datetime import datetime
from .catalog import CatalogItem, ReadingStatus
from .config import DB_PATH, STATS_TOP_GENRES

logger = logging.getLogger(__name__)

BOOK_COLUMNS = (
    "id", "title", "author", "series", "isbn", "description", "cover_url",
    "published_year", "publisher", "total_pages", "format", "genres", "tags",
    "status", "current_page", "rating", "created_at", "updated_at",
)


class ConnectionPool:
    """
    One SQLite connection per thread, with nested transaction tracking.

    SQLite connections must not be shared across threads, so each thread
    gets its own; only the outermost ``get_db`` context commits.
    """

    def __init__(self, db_path):
        self._db_path = db_path
        self._lock = threading.Lock()
        self._connections: dict[int, sqlite3.Connection] = {}
        self._transaction_depth: dict[int, int] = {}

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout = 5000")
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def get_connection(self) -> sqlite3.Connection:
        thread_id = threading.get_ident()
        with self._lock:
            conn = self._connections.get(thread_id)
            if conn is None:
                conn = self._create_connection()
                self._connections[thread_id] = conn
                self._transaction_depth[thread_id] = 0
                logger.debug(f"Created connection for thread {thread_id} (pool size: {len(self._connections)})")
            return conn

    def get_transaction_depth(self) -> int:
        return self._transaction_depth.get(threading.get_ident(), 0)

    def increment_transaction_depth(self):
        thread_id = threading.get_ident()
        with self._lock:
            self._transaction_depth[thread_id] = self._transaction_depth.get(thread_id, 0) + 1

    def decrement_transaction_depth(self):
        thread_id = threading.get_ident()
        with self._lock:
            depth = self._transaction_depth.get(thread_id, 1)
            self._transaction_depth[thread_id] = max(0, depth - 1)

    def close_all(self):
        """Close all connections (call on application shutdown)."""
        with self._lock:
            for thread_id, conn in list(self._connections.items()):
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.warning(f"Error closing connection for thread {thread_id}: {e}")
            self._connections.clear()
            self._transaction_depth.clear()
            logger.debug("Connection pool closed")


# Global pool instance
_pool: ConnectionPool | None = None
_pool_lock = threading.Lock()


def _get_pool() -> ConnectionPool:
    """Get or create the global connection pool."""
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                DB_PATH.parent.mkdir(exist_ok=True, parents=True)
                _pool = ConnectionPool(DB_PATH)
    return _pool


@contextmanager
def get_db(read_only: bool = False):
    """
    Get database connection with proper transaction handling.

    Args:
        read_only: If True, skip commit on exit

    Only the outermost context commits or rolls back.
    """
    pool = _get_pool()
    conn = pool.get_connection()

    is_outermost = pool.get_transaction_depth() == 0
    pool.increment_transaction_depth()

    try:
        yield conn

        if is_outermost and not read_only:
            conn.commit()

    except Exception:
        if is_outermost:
            conn.rollback()
        raise

    finally:
        pool.decrement_transaction_depth()


def close_pool():
    """Close the connection pool. Call on application shutdown."""
    global _pool
    if _pool is not None:
        _pool.close_all()
        _pool = None


def init_db() -> None:
    DB_PATH.parent.mkdir(exist_ok=True, parents=True)
    with get_db() as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS books (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                series TEXT,
                isbn TEXT UNIQUE,
                description TEXT,
                cover_url TEXT,
                published_year INTEGER,
                publisher TEXT,
                total_pages INTEGER,
                format TEXT DEFAULT 'other',
                genres TEXT,        -- JSON list
                tags TEXT,          -- JSON list
                status TEXT DEFAULT 'unread',
                current_page INTEGER DEFAULT 0,
                rating REAL,
                created_at TEXT,
                updated_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_books_status ON books(status);
            CREATE INDEX IF NOT EXISTS idx_books_title ON books(title COLLATE NOCASE);
        """)


def load_json(val):
    """Safely load JSON from db field."""
    if not val:
        return []
    if isinstance(val, list):
        return val
    try:
        return json.loads(val)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"Failed to parse JSON '{val[:50]}...': {e}")
        return []


def _row_to_item(row: sqlite3.Row) -> CatalogItem:
    record = dict(row)
    record["genres"] = load_json(record.get("genres"))
    record["tags"] = load_json(record.get("tags"))
    return CatalogItem.from_dict(record)


def load_catalog() -> list[CatalogItem]:
    """
    Read the whole catalog.

    Errors are not caught here: without the catalog there is nothing to
    recommend from.
    """
    with get_db(read_only=True) as conn:
        rows = conn.execute("SELECT * FROM books ORDER BY created_at, rowid").fetchall()
    return [_row_to_item(row) for row in rows]


def _book_params(record: dict, now: str) -> dict:
    item = CatalogItem.from_dict(record)
    if not item.title or not item.author:
        raise ValueError(f"Book needs a title and an author: {record!r}")
    return {
        "id": item.id or str(uuid.uuid4()),
        "title": item.title,
        "author": item.author,
        "series": item.series,
        "isbn": item.isbn,
        "description": item.description,
        "cover_url": item.cover_url,
        "published_year": item.published_year,
        "publisher": item.publisher,
        "total_pages": item.total_pages,
        "format": item.format.value,
        "genres": json.dumps(item.genres),
        "tags": json.dumps(item.tags),
        "status": item.status.value,
        "current_page": item.current_page,
        "rating": item.rating,
        "created_at": record.get("created_at") or record.get("createdAt") or now,
        "updated_at": now,
    }


def _check_isbn_conflicts(conn: sqlite3.Connection, params: list[dict]) -> None:
    """
    Refuse records whose ISBN already belongs to a different book.

    ``INSERT OR REPLACE`` would otherwise delete the stored book (with its
    rating and reading status) to satisfy the UNIQUE constraint.
    """
    claimed: dict[str, str] = {}
    for p in params:
        isbn = p["isbn"]
        if not isbn:
            continue
        owner = claimed.get(isbn)
        if owner is None:
            row = conn.execute("SELECT id FROM books WHERE isbn = ?", (isbn,)).fetchone()
            owner = row["id"] if row else None
        if owner is not None and owner != p["id"]:
            raise ValueError(f"ISBN {isbn} already belongs to book {owner}, not '{p['title']}'")
        claimed[isbn] = p["id"]


def upsert_books(records: list[dict]) -> list[str]:
    """
    Insert or replace books from loosely-shaped dicts (import files, API payloads).

    Returns the ids of the stored books, generating UUIDs where missing.
    A record whose ISBN is held by another book raises ValueError and
    nothing from the batch is stored.
    """
    now = datetime.now().isoformat()
    params = [_book_params(record, now) for record in records]
    placeholders = ", ".join(f":{col}" for col in BOOK_COLUMNS)
    with get_db() as conn:
        _check_isbn_conflicts(conn, params)
        conn.executemany(
            f"INSERT OR REPLACE INTO books ({', '.join(BOOK_COLUMNS)}) VALUES ({placeholders})",
            params,
        )
    logger.info(f"Stored {len(params)} books")
    return [p["id"] for p in params]


def export_books() -> list[dict]:
    with get_db(read_only=True) as conn:
        rows = conn.execute("SELECT * FROM books ORDER BY created_at, rowid").fetchall()
    books = []
    for row in rows:
        record = dict(row)
        record["genres"] = load_json(record["genres"])
        record["tags"] = load_json(record["tags"])
        books.append(record)
    return books


def books_missing_metadata(limit: int = 50) -> list[CatalogItem]:
    """Books without genres or a cover, the ones worth a metadata lookup."""
    with get_db(read_only=True) as conn:
        rows = conn.execute("""
            SELECT * FROM books
            WHERE genres IS NULL OR genres = '[]' OR cover_url IS NULL
            ORDER BY created_at, rowid
            LIMIT ?
        """, (limit,)).fetchall()
    return [_row_to_item(row) for row in rows]


def update_book_metadata(book_id: str, metadata: CatalogItem) -> bool:
    """
    Fill empty descriptive fields of a stored book from looked-up metadata.

    Fields the user already set are never overwritten. Returns True when
    anything changed.
    """
    with get_db() as conn:
        row = conn.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
        if row is None:
            logger.warning(f"Book {book_id} not found, skipping metadata update")
            return False

        current = dict(row)
        updates: dict = {}
        candidates = {
            "description": metadata.description,
            "cover_url": metadata.cover_url,
            "publisher": metadata.publisher,
            "published_year": metadata.published_year,
            "total_pages": metadata.total_pages,
        }
        for column, value in candidates.items():
            if value is not None and current.get(column) in (None, ""):
                updates[column] = value

        if metadata.genres and not load_json(current.get("genres")):
            updates["genres"] = json.dumps(metadata.genres)
        if metadata.isbn and not current.get("isbn"):
            clash = conn.execute(
                "SELECT 1 FROM books WHERE isbn = ? AND id != ?", (metadata.isbn, book_id)
            ).fetchone()
            if clash is None:
                updates["isbn"] = metadata.isbn

        if not updates:
            return False

        updates["updated_at"] = datetime.now().isoformat()
        assignments = ", ".join(f"{col} = :{col}" for col in updates)
        conn.execute(f"UPDATE books SET {assignments} WHERE id = :id", {**updates, "id": book_id})

    logger.debug(f"Updated {', '.join(updates)} for book {book_id}")
    return True


def update_progress(
    book_id: str,
    current_page: int | None = None,
    percent: float | None = None,
) -> CatalogItem | None:
    """
    Record how far into a book the reader is.

    A percentage is converted to a page when the page count is known;
    otherwise ``current_page`` is used as given. Status follows the page:
    an unread book with pages read becomes in progress, and an in-progress
    book read to its last page becomes finished. Returns the updated book,
    or None when the id is unknown.
    """
    if current_page is not None and current_page < 0:
        raise ValueError(f"current_page must not be negative, got {current_page}")
    if percent is not None and not 0 <= percent <= 100:
        raise ValueError(f"percent must be between 0 and 100, got {percent}")

    with get_db() as conn:
        row = conn.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
        if row is None:
            logger.warning(f"Book {book_id} not found, progress not recorded")
            return None

        book = _row_to_item(row)
        if percent is not None and book.total_pages:
            page = int(percent / 100 * book.total_pages + 0.5)
        elif current_page is not None:
            page = current_page
        else:
            raise ValueError(f"'{book.title}' has no page count, give a page number instead")

        status = book.status
        if page > 0 and status == ReadingStatus.UNREAD:
            status = ReadingStatus.IN_PROGRESS
        if book.total_pages and page >= book.total_pages and status == ReadingStatus.IN_PROGRESS:
            status = ReadingStatus.FINISHED
            logger.info(f"'{book.title}' read to the last page, marked as finished")

        conn.execute(
            "UPDATE books SET current_page = ?, status = ?, updated_at = ? WHERE id = ?",
            (page, status.value, datetime.now().isoformat(), book_id),
        )

    book.current_page = page
    book.status = status
    return book


def library_stats() -> dict:
    """
    Summarise the library: totals, counts per status, the average rating
    (one decimal, None without ratings), pages read and the top genres.
    """
    catalog = load_catalog()

    by_status = {status.value: 0 for status in ReadingStatus}
    genre_counts: Counter[str] = Counter()
    ratings = []
    pages_read = 0
    for book in catalog:
        by_status[book.status.value] += 1
        if book.rating is not None:
            ratings.append(book.rating)
        pages_read += book.current_page
        genre_counts.update(book.genres)

    return {
        "total": len(catalog),
        "by_status": by_status,
        "avg_rating": round(sum(ratings) / len(ratings), 1) if ratings else None,
        "pages_read": pages_read,
        "top_genres": genre_counts.most_common(STATS_TOP_GENRES),
    }
