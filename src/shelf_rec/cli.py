import argparse
import json
import logging
import atexit
from pathlib import Path

from tqdm import tqdm

from .database import (
    init_db, close_pool, load_catalog, upsert_books, export_books,
    books_missing_metadata, update_book_metadata, update_progress, library_stats,
)
from .config import DEFAULT_ENRICH_LIMIT, IMPORT_CHUNK_SIZE, TOP_N
from .google_books import GoogleBooksClient
from .profile import FEATURE_KINDS, build_profile
from .recommender import Recommender, ScoredItem, is_favorite

logger = logging.getLogger(__name__)

# Register cleanup on exit
atexit.register(close_pool)


def _load_records(path: Path) -> list[dict]:
    """Read an import file: a JSON list of books or an object with a 'books' list."""
    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("books", [])
    if not isinstance(payload, list):
        raise ValueError(f"{path} must contain a list of books")
    return payload


def _format_recommendation(rank: int, rec: ScoredItem) -> str:
    item = rec.item
    marker = " [external]" if rec.is_external else ""
    author = item.author or "unknown author"
    matched = ", ".join(rec.matched_features)
    return f"{rank:2d}. {item.title} by {author} ({rec.score:.3f}){marker}\n    matches: {matched}"


def cmd_import(args: argparse.Namespace) -> None:
    init_db()
    records = _load_records(Path(args.file))
    stored = 0
    for start in range(0, len(records), IMPORT_CHUNK_SIZE):
        stored += len(upsert_books(records[start:start + IMPORT_CHUNK_SIZE]))
    print(f"Imported {stored} books from {args.file}")


def cmd_export(args: argparse.Namespace) -> None:
    init_db()
    books = export_books()
    Path(args.file).write_text(json.dumps(books, indent=2), encoding="utf-8")
    print(f"Exported {len(books)} books to {args.file}")


def cmd_recommend(args: argparse.Namespace) -> None:
    init_db()
    if args.offline:
        recs = Recommender(load_catalog, top_n=args.limit).get_recommendations()
    else:
        with GoogleBooksClient() as client:
            recs = Recommender(load_catalog, client, top_n=args.limit).get_recommendations()

    if args.json:
        print(json.dumps([r.to_dict() for r in recs], indent=2))
        return

    if not recs:
        print("No recommendations yet. Finish and rate a few books first.")
        return

    print(f"\nTop {len(recs)} recommendations:\n")
    for i, rec in enumerate(recs, 1):
        print(_format_recommendation(i, rec))


def cmd_profile(args: argparse.Namespace) -> None:
    init_db()
    favorites = [item for item in load_catalog() if is_favorite(item)]
    if not favorites:
        print("No favorites yet (finished books rated 3 or more).")
        return

    profile = build_profile(favorites)
    print(f"\nProfile built from {profile.n_favorites} favorites\n")
    for kind in FEATURE_KINDS:
        top = profile.top_features(kind, args.top)
        if not top:
            continue
        print(f"{kind.capitalize()}s:")
        for value, weight in top:
            print(f"  {value:<30} {weight:.2f}")


def cmd_enrich(args: argparse.Namespace) -> None:
    init_db()
    books = books_missing_metadata(args.limit)
    if not books:
        print("All books already have metadata.")
        return

    updated = 0
    with GoogleBooksClient() as client:
        for book in tqdm(books, desc="Enriching", unit="book"):
            metadata = client.fetch_metadata(book.isbn or book.title)
            if metadata is None:
                logger.debug(f"No metadata found for '{book.title}'")
                continue
            if update_book_metadata(book.id, metadata):
                updated += 1

    print(f"Updated metadata for {updated}/{len(books)} books")


def cmd_lookup(args: argparse.Namespace) -> None:
    with GoogleBooksClient() as client:
        metadata = client.fetch_metadata(args.query)
    if metadata is None:
        print(f"Nothing found for '{args.query}'")
        return
    print(json.dumps(metadata.to_dict(), indent=2))


def cmd_progress(args: argparse.Namespace) -> None:
    init_db()
    book = update_progress(args.book_id, current_page=args.page, percent=args.percent)
    if book is None:
        print(f"No book with id '{args.book_id}'")
        return
    pages = f"{book.current_page}/{book.total_pages}" if book.total_pages else str(book.current_page)
    print(f"{book.title}: page {pages} ({book.status.value})")


def cmd_stats(args: argparse.Namespace) -> None:
    init_db()
    stats = library_stats()
    if args.json:
        print(json.dumps(stats, indent=2))
        return

    avg = f"{stats['avg_rating']:.1f}" if stats["avg_rating"] is not None else "-"
    print(f"\n{stats['total']} books, average rating {avg}, {stats['pages_read']} pages read\n")
    for status, count in stats["by_status"].items():
        print(f"  {status:<12} {count}")
    if stats["top_genres"]:
        print("\nTop genres:")
        for genre, count in stats["top_genres"]:
            print(f"  {genre:<30} {count}")


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return number


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative, got {value}")
    return number


def _percent(value: str) -> float:
    number = float(value)
    if not 0 <= number <= 100:
        raise argparse.ArgumentTypeError(f"must be between 0 and 100, got {value}")
    return number


def main():
    parser = argparse.ArgumentParser(description="Personal library recommender")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    import_parser = subparsers.add_parser("import", help="Import books from JSON")
    import_parser.add_argument("file", help="Input JSON file path")
    import_parser.set_defaults(func=cmd_import)

    export_parser = subparsers.add_parser("export", help="Export books to JSON")
    export_parser.add_argument("file", help="Output JSON file path")
    export_parser.set_defaults(func=cmd_export)

    rec_parser = subparsers.add_parser("recommend", help="Recommend what to read next")
    rec_parser.add_argument("--limit", type=_positive_int, default=TOP_N, help="Maximum recommendations")
    rec_parser.add_argument("--offline", action="store_true", help="Only use the local library")
    rec_parser.add_argument("--json", action="store_true", help="Print JSON instead of text")
    rec_parser.set_defaults(func=cmd_recommend)

    profile_parser = subparsers.add_parser("profile", help="Show the preference profile")
    profile_parser.add_argument("--top", type=_positive_int, default=5, help="Features per kind")
    profile_parser.set_defaults(func=cmd_profile)

    enrich_parser = subparsers.add_parser("enrich", help="Fill missing metadata from Google Books")
    enrich_parser.add_argument("--limit", type=_positive_int, default=DEFAULT_ENRICH_LIMIT, help="Max books to look up")
    enrich_parser.set_defaults(func=cmd_enrich)

    lookup_parser = subparsers.add_parser("lookup", help="Look up book metadata by ISBN or title")
    lookup_parser.add_argument("query", help="ISBN or title")
    lookup_parser.set_defaults(func=cmd_lookup)

    progress_parser = subparsers.add_parser("progress", help="Record reading progress for a book")
    progress_parser.add_argument("book_id", help="Book id")
    position = progress_parser.add_mutually_exclusive_group(required=True)
    position.add_argument("--page", type=_non_negative_int, help="Current page")
    position.add_argument("--percent", type=_percent, help="Percent read (0-100)")
    progress_parser.set_defaults(func=cmd_progress)

    stats_parser = subparsers.add_parser("stats", help="Show library statistics")
    stats_parser.add_argument("--json", action="store_true", help="Print JSON instead of text")
    stats_parser.set_defaults(func=cmd_stats)

    args = parser.parse_args()

    # Configure logging based on verbosity
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    args.func(args)


if __name__ == "__main__":
    main()
