#!/usr/bin/env python3
"""Books List Explorer CLI - catalog search and reading library."""
import argparse
import asyncio
import sys
import json
from pathlib import Path
from tabulate import tabulate
from booklist.config import Config
from booklist.controller import BookController
from booklist.database import PostgresStore
from booklist.errors import BookListError
from booklist.store import MemoryStore, Store
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def setup_store(config: Config) -> Store:
    """Open the configured store."""
    if config.STORE_BACKEND == "memory":
        logger.warning("Using in-memory store; nothing is kept after exit")
        return MemoryStore()

    store = PostgresStore(config.DATABASE_URL)
    store.init_schema()
    return store


def report(result, action: str) -> bool:
    """Log the outcome of a best-effort save."""
    if result.ok:
        logger.info(f"✅ {action}")
        return True
    logger.error(f"❌ {action} was not saved: {result.error}")
    return False


def display_records(records, format_type: str):
    """Display search results in specified format."""
    if format_type == "table":
        headers = ["ID", "Title", "Authors"]
        rows = [
            [
                record.id,
                record.title[:50] + "..." if len(record.title) > 50 else record.title,
                record.authors_str[:30] + "..." if len(record.authors_str) > 30 else record.authors_str
            ]
            for record in records
        ]
        print("\n" + tabulate(rows, headers=headers, tablefmt="grid"))

    elif format_type == "json":
        records_dict = [
            {
                "id": record.id,
                "title": record.title,
                "authors": list(record.authors),
                "description": record.description,
                "thumbnail": record.thumbnail_url
            }
            for record in records
        ]
        print(json.dumps(records_dict, indent=2))

    elif format_type == "compact":
        for i, record in enumerate(records, 1):
            print(f"{i}. {record.title} - {record.authors_str}")


def display_library(books, show_notes: bool):
    """Display stored books as a table."""
    headers = ["ID", "Title", "Authors", "Read", "Notes", "Collections"]
    rows = [
        [
            book.identifier,
            book.title[:50] + "..." if len(book.title) > 50 else book.title,
            book.authors_str[:30] + "..." if len(book.authors_str) > 30 else book.authors_str,
            "yes" if book.has_read else "no",
            len(book.notes),
            ", ".join(sorted(book.collections)) or "-"
        ]
        for book in books
    ]
    print("\n" + tabulate(rows, headers=headers, tablefmt="grid"))

    if show_notes:
        for book in books:
            if not book.notes:
                continue
            print(f"\n{book.title}")
            print(tabulate(
                [[n.identifier, n.timestamp.strftime("%Y-%m-%d %H:%M"), n.text] for n in book.notes],
                headers=["Note", "Updated", "Text"]
            ))


async def search_books(args, controller: BookController):
    """Search the catalog, optionally saving results to the library."""
    logger.info(f"Searching for: {args.query}")
    records = await controller.search(args.query)
    records = records[:args.limit]

    if not records:
        print("No volumes found")
        return

    display_records(records, args.format)

    if args.save:
        for record in records:
            report(controller.add_to_library(record), f"Saved {record.title}")


async def show_volume(args, controller: BookController):
    """Fetch one volume by id."""
    record = await controller.fetch_volume(args.volume_id)
    display_records([record], args.format)
    if args.save:
        report(controller.add_to_library(record), f"Saved {record.title}")


async def download_cover(args, controller: BookController):
    """Download a volume's thumbnail."""
    record = await controller.fetch_volume(args.volume_id)
    if not record.thumbnail_url:
        print(f"{record.title} has no cover image")
        return

    data = await controller.fetch_image(record.thumbnail_url)
    output = Path(args.output or f"{record.id}.jpg")
    output.write_bytes(data)
    logger.info(f"✅ Wrote {len(data)} bytes to {output}")


def require_book(controller: BookController, identifier: str):
    book = controller.find_book(identifier)
    if book is None:
        raise SystemExit(f"No book with id {identifier!r} in the library")
    return book


def require_note(controller: BookController, identifier: str):
    note = controller.find_note(identifier)
    if note is None:
        raise SystemExit(f"No note with id {identifier!r}")
    return note


async def library_command(args, controller: BookController):
    """List the library or a collection."""
    if args.collection:
        books = controller.books_in_collection(args.collection)
    else:
        books = controller.library()
    display_library(books, args.notes)


async def read_command(args, controller: BookController):
    """Mark a book as read."""
    book = require_book(controller, args.book_id)
    report(controller.mark_as_read(book), f"Marked {book.title} as read")


async def note_command(args, controller: BookController):
    """Add, edit or remove notes."""
    if args.note_action == "add":
        book = require_book(controller, args.book_id)
        note = controller.create_note(args.text)
        if note is None:
            raise SystemExit("Note could not be saved")
        if report(controller.add_note(note, book), f"Added note {note.identifier} to {book.title}"):
            print(note.identifier)

    elif args.note_action == "edit":
        note = require_note(controller, args.note_id)
        report(controller.update_note(note, args.text), f"Updated note {note.identifier}")

    elif args.note_action == "remove":
        note = require_note(controller, args.note_id)
        if note.book_identifier is None:
            print(f"Note {note.identifier} is not attached to a book")
            return
        book = require_book(controller, note.book_identifier)
        report(controller.remove_note(note, book), f"Removed note {note.identifier} from {book.title}")


async def collection_command(args, controller: BookController):
    """Create a collection."""
    report(controller.create_collection(args.title), f"Collection {args.title} ready")


def show_stats(store):
    """Show store statistics."""
    stats = store.get_stats()

    print("\n" + "=" * 50)
    print("LIBRARY STATISTICS")
    print("=" * 50)
    print(f"Total books stored: {stats['total_books']}")
    print(f"Books read: {stats['read_books']}")
    print(f"Notes: {stats['notes']}")
    print(f"Collections: {stats['collections']}")
    print("=" * 50 + "\n")


COMMANDS = {
    "search": search_books,
    "volume": show_volume,
    "cover": download_cover,
    "library": library_command,
    "read": read_command,
    "note": note_command,
    "collection": collection_command,
}


async def run_command(args, config: Config, store: Store):
    async with BookController.from_config(config, store) as controller:
        await COMMANDS[args.command](args, controller)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Books List Explorer - catalog search and reading library",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Search and save results to the library
  %(prog)s search "dune" --save

  # Mark a saved book as read
  %(prog)s read abc123

  # Attach a note
  %(prog)s note add abc123 "Re-read the appendix"

  # Show the library with notes
  %(prog)s library --notes
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # Search command
    search_parser = subparsers.add_parser("search", help="Search for books")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument("--limit", type=int, default=10, help="Max results shown (default: 10)")
    search_parser.add_argument("--format", choices=["table", "json", "compact"], default="table", help="Output format")
    search_parser.add_argument("--save", action="store_true", help="Add results to the library")

    # Volume command
    volume_parser = subparsers.add_parser("volume", help="Fetch a single volume")
    volume_parser.add_argument("volume_id", help="Google Books volume id")
    volume_parser.add_argument("--format", choices=["table", "json", "compact"], default="table", help="Output format")
    volume_parser.add_argument("--save", action="store_true", help="Add the volume to the library")

    # Cover command
    cover_parser = subparsers.add_parser("cover", help="Download a volume's cover thumbnail")
    cover_parser.add_argument("volume_id", help="Google Books volume id")
    cover_parser.add_argument("--output", help="Output file (default: <id>.jpg)")

    # Library command
    library_parser = subparsers.add_parser("library", help="List saved books")
    library_parser.add_argument("--collection", help="Only books in this collection")
    library_parser.add_argument("--notes", action="store_true", help="Show notes")

    # Read command
    read_parser = subparsers.add_parser("read", help="Mark a saved book as read")
    read_parser.add_argument("book_id", help="Book id")

    # Note command
    note_parser = subparsers.add_parser("note", help="Manage notes")
    note_actions = note_parser.add_subparsers(dest="note_action", required=True)
    note_add = note_actions.add_parser("add", help="Attach a new note to a book")
    note_add.add_argument("book_id", help="Book id")
    note_add.add_argument("text", help="Note text")
    note_edit = note_actions.add_parser("edit", help="Replace a note's text")
    note_edit.add_argument("note_id", help="Note id")
    note_edit.add_argument("text", help="New text")
    note_remove = note_actions.add_parser("remove", help="Detach a note from its book")
    note_remove.add_argument("note_id", help="Note id")

    # Collection command
    collection_parser = subparsers.add_parser("collection", help="Manage collections")
    collection_actions = collection_parser.add_subparsers(dest="collection_action", required=True)
    collection_create = collection_actions.add_parser("create", help="Create a collection")
    collection_create.add_argument("title", help="Collection title, e.g. \"Have read\"")

    # Stats command
    subparsers.add_parser("stats", help="Show library statistics")

    return parser


def main():
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    config = Config()

    try:
        store = setup_store(config)
    except BookListError as e:
        logger.error(f"❌ Could not open the library store: {e}")
        sys.exit(1)

    try:
        if args.command == "stats":
            show_stats(store)
        else:
            asyncio.run(run_command(args, config, store))

    except KeyboardInterrupt:
        logger.info("\n⚠️  Interrupted by user")
        sys.exit(0)
    except BookListError as e:
        logger.error(f"❌ {type(e).__name__}: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"❌ Error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        store.close()


if __name__ == "__main__":
    main()
