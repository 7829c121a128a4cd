"""Reconciliation of catalog records into the local library.

Every mutation runs inside one ``Store.scoped_work()`` unit. Store failures
never escape this module: they are logged where they happen and returned in
``SaveResult.error`` next to the in-memory value, which stays usable even
when it could not be made durable.
"""
import logging
from datetime import timedelta
from typing import List, Optional

from booklist.config import Config
from booklist.errors import StoreError, StoreLookupError
from booklist.models import Book, CanonicalBookRecord, Collection, Note, SaveResult, utcnow
from booklist.store import Store

logger = logging.getLogger(__name__)

class PersistenceGateway:
    """Find-or-create and relationship maintenance over an injected store."""

    def __init__(self, store: Store, have_read_title: str = Config.HAVE_READ_COLLECTION):
        """
        Args:
            store: Store every unit of work is opened on
            have_read_title: Collection that ``mark_as_read`` adds books to
        """
        self.store = store
        self.have_read_title = have_read_title

    # Books

    def find_or_create_book(self, record: CanonicalBookRecord) -> SaveResult[Book]:
        """
        Return the stored book for ``record.id``, creating it on first sight.

        An existing book is returned unchanged, without refreshing its title
        or authors from the record.
        """
        book = None
        try:
            with self.store.scoped_work() as work:
                book = work.find_book(record.id)
                if book is None:
                    book = Book.from_record(record)
                    if not work.insert_book(book):
                        # Lost a race with another writer; use its row
                        book = work.find_book(record.id) or book
                    else:
                        logger.info(f"Created book {record.id!r} ({record.title})")
        except StoreLookupError as e:
            logger.error(f"Error fetching book {record.id!r} from persistence store: {e}")
            return SaveResult(Book.from_record(record), e)
        except StoreError as e:
            logger.error(f"Error saving book {record.id!r} to persistence store: {e}")
            return SaveResult(book or Book.from_record(record), e)

        return SaveResult(book)

    def find_book(self, identifier: str) -> Optional[Book]:
        try:
            with self.store.snapshot() as view:
                return view.find_book(identifier)
        except StoreLookupError as e:
            logger.error(f"Error fetching book {identifier!r} from persistence store: {e}")
            return None

    def books(self) -> List[Book]:
        """All stored books, read from the last committed state."""
        try:
            with self.store.snapshot() as view:
                return view.list_books()
        except StoreLookupError as e:
            logger.error(f"Error listing books: {e}")
            return []

    def mark_as_read(self, book: Book) -> SaveResult[Book]:
        """
        Flag a book as read and file it under the "Have read" collection.

        The flag is set even when that collection does not exist; membership
        is then skipped without error.
        """
        book.has_read = True
        try:
            with self.store.scoped_work() as work:
                work.set_read_flag(book.identifier, True)
                collection = work.find_collection(self.have_read_title)
                if collection is not None:
                    work.add_membership(book.identifier, collection.title)
                    book.collections.add(collection.title)
        except StoreError as e:
            logger.error(f"Error saving markAsRead for {book.identifier!r}: {e}")
            return SaveResult(book, e)

        return SaveResult(book)

    # Notes

    def create_note(self, text: str) -> Optional[Note]:
        """Create and commit an unattached note; None if it could not be saved."""
        note = Note(text=text)
        try:
            with self.store.scoped_work() as work:
                work.insert_note(note)
        except StoreError as e:
            logger.error(f"Error saving note to persistence store: {e}")
            return None
        return note

    def find_note(self, identifier: str) -> Optional[Note]:
        try:
            with self.store.snapshot() as view:
                return view.find_note(identifier)
        except StoreLookupError as e:
            logger.error(f"Error fetching note {identifier!r} from persistence store: {e}")
            return None

    def attach_note(self, note: Note, book: Book) -> SaveResult[Book]:
        note.book_identifier = book.identifier
        if all(n.identifier != note.identifier for n in book.notes):
            book.notes.append(note)

        try:
            with self.store.scoped_work() as work:
                work.attach_note(note.identifier, book.identifier)
        except StoreError as e:
            logger.error(f"Error saving notes to book {book.identifier!r}: {e}")
            return SaveResult(book, e)

        return SaveResult(book)

    def update_note(self, note: Note, text: str) -> SaveResult[Note]:
        """Replace a note's text and move its timestamp forward."""
        note.text = text
        # Strictly later than the previous timestamp, even on a coarse clock
        note.timestamp = max(utcnow(), note.timestamp + timedelta(microseconds=1))

        try:
            with self.store.scoped_work() as work:
                work.update_note(note)
        except StoreError as e:
            logger.error(f"Error saving note {note.identifier!r}: {e}")
            return SaveResult(note, e)

        return SaveResult(note)

    def detach_note(self, note: Note, book: Book) -> SaveResult[Book]:
        book.notes = [n for n in book.notes if n.identifier != note.identifier]
        if note.book_identifier == book.identifier:
            note.book_identifier = None

        try:
            with self.store.scoped_work() as work:
                work.detach_note(note.identifier, book.identifier)
        except StoreError as e:
            logger.error(f"Error removing notes from book {book.identifier!r}: {e}")
            return SaveResult(book, e)

        return SaveResult(book)

    # Collections

    def find_or_create_collection(self, title: str) -> SaveResult[Collection]:
        collection = Collection(title=title)
        try:
            with self.store.scoped_work() as work:
                existing = work.find_collection(title)
                if existing is not None:
                    collection = existing
                else:
                    work.insert_collection(collection)
                    logger.info(f"Created collection {title!r}")
        except StoreError as e:
            logger.error(f"Error saving collection {title!r}: {e}")
            return SaveResult(collection, e)

        return SaveResult(collection)

    def books_in_collection(self, title: str) -> List[Book]:
        try:
            with self.store.snapshot() as view:
                collection = view.find_collection(title)
                if collection is None:
                    return []
                return [
                    book for book in view.list_books()
                    if book.identifier in collection.book_identifiers
                ]
        except StoreLookupError as e:
            logger.error(f"Error fetching collection {title!r}: {e}")
            return []
