"""Transactional store contract and the in-process implementation.

A store hands out units of work. ``Store.scoped_work()`` runs a block
against a private, consistent view and commits it atomically on clean exit;
any exception rolls the whole unit back. Write units are serialized through
one writer, while ``Store.snapshot()`` reads the last committed state
without waiting for it.
"""
import copy
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set, Tuple

from booklist.errors import CommitError
from booklist.models import Book, Collection, Note

logger = logging.getLogger(__name__)


class UnitOfWork:
    """Operations available inside a scoped unit of work.

    Lookups raise ``StoreLookupError`` when the query cannot run. Mutations
    raise ``CommitError`` when they cannot be applied.
    """

    # Lookups

    def find_book(self, identifier: str) -> Optional[Book]:
        raise NotImplementedError

    def find_note(self, identifier: str) -> Optional[Note]:
        raise NotImplementedError

    def find_collection(self, title: str) -> Optional[Collection]:
        raise NotImplementedError

    def list_books(self) -> List[Book]:
        raise NotImplementedError

    def count_books(self) -> int:
        raise NotImplementedError

    # Mutations

    def insert_book(self, book: Book) -> bool:
        """Insert a book; returns False if the identifier is already stored."""
        raise NotImplementedError

    def set_read_flag(self, identifier: str, has_read: bool):
        raise NotImplementedError

    def insert_note(self, note: Note):
        raise NotImplementedError

    def update_note(self, note: Note):
        """Persist a note's text and timestamp."""
        raise NotImplementedError

    def attach_note(self, note_identifier: str, book_identifier: str):
        raise NotImplementedError

    def detach_note(self, note_identifier: str, book_identifier: str):
        raise NotImplementedError

    def insert_collection(self, collection: Collection) -> bool:
        """Insert a collection; returns False if the title is already stored."""
        raise NotImplementedError

    def add_membership(self, book_identifier: str, title: str):
        raise NotImplementedError

    # Lifecycle

    def commit(self):
        raise NotImplementedError

    def rollback(self):
        raise NotImplementedError


class Store:
    """Base class for stores; subclasses implement ``begin``/``begin_read``."""

    def begin(self) -> UnitOfWork:
        """Open a write unit of work (blocks until it is the sole writer)."""
        raise NotImplementedError

    def begin_read(self) -> UnitOfWork:
        """Open a read-only unit over the last committed state."""
        raise NotImplementedError

    @contextmanager
    def scoped_work(self) -> Iterator[UnitOfWork]:
        """Run a block as one all-or-nothing unit of work."""
        work = self.begin()
        try:
            yield work
        except BaseException:
            work.rollback()
            raise
        work.commit()

    @contextmanager
    def snapshot(self) -> Iterator[UnitOfWork]:
        """Read the last committed state; nothing is written."""
        work = self.begin_read()
        try:
            yield work
        finally:
            work.rollback()

    def close(self):
        """Release store resources."""


@dataclass
class _State:
    """Committed tables of a ``MemoryStore``. Never mutated once published."""
    books: Dict[str, dict] = field(default_factory=dict)
    # Insertion order doubles as creation order
    notes: Dict[str, dict] = field(default_factory=dict)
    collections: Dict[str, dict] = field(default_factory=dict)
    memberships: Set[Tuple[str, str]] = field(default_factory=set)


class MemoryUnitOfWork(UnitOfWork):
    """Unit of work over a private copy of a ``MemoryStore`` state."""

    def __init__(self, store: "MemoryStore", state: _State, writable: bool):
        self.store = store
        self.state = state
        self.writable = writable
        self._open = True

    # Lookups

    def find_book(self, identifier: str) -> Optional[Book]:
        row = self.state.books.get(identifier)
        return self._to_book(row) if row else None

    def find_note(self, identifier: str) -> Optional[Note]:
        row = self.state.notes.get(identifier)
        return self._to_note(row) if row else None

    def find_collection(self, title: str) -> Optional[Collection]:
        if title not in self.state.collections:
            return None
        members = {b for b, t in self.state.memberships if t == title}
        return Collection(title=title, book_identifiers=members)

    def list_books(self) -> List[Book]:
        return [self._to_book(row) for row in self.state.books.values()]

    def count_books(self) -> int:
        return len(self.state.books)

    def _to_note(self, row: dict) -> Note:
        return Note(
            text=row["text"],
            identifier=row["identifier"],
            timestamp=row["timestamp"],
            book_identifier=row["book_identifier"],
        )

    def _to_book(self, row: dict) -> Book:
        identifier = row["identifier"]
        notes = [
            self._to_note(n) for n in self.state.notes.values()
            if n["book_identifier"] == identifier
        ]
        collections = {t for b, t in self.state.memberships if b == identifier}
        return Book(
            identifier=identifier,
            title=row["title"],
            authors=list(row["authors"]),
            has_read=row["has_read"],
            notes=notes,
            collections=collections,
        )

    # Mutations

    def _writable(self):
        if not self._open:
            raise CommitError("Unit of work is already closed")
        if not self.writable:
            raise CommitError("Snapshot units of work are read-only")

    def insert_book(self, book: Book) -> bool:
        self._writable()
        if book.identifier in self.state.books:
            return False
        self.state.books[book.identifier] = {
            "identifier": book.identifier,
            "title": book.title,
            "authors": list(book.authors),
            "has_read": book.has_read,
        }
        return True

    def _book_row(self, identifier: str) -> dict:
        row = self.state.books.get(identifier)
        if row is None:
            raise CommitError(f"Book {identifier!r} is not stored")
        return row

    def _note_row(self, identifier: str) -> dict:
        row = self.state.notes.get(identifier)
        if row is None:
            raise CommitError(f"Note {identifier!r} is not stored")
        return row

    def set_read_flag(self, identifier: str, has_read: bool):
        self._writable()
        self._book_row(identifier)["has_read"] = has_read

    def insert_note(self, note: Note):
        self._writable()
        if note.identifier in self.state.notes:
            raise CommitError(f"Note {note.identifier!r} already exists")
        if note.book_identifier is not None:
            self._book_row(note.book_identifier)
        self.state.notes[note.identifier] = {
            "identifier": note.identifier,
            "text": note.text,
            "timestamp": note.timestamp,
            "book_identifier": note.book_identifier,
        }

    def update_note(self, note: Note):
        self._writable()
        row = self._note_row(note.identifier)
        row["text"] = note.text
        row["timestamp"] = note.timestamp

    def attach_note(self, note_identifier: str, book_identifier: str):
        self._writable()
        self._book_row(book_identifier)
        self._note_row(note_identifier)["book_identifier"] = book_identifier

    def detach_note(self, note_identifier: str, book_identifier: str):
        self._writable()
        row = self._note_row(note_identifier)
        if row["book_identifier"] == book_identifier:
            row["book_identifier"] = None

    def insert_collection(self, collection: Collection) -> bool:
        self._writable()
        if collection.title in self.state.collections:
            return False
        self.state.collections[collection.title] = {"title": collection.title}
        return True

    def add_membership(self, book_identifier: str, title: str):
        self._writable()
        self._book_row(book_identifier)
        if title not in self.state.collections:
            raise CommitError(f"Collection {title!r} is not stored")
        self.state.memberships.add((book_identifier, title))

    # Lifecycle

    def commit(self):
        if not self._open:
            raise CommitError("Unit of work is already closed")
        try:
            if self.writable:
                self.store._publish(self.state)
        finally:
            self._close()

    def rollback(self):
        if self._open:
            self._close()

    def _close(self):
        self._open = False
        if self.writable:
            self.store._writer.release()


class MemoryStore(Store):
    """In-process store with a single writer and lock-free snapshot reads."""

    unit_of_work_class = MemoryUnitOfWork

    def __init__(self):
        self._state = _State()
        self._writer = threading.Lock()

    def begin(self) -> UnitOfWork:
        self._writer.acquire()
        try:
            working = copy.deepcopy(self._state)
        except BaseException:
            self._writer.release()
            raise
        return self.unit_of_work_class(self, working, writable=True)

    def begin_read(self) -> UnitOfWork:
        return self.unit_of_work_class(self, self._state, writable=False)

    def get_stats(self) -> Dict[str, int]:
        """Counts over the last committed state."""
        state = self._state
        return {
            "total_books": len(state.books),
            "read_books": sum(1 for row in state.books.values() if row["has_read"]),
            "notes": len(state.notes),
            "collections": len(state.collections),
        }

    def _publish(self, state: _State):
        """Make a committed working copy the current state."""
        self._state = state
        logger.debug(f"Committed state with {len(state.books)} books")
