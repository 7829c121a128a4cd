"""PostgreSQL implementation of the store contract."""
import logging
import threading
from typing import Any, Dict, List, Optional

import psycopg2
from psycopg2 import pool

from booklist.errors import CommitError, StoreError, StoreLookupError
from booklist.models import Book, Collection, Note
from booklist.store import Store, UnitOfWork

logger = logging.getLogger(__name__)

BOOK_COLUMNS = "identifier, title, authors, has_read"
NOTE_COLUMNS = "identifier, text, modified_at, book_identifier"


class PostgresUnitOfWork(UnitOfWork):
    """One transaction on one pooled connection."""

    def __init__(self, store: "PostgresStore", conn, writable: bool):
        self.store = store
        self.conn = conn
        self.writable = writable
        self._open = True

    def _query(self, sql: str, params: tuple = ()) -> List[tuple]:
        try:
            with self.conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchall()
        except psycopg2.Error as e:
            raise StoreLookupError(f"Query failed: {e}") from e

    def _execute(self, sql: str, params: tuple = ()) -> int:
        if not self.writable:
            raise CommitError("Snapshot units of work are read-only")
        try:
            with self.conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.rowcount
        except psycopg2.Error as e:
            raise CommitError(f"Write failed: {e}") from e

    # Lookups

    def _load_book(self, row: tuple) -> Book:
        identifier, title, authors, has_read = row
        notes = [
            self._to_note(r) for r in self._query(f"""
                SELECT {NOTE_COLUMNS} FROM notes
                WHERE book_identifier = %s
                ORDER BY position
            """, (identifier,))
        ]
        collections = {
            r[0] for r in self._query("""
                SELECT collection_title FROM book_collections
                WHERE book_identifier = %s
            """, (identifier,))
        }
        return Book(
            identifier=identifier,
            title=title,
            authors=list(authors or []),
            has_read=has_read,
            notes=notes,
            collections=collections,
        )

    @staticmethod
    def _to_note(row: tuple) -> Note:
        identifier, text, modified_at, book_identifier = row
        return Note(
            text=text,
            identifier=identifier,
            timestamp=modified_at,
            book_identifier=book_identifier,
        )

    def find_book(self, identifier: str) -> Optional[Book]:
        rows = self._query(
            f"SELECT {BOOK_COLUMNS} FROM books WHERE identifier = %s", (identifier,)
        )
        return self._load_book(rows[0]) if rows else None

    def find_note(self, identifier: str) -> Optional[Note]:
        rows = self._query(
            f"SELECT {NOTE_COLUMNS} FROM notes WHERE identifier = %s", (identifier,)
        )
        return self._to_note(rows[0]) if rows else None

    def find_collection(self, title: str) -> Optional[Collection]:
        rows = self._query("SELECT title FROM collections WHERE title = %s", (title,))
        if not rows:
            return None
        members = self._query(
            "SELECT book_identifier FROM book_collections WHERE collection_title = %s",
            (title,)
        )
        return Collection(title=title, book_identifiers={r[0] for r in members})

    def list_books(self) -> List[Book]:
        rows = self._query(f"SELECT {BOOK_COLUMNS} FROM books ORDER BY created_at")
        return [self._load_book(row) for row in rows]

    def count_books(self) -> int:
        return self._query("SELECT COUNT(*) FROM books")[0][0]

    # Mutations

    def insert_book(self, book: Book) -> bool:
        inserted = self._execute("""
            INSERT INTO books (identifier, title, authors, has_read)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (identifier) DO NOTHING
        """, (book.identifier, book.title, list(book.authors), book.has_read))
        return inserted == 1

    def set_read_flag(self, identifier: str, has_read: bool):
        updated = self._execute(
            "UPDATE books SET has_read = %s WHERE identifier = %s", (has_read, identifier)
        )
        if updated == 0:
            raise CommitError(f"Book {identifier!r} is not stored")

    def insert_note(self, note: Note):
        self._execute("""
            INSERT INTO notes (identifier, text, modified_at, book_identifier)
            VALUES (%s, %s, %s, %s)
        """, (note.identifier, note.text, note.timestamp, note.book_identifier))

    def update_note(self, note: Note):
        updated = self._execute(
            "UPDATE notes SET text = %s, modified_at = %s WHERE identifier = %s",
            (note.text, note.timestamp, note.identifier)
        )
        if updated == 0:
            raise CommitError(f"Note {note.identifier!r} is not stored")

    def attach_note(self, note_identifier: str, book_identifier: str):
        updated = self._execute(
            "UPDATE notes SET book_identifier = %s WHERE identifier = %s",
            (book_identifier, note_identifier)
        )
        if updated == 0:
            raise CommitError(f"Note {note_identifier!r} is not stored")

    def detach_note(self, note_identifier: str, book_identifier: str):
        self._execute("""
            UPDATE notes SET book_identifier = NULL
            WHERE identifier = %s AND book_identifier = %s
        """, (note_identifier, book_identifier))

    def insert_collection(self, collection: Collection) -> bool:
        inserted = self._execute(
            "INSERT INTO collections (title) VALUES (%s) ON CONFLICT (title) DO NOTHING",
            (collection.title,)
        )
        return inserted == 1

    def add_membership(self, book_identifier: str, title: str):
        self._execute("""
            INSERT INTO book_collections (book_identifier, collection_title)
            VALUES (%s, %s)
            ON CONFLICT DO NOTHING
        """, (book_identifier, title))

    # Lifecycle

    def commit(self):
        if not self._open:
            raise CommitError("Unit of work is already closed")
        try:
            self.conn.commit()
        except psycopg2.Error as e:
            logger.error(f"Commit failed: {e}")
            self._rollback_quietly()
            raise CommitError(f"Commit failed: {e}") from e
        finally:
            self._close()

    def rollback(self):
        if self._open:
            self._rollback_quietly()
            self._close()

    def _rollback_quietly(self):
        try:
            self.conn.rollback()
        except psycopg2.Error as e:
            logger.warning(f"Rollback failed: {e}")

    def _close(self):
        self._open = False
        try:
            self.store.connection_pool.putconn(self.conn)
        finally:
            if self.writable:
                self.store._writer.release()


class PostgresStore(Store):
    """PostgreSQL store with connection pooling."""

    def __init__(self, connection_string: str, min_conn: int = 1, max_conn: int = 10):
        """
        Initialize database connection pool.

        Args:
            connection_string: PostgreSQL connection string
            min_conn: Minimum connections in pool
            max_conn: Maximum connections in pool
        """
        try:
            self.connection_pool = psycopg2.pool.SimpleConnectionPool(
                min_conn,
                max_conn,
                connection_string
            )
        except psycopg2.Error as e:
            raise StoreError(f"Failed to create connection pool: {e}") from e

        # One writer per process; uniqueness across processes comes from the keys
        self._writer = threading.Lock()
        logger.info("Database connection pool created successfully")

    def _getconn(self, error_class):
        try:
            return self.connection_pool.getconn()
        except psycopg2.Error as e:
            raise error_class(f"No database connection available: {e}") from e

    def begin(self) -> UnitOfWork:
        self._writer.acquire()
        try:
            conn = self._getconn(CommitError)
        except BaseException:
            self._writer.release()
            raise
        return PostgresUnitOfWork(self, conn, writable=True)

    def begin_read(self) -> UnitOfWork:
        return PostgresUnitOfWork(self, self._getconn(StoreLookupError), writable=False)

    def init_schema(self):
        """Create database tables if they don't exist."""
        conn = self.connection_pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute("""
                    CREATE TABLE IF NOT EXISTS books (
                        identifier VARCHAR(255) PRIMARY KEY,
                        title TEXT NOT NULL,
                        authors TEXT[] NOT NULL DEFAULT '{}',
                        has_read BOOLEAN NOT NULL DEFAULT FALSE,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                cur.execute("""
                    CREATE TABLE IF NOT EXISTS notes (
                        identifier VARCHAR(64) PRIMARY KEY,
                        position BIGSERIAL,
                        text TEXT NOT NULL,
                        modified_at TIMESTAMPTZ NOT NULL,
                        book_identifier VARCHAR(255)
                            REFERENCES books (identifier) ON DELETE CASCADE
                    )
                """)

                cur.execute("""
                    CREATE TABLE IF NOT EXISTS collections (
                        title TEXT PRIMARY KEY
                    )
                """)

                # Book <-> collection membership rows
                cur.execute("""
                    CREATE TABLE IF NOT EXISTS book_collections (
                        book_identifier VARCHAR(255) NOT NULL
                            REFERENCES books (identifier) ON DELETE CASCADE,
                        collection_title TEXT NOT NULL
                            REFERENCES collections (title) ON DELETE CASCADE,
                        PRIMARY KEY (book_identifier, collection_title)
                    )
                """)

                cur.execute("""
                    CREATE INDEX IF NOT EXISTS idx_notes_book
                    ON notes (book_identifier, position)
                """)

                conn.commit()
                logger.info("Database schema initialized successfully")
        except psycopg2.Error as e:
            conn.rollback()
            raise StoreError(f"Failed to initialize schema: {e}") from e
        finally:
            self.connection_pool.putconn(conn)

    def get_stats(self) -> Dict[str, Any]:
        """Get database statistics."""
        conn = self.connection_pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute("SELECT COUNT(*) FROM books")
                book_count = cur.fetchone()[0]

                cur.execute("SELECT COUNT(*) FROM books WHERE has_read")
                read_count = cur.fetchone()[0]

                cur.execute("SELECT COUNT(*) FROM notes")
                note_count = cur.fetchone()[0]

                cur.execute("SELECT COUNT(*) FROM collections")
                collection_count = cur.fetchone()[0]

                conn.rollback()
                return {
                    "total_books": book_count,
                    "read_books": read_count,
                    "notes": note_count,
                    "collections": collection_count
                }
        finally:
            self.connection_pool.putconn(conn)

    def close(self):
        """Close all connections in the pool."""
        if self.connection_pool:
            self.connection_pool.closeall()
            logger.info("Database connection pool closed")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
