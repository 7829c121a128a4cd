"""Tests for the PostgreSQL store against a fake connection pool."""
from datetime import datetime, timezone

import psycopg2
import psycopg2.pool
import pytest

from booklist.database import PostgresStore
from booklist.errors import CommitError, StoreLookupError
from booklist.gateway import PersistenceGateway
from booklist.models import CanonicalBookRecord

DUNE = CanonicalBookRecord("abc123", "Dune", ("Frank Herbert",))


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.rowcount = -1
        self._rows = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return False

    def execute(self, sql, params=()):
        statement = " ".join(sql.split())
        self.conn.executed.append((statement, params))
        if self.conn.fail_on and statement.startswith(self.conn.fail_on):
            raise psycopg2.OperationalError("server closed the connection")
        if statement.startswith("SELECT"):
            self._rows = self.conn.results.pop(0) if self.conn.results else []
        else:
            self.rowcount = self.conn.rowcount

    def fetchall(self):
        return self._rows

    def fetchone(self):
        return self._rows[0] if self._rows else None


class FakeConnection:
    def __init__(self):
        self.executed = []
        self.results = []
        self.rowcount = 1
        self.fail_on = None
        self.commit_error = None
        self.commits = 0
        self.rollbacks = 0

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        if self.commit_error:
            raise self.commit_error
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def statements(self, prefix):
        return [(sql, params) for sql, params in self.executed if sql.startswith(prefix)]


class FakePool:
    def __init__(self, conn):
        self.conn = conn
        self.out = 0
        self.closed = False

    def getconn(self):
        self.out += 1
        return self.conn

    def putconn(self, conn):
        self.out -= 1

    def closeall(self):
        self.closed = True


@pytest.fixture
def conn(monkeypatch):
    connection = FakeConnection()
    monkeypatch.setattr(
        psycopg2.pool, "SimpleConnectionPool",
        lambda min_conn, max_conn, dsn: FakePool(connection)
    )
    return connection


@pytest.fixture
def store(conn):
    return PostgresStore("postgresql://test@localhost/booklist")


def test_first_sighting_inserts_and_commits(conn, store):
    """Missing rows are inserted with ON CONFLICT and committed once."""
    result = PersistenceGateway(store).find_or_create_book(DUNE)

    assert result.ok
    inserts = conn.statements("INSERT INTO books")
    assert len(inserts) == 1
    assert "ON CONFLICT (identifier) DO NOTHING" in inserts[0][0]
    assert inserts[0][1] == ("abc123", "Dune", ["Frank Herbert"], False)
    assert conn.commits == 1
    assert store.connection_pool.out == 0


def test_existing_row_is_returned_with_relationships(conn, store):
    """Stored books come back with notes and memberships, nothing is written."""
    stamp = datetime(2024, 1, 1, tzinfo=timezone.utc)
    conn.results = [
        [("abc123", "Dune", ["Frank Herbert"], True)],
        [("n1", "Spice", stamp, "abc123")],
        [("Have read",)],
    ]

    book = PersistenceGateway(store).find_or_create_book(DUNE).value

    assert book.has_read is True
    assert [(n.identifier, n.text, n.timestamp) for n in book.notes] == [("n1", "Spice", stamp)]
    assert book.collections == {"Have read"}
    assert conn.statements("INSERT") == []


def test_lost_insert_race_reloads_winner(conn, store):
    """When another writer inserted first, its row is returned."""
    conn.rowcount = 0
    conn.results = [[], [("abc123", "Dune", [], False)], [], []]

    result = PersistenceGateway(store).find_or_create_book(DUNE)

    assert result.ok
    assert result.value.authors == []


def test_commit_failure_rolls_back_and_releases(conn, store):
    conn.commit_error = psycopg2.OperationalError("disk full")
    gateway = PersistenceGateway(store)

    result = gateway.find_or_create_book(DUNE)

    assert isinstance(result.error, CommitError)
    assert result.value.identifier == "abc123"
    assert conn.rollbacks == 1
    assert store.connection_pool.out == 0

    # The writer lock was released
    conn.commit_error = None
    assert gateway.find_or_create_book(DUNE).ok


def test_query_failure_is_lookup_error(conn, store):
    conn.fail_on = "SELECT"

    result = PersistenceGateway(store).find_or_create_book(DUNE)

    assert isinstance(result.error, StoreLookupError)
    assert conn.statements("INSERT") == []
    assert conn.rollbacks == 1


def test_mark_as_read_of_unknown_book_fails(conn, store):
    book = PersistenceGateway(store).find_or_create_book(DUNE).value
    conn.rowcount = 0

    result = PersistenceGateway(store).mark_as_read(book)

    assert isinstance(result.error, CommitError)
    assert book.has_read is True


def test_mark_as_read_writes_membership_row(conn, store):
    book = PersistenceGateway(store).find_or_create_book(DUNE).value
    conn.results = [[("Have read",)], []]

    assert PersistenceGateway(store).mark_as_read(book).ok
    memberships = conn.statements("INSERT INTO book_collections")
    assert memberships[0][1] == ("abc123", "Have read")


def test_init_schema_and_close(conn, store):
    store.init_schema()
    store.close()

    created = [sql for sql, _ in conn.executed if sql.startswith("CREATE TABLE")]
    assert len(created) == 4
    assert conn.commits == 1
    assert store.connection_pool.closed


def test_writer_released_when_connection_cannot_be_returned(conn, store):
    """A failing putconn must not leave later writers blocked."""
    pool = store.connection_pool
    original = pool.putconn

    def broken_putconn(connection):
        original(connection)
        raise psycopg2.pool.PoolError("trying to put unkeyed connection")

    pool.putconn = broken_putconn
    gateway = PersistenceGateway(store)

    with pytest.raises(psycopg2.pool.PoolError):
        gateway.find_or_create_book(DUNE)

    assert store._writer.acquire(timeout=1)
    store._writer.release()
    pool.putconn = original
    assert gateway.find_or_create_book(DUNE).ok
    assert store.connection_pool.out == 0
