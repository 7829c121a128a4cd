"""Data models for catalog records and the local library."""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Generic, List, Optional, Set, Tuple, TypeVar

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CanonicalBookRecord:
    """Normalized search result decoded from the remote catalog."""
    id: str
    title: str
    authors: Tuple[str, ...] = ()
    description: Optional[str] = None
    thumbnail_url: Optional[str] = None

    @property
    def authors_str(self) -> str:
        """Format authors as comma-separated string."""
        return ", ".join(self.authors) if self.authors else "Unknown"


@dataclass
class Note:
    """A note owned by at most one book."""
    text: str
    identifier: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=utcnow)
    book_identifier: Optional[str] = None


@dataclass
class Book:
    """Local library entry, unique per remote identifier."""
    identifier: str
    title: str
    authors: List[str] = field(default_factory=list)
    has_read: bool = False
    notes: List[Note] = field(default_factory=list)
    collections: Set[str] = field(default_factory=set)

    @classmethod
    def from_record(cls, record: CanonicalBookRecord) -> "Book":
        return cls(
            identifier=record.id,
            title=record.title,
            authors=list(record.authors),
        )

    @property
    def authors_str(self) -> str:
        """Format authors as comma-separated string."""
        return ", ".join(self.authors) if self.authors else "Unknown"


@dataclass
class Collection:
    """Named group of books, looked up by title."""
    title: str
    book_identifiers: Set[str] = field(default_factory=set)


@dataclass
class SaveResult(Generic[T]):
    """Outcome of a best-effort mutation.

    ``value`` is always usable in memory; ``error`` is set when the change
    could not be made durable.
    """
    value: T
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None
