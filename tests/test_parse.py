"""Tests for parsing functions."""
import pytest

from booklist.errors import DecodeError
from booklist.models import CanonicalBookRecord
from booklist.parse import (
    deduplicate_records,
    parse_book,
    parse_books_response,
    parse_volume_response,
)


def test_parse_book_complete():
    """Test parsing a volume with all fields present."""
    item = {
        "id": "abc123",
        "volumeInfo": {
            "title": "Dune",
            "authors": ["Frank Herbert"],
            "description": "Desert planet",
            "imageLinks": {
                "smallThumbnail": "http://example.com/small.jpg",
                "thumbnail": "http://example.com/thumb.jpg"
            }
        }
    }

    record = parse_book(item)

    assert record is not None
    assert record.id == "abc123"
    assert record.title == "Dune"
    assert record.authors == ("Frank Herbert",)
    assert record.description == "Desert planet"
    assert record.thumbnail_url == "http://example.com/thumb.jpg"


def test_parse_book_missing_fields():
    """Test parsing a volume with missing optional fields."""
    item = {
        "id": "xyz789",
        "volumeInfo": {
            "title": "Mystery Book",
            "imageLinks": {"smallThumbnail": "http://example.com/small.jpg"}
        }
    }

    record = parse_book(item)

    assert record is not None
    assert record.id == "xyz789"
    assert record.authors == ()
    assert record.description is None
    assert record.thumbnail_url == "http://example.com/small.jpg"
    assert record.authors_str == "Unknown"


def test_parse_book_without_volume_info():
    """A volume with only an id still decodes with a placeholder title."""
    record = parse_book({"id": "bare"})

    assert record.title == "Unknown Title"


def test_parse_book_no_id():
    """Test that a volume without ID returns None."""
    assert parse_book({"volumeInfo": {"title": "No ID Book"}}) is None
    assert parse_book("not a volume") is None


def test_parse_books_response():
    """Test parsing a complete search envelope."""
    response = {
        "items": [
            {"id": "1", "volumeInfo": {"title": "Book 1"}},
            {"volumeInfo": {"title": "Skipped"}},
            {"id": "2", "volumeInfo": {"title": "Book 2"}}
        ]
    }

    records = parse_books_response(response)

    assert [r.title for r in records] == ["Book 1", "Book 2"]


def test_parse_books_response_without_items_is_empty():
    """An envelope with no items is an empty result, not an error."""
    assert parse_books_response({"kind": "books#volumes", "totalItems": 0}) == []
    assert parse_books_response({"items": []}) == []


@pytest.mark.parametrize("payload", [[], "text", {"items": {"id": "1"}}])
def test_parse_books_response_rejects_malformed_envelope(payload):
    """Envelopes that are not objects with an items list fail to decode."""
    with pytest.raises(DecodeError):
        parse_books_response(payload)


def test_parse_volume_response_requires_id():
    """A single-volume body without an id is a decode error."""
    with pytest.raises(DecodeError):
        parse_volume_response({"volumeInfo": {"title": "Orphan"}})


def test_deduplicate_records():
    """Test deduplication by record ID."""
    records = [
        CanonicalBookRecord("1", "Book A"),
        CanonicalBookRecord("2", "Book B"),
        CanonicalBookRecord("1", "Book A Duplicate"),
    ]

    unique = deduplicate_records(records)

    assert len(unique) == 2
    assert unique[0].title == "Book A"
    assert unique[1].id == "2"


if __name__ == "__main__":
    pytest.main([__file__])
