"""Parse and normalize Google Books API responses."""
import logging
from typing import Dict, Any, List, Optional

from booklist.errors import DecodeError
from booklist.models import CanonicalBookRecord

logger = logging.getLogger(__name__)


def parse_book(item: Dict[str, Any]) -> Optional[CanonicalBookRecord]:
    """
    Parse a single volume from a Google Books API response.

    Args:
        item: Single item from the ``items`` array

    Returns:
        CanonicalBookRecord, or None if the item has no usable id
    """
    if not isinstance(item, dict):
        logger.warning(f"Skipping volume that is not an object: {item!r}")
        return None

    book_id = item.get("id")
    if not book_id or not isinstance(book_id, str):
        logger.warning("Skipping volume without an id")
        return None

    volume_info = item.get("volumeInfo")
    if not isinstance(volume_info, dict):
        volume_info = {}

    title = volume_info.get("title") or "Unknown Title"
    authors = volume_info.get("authors") or []
    if not isinstance(authors, list):
        authors = []
    description = volume_info.get("description")

    # Prefer the larger thumbnail
    image_links = volume_info.get("imageLinks")
    if not isinstance(image_links, dict):
        image_links = {}
    thumbnail = image_links.get("thumbnail") or image_links.get("smallThumbnail")

    return CanonicalBookRecord(
        id=book_id,
        title=str(title),
        authors=tuple(str(a) for a in authors),
        description=description if isinstance(description, str) else None,
        thumbnail_url=thumbnail if isinstance(thumbnail, str) else None,
    )


def parse_books_response(response_json: Any) -> List[CanonicalBookRecord]:
    """
    Parse a full search response envelope.

    Args:
        response_json: Decoded JSON body

    Returns:
        List of records; empty when the envelope has no items

    Raises:
        DecodeError: If the envelope is not an object or ``items`` is not a list
    """
    if not isinstance(response_json, dict):
        raise DecodeError(f"Expected a JSON object, got {type(response_json).__name__}")

    items = response_json.get("items")
    if items is None:
        return []
    if not isinstance(items, list):
        raise DecodeError(f"Expected 'items' to be a list, got {type(items).__name__}")

    records = []
    for item in items:
        record = parse_book(item)
        if record:
            records.append(record)

    return deduplicate_records(records)


def parse_volume_response(response_json: Any) -> CanonicalBookRecord:
    """Parse the body of a single-volume fetch."""
    record = parse_book(response_json)
    if record is None:
        raise DecodeError("Volume response has no usable id")
    return record


def deduplicate_records(records: List[CanonicalBookRecord]) -> List[CanonicalBookRecord]:
    """
    Remove duplicate records by id, keeping the first occurrence.

    Args:
        records: List of records

    Returns:
        Deduplicated list of records
    """
    seen_ids = set()
    unique_records = []

    for record in records:
        if record.id not in seen_ids:
            seen_ids.add(record.id)
            unique_records.append(record)

    return unique_records
