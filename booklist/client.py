"""Async HTTP client for the Google Books catalog."""
import logging
from typing import Any, List, Optional
from urllib.parse import quote

import httpx

from booklist.auth import Authorizer, NoAuthorization
from booklist.errors import DecodeError, RequestConstructionError, TransportError
from booklist.models import CanonicalBookRecord
from booklist.parse import parse_books_response, parse_volume_response

logger = logging.getLogger(__name__)


class GoogleBooksClient:
    """Searches the remote catalog and remembers the last successful result set.

    Every request is authorized by the configured ``Authorizer`` and sent
    exactly once; failures are raised, never retried.
    """

    BASE_URL = "https://www.googleapis.com/books/v1"

    def __init__(
        self,
        base_url: str = BASE_URL,
        authorizer: Optional[Authorizer] = None,
        timeout: int = 10,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize catalog client.

        Args:
            base_url: API root, without the ``/volumes`` suffix
            authorizer: Request authorizer (anonymous if omitted)
            timeout: Request timeout in seconds
            http_client: Optional preconfigured client (mainly for tests)
        """
        self.base_url = base_url
        self.authorizer = authorizer or NoAuthorization()
        self.timeout = timeout
        self.client = http_client or httpx.AsyncClient(timeout=timeout)
        self._last_results: List[CanonicalBookRecord] = []

    @property
    def last_results(self) -> List[CanonicalBookRecord]:
        """Records from the most recent successful search."""
        return list(self._last_results)

    def _volumes_url(self, suffix: str = "") -> str:
        try:
            base = httpx.URL(self.base_url)
        except (httpx.InvalidURL, TypeError) as e:
            raise RequestConstructionError(f"Invalid base URL {self.base_url!r}: {e}") from e

        if base.scheme not in ("http", "https") or not base.host:
            raise RequestConstructionError(f"Base URL must be absolute http(s): {self.base_url!r}")

        return f"{str(base).rstrip('/')}/volumes{suffix}"

    def build_search_request(self, term: str) -> httpx.Request:
        """
        Build the unauthenticated search request for a term.

        Raises:
            RequestConstructionError: If the term or base URL is unusable
        """
        if not isinstance(term, str) or not term.strip():
            raise RequestConstructionError(f"Search term must be a non-empty string: {term!r}")

        url = self._volumes_url()
        try:
            return self.client.build_request("GET", url, params={"q": term})
        except (UnicodeError, httpx.InvalidURL) as e:
            raise RequestConstructionError(f"Search term cannot be encoded: {term!r}") from e

    async def search_catalog(self, term: str) -> List[CanonicalBookRecord]:
        """
        Search the catalog.

        Args:
            term: Query string, sent as the ``q`` parameter

        Returns:
            Decoded records (empty list when nothing matched)

        Raises:
            RequestConstructionError, AuthorizationError, TransportError, DecodeError
        """
        try:
            request = self.build_search_request(term)
        except RequestConstructionError:
            logger.error(f"Problem constructing search URL for {term!r}")
            raise

        body = await self._send(request)

        try:
            records = parse_books_response(body)
        except DecodeError as e:
            logger.error(f"Error decoding volumes: {e}")
            raise

        if not records:
            logger.info(f"No volumes found for {term!r}")

        self._last_results = records
        logger.info(f"Found {len(records)} volumes for {term!r}")
        return self.last_results

    async def fetch_volume(self, volume_id: str) -> CanonicalBookRecord:
        """
        Fetch a single volume by id. Does not change ``last_results``.

        Raises:
            RequestConstructionError, AuthorizationError, TransportError, DecodeError
        """
        if not isinstance(volume_id, str) or not volume_id.strip():
            raise RequestConstructionError(f"Volume id must be a non-empty string: {volume_id!r}")

        try:
            url = self._volumes_url("/" + quote(volume_id, safe=""))
            request = self.client.build_request("GET", url)
        except (UnicodeError, httpx.InvalidURL) as e:
            raise RequestConstructionError(f"Volume id cannot be encoded: {volume_id!r}") from e
        body = await self._send(request)

        try:
            return parse_volume_response(body)
        except DecodeError as e:
            logger.error(f"Error decoding volume {volume_id!r}: {e}")
            raise

    async def _send(self, request: httpx.Request) -> Any:
        """Authorize, send once and decode the JSON body."""
        authorized = await self.authorizer.authorize(request)

        try:
            logger.info(f"Request: {authorized.method} {authorized.url.copy_remove_param('key')}")
            response = await self.client.send(authorized)
        except httpx.HTTPError as e:
            logger.error(f"Error fetching volumes from Google Books API: {e}")
            raise TransportError(f"Request failed: {e}") from e

        if not response.is_success:
            logger.error(f"Google Books API returned {response.status_code}")
            raise TransportError(
                f"Unexpected status {response.status_code}",
                status_code=response.status_code
            )

        try:
            return response.json()
        except ValueError as e:
            raise DecodeError(f"Response body is not valid JSON: {e}") from e

    async def close(self):
        """Close the HTTP client and the authorizer."""
        await self.client.aclose()
        await self.authorizer.close()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
