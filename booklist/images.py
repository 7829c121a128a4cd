"""Unauthenticated thumbnail downloads."""
import asyncio
import logging
from typing import Callable, Optional

import httpx

from booklist.errors import RequestConstructionError, TransportError

logger = logging.getLogger(__name__)

ImageCompletion = Callable[[Optional[bytes], Optional[Exception]], None]


class ImageFetcher:
    """Fetches raw image bytes. No retries, no caching."""

    def __init__(self, timeout: int = 10, http_client: Optional[httpx.AsyncClient] = None):
        self.timeout = timeout
        self.client = http_client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self._pending = set()

    async def fetch_image_bytes(self, url: str) -> bytes:
        """
        Download an image.

        Args:
            url: Direct image URL (http or https)

        Returns:
            Raw response body

        Raises:
            RequestConstructionError: If the URL is not http(s)
            TransportError: On network failure or a non-2xx status
        """
        try:
            target = httpx.URL(url)
        except (httpx.InvalidURL, TypeError) as e:
            raise RequestConstructionError(f"Invalid image URL {url!r}: {e}") from e
        if target.scheme not in ("http", "https"):
            raise RequestConstructionError(f"Image URL must be http(s): {url!r}")

        try:
            response = await self.client.get(target)
        except httpx.HTTPError as e:
            logger.warning(f"Image fetch failed for {url}: {e}")
            raise TransportError(f"Image fetch failed: {e}") from e

        if not response.is_success:
            logger.warning(f"Image fetch for {url} returned {response.status_code}")
            raise TransportError(
                f"Unexpected status {response.status_code}",
                status_code=response.status_code
            )

        return response.content

    def schedule(self, url: str, completion: ImageCompletion) -> asyncio.Task:
        """
        Fetch in the background and report through ``completion(data, error)``.

        Must be called from a running event loop. Exactly one of ``data`` and
        ``error`` is set.
        """
        async def run():
            try:
                data = await self.fetch_image_bytes(url)
            except (RequestConstructionError, TransportError) as e:
                completion(None, e)
            else:
                completion(data, None)

        task = asyncio.get_running_loop().create_task(run())
        # Held until done
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def close(self):
        """Wait for scheduled fetches, then close the HTTP client."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        await self.client.aclose()
