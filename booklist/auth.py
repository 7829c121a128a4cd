"""Request authorizers for the Google Books API.

An authorizer takes an unauthenticated ``httpx.Request`` and returns an
authorized one, or raises ``AuthorizationError``. It may perform its own
network I/O, for example to refresh an access token.
"""
import asyncio
import logging
import time
from typing import Optional

import httpx

from booklist.errors import AuthorizationError

logger = logging.getLogger(__name__)


class Authorizer:
    """Base authorizer; subclasses override ``authorize``."""

    async def authorize(self, request: httpx.Request) -> httpx.Request:
        raise NotImplementedError

    async def close(self):
        """Release any resources held by the authorizer."""


class NoAuthorization(Authorizer):
    """Passes requests through unchanged (anonymous access)."""

    async def authorize(self, request: httpx.Request) -> httpx.Request:
        return request


class ApiKeyAuthorizer(Authorizer):
    """Adds the ``key`` query parameter to every request."""

    def __init__(self, api_key: str):
        if not api_key:
            raise ValueError("api_key must not be empty")
        self.api_key = api_key

    async def authorize(self, request: httpx.Request) -> httpx.Request:
        url = request.url.copy_merge_params({"key": self.api_key})
        return httpx.Request(request.method, url, headers=request.headers)


class RefreshingTokenAuthorizer(Authorizer):
    """OAuth bearer-token authorizer using the refresh-token grant."""

    # Refresh slightly before the server-side expiry
    EXPIRY_MARGIN = 60

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        token_url: str = "https://oauth2.googleapis.com/token",
        timeout: int = 10,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize the authorizer.

        Args:
            client_id: OAuth client id
            client_secret: OAuth client secret
            refresh_token: Long-lived refresh token
            token_url: Token endpoint
            timeout: Request timeout for token refreshes
            http_client: Optional client (mainly for tests)
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.token_url = token_url
        self.client = http_client or httpx.AsyncClient(timeout=timeout)

        self._access_token: Optional[str] = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    async def authorize(self, request: httpx.Request) -> httpx.Request:
        token = await self._valid_token()
        headers = httpx.Headers(request.headers)
        headers["Authorization"] = f"Bearer {token}"
        return httpx.Request(request.method, request.url, headers=headers)

    async def _valid_token(self) -> str:
        async with self._lock:
            if self._access_token and time.monotonic() < self._expires_at:
                return self._access_token
            await self._refresh()
            return self._access_token

    async def _refresh(self):
        logger.info("Refreshing OAuth access token")
        try:
            response = await self.client.post(
                self.token_url,
                data={
                    "grant_type": "refresh_token",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": self.refresh_token,
                },
            )
        except httpx.HTTPError as e:
            raise AuthorizationError(f"Token refresh failed: {e}") from e

        if response.status_code != 200:
            raise AuthorizationError(f"Token endpoint returned {response.status_code}")

        try:
            payload = response.json()
            token = payload["access_token"]
            expires_in = int(payload.get("expires_in", 3600))
        except (ValueError, KeyError, TypeError) as e:
            raise AuthorizationError(f"Malformed token response: {e}") from e

        self._access_token = token
        self._expires_at = time.monotonic() + max(expires_in - self.EXPIRY_MARGIN, 0)

    async def close(self):
        await self.client.aclose()
