"""Error taxonomy shared by the catalog client and the persistence layer."""
from typing import Optional


class BookListError(Exception):
    """Base class for every error raised by this package."""


class RequestConstructionError(BookListError):
    """The request could not be built (bad base URL or search term).

    Fatal for the given input; retrying without changing it will fail again.
    """


class AuthorizationError(BookListError):
    """The authorizer refused or failed to authorize a request."""


class TransportError(BookListError):
    """The request failed on the wire or the server answered with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DecodeError(BookListError):
    """The response body could not be decoded into catalog records."""


class StoreError(BookListError):
    """Base class for store-layer failures."""


class StoreLookupError(StoreError):
    """A query against the store could not be executed."""


class CommitError(StoreError):
    """A unit of work could not be committed."""
