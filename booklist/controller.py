"""Entry point tying the catalog client, image fetcher and library together."""
import asyncio
import logging
from typing import Callable, List, Optional

from booklist.auth import ApiKeyAuthorizer, Authorizer, NoAuthorization, RefreshingTokenAuthorizer
from booklist.client import GoogleBooksClient
from booklist.config import Config
from booklist.gateway import PersistenceGateway
from booklist.images import ImageCompletion, ImageFetcher
from booklist.models import Book, CanonicalBookRecord, Collection, Note, SaveResult
from booklist.store import MemoryStore, Store

logger = logging.getLogger(__name__)

SearchCompletion = Callable[[Optional[Exception]], None]


class BookController:
    """Orchestrates search, image download and library persistence.

    Errors from the catalog are re-raised unchanged; persistence outcomes are
    returned as ``SaveResult`` values by the gateway.
    """

    def __init__(
        self,
        client: GoogleBooksClient,
        gateway: PersistenceGateway,
        images: Optional[ImageFetcher] = None
    ):
        self.client = client
        self.gateway = gateway
        self.images = images or ImageFetcher(timeout=client.timeout)
        self._searched_books: List[CanonicalBookRecord] = []
        self._tasks = set()

    @classmethod
    def from_config(cls, config: Config, store: Optional[Store] = None) -> "BookController":
        """Build a controller from configuration; defaults to an in-memory store."""
        client = GoogleBooksClient(
            base_url=config.GOOGLE_BOOKS_BASE_URL,
            authorizer=build_authorizer(config),
            timeout=config.DEFAULT_TIMEOUT
        )
        gateway = PersistenceGateway(store or MemoryStore(), have_read_title=config.HAVE_READ_COLLECTION)
        return cls(client, gateway, ImageFetcher(timeout=config.DEFAULT_TIMEOUT))

    # Catalog

    @property
    def searched_books(self) -> List[CanonicalBookRecord]:
        """Results of the last successful search."""
        return list(self._searched_books)

    async def search(self, term: str) -> List[CanonicalBookRecord]:
        """Search the catalog; on failure the previous results are kept."""
        records = await self.client.search_catalog(term)
        self._searched_books = records
        return self.searched_books

    def start_search(self, term: str, completion: SearchCompletion) -> asyncio.Task:
        """
        Search in the background and report through ``completion(error)``.

        ``error`` is None on success, otherwise the original exception.
        Must be called from a running event loop.
        """
        async def run():
            try:
                await self.search(term)
            except Exception as e:
                completion(e)
            else:
                completion(None)

        task = asyncio.get_running_loop().create_task(run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def fetch_volume(self, volume_id: str) -> CanonicalBookRecord:
        return await self.client.fetch_volume(volume_id)

    async def fetch_image(self, url: str) -> bytes:
        return await self.images.fetch_image_bytes(url)

    def fetch_image_in_background(self, url: str, completion: ImageCompletion) -> asyncio.Task:
        return self.images.schedule(url, completion)

    # Library

    def add_to_library(self, record: CanonicalBookRecord) -> SaveResult[Book]:
        return self.gateway.find_or_create_book(record)

    def library(self) -> List[Book]:
        return self.gateway.books()

    def find_book(self, identifier: str) -> Optional[Book]:
        return self.gateway.find_book(identifier)

    def mark_as_read(self, book: Book) -> SaveResult[Book]:
        return self.gateway.mark_as_read(book)

    def create_note(self, text: str) -> Optional[Note]:
        return self.gateway.create_note(text)

    def add_note(self, note: Note, book: Book) -> SaveResult[Book]:
        return self.gateway.attach_note(note, book)

    def update_note(self, note: Note, text: str) -> SaveResult[Note]:
        return self.gateway.update_note(note, text)

    def remove_note(self, note: Note, book: Book) -> SaveResult[Book]:
        return self.gateway.detach_note(note, book)

    def find_note(self, identifier: str) -> Optional[Note]:
        return self.gateway.find_note(identifier)

    def create_collection(self, title: str) -> SaveResult[Collection]:
        return self.gateway.find_or_create_collection(title)

    def books_in_collection(self, title: str) -> List[Book]:
        return self.gateway.books_in_collection(title)

    async def close(self):
        """Wait for background searches and close HTTP clients."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.client.close()
        await self.images.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def build_authorizer(config: Config) -> Authorizer:
    """Pick OAuth, then API key, then anonymous access."""
    if config.GOOGLE_OAUTH_REFRESH_TOKEN and config.GOOGLE_OAUTH_CLIENT_ID:
        return RefreshingTokenAuthorizer(
            client_id=config.GOOGLE_OAUTH_CLIENT_ID,
            client_secret=config.GOOGLE_OAUTH_CLIENT_SECRET or "",
            refresh_token=config.GOOGLE_OAUTH_REFRESH_TOKEN,
            token_url=config.GOOGLE_OAUTH_TOKEN_URL,
            timeout=config.DEFAULT_TIMEOUT
        )
    if config.GOOGLE_BOOKS_API_KEY:
        return ApiKeyAuthorizer(config.GOOGLE_BOOKS_API_KEY)
    return NoAuthorization()
