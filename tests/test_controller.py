"""End-to-end tests through the controller."""
import asyncio

import httpx
import pytest

from booklist.auth import ApiKeyAuthorizer, Authorizer, NoAuthorization, RefreshingTokenAuthorizer
from booklist.client import GoogleBooksClient
from booklist.controller import BookController, build_authorizer
from booklist.errors import DecodeError, RequestConstructionError, TransportError
from booklist.gateway import PersistenceGateway
from booklist.images import ImageFetcher
from booklist.store import MemoryStore

DUNE_ID = "abc123издание"


def dune_response(request):
    if request.url.host == "covers.example.com":
        return httpx.Response(200, content=b"jpeg-bytes")
    if request.url.params.get("q") == "dune":
        return httpx.Response(200, json={
            "items": [{
                "id": DUNE_ID,
                "volumeInfo": {
                    "title": "Dune",
                    "authors": ["Frank Herbert"],
                    "imageLinks": {"thumbnail": "http://covers.example.com/dune.jpg"}
                }
            }]
        })
    if request.url.params.get("q") == "broken":
        return httpx.Response(200, text="{")
    if request.url.params.get("q") == "down":
        raise httpx.ConnectError("unreachable", request=request)
    return httpx.Response(200, json={"totalItems": 0})


def make_controller(store=None):
    transport = httpx.MockTransport(dune_response)
    client = GoogleBooksClient(http_client=httpx.AsyncClient(transport=transport))
    images = ImageFetcher(http_client=httpx.AsyncClient(transport=transport))
    store = store or MemoryStore()
    return BookController(client, PersistenceGateway(store), images), store


def test_dune_scenario_reconciles_to_one_book():
    """Searching twice and saving twice yields one stored book."""
    controller, store = make_controller()

    async def run():
        first = (await controller.search("dune"))[0]
        book = controller.add_to_library(first).value
        second = (await controller.search("dune"))[0]
        again = controller.add_to_library(second).value
        return book, again

    book, again = asyncio.run(run())

    assert book.identifier == DUNE_ID
    assert again.identifier == book.identifier
    assert again.title == "Dune"
    assert store.get_stats()["total_books"] == 1


def test_search_caches_results_only_on_success():
    controller, _ = make_controller()

    async def run():
        await controller.search("dune")
        with pytest.raises(DecodeError):
            await controller.search("broken")

    asyncio.run(run())

    assert [r.id for r in controller.searched_books] == [DUNE_ID]


def test_empty_search_clears_results_without_error():
    controller, _ = make_controller()

    async def run():
        await controller.search("dune")
        return await controller.search("no such book")

    assert asyncio.run(run()) == []
    assert controller.searched_books == []


def test_start_search_forwards_original_error():
    """The completion receives the exact exception, not a generic one."""
    controller, _ = make_controller()
    outcomes = []

    async def run():
        await controller.start_search("dune", outcomes.append)
        await controller.start_search("down", outcomes.append)

    asyncio.run(run())

    assert outcomes[0] is None
    assert isinstance(outcomes[1], TransportError)
    assert isinstance(outcomes[1].__cause__, httpx.ConnectError)
    assert [r.id for r in controller.searched_books] == [DUNE_ID]


class BrokenAuthorizer(Authorizer):
    async def authorize(self, request):
        raise RuntimeError("keychain locked")


def test_start_search_reports_any_exception():
    """Errors outside the package hierarchy still reach the completion."""
    controller, _ = make_controller()
    controller.client.authorizer = BrokenAuthorizer()
    outcomes = []

    async def run():
        await controller.start_search("dune", outcomes.append)
        await controller.start_search("dune\ud800", outcomes.append)

    asyncio.run(run())

    assert isinstance(outcomes[0], RuntimeError)
    assert str(outcomes[0]) == "keychain locked"
    assert isinstance(outcomes[1], RequestConstructionError)
    assert controller.searched_books == []


def test_fetch_cover_for_search_result():
    controller, _ = make_controller()

    async def run():
        async with controller:
            record = (await controller.search("dune"))[0]
            return await controller.fetch_image(record.thumbnail_url)

    assert asyncio.run(run()) == b"jpeg-bytes"


def test_notes_and_read_flag_through_controller():
    controller, _ = make_controller()

    async def run():
        return (await controller.search("dune"))[0]

    record = asyncio.run(run())
    controller.create_collection("Have read")
    book = controller.add_to_library(record).value
    note = controller.create_note("Fear is the mind-killer")
    controller.add_note(note, book)
    controller.update_note(note, "I must not fear")
    controller.mark_as_read(book)

    stored = controller.find_book(DUNE_ID)
    assert stored.has_read is True
    assert [n.text for n in stored.notes] == ["I must not fear"]
    assert [b.identifier for b in controller.books_in_collection("Have read")] == [DUNE_ID]

    controller.remove_note(note, book)
    assert controller.library()[0].notes == []


class FakeConfig:
    GOOGLE_OAUTH_CLIENT_ID = None
    GOOGLE_OAUTH_CLIENT_SECRET = None
    GOOGLE_OAUTH_REFRESH_TOKEN = None
    GOOGLE_OAUTH_TOKEN_URL = "https://oauth.example.com/token"
    GOOGLE_BOOKS_API_KEY = None
    DEFAULT_TIMEOUT = 5


def test_build_authorizer_prefers_oauth_then_key():
    config = FakeConfig()
    assert isinstance(build_authorizer(config), NoAuthorization)

    config.GOOGLE_BOOKS_API_KEY = "k"
    assert isinstance(build_authorizer(config), ApiKeyAuthorizer)

    config.GOOGLE_OAUTH_CLIENT_ID = "client"
    config.GOOGLE_OAUTH_REFRESH_TOKEN = "refresh"
    assert isinstance(build_authorizer(config), RefreshingTokenAuthorizer)
