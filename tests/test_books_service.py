import asyncio
from typing import Any, Dict, Optional

import httpx
import pytest
from fastapi import Body, FastAPI, Header, HTTPException, Query

from bookshelf.schemas import AddBookToLibrary, UpdateProgress
from bookshelf.services.books_service import (
    AuthenticationError,
    BooksService,
    NetworkError,
    NotFoundError,
    ServerError,
)
from bookshelf.services.http_client import LibraryHTTPClient
from bookshelf.tracked_book import ReadingStatus

pytestmark = pytest.mark.integration

TOKEN = "test-token"


def _record(book_id: str, status: str = "READING", page: int = 0, favorite: bool = False) -> Dict[str, Any]:
    return {
        "id": f"ub-{book_id}",
        "userId": "user-1",
        "bookId": book_id,
        "status": status,
        "currentPage": page,
        "isFavorite": favorite,
        "progressPercentage": 0,
        "book": {"id": book_id, "title": "Dune", "author": "Frank Herbert", "totalPages": 412},
    }


def build_backend() -> FastAPI:
    """Small stand-in for the library REST service."""
    app = FastAPI()
    app.state.records = {"vol-1": _record("vol-1", page=40)}
    app.state.requests = []

    def check_auth(authorization: Optional[str]):
        if authorization != f"Bearer {TOKEN}":
            raise HTTPException(status_code=401, detail="Unauthorized")

    @app.get("/api/books/search")
    def search(q: str, max_results: int = Query(10, alias="maxResults"), start_index: int = Query(0, alias="startIndex")):
        app.state.requests.append(("search", q, max_results, start_index))
        return {
            "kind": "books#volumes",
            "totalItems": 1,
            "items": [{
                "id": "vol-1",
                "volumeInfo": {
                    "title": "Dune",
                    "authors": ["Frank Herbert"],
                    "pageCount": 412,
                    "industryIdentifiers": [
                        {"type": "ISBN_10", "identifier": "0441013597"},
                        {"type": "ISBN_13", "identifier": "9780441013593"},
                    ],
                },
            }],
        }

    @app.get("/api/books/{volume_id}")
    def book_by_id(volume_id: str):
        if volume_id != "vol-1":
            raise HTTPException(status_code=404, detail="Book not found")
        return {"id": "vol-1", "volumeInfo": {"title": "Dune", "pageCount": 412}}

    @app.post("/api/user-books", status_code=201)
    def add(payload: Dict[str, Any] = Body(...), authorization: Optional[str] = Header(None)):
        check_auth(authorization)
        app.state.requests.append(("add", payload))
        record = _record(payload["bookId"], status=payload.get("status", "WANT_TO_READ"),
                         favorite=payload.get("isFavorite", False))
        app.state.records[payload["bookId"]] = record
        return record

    @app.get("/api/user-books")
    def library(
        status: Optional[str] = None,
        is_favorite: Optional[bool] = Query(None, alias="isFavorite"),
        page: int = 1,
        limit: int = 20,
        authorization: Optional[str] = Header(None),
    ):
        check_auth(authorization)
        app.state.requests.append(("library", status, is_favorite, page, limit))
        books = [r for r in app.state.records.values()
                 if (status is None or r["status"] == status) and (is_favorite is None or r["isFavorite"] == is_favorite)]
        return {"books": books, "total": len(books), "page": page, "totalPages": 1}

    @app.get("/api/user-books/stats")
    def stats(authorization: Optional[str] = Header(None)):
        check_auth(authorization)
        return {"totalBooks": len(app.state.records), "currentlyReading": 1, "averageRating": 4.5, "totalPagesRead": 40}

    @app.get("/api/user-books/{book_id}")
    def user_book(book_id: str, authorization: Optional[str] = Header(None)):
        check_auth(authorization)
        if book_id not in app.state.records:
            raise HTTPException(status_code=404, detail="Book not in library")
        return app.state.records[book_id]

    @app.patch("/api/user-books/{book_id}/progress")
    def progress(book_id: str, payload: Dict[str, Any] = Body(...), authorization: Optional[str] = Header(None)):
        check_auth(authorization)
        app.state.requests.append(("progress", book_id, payload))
        if book_id not in app.state.records:
            raise HTTPException(status_code=404, detail="Book not in library")
        if payload.get("currentPage", 0) > 10000:
            raise HTTPException(status_code=500, detail="Internal error")
        record = dict(app.state.records[book_id])
        if "currentPage" in payload:
            record["currentPage"] = payload["currentPage"]
        if "status" in payload:
            record["status"] = payload["status"]
        if "isFavorite" in payload:
            record["isFavorite"] = payload["isFavorite"]
        app.state.records[book_id] = record
        return record

    @app.delete("/api/user-books/{book_id}")
    def remove(book_id: str, authorization: Optional[str] = Header(None)):
        check_auth(authorization)
        if app.state.records.pop(book_id, None) is None:
            raise HTTPException(status_code=404, detail="Book not in library")
        return {"message": "Book removed from library"}

    return app


@pytest.fixture
def backend():
    return build_backend()


def make_service(app: FastAPI, token: Optional[str] = TOKEN) -> BooksService:
    client = LibraryHTTPClient(
        base_url="http://testserver/api",
        token=token,
        transport=httpx.ASGITransport(app=app),
    )
    return BooksService(client)


def run(service: BooksService, coro_fn):
    async def scenario():
        try:
            return await coro_fn(service)
        finally:
            await service.aclose()

    return asyncio.run(scenario())


def test_search_books(backend):
    result = run(make_service(backend), lambda s: s.search_books("dune", max_results=5, start_index=10))

    assert result.total_items == 1
    volume = result.items[0]
    assert volume.volume_info.authors == ["Frank Herbert"]
    assert volume.volume_info.page_count == 412
    assert volume.volume_info.isbn == "9780441013593"
    assert backend.state.requests == [("search", "dune", 5, 10)]


def test_get_book_by_id_not_found(backend):
    with pytest.raises(NotFoundError) as exc_info:
        run(make_service(backend), lambda s: s.get_book_by_id("missing"))
    assert exc_info.value.status_code == 404
    assert exc_info.value.detail == "Book not found"


def test_get_user_library_sends_filters(backend):
    result = run(make_service(backend),
                 lambda s: s.get_user_library(status=ReadingStatus.READING, is_favorite=False, page=1, limit=5))

    assert result.total == 1
    assert result.books[0].current_page == 40
    assert result.books[0].progress_percentage == 10
    assert backend.state.requests == [("library", "READING", False, 1, 5)]


def test_get_library_stats(backend):
    stats = run(make_service(backend), lambda s: s.get_library_stats())
    assert stats.total_books == 1
    assert stats.currently_reading == 1
    assert stats.average_rating == 4.5
    assert stats.finished == 0


def test_update_progress_sends_camel_case_payload(backend):
    update = UpdateProgress(current_page=100, status=ReadingStatus.ABANDONED)
    record = run(make_service(backend), lambda s: s.update_progress("vol-1", update))

    assert record.current_page == 100
    assert record.status is ReadingStatus.ABANDONED
    assert backend.state.requests == [("progress", "vol-1", {"currentPage": 100, "status": "DNF"})]


def test_update_progress_server_error(backend):
    with pytest.raises(ServerError) as exc_info:
        run(make_service(backend), lambda s: s.update_progress("vol-1", UpdateProgress(current_page=20000)))
    assert exc_info.value.status_code == 500
    assert not isinstance(exc_info.value, NotFoundError)


def test_add_and_remove(backend):
    async def scenario(service):
        added = await service.add_book_to_library(AddBookToLibrary(book_id="vol-2", is_favorite=True))
        message = await service.remove_book_from_library("vol-2")
        return added, message

    added, message = run(make_service(backend), scenario)
    assert added.catalog_book_id == "vol-2"
    assert added.status is ReadingStatus.WANT_TO_READ
    assert added.is_favorite is True
    assert message == "Book removed from library"
    assert backend.state.requests[0] == ("add", {"bookId": "vol-2", "isFavorite": True})


def test_missing_token_raises_authentication_error(backend):
    with pytest.raises(AuthenticationError):
        run(make_service(backend, token=""), lambda s: s.get_user_library())


def test_connection_failure_is_network_error():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = LibraryHTTPClient(base_url="http://testserver/api", token=TOKEN, transport=httpx.MockTransport(refuse))
    with pytest.raises(NetworkError):
        run(BooksService(client), lambda s: s.update_progress("vol-1", UpdateProgress(current_page=1)))


def test_timeout_is_network_error():
    def slow(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    client = LibraryHTTPClient(base_url="http://testserver/api", token=TOKEN, transport=httpx.MockTransport(slow))
    with pytest.raises(NetworkError, match="timed out"):
        run(BooksService(client), lambda s: s.remove_book_from_library("vol-1"))


def test_get_with_retry_recovers_from_transient_errors():
    attempts = []

    def flaky(request):
        attempts.append(request.url.path)
        if len(attempts) < 3:
            raise httpx.ConnectError("connection reset", request=request)
        return httpx.Response(200, json={"totalBooks": 3})

    async def scenario():
        async with LibraryHTTPClient(base_url="http://testserver/api", token=TOKEN,
                                     transport=httpx.MockTransport(flaky)) as client:
            return await client.get_with_retry("/user-books/stats", retries=3, backoff=0)

    response = asyncio.run(scenario())
    assert response.json() == {"totalBooks": 3}
    assert attempts == ["/api/user-books/stats"] * 3


def test_get_with_retry_gives_up():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    async def scenario():
        async with LibraryHTTPClient(base_url="http://testserver/api", token=TOKEN,
                                     transport=httpx.MockTransport(refuse)) as client:
            await client.get_with_retry("/user-books", retries=2, backoff=0)

    with pytest.raises(httpx.ConnectError):
        asyncio.run(scenario())


def test_shared_client_is_released():
    from bookshelf.services import http_client

    async def scenario():
        service = BooksService()
        client = await service._get_client()
        assert client is await http_client.get_http_client()
        await service.aclose()
        return http_client._global_client

    assert asyncio.run(scenario()) is None
