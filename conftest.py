import asyncio
from typing import Dict, List, Optional, Tuple

import pytest

from bookshelf.library import ReadingLibrary
from bookshelf.schemas import AddBookToLibrary, BooksSearchResponse, CatalogVolume, LibraryStats, UpdateProgress
from bookshelf.services.books_service import NotFoundError
from bookshelf.services.cache_store import CacheStore
from bookshelf.tracked_book import CatalogBook, LibraryPage, ReadingStatus, TrackedBook


def make_book(
    book_id: str = "ub-1",
    title: str = "Dune",
    author: str = "Frank Herbert",
    total_pages: int = 100,
    current_page: int = 0,
    status: ReadingStatus = ReadingStatus.READING,
    is_favorite: bool = False,
    catalog_id: Optional[str] = None,
) -> TrackedBook:
    catalog_id = catalog_id or f"cat-{book_id}"
    return TrackedBook(
        id=book_id,
        catalog_book_id=catalog_id,
        book=CatalogBook(id=catalog_id, title=title, author=author, total_pages=total_pages),
        status=status,
        current_page=current_page,
        is_favorite=is_favorite,
    )


class RecordingNotifier:
    def __init__(self):
        self.successes: List[str] = []
        self.failures: List[str] = []

    def success(self, message: str) -> None:
        self.successes.append(message)

    def failure(self, message: str) -> None:
        self.failures.append(message)


class FakeLibraryService:
    """In-memory stand-in for BooksService.

    ``fail_with`` makes progress updates raise; ``gate`` (an asyncio.Event)
    holds them until it is set. ``failures`` and ``gates`` do the same for a
    single catalog book id.
    """

    def __init__(self, books: Optional[List[TrackedBook]] = None):
        self.books: Dict[str, TrackedBook] = {b.id: b for b in books or []}
        self.progress_calls: List[Tuple[str, UpdateProgress]] = []
        self.library_calls: List[dict] = []
        self.stats_calls = 0
        self.search_calls: List[str] = []
        self.fail_with: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.failures: Dict[str, Exception] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self.closed = False

    def _by_catalog_id(self, catalog_book_id: str) -> TrackedBook:
        for b in self.books.values():
            if b.catalog_book_id == catalog_book_id:
                return b
        raise NotFoundError(404, f"Book {catalog_book_id} is not in your library")

    async def get_user_library(self, status=None, is_favorite=None, page=None, limit=None) -> LibraryPage:
        self.library_calls.append({"status": status, "is_favorite": is_favorite, "page": page, "limit": limit})
        books = [
            b for b in self.books.values()
            if (status is None or b.status == status) and (is_favorite is None or b.is_favorite == is_favorite)
        ]
        total = len(books)
        if limit:
            start = ((page or 1) - 1) * limit
            books = books[start:start + limit]
        return LibraryPage(books=tuple(books), total=total, page=page or 1)

    async def get_library_stats(self) -> LibraryStats:
        self.stats_calls += 1
        books = list(self.books.values())
        return LibraryStats(
            total_books=len(books),
            currently_reading=sum(1 for b in books if b.status == ReadingStatus.READING),
            finished=sum(1 for b in books if b.status == ReadingStatus.FINISHED),
            want_to_read=sum(1 for b in books if b.status == ReadingStatus.WANT_TO_READ),
            paused=sum(1 for b in books if b.status == ReadingStatus.PAUSED),
            did_not_finish=sum(1 for b in books if b.status == ReadingStatus.ABANDONED),
            favorites=sum(1 for b in books if b.is_favorite),
            total_pages_read=sum(b.current_page for b in books),
        )

    async def get_user_book(self, book_id: str) -> TrackedBook:
        return self._by_catalog_id(book_id)

    async def search_books(self, query: str, max_results: int = 10, start_index: int = 0) -> BooksSearchResponse:
        self.search_calls.append(query)
        return BooksSearchResponse.model_validate({
            "totalItems": 1,
            "items": [{"id": "vol-1", "volumeInfo": {"title": query.title(), "authors": ["Someone"]}}],
        })

    async def get_book_by_id(self, volume_id: str) -> CatalogVolume:
        return CatalogVolume.model_validate({"id": volume_id, "volumeInfo": {"title": "Catalog Book", "pageCount": 200}})

    async def add_book_to_library(self, request: AddBookToLibrary) -> TrackedBook:
        book = make_book(
            f"ub-{len(self.books) + 1}",
            title="Added Book",
            total_pages=200,
            status=request.status or ReadingStatus.WANT_TO_READ,
            is_favorite=bool(request.is_favorite),
            catalog_id=request.book_id,
        )
        self.books[book.id] = book
        return book

    async def update_progress(self, book_id: str, update: UpdateProgress) -> TrackedBook:
        self.progress_calls.append((book_id, update))
        if self.gate is not None:
            await self.gate.wait()
        if book_id in self.gates:
            await self.gates[book_id].wait()
        if self.fail_with is not None:
            raise self.fail_with
        if book_id in self.failures:
            raise self.failures[book_id]
        current = self._by_catalog_id(book_id)
        updated = current.with_changes(
            current_page=update.current_page,
            status=update.status,
            is_favorite=update.is_favorite,
        )
        self.books[updated.id] = updated
        return updated

    async def remove_book_from_library(self, book_id: str) -> str:
        book = self._by_catalog_id(book_id)
        del self.books[book.id]
        return "Book removed from library"

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def book_factory():
    return make_book


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def cache():
    return CacheStore()


@pytest.fixture
def service():
    # Dune 10/100 reading, Emma 150/300 reading and favorite, Ulysses 0/700 want-to-read
    return FakeLibraryService([
        make_book("ub-1", title="Dune", total_pages=100, current_page=10),
        make_book("ub-2", title="Emma", author="Jane Austen", total_pages=300, current_page=150, is_favorite=True),
        make_book("ub-3", title="Ulysses", author="James Joyce", total_pages=700, status=ReadingStatus.WANT_TO_READ),
    ])


@pytest.fixture
def library(service, cache, notifier):
    return ReadingLibrary(service, cache=cache, notifier=notifier, debounce_seconds=0.02, commit_timeout=1.0)
