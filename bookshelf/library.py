import asyncio
import logging
from typing import List, Optional, Set

from bookshelf import notifications
from bookshelf.config import settings
from bookshelf.debounce import ProgressCoalescer
from bookshelf.notifications import ConsoleNotifier, Notifier
from bookshelf.progress_sync import ProgressSynchronizer
from bookshelf.schemas import AddBookToLibrary, BooksSearchResponse, CatalogVolume, LibraryStats
from bookshelf.services.books_service import BooksService, LibraryAPIError
from bookshelf.services.cache_store import CacheStore, QueryKeys, ViewKey
from bookshelf.tracked_book import LibraryPage, ReadingStatus, TrackedBook

logger = logging.getLogger(__name__)


class ReadingLibrary:
    """The user's tracked books, cached for every view, with optimistic progress edits."""

    def __init__(
        self,
        service: BooksService,
        cache: Optional[CacheStore] = None,
        notifier: Optional[Notifier] = None,
        debounce_seconds: Optional[float] = None,
        commit_timeout: Optional[float] = None,
    ) -> None:
        self.service = service
        self.cache = cache or CacheStore()
        self.notifier = notifier or ConsoleNotifier()
        self.synchronizer = ProgressSynchronizer(service, self.cache, self.notifier, timeout=commit_timeout)
        self.coalescer = ProgressCoalescer(self.synchronizer, window=debounce_seconds)
        self._background: Set[asyncio.Task] = set()
        self._watch_stats = False
        self.cache.subscribe(self._on_cache_event)

    # ------------------------- Queries ------------------------- #
    async def load_library(
        self,
        status: Optional[ReadingStatus] = None,
        is_favorite: Optional[bool] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        force: bool = False,
    ) -> LibraryPage:
        """Return the (optionally filtered) library view, fetching it when missing or stale."""
        key = QueryKeys.user_books_list(status, is_favorite, page, limit)
        if not force and self.cache.is_fresh(key, settings.library_stale_seconds):
            return self.cache.read(key)
        result = await self.service.get_user_library(status=status, is_favorite=is_favorite, page=page, limit=limit)
        self.cache.replace(key, result)
        return result

    async def currently_reading(self, force: bool = False) -> LibraryPage:
        return await self.load_library(status=ReadingStatus.READING, force=force)

    async def load_stats(self, force: bool = False) -> LibraryStats:
        self._watch_stats = True
        key = QueryKeys.stats()
        if not force and self.cache.is_fresh(key, settings.stats_stale_seconds):
            return self.cache.read(key)
        stats = await self.service.get_library_stats()
        self.cache.replace(key, stats)
        return stats

    async def get_tracked_book(self, catalog_book_id: str, force: bool = False) -> TrackedBook:
        key = QueryKeys.detail(catalog_book_id)
        if not force and self.cache.is_fresh(key, settings.library_stale_seconds):
            return self.cache.read(key)
        book = await self.service.get_user_book(catalog_book_id)
        self.cache.replace(key, book)
        return book

    async def search_books(self, query: str, max_results: Optional[int] = None, start_index: int = 0) -> BooksSearchResponse:
        """Search the catalog. Blank queries return an empty result without a request."""
        query = (query or "").strip()
        if not query:
            return BooksSearchResponse()
        max_results = max_results or settings.default_search_results
        key = QueryKeys.search(query, max_results, start_index)
        if self.cache.is_fresh(key, settings.search_stale_seconds):
            return self.cache.read(key)
        result = await self.service.search_books(query, max_results=max_results, start_index=start_index)
        self.cache.replace(key, result)
        return result

    async def get_catalog_book(self, volume_id: str) -> CatalogVolume:
        key = QueryKeys.book_by_id(volume_id)
        cached = self.cache.read(key)
        if cached is not None:
            return cached
        volume = await self.service.get_book_by_id(volume_id)
        self.cache.replace(key, volume)
        return volume

    def find_book(self, book_id: str) -> TrackedBook:
        """Cached record for a tracked book id; raises LookupError if no view holds it."""
        book = self.cache.find_book(book_id)
        if book is None:
            raise LookupError(f"Book {book_id} is not in the loaded library.")
        return book

    def visible_book(self, book_id: str) -> TrackedBook:
        return self.coalescer.visible(self.find_book(book_id))

    def visible_books(
        self,
        status: Optional[ReadingStatus] = None,
        is_favorite: Optional[bool] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[TrackedBook]:
        """Books of a cached view with pending (not yet committed) edits shown."""
        snapshot = self.cache.read(QueryKeys.user_books_list(status, is_favorite, page, limit))
        if snapshot is None:
            return []
        return [self.coalescer.visible(b) for b in snapshot.books]

    # ------------------------- Collection changes ------------------------- #
    async def add_book(
        self,
        google_books_id: str,
        status: Optional[ReadingStatus] = None,
        is_favorite: Optional[bool] = None,
    ) -> TrackedBook:
        request = AddBookToLibrary(book_id=google_books_id, status=status, is_favorite=is_favorite)
        try:
            tracked = await self.service.add_book_to_library(request)
        except LibraryAPIError as e:
            logger.error(f"Failed to add {google_books_id}: {e}")
            self.notifier.failure(notifications.ADD_FAILED)
            raise
        self.cache.invalidate_prefix(QueryKeys.all_user_books)
        self.cache.replace(QueryKeys.detail(tracked.catalog_book_id), tracked)
        self.notifier.success(notifications.BOOK_ADDED)
        return tracked

    async def remove_book(self, book_id: str) -> bool:
        """Remove a tracked book. Returns False (after notifying) when the service refuses."""
        book = self.find_book(book_id)
        try:
            await self.service.remove_book_from_library(book.catalog_book_id)
        except LibraryAPIError as e:
            logger.error(f"Failed to remove {book_id}: {e}")
            self.notifier.failure(notifications.REMOVE_FAILED)
            return False
        self.cache.remove(QueryKeys.detail(book.catalog_book_id))
        self.cache.invalidate_prefix(QueryKeys.all_user_books)
        self.notifier.success(notifications.BOOK_REMOVED.format(title=book.title))
        return True

    # ------------------------- Progress intents ------------------------- #
    # Fire-and-forget: failures reach the user through the notifier.
    def submit_delta(self, book_id: str, delta: int) -> TrackedBook:
        return self.coalescer.submit_delta(self.find_book(book_id), delta)

    def submit_absolute_page(self, book_id: str, page: int) -> asyncio.Task:
        return self.coalescer.submit_change(self.find_book(book_id), page=page)

    def submit_status_change(self, book_id: str, status: ReadingStatus) -> asyncio.Task:
        return self.coalescer.submit_change(self.find_book(book_id), status=ReadingStatus.parse(status))

    def submit_favorite(self, book_id: str, is_favorite: bool) -> asyncio.Task:
        return self.coalescer.submit_change(self.find_book(book_id), is_favorite=is_favorite)

    async def flush(self) -> None:
        """Commit pending intents now and wait for every commit and refetch to settle."""
        await self.coalescer.flush()
        while self._background:
            await asyncio.wait(list(self._background))

    # ------------------------- Lifecycle ------------------------- #
    async def aclose(self) -> None:
        await self.flush()
        await self.service.aclose()

    async def __aenter__(self) -> "ReadingLibrary":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def _on_cache_event(self, key: ViewKey, event: str) -> None:
        if event == "invalidate" and key == QueryKeys.stats() and self._watch_stats:
            self._spawn(self.load_stats(force=True))

    def _spawn(self, coro) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return
        task = loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Background refresh failed: {task.exception()}")
