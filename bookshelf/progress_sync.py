"""
Optimistic reading-progress updates.

``ProgressSynchronizer.apply_progress_change`` patches every cached view that
holds (or should now hold) a tracked book, sends the change to the service,
and either keeps the patched state or puts the book's previous record back
in every view it touched. Other books' changes to a shared view are kept.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Protocol, Tuple

from bookshelf import notifications
from bookshelf.config import settings
from bookshelf.notifications import Notifier
from bookshelf.schemas import UpdateProgress
from bookshelf.services.books_service import NetworkError
from bookshelf.services.cache_store import CacheStore, QueryKeys, ViewKey, is_paginated, view_accepts
from bookshelf.tracked_book import LibraryPage, ReadingStatus, TrackedBook, clamp_page

logger = logging.getLogger(__name__)


class ProgressGateway(Protocol):
    async def update_progress(self, book_id: str, update: UpdateProgress) -> TrackedBook: ...


def patch_view(key: ViewKey, current: Any, updated: TrackedBook) -> Optional[Any]:
    """Return ``current`` with ``updated`` applied.

    Returns ``current`` itself when the view is unaffected, and ``None`` when
    the book belongs in a paginated view it is not on (only a refetch can
    place it).
    """
    if isinstance(current, TrackedBook):
        return updated if current.id == updated.id else current
    if not isinstance(current, LibraryPage):
        return current

    present = current.contains(updated.id)
    matches = view_accepts(key, updated)
    if present and matches:
        books = tuple(updated if b.id == updated.id else b for b in current.books)
        return replace(current, books=books)
    if present:
        books = tuple(b for b in current.books if b.id != updated.id)
        return replace(current, books=books, total=max(0, current.total - 1))
    if matches:
        if is_paginated(key):
            return None
        return replace(current, books=current.books + (updated,), total=current.total + 1)
    return current


# The book's record in a view before patching (None when absent) and its position
Prior = Tuple[Optional[TrackedBook], int]


def prior_state(current: Any, book_id: str) -> Prior:
    if isinstance(current, TrackedBook):
        return (current if current.id == book_id else None), 0
    for index, b in enumerate(current.books):
        if b.id == book_id:
            return b, index
    return None, -1


def revert_view(current: Any, book_id: str, before: Optional[TrackedBook], index: int) -> Any:
    """Undo one book's speculative change in ``current``.

    Only that book's entry is touched, so edits other books made to the same
    view since the patch survive.
    """
    if isinstance(current, TrackedBook):
        return before if before is not None and current.id == book_id else current
    if not isinstance(current, LibraryPage):
        return current

    present = current.contains(book_id)
    if before is None:
        if not present:
            return current
        books = tuple(b for b in current.books if b.id != book_id)
        return replace(current, books=books, total=max(0, current.total - 1))
    if present:
        return replace(current, books=tuple(before if b.id == book_id else b for b in current.books))
    books = list(current.books)
    books.insert(min(index, len(books)), before)
    return replace(current, books=tuple(books), total=current.total + 1)


class ProgressSynchronizer:
    """Applies one page/status/favorite change across all cache views, all or nothing."""

    def __init__(
        self,
        gateway: ProgressGateway,
        cache: CacheStore,
        notifier: Notifier,
        timeout: Optional[float] = None,
    ):
        self.gateway = gateway
        self.cache = cache
        self.notifier = notifier
        self.timeout = timeout if timeout is not None else settings.progress_commit_timeout

    async def apply_progress_change(
        self,
        book: TrackedBook,
        new_page: Optional[int] = None,
        new_status: Optional[ReadingStatus] = None,
        is_favorite: Optional[bool] = None,
    ) -> TrackedBook:
        """Speculatively apply a change, commit it remotely, roll back on failure.

        Out-of-range pages are clamped, never rejected. Errors from the
        service propagate after the book has been rolled back in every view.
        """
        page = clamp_page(new_page, book.total_pages) if new_page is not None else None
        status = ReadingStatus.parse(new_status) if new_status is not None else None

        base = self.cache.find_book(book.id) or book
        status_changed = status is not None and status != base.status
        updated = base.with_changes(current_page=page, status=status, is_favorite=is_favorite)

        # No suspension point between reading the views and patching them
        priors, refetch = self._speculative_patch(updated)
        update = UpdateProgress(current_page=page, status=status, is_favorite=is_favorite)

        try:
            confirmed = await self._send(book, update)
        except asyncio.CancelledError:
            self._restore(book.id, priors)
            logger.warning(f"Progress update for {book.id} cancelled; {len(priors)} view(s) restored")
            raise
        except Exception as e:
            self._restore(book.id, priors)
            logger.error(f"Failed to update progress for {book.id}: {e}; {len(priors)} view(s) restored")
            self.notifier.failure(notifications.STATUS_FAILED if status is not None else notifications.PROGRESS_FAILED)
            raise

        detail_key = QueryKeys.detail(book.catalog_book_id)
        if confirmed is not None and detail_key in self.cache:
            self.cache.replace(detail_key, confirmed)
        for key in refetch:
            self.cache.invalidate(key)
        if status_changed:
            # Aggregate counts are refetched, never patched
            self.cache.invalidate(QueryKeys.stats())

        self.notifier.success(self._success_message(page, status))
        return confirmed if confirmed is not None else updated

    async def _send(self, book: TrackedBook, update: UpdateProgress) -> Optional[TrackedBook]:
        try:
            return await asyncio.wait_for(
                self.gateway.update_progress(book.catalog_book_id, update),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise NetworkError(f"Progress update for {book.catalog_book_id} timed out after {self.timeout}s") from e

    def _speculative_patch(self, updated: TrackedBook) -> Tuple[Dict[ViewKey, Prior], List[ViewKey]]:
        affected = set(self.cache.enumerate_views_containing(updated.id))
        affected.update(key for key in self.cache.list_views() if view_accepts(key, updated))

        priors: Dict[ViewKey, Prior] = {}
        patched: Dict[ViewKey, Any] = {}
        refetch: List[ViewKey] = []
        for key in affected:
            current = self.cache.read(key)
            new_value = patch_view(key, current, updated)
            if new_value is None:
                refetch.append(key)
            elif new_value is not current:
                priors[key] = prior_state(current, updated.id)
                patched[key] = new_value

        for key, value in patched.items():
            self.cache.patch(key, value)
        logger.debug(f"Speculatively patched {len(patched)} view(s) for {updated.id}")
        return priors, refetch

    def _restore(self, book_id: str, priors: Dict[ViewKey, Prior]) -> None:
        for key, (before, index) in priors.items():
            if key not in self.cache:
                continue
            current = self.cache.read(key)
            restored = revert_view(current, book_id, before, index)
            if restored is not current:
                self.cache.patch(key, restored)

    @staticmethod
    def _success_message(page: Optional[int], status: Optional[ReadingStatus]) -> str:
        if status is not None:
            return notifications.STATUS_UPDATED.format(status=status.label)
        if page is not None:
            return notifications.PROGRESS_UPDATED.format(page=page)
        return notifications.PROGRESS_SAVED
