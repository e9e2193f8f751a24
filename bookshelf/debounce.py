"""
Debounced reading-progress intents.

Rapid +/- page clicks on the same book are folded into one remote update per
quiet window. Per book the coalescer moves through::

    IDLE --intent--> ACCUMULATING --intent--> ACCUMULATING (timer restarted)
    ACCUMULATING --quiet window--> COMMITTING --settled--> IDLE

A book that is COMMITTING may start a new burst; that burst is based on the
optimistic page and its commit waits for the outstanding one, so there is
never more than one remote call in flight per book.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from bookshelf.config import settings
from bookshelf.progress_sync import ProgressSynchronizer
from bookshelf.tracked_book import ReadingStatus, TrackedBook, clamp_page

logger = logging.getLogger(__name__)

VisibleListener = Callable[[TrackedBook], None]


class CoalescerState(str, Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    COMMITTING = "committing"


@dataclass(eq=False)
class _QueuedChange:
    book: TrackedBook
    page: Optional[int] = None
    status: Optional[ReadingStatus] = None
    is_favorite: Optional[bool] = None

    def visible(self) -> TrackedBook:
        return self.book.with_changes(current_page=self.page, status=self.status, is_favorite=self.is_favorite)


@dataclass
class _PendingProgress:
    base: Optional[TrackedBook] = None
    accumulated_delta: int = 0
    timer: Optional[asyncio.TimerHandle] = None
    queued: List[_QueuedChange] = field(default_factory=list)
    inflight: Optional["asyncio.Task"] = None

    @property
    def state(self) -> CoalescerState:
        if self.timer is not None:
            return CoalescerState.ACCUMULATING
        if self.inflight is not None:
            return CoalescerState.COMMITTING
        return CoalescerState.IDLE

    def burst_visible(self) -> TrackedBook:
        # Display clamps every click; the commit clamps the net delta once
        return self.base.with_changes(current_page=self.base.current_page + self.accumulated_delta)


class ProgressCoalescer:
    """Folds bursts of page deltas into single commits, serialized per book."""

    def __init__(self, synchronizer: ProgressSynchronizer, window: Optional[float] = None):
        self.synchronizer = synchronizer
        self.window = window if window is not None else settings.progress_debounce_seconds
        self._entries: Dict[str, _PendingProgress] = {}
        self._listeners: List[VisibleListener] = []

    # ------------------------- Intents ------------------------- #
    def submit_delta(self, book: TrackedBook, delta: int) -> TrackedBook:
        """Add ``delta`` pages to the book's pending burst and return what to display.

        Fire-and-forget: failures of the eventual commit are reported by the
        synchronizer's notifier, not here.
        """
        loop = asyncio.get_running_loop()
        entry = self._entries.setdefault(book.id, _PendingProgress())
        if entry.timer is not None:
            entry.timer.cancel()
            entry.accumulated_delta += delta
        else:
            entry.base = self.visible(book)
            entry.accumulated_delta = delta
        entry.timer = loop.call_later(self.window, self._on_quiet, book.id)

        visible = entry.burst_visible()
        logger.debug(f"Book {book.id}: delta {delta:+d}, pending {entry.accumulated_delta:+d}, showing page {visible.current_page}")
        self._emit(visible)
        return visible

    def submit_change(
        self,
        book: TrackedBook,
        page: Optional[int] = None,
        status: Optional[ReadingStatus] = None,
        is_favorite: Optional[bool] = None,
    ) -> "asyncio.Task":
        """Queue an absolute change (page, status or favorite flag).

        A pending burst for the same book is folded in: an explicit page
        replaces it, otherwise its net page goes out with this change.
        """
        base = self.visible(book)
        entry = self._entries.get(book.id)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None
            if page is None:
                page = clamp_page(entry.base.current_page + entry.accumulated_delta, entry.base.total_pages)
            else:
                logger.debug(f"Book {book.id}: pending delta {entry.accumulated_delta:+d} replaced by page {page}")
            base = entry.base
            entry.base, entry.accumulated_delta = None, 0

        if page is not None:
            page = clamp_page(page, base.total_pages)
        change = _QueuedChange(base, page=page, status=ReadingStatus.parse(status) if status is not None else None,
                               is_favorite=is_favorite)
        task = self._enqueue(book.id, change)
        self._emit(change.visible())
        return task

    # ------------------------- Introspection ------------------------- #
    def visible(self, book: TrackedBook) -> TrackedBook:
        """The record as the user should see it, pending intents included."""
        entry = self._entries.get(book.id)
        if entry is None:
            return book
        if entry.timer is not None:
            return entry.burst_visible()
        if entry.queued:
            return entry.queued[-1].visible()
        return book

    def state(self, book_id: str) -> CoalescerState:
        entry = self._entries.get(book_id)
        return entry.state if entry is not None else CoalescerState.IDLE

    def pending_delta(self, book_id: str) -> int:
        entry = self._entries.get(book_id)
        return entry.accumulated_delta if entry is not None and entry.timer is not None else 0

    def subscribe(self, listener: VisibleListener) -> None:
        self._listeners.append(listener)

    # ------------------------- Commit ------------------------- #
    async def flush(self) -> None:
        """Commit every pending burst now and wait for all commits to settle."""
        for book_id, entry in list(self._entries.items()):
            if entry.timer is not None:
                entry.timer.cancel()
                self._fire(book_id)
        await self.drain()

    async def drain(self) -> None:
        """Wait until no commit is in flight."""
        while True:
            tasks = [e.inflight for e in self._entries.values() if e.inflight is not None]
            if not tasks:
                return
            await asyncio.wait(tasks)

    def _on_quiet(self, book_id: str) -> None:
        entry = self._entries.get(book_id)
        if entry is None or entry.timer is None:
            return
        self._fire(book_id)

    def _fire(self, book_id: str) -> None:
        entry = self._entries[book_id]
        entry.timer = None
        base, delta = entry.base, entry.accumulated_delta
        entry.base, entry.accumulated_delta = None, 0
        final_page = clamp_page(base.current_page + delta, base.total_pages)
        logger.debug(f"Book {book_id}: quiet window elapsed, committing {base.current_page} {delta:+d} -> page {final_page}")
        self._enqueue(book_id, _QueuedChange(base, page=final_page))

    def _enqueue(self, book_id: str, change: _QueuedChange) -> "asyncio.Task":
        entry = self._entries.setdefault(book_id, _PendingProgress())
        entry.queued.append(change)
        previous = entry.inflight
        task = asyncio.get_running_loop().create_task(self._commit(book_id, change, previous))
        entry.inflight = task
        task.add_done_callback(_log_settled)
        return task

    async def _commit(self, book_id: str, change: _QueuedChange, previous: Optional["asyncio.Task"]) -> TrackedBook:
        entry = self._entries[book_id]
        try:
            if previous is not None:
                await asyncio.wait([previous])
            # The synchronizer patches the cache before its first await
            entry.queued.remove(change)
            return await self.synchronizer.apply_progress_change(
                change.book,
                new_page=change.page,
                new_status=change.status,
                is_favorite=change.is_favorite,
            )
        finally:
            if change in entry.queued:
                entry.queued.remove(change)
            if entry.inflight is asyncio.current_task():
                entry.inflight = None
            if entry.state is CoalescerState.IDLE and not entry.queued and self._entries.get(book_id) is entry:
                del self._entries[book_id]

    def _emit(self, visible: TrackedBook) -> None:
        for listener in list(self._listeners):
            listener(visible)


def _log_settled(task: "asyncio.Task") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        # Already rolled back and reported by the synchronizer
        logger.debug(f"Progress commit settled with error: {exc!r}")
