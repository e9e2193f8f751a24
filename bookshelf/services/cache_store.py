"""
In-memory store of query results (cache views) shared by every screen.

Each view is addressed by a tuple key built with ``QueryKeys``. Writes replace
a whole snapshot at once, so readers never see a half-applied update.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Iterator, List, Optional, Tuple

from bookshelf.tracked_book import LibraryPage, ReadingStatus, TrackedBook

logger = logging.getLogger(__name__)

ViewKey = Tuple[Hashable, ...]
CacheListener = Callable[[ViewKey, str], None]

USER_BOOKS = "user-books"
BOOKS = "books"


def _params(**values: Any) -> Tuple[Tuple[str, Any], ...]:
    return tuple(sorted((k, v) for k, v in values.items() if v is not None))


class QueryKeys:
    """Key builders for every cached query."""

    all_user_books: ViewKey = (USER_BOOKS,)
    user_book_lists: ViewKey = (USER_BOOKS, "list")

    @staticmethod
    def user_books_list(
        status: Optional[ReadingStatus] = None,
        is_favorite: Optional[bool] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> ViewKey:
        status_value = ReadingStatus.parse(status).value if status is not None else None
        return (USER_BOOKS, "list", _params(status=status_value, isFavorite=is_favorite, page=page, limit=limit))

    @staticmethod
    def stats() -> ViewKey:
        return (USER_BOOKS, "stats")

    @staticmethod
    def detail(catalog_book_id: str) -> ViewKey:
        return (USER_BOOKS, "detail", catalog_book_id)

    @staticmethod
    def search(query: str, max_results: int = 10, start_index: int = 0) -> ViewKey:
        return (BOOKS, "search", _params(query=query, maxResults=max_results, startIndex=start_index))

    @staticmethod
    def book_by_id(volume_id: str) -> ViewKey:
        return (BOOKS, "book", volume_id)


def is_list_view(key: ViewKey) -> bool:
    return key[:2] == QueryKeys.user_book_lists


def is_paginated(key: ViewKey) -> bool:
    params = dict(key[2]) if is_list_view(key) else {}
    return "page" in params or "limit" in params


def view_accepts(key: ViewKey, book: TrackedBook) -> bool:
    """Whether ``book`` satisfies the filter encoded in a list view key."""
    if not is_list_view(key):
        return False
    params = dict(key[2])
    if "status" in params and book.status.value != params["status"]:
        return False
    if "isFavorite" in params and book.is_favorite != params["isFavorite"]:
        return False
    return True


@dataclass
class _CacheEntry:
    value: Any
    updated_at: float
    stale: bool = False


class CacheStore:
    """Query-result cache consumed by the progress synchronizer and the library facade."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._entries: Dict[ViewKey, _CacheEntry] = {}
        self._listeners: List[CacheListener] = []
        self._clock = clock
        self.cache_stats = {
            'hits': 0,
            'misses': 0,
            'replacements': 0,
            'invalidations': 0,
        }

    # ------------------------- Reads ------------------------- #
    def read(self, key: ViewKey) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            self.cache_stats['misses'] += 1
            return None
        self.cache_stats['hits'] += 1
        return entry.value

    def __contains__(self, key: ViewKey) -> bool:
        return key in self._entries

    def is_fresh(self, key: ViewKey, max_age: float) -> bool:
        """True when the view exists, is not invalidated and is younger than ``max_age`` seconds."""
        entry = self._entries.get(key)
        if entry is None or entry.stale:
            return False
        return self._clock() - entry.updated_at < max_age

    def is_stale(self, key: ViewKey) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.stale

    def keys(self, prefix: ViewKey = ()) -> List[ViewKey]:
        return [k for k in self._entries if k[:len(prefix)] == prefix]

    def list_views(self) -> List[ViewKey]:
        return [k for k in self._entries if is_list_view(k)]

    def enumerate_views_containing(self, book_id: str) -> List[ViewKey]:
        """Every cached view currently holding the tracked book ``book_id``."""
        return [key for key, _ in self._views_holding(book_id)]

    def find_book(self, book_id: str) -> Optional[TrackedBook]:
        """Latest cached copy of a tracked book, preferring the detail view."""
        found = None
        for key, book in self._views_holding(book_id):
            if key[1] == "detail":
                return book
            found = found or book
        return found

    def _views_holding(self, book_id: str) -> Iterator[Tuple[ViewKey, TrackedBook]]:
        for key, entry in self._entries.items():
            value = entry.value
            if isinstance(value, LibraryPage):
                book = value.get(book_id)
                if book is not None:
                    yield key, book
            elif isinstance(value, TrackedBook) and value.id == book_id:
                yield key, value

    # ------------------------- Writes ------------------------- #
    def replace(self, key: ViewKey, value: Any) -> None:
        """Swap the whole snapshot for ``key``; visible to readers immediately."""
        self._entries[key] = _CacheEntry(value=value, updated_at=self._clock())
        self.cache_stats['replacements'] += 1
        self._emit(key, "replace")

    def patch(self, key: ViewKey, value: Any) -> bool:
        """Swap the snapshot held for an existing view, keeping its age and stale flag."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        entry.value = value
        self.cache_stats['replacements'] += 1
        self._emit(key, "replace")
        return True

    def invalidate(self, key: ViewKey) -> bool:
        """Mark a view as needing a refetch. The stale value stays readable."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        entry.stale = True
        self.cache_stats['invalidations'] += 1
        self._emit(key, "invalidate")
        return True

    def invalidate_prefix(self, prefix: ViewKey) -> int:
        count = 0
        for key in self.keys(prefix):
            if self.invalidate(key):
                count += 1
        return count

    def remove(self, key: ViewKey) -> bool:
        if self._entries.pop(key, None) is None:
            return False
        self._emit(key, "remove")
        return True

    def clear(self) -> None:
        for key in list(self._entries):
            self.remove(key)

    # ------------------------- Listeners ------------------------- #
    def subscribe(self, listener: CacheListener) -> Callable[[], None]:
        """Register ``listener(key, event)``; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, key: ViewKey, event: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(key, event)
            except Exception:
                logger.exception(f"Cache listener failed for {key} ({event})")

    def get_stats(self) -> Dict[str, Any]:
        """Cache statistics."""
        stats = self.cache_stats.copy()
        stats['views'] = len(self._entries)
        stats['stale_views'] = sum(1 for e in self._entries.values() if e.stale)
        if stats['hits'] + stats['misses'] > 0:
            stats['hit_ratio'] = stats['hits'] / (stats['hits'] + stats['misses'])
        else:
            stats['hit_ratio'] = 0.0
        return stats
