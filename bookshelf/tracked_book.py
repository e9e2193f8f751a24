from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class ReadingStatus(str, Enum):
    """Reading state of a tracked book. Values are the service's wire spelling."""

    WANT_TO_READ = "WANT_TO_READ"
    READING = "READING"
    FINISHED = "FINISHED"
    PAUSED = "PAUSED"
    ABANDONED = "DNF"

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]

    @classmethod
    def parse(cls, raw: "str | ReadingStatus") -> "ReadingStatus":
        """Accept a member, a member name or a wire value, case-insensitively."""
        if isinstance(raw, cls):
            return raw
        text = str(raw).strip().upper().replace("-", "_").replace(" ", "_")
        for status in cls:
            if text in (status.name, status.value):
                return status
        raise ValueError(f"Unknown reading status: {raw!r}")


_STATUS_LABELS = {
    ReadingStatus.WANT_TO_READ: "Want to Read",
    ReadingStatus.READING: "Currently Reading",
    ReadingStatus.FINISHED: "Finished",
    ReadingStatus.PAUSED: "Paused",
    ReadingStatus.ABANDONED: "Did Not Finish",
}


def clamp_page(page: int, total_pages: int) -> int:
    """Clamp a page number into ``[0, total_pages]``."""
    return max(0, min(int(page), max(0, total_pages)))


def progress_percentage(current_page: int, total_pages: int) -> int:
    """Whole-number reading progress, rounded half up."""
    if total_pages <= 0:
        return 0
    pct = math.floor(current_page * 100 / total_pages + 0.5)
    return max(0, min(100, pct))


@dataclass(frozen=True)
class CatalogBook:
    """Catalog entry embedded in a tracked book."""
    id: str
    title: str
    author: str
    total_pages: int = 0
    google_books_id: Optional[str] = None
    isbn: Optional[str] = None
    description: Optional[str] = None
    cover_url: Optional[str] = None
    language: Optional[str] = None
    publisher: Optional[str] = None
    published_date: Optional[str] = None
    genres: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "totalPages": self.total_pages,
            "googleBooksId": self.google_books_id,
            "isbn": self.isbn,
            "description": self.description,
            "coverUrl": self.cover_url,
            "language": self.language,
            "publisher": self.publisher,
            "publishedDate": self.published_date,
            "genres": list(self.genres),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "CatalogBook":
        return CatalogBook(
            id=str(data["id"]),
            title=(data.get("title") or "").strip(),
            author=(data.get("author") or "").strip(),
            total_pages=int(data.get("totalPages") or 0),
            google_books_id=data.get("googleBooksId"),
            isbn=data.get("isbn"),
            description=data.get("description"),
            cover_url=data.get("coverUrl"),
            language=data.get("language"),
            publisher=data.get("publisher"),
            published_date=data.get("publishedDate"),
            genres=tuple(data.get("genres") or ()),
        )


@dataclass(frozen=True)
class TrackedBook:
    """A user's reading-progress record for one catalog book.

    ``progress_percentage`` is derived from ``current_page`` on every read,
    so the two can never disagree.
    """
    id: str
    catalog_book_id: str
    book: CatalogBook
    status: ReadingStatus = ReadingStatus.WANT_TO_READ
    current_page: int = 0
    is_favorite: bool = False
    user_id: Optional[str] = None
    rating: Optional[int] = None
    review: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "current_page", clamp_page(self.current_page, self.book.total_pages))

    @property
    def total_pages(self) -> int:
        return self.book.total_pages

    @property
    def progress_percentage(self) -> int:
        return progress_percentage(self.current_page, self.total_pages)

    @property
    def title(self) -> str:
        return self.book.title

    @property
    def author(self) -> str:
        return self.book.author

    def with_changes(
        self,
        current_page: Optional[int] = None,
        status: Optional[ReadingStatus] = None,
        is_favorite: Optional[bool] = None,
    ) -> "TrackedBook":
        """Return a copy with the given progress fields replaced (page clamped)."""
        changes: Dict[str, Any] = {}
        if current_page is not None:
            changes["current_page"] = clamp_page(current_page, self.total_pages)
        if status is not None:
            changes["status"] = ReadingStatus.parse(status)
        if is_favorite is not None:
            changes["is_favorite"] = bool(is_favorite)
        if not changes:
            return self
        return replace(self, **changes)

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} ({self.current_page}/{self.total_pages})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "bookId": self.catalog_book_id,
            "status": self.status.value,
            "currentPage": self.current_page,
            "rating": self.rating,
            "review": self.review,
            "isFavorite": self.is_favorite,
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "book": self.book.to_dict(),
            "progressPercentage": self.progress_percentage,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "TrackedBook":
        # progressPercentage from the server is ignored; it is always recomputed
        return TrackedBook(
            id=str(data["id"]),
            catalog_book_id=str(data["bookId"]),
            book=CatalogBook.from_dict(data["book"]),
            status=ReadingStatus.parse(data.get("status") or ReadingStatus.WANT_TO_READ),
            current_page=int(data.get("currentPage") or 0),
            is_favorite=bool(data.get("isFavorite", False)),
            user_id=data.get("userId"),
            rating=data.get("rating"),
            review=data.get("review"),
            started_at=data.get("startedAt"),
            finished_at=data.get("finishedAt"),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
        )


@dataclass(frozen=True)
class LibraryPage:
    """One page of the user's library, as cached for a list view."""
    books: Tuple[TrackedBook, ...] = field(default_factory=tuple)
    total: int = 0
    page: int = 1
    total_pages: int = 1

    def contains(self, book_id: str) -> bool:
        return any(b.id == book_id for b in self.books)

    def get(self, book_id: str) -> Optional[TrackedBook]:
        for b in self.books:
            if b.id == book_id:
                return b
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "books": [b.to_dict() for b in self.books],
            "total": self.total,
            "page": self.page,
            "totalPages": self.total_pages,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "LibraryPage":
        books = tuple(TrackedBook.from_dict(item) for item in data.get("books") or [])
        return LibraryPage(
            books=books,
            total=int(data.get("total", len(books))),
            page=int(data.get("page", 1)),
            total_pages=int(data.get("totalPages", 1)),
        )
