"""Request and response bodies exchanged with the library service.

Field names are snake_case in Python and camelCase on the wire.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from bookshelf.tracked_book import ReadingStatus


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class UpdateProgress(WireModel):
    """Partial update sent to ``PATCH /user-books/{bookId}/progress``"""
    current_page: Optional[int] = Field(default=None, ge=0)
    status: Optional[ReadingStatus] = None
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    review: Optional[str] = None
    is_favorite: Optional[bool] = None


class AddBookToLibrary(WireModel):
    book_id: str = Field(description="Google Books volume id")
    status: Optional[ReadingStatus] = None
    is_favorite: Optional[bool] = None


class LibraryStats(WireModel):
    total_books: int = 0
    currently_reading: int = 0
    finished: int = 0
    want_to_read: int = 0
    paused: int = 0
    did_not_finish: int = 0
    favorites: int = 0
    average_rating: float = 0.0
    total_pages_read: int = 0


class IndustryIdentifier(WireModel):
    type: str
    identifier: str


class VolumeInfo(WireModel):
    title: str
    authors: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    industry_identifiers: List[IndustryIdentifier] = Field(default_factory=list)
    page_count: Optional[int] = None
    categories: List[str] = Field(default_factory=list)
    image_links: Dict[str, str] = Field(default_factory=dict)
    published_date: Optional[str] = None
    publisher: Optional[str] = None
    language: Optional[str] = None

    @property
    def isbn(self) -> Optional[str]:
        for kind in ("ISBN_13", "ISBN_10"):
            for ident in self.industry_identifiers:
                if ident.type == kind:
                    return ident.identifier
        return None


class CatalogVolume(WireModel):
    """A catalog search hit."""
    id: str
    kind: Optional[str] = None
    self_link: Optional[str] = None
    volume_info: VolumeInfo


class BooksSearchResponse(WireModel):
    kind: str = "books#volumes"
    total_items: int = 0
    items: List[CatalogVolume] = Field(default_factory=list)
