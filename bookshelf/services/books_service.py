import logging
import time
from typing import Any, Dict, Optional

import httpx

from bookshelf.schemas import AddBookToLibrary, BooksSearchResponse, CatalogVolume, LibraryStats, UpdateProgress
from bookshelf.services.http_client import LibraryHTTPClient, cleanup_http_client, get_http_client
from bookshelf.tracked_book import LibraryPage, ReadingStatus, TrackedBook

logger = logging.getLogger(__name__)


class LibraryAPIError(Exception):
    """Base error for library service calls"""
    pass


class NetworkError(LibraryAPIError):
    """The request never produced a response (connection failure or timeout)"""
    pass


class ServerError(LibraryAPIError):
    """The service answered with an error status"""

    def __init__(self, status_code: int, detail: str = ""):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Library API returned {status_code}: {detail}" if detail else f"Library API returned {status_code}")


class AuthenticationError(ServerError):
    """Raised on 401; the stored token is missing or expired"""
    pass


class NotFoundError(ServerError):
    pass


class BooksService:
    """Client for the library REST service (catalog search and the user's tracked books)"""

    def __init__(self, client: Optional[LibraryHTTPClient] = None):
        self._client = client
        self._shared = client is None

    async def _get_client(self) -> LibraryHTTPClient:
        if self._client is None:
            self._client = await get_http_client()
        return self._client

    async def _make_api_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Send one request and return the decoded JSON body"""
        client = await self._get_client()
        start_time = time.time()

        try:
            if method == "GET":
                response = await client.get_with_retry(endpoint, params=params)
            else:
                response = await client.request(method, endpoint, params=params, json=json)
        except httpx.TimeoutException as e:
            logger.error(f"{method} {endpoint} timed out")
            raise NetworkError(f"Request to {endpoint} timed out") from e
        except httpx.RequestError as e:
            logger.error(f"{method} {endpoint} failed: {e}")
            raise NetworkError(f"Request to {endpoint} failed: {e}") from e

        response_time_ms = int((time.time() - start_time) * 1000)
        logger.debug(f"{method} {endpoint} -> {response.status_code} in {response_time_ms}ms")

        if response.status_code >= 400:
            detail = _error_detail(response)
            logger.warning(f"{method} {endpoint} failed: {response.status_code} - {detail}")
            if response.status_code == 401:
                raise AuthenticationError(response.status_code, detail)
            if response.status_code == 404:
                raise NotFoundError(response.status_code, detail)
            raise ServerError(response.status_code, detail)

        if not response.content:
            return None
        return response.json()

    # ------------------------- Catalog ------------------------- #
    async def search_books(self, query: str, max_results: int = 10, start_index: int = 0) -> BooksSearchResponse:
        data = await self._make_api_request(
            "GET",
            "/books/search",
            params={"q": query, "maxResults": max_results, "startIndex": start_index},
        )
        return BooksSearchResponse.model_validate(data or {})

    async def get_book_by_id(self, volume_id: str) -> CatalogVolume:
        data = await self._make_api_request("GET", f"/books/{volume_id}")
        return CatalogVolume.model_validate(data)

    # ------------------------- User library ------------------------- #
    async def add_book_to_library(self, request: AddBookToLibrary) -> TrackedBook:
        data = await self._make_api_request("POST", "/user-books", json=request.to_payload())
        return TrackedBook.from_dict(data)

    async def get_user_library(
        self,
        status: Optional[ReadingStatus] = None,
        is_favorite: Optional[bool] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> LibraryPage:
        params: Dict[str, Any] = {}
        if status is not None:
            params["status"] = ReadingStatus.parse(status).value
        if is_favorite is not None:
            params["isFavorite"] = "true" if is_favorite else "false"
        if page is not None:
            params["page"] = page
        if limit is not None:
            params["limit"] = limit
        data = await self._make_api_request("GET", "/user-books", params=params or None)
        return LibraryPage.from_dict(data or {})

    async def get_library_stats(self) -> LibraryStats:
        data = await self._make_api_request("GET", "/user-books/stats")
        return LibraryStats.model_validate(data or {})

    async def get_user_book(self, book_id: str) -> TrackedBook:
        data = await self._make_api_request("GET", f"/user-books/{book_id}")
        return TrackedBook.from_dict(data)

    async def update_progress(self, book_id: str, update: UpdateProgress) -> TrackedBook:
        """Apply a partial progress update. Resending the same values is safe."""
        data = await self._make_api_request("PATCH", f"/user-books/{book_id}/progress", json=update.to_payload())
        return TrackedBook.from_dict(data)

    async def remove_book_from_library(self, book_id: str) -> str:
        data = await self._make_api_request("DELETE", f"/user-books/{book_id}")
        return (data or {}).get("message", "")

    async def aclose(self) -> None:
        if self._client is None:
            return
        if self._shared:
            await cleanup_http_client()
        else:
            await self._client.close()
        self._client = None


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("message") or body.get("detail") or body.get("error") or "")
    return str(body)
