import httpx
import asyncio
from typing import Optional, Dict
import logging

from bookshelf.config import settings

logger = logging.getLogger(__name__)


class LibraryHTTPClient:
    """Pooled async HTTP client bound to the library service base URL"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        # Connection limits for pooled keep-alive
        limits = httpx.Limits(
            max_keepalive_connections=20,
            max_connections=100,
            keepalive_expiry=30.0
        )

        read_timeout = timeout if timeout is not None else settings.request_timeout
        timeout_config = httpx.Timeout(
            timeout=read_timeout,
            connect=settings.connect_timeout,
        )

        headers: Dict[str, str] = {"Content-Type": "application/json"}
        token = token if token is not None else settings.api_token
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            limits=limits,
            timeout=timeout_config,
            follow_redirects=True,
            transport=transport,
        )

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        return await self._client.request(method, url, **kwargs)

    async def get(self, url: str, **kwargs) -> httpx.Response:
        """Async GET through the connection pool"""
        return await self._client.get(url, **kwargs)

    async def get_with_retry(self, url: str, retries: Optional[int] = None, backoff: float = 0.5, **kwargs) -> httpx.Response:
        """GET with exponential back-off on transport errors; the last error is re-raised"""
        attempts = max(1, retries if retries is not None else settings.retry_attempts)
        for attempt in range(attempts - 1):
            try:
                return await self.get(url, **kwargs)
            except httpx.RequestError as e:
                wait_time = backoff * (2 ** attempt)
                logger.debug(f"GET {url} failed ({e!r}), retrying in {wait_time:.2f}s")
                await asyncio.sleep(wait_time)
        return await self.get(url, **kwargs)

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


# Process-wide client
_global_client: Optional[LibraryHTTPClient] = None


async def get_http_client() -> LibraryHTTPClient:
    """Return the shared client, creating it on first use"""
    global _global_client
    if _global_client is None:
        _global_client = LibraryHTTPClient()
    return _global_client


async def cleanup_http_client():
    """Close and forget the shared client"""
    global _global_client
    if _global_client:
        await _global_client.close()
        _global_client = None
