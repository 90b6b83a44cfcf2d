import logging
from typing import Optional

import httpx

from office_library.config import settings

logger = logging.getLogger(__name__)


class OptimizedHTTPClient:
    """Pooled async HTTP client shared by the outbound integrations."""

    def __init__(self, timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        limits = httpx.Limits(
            max_keepalive_connections=10,
            max_connections=50,
            keepalive_expiry=30.0,
        )
        total = timeout if timeout is not None else settings.google_books_timeout
        self._client = httpx.AsyncClient(
            limits=limits,
            timeout=httpx.Timeout(total, connect=min(5.0, total)),
            follow_redirects=True,
            transport=transport,
        )

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self._client.get(url, **kwargs)

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


# Global HTTP client instance
_global_client: Optional[OptimizedHTTPClient] = None


async def get_http_client() -> OptimizedHTTPClient:
    """Get or create the global HTTP client."""
    global _global_client
    if _global_client is None:
        _global_client = OptimizedHTTPClient()
    return _global_client


async def cleanup_http_client():
    """Close the global HTTP client."""
    global _global_client
    if _global_client:
        await _global_client.close()
        _global_client = None
        logger.debug("HTTP client closed")
