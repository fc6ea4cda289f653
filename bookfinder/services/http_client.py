import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class OptimizedHTTPClient:
    """Pooled async HTTP client shared by the catalog and image relay."""

    def __init__(self, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        # Connection limits for pooled keep-alive connections
        limits = httpx.Limits(
            max_keepalive_connections=20,
            max_connections=100,
            keepalive_expiry=30.0
        )

        # Every call is bounded; callers may pass a tighter per-request timeout
        self.timeout = httpx.Timeout(
            timeout=timeout,
            connect=5.0,
        )

        self._client = httpx.AsyncClient(
            limits=limits,
            timeout=self.timeout,
            follow_redirects=True,
            transport=transport,
        )

    async def get(self, url: str, **kwargs) -> httpx.Response:
        """Async GET through the connection pool"""
        return await self._client.get(url, **kwargs)

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    async def close(self):
        """Close the underlying client"""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


# Global HTTP client instance
_global_client: Optional[OptimizedHTTPClient] = None


async def get_http_client() -> OptimizedHTTPClient:
    """Get or create the global HTTP client instance"""
    global _global_client
    if _global_client is None or _global_client.is_closed:
        _global_client = OptimizedHTTPClient()
    return _global_client


async def cleanup_http_client():
    """Close the global HTTP client"""
    global _global_client
    if _global_client:
        await _global_client.close()
        _global_client = None
