import asyncio
import logging
from typing import Optional, Tuple
from urllib.parse import urlparse

import httpx

from bookfinder.config import settings
from bookfinder.errors import ExternalServiceError, ValidationError
from bookfinder.services.cache_manager import CacheManager
from bookfinder.services.http_client import OptimizedHTTPClient, get_http_client

logger = logging.getLogger(__name__)

# Served when a cover cannot be fetched
PLACEHOLDER_COVER = (
    b'<svg xmlns="http://www.w3.org/2000/svg" width="128" height="192" viewBox="0 0 128 192">'
    b'<rect width="128" height="192" fill="#1a1a1a"/>'
    b'<text x="64" y="100" fill="#06b6d4" font-family="sans-serif" font-size="12" '
    b'text-anchor="middle">No Cover</text></svg>'
)
PLACEHOLDER_CONTENT_TYPE = "image/svg+xml"


class ImageProxy:
    """Pass-through relay for cover images.

    Bytes and content type are returned untouched. Successful fetches are
    cached for ``cache_ttl`` seconds so the same cover is not fetched again.
    """

    def __init__(
        self,
        cache: CacheManager,
        http_client: Optional[OptimizedHTTPClient] = None,
        cache_ttl: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self.cache = cache
        self.cache_ttl = cache_ttl if cache_ttl is not None else settings.image_cache_ttl
        self.timeout = timeout if timeout is not None else settings.image_timeout
        self._http_client = http_client

    async def _client(self) -> OptimizedHTTPClient:
        if self._http_client is None:
            self._http_client = await get_http_client()
        return self._http_client

    async def fetch(self, url: str) -> Tuple[bytes, str]:
        """Fetch an image, returning ``(content, content_type)``.

        Raises ``ValidationError`` for a missing or non-HTTP URL and
        ``ExternalServiceError`` when the upstream fails or answers non-2xx.
        """
        if not url or urlparse(url).scheme not in ("http", "https"):
            raise ValidationError("URL parameter is required")

        cache_key = f"image:{url}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            content, content_type = cached
            return content, content_type

        client = await self._client()
        try:
            response = await asyncio.wait_for(client.get(url), timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise ExternalServiceError(f"Image fetch timed out: {url}") from e
        except httpx.RequestError as e:
            raise ExternalServiceError(f"Image fetch failed: {url}") from e

        if not response.is_success:
            logger.warning(f"Cover fetch for {url} answered {response.status_code}")
            raise ExternalServiceError(
                f"Image host answered with status {response.status_code}.",
                status_code=response.status_code,
            )

        content_type = response.headers.get("content-type", "application/octet-stream")
        logger.debug(f"Fetched cover {url} ({content_type}, {len(response.content)} bytes)")
        self.cache.set(cache_key, (response.content, content_type), ttl_seconds=self.cache_ttl)
        return response.content, content_type
