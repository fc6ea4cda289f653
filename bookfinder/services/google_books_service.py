import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from bookfinder.config import settings
from bookfinder.errors import CatalogTimeoutError, ExternalServiceError
from bookfinder.services.http_client import OptimizedHTTPClient, get_http_client

logger = logging.getLogger(__name__)

# Google Books API limit for maxResults
MAX_RESULTS_LIMIT = 40


class GoogleBooksService:
    """Text search against the Google Books volumes endpoint.

    Results are returned raw; ``bookfinder.catalog.normalize`` turns them into
    records. Each call is bounded by ``timeout`` seconds and is not retried.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        http_client: Optional[OptimizedHTTPClient] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key or settings.google_books_api_key
        self.base_url = "https://www.googleapis.com/books/v1"
        self.timeout = timeout if timeout is not None else settings.google_books_timeout
        self._http_client = http_client

    async def _client(self) -> OptimizedHTTPClient:
        if self._http_client is None:
            self._http_client = await get_http_client()
        return self._http_client

    async def _make_api_request(self, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Make an API request to Google Books"""
        url = f"{self.base_url}/{endpoint}"

        # Add API key if available
        if self.api_key:
            params["key"] = self.api_key

        client = await self._client()
        start_time = time.time()

        try:
            response = await asyncio.wait_for(client.get(url, params=params), timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.error(f"Google Books request timed out after {self.timeout}s")
            raise CatalogTimeoutError(f"Catalog did not answer within {self.timeout:g} seconds.") from e
        except httpx.RequestError as e:
            logger.error(f"Google Books request failed: {e}")
            raise ExternalServiceError("Catalog is unreachable.") from e

        response_time_ms = int((time.time() - start_time) * 1000)

        if response.status_code != 200:
            logger.error(f"API request failed: {response.status_code} - {response.text[:200]}")
            raise ExternalServiceError(
                f"Catalog answered with status {response.status_code}.",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ExternalServiceError("Catalog returned an invalid response.") from e

        logger.info(f"Google Books {endpoint} answered in {response_time_ms}ms")
        return data if isinstance(data, dict) else {}

    async def search(
        self,
        query: str,
        max_results: Optional[int] = None,
        order_by: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Search for books using a text query

        Args:
            query: Search query (title, author, ISBN, keyword...)
            max_results: Maximum number of results to return
            order_by: "relevance" or "newest"

        Returns:
            Raw volume resources, possibly empty

        Raises:
            ExternalServiceError: catalog unreachable or non-2xx
            CatalogTimeoutError: catalog did not answer in time
        """
        if not query or not query.strip():
            logger.warning("Empty search query provided")
            return []

        if max_results is None:
            max_results = settings.google_books_max_results
        params: Dict[str, Any] = {
            "q": query.strip(),
            "maxResults": max(1, min(max_results, MAX_RESULTS_LIMIT)),
        }
        if order_by:
            params["orderBy"] = order_by

        data = await self._make_api_request("volumes", params)
        items = data.get("items") or []
        if not isinstance(items, list):
            items = []
        logger.info(f"Found {len(items)} books for query: {query}")
        return items

    async def featured(self) -> List[Dict[str, Any]]:
        """Bestsellers, by relevance."""
        return await self.search("bestseller", max_results=10, order_by="relevance")

    async def trending(self) -> List[Dict[str, Any]]:
        """Newest fiction."""
        return await self.search("subject:fiction", max_results=10, order_by="newest")

    def is_available(self) -> bool:
        """Check if catalog search is enabled"""
        return settings.enable_google_books
