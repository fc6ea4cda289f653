import asyncio

import httpx
import pytest

from bookfinder.errors import CatalogTimeoutError, ExternalServiceError
from bookfinder.services.google_books_service import GoogleBooksService
from bookfinder.services.http_client import OptimizedHTTPClient

VOLUMES = {
    "totalItems": 2,
    "items": [
        {"id": "a", "volumeInfo": {"title": "Dune", "authors": ["Frank Herbert"]}},
        {"id": "b", "volumeInfo": {"title": "Emma"}},
    ],
}


def _run_search(handler, query="dune", api_key=None, timeout=5, **kwargs):
    async def run():
        async with OptimizedHTTPClient(transport=httpx.MockTransport(handler)) as client:
            service = GoogleBooksService(api_key=api_key, http_client=client, timeout=timeout)
            return await service.search(query, **kwargs)
    return asyncio.run(run())


def test_search_returns_raw_items():
    seen = {}

    def handler(request):
        seen["url"] = request.url
        return httpx.Response(200, json=VOLUMES)

    items = _run_search(handler, query="  dune  ", max_results=5)

    assert [i["id"] for i in items] == ["a", "b"]
    assert seen["url"].path == "/books/v1/volumes"
    assert seen["url"].params["q"] == "dune"
    assert seen["url"].params["maxResults"] == "5"
    assert "key" not in seen["url"].params


def test_search_sends_api_key_and_order():
    seen = {}

    def handler(request):
        seen["params"] = request.url.params
        return httpx.Response(200, json=VOLUMES)

    _run_search(handler, api_key="secret", order_by="newest")
    assert seen["params"]["key"] == "secret"
    assert seen["params"]["orderBy"] == "newest"


def test_max_results_is_clamped():
    seen = {}

    def handler(request):
        seen["max"] = request.url.params["maxResults"]
        return httpx.Response(200, json=VOLUMES)

    _run_search(handler, max_results=500)
    assert seen["max"] == "40"


def test_no_items_key_means_empty_list():
    assert _run_search(lambda request: httpx.Response(200, json={"totalItems": 0})) == []


def test_empty_query_skips_the_request():
    def handler(request):
        raise AssertionError("no request expected")

    assert _run_search(handler, query="   ") == []


def test_non_2xx_raises():
    with pytest.raises(ExternalServiceError) as exc_info:
        _run_search(lambda request: httpx.Response(503, text="down"))
    assert exc_info.value.status_code == 503
    assert exc_info.value.retryable is False


def test_invalid_json_raises():
    with pytest.raises(ExternalServiceError, match="invalid response"):
        _run_search(lambda request: httpx.Response(200, text="<html>"))


def test_network_error_raises():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ExternalServiceError, match="unreachable"):
        _run_search(handler)


def test_timeout_raises_retryable_error():
    async def slow_handler(request):
        await asyncio.sleep(1)
        return httpx.Response(200, json=VOLUMES)

    with pytest.raises(CatalogTimeoutError) as exc_info:
        _run_search(slow_handler, timeout=0.05)
    assert exc_info.value.retryable is True


def test_featured_and_trending_queries():
    queries = []

    def handler(request):
        queries.append((request.url.params["q"], request.url.params["orderBy"]))
        return httpx.Response(200, json=VOLUMES)

    async def run():
        async with OptimizedHTTPClient(transport=httpx.MockTransport(handler)) as client:
            service = GoogleBooksService(http_client=client)
            await service.featured()
            await service.trending()

    asyncio.run(run())
    assert queries == [("bestseller", "relevance"), ("subject:fiction", "newest")]
