"""Tests for the discovery HTTP client."""

from datetime import datetime, timezone

import httpx
import pytest

from orda.config import RetryConfig
from orda.crawler.client import DiscoveryClient
from orda.crawler.state import DocumentCacheEntry
from orda.errors import FetchError
from orda.observability.metrics import get_metrics

from factories import BASE_URL, encode, full_document

WELLKNOWN = f"{BASE_URL}/.well-known/open-resource-discovery"
DOC_URL = f"{BASE_URL}/ord/v1/documents/1"

CONFIG = {
    "openResourceDiscoveryV1": {
        "documents": [{"url": "/ord/v1/documents/1", "accessStrategies": [{"type": "open"}]}]
    }
}


def client_for(handler, retry: RetryConfig) -> DiscoveryClient:
    return DiscoveryClient(retry=retry, transport=httpx.MockTransport(handler))


class TestRetry:
    """Transient failures are retried, permanent ones are not."""

    @pytest.mark.asyncio
    async def test_server_error_then_success(self, fast_retry: RetryConfig) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url)
            if len(calls) == 1:
                return httpx.Response(503)
            return httpx.Response(200, json=CONFIG)

        async with client_for(handler, fast_retry) as client:
            config = await client.fetch_config(BASE_URL)

        assert len(calls) == 2
        assert config.documents[0].url == "/ord/v1/documents/1"
        assert get_metrics().get_counter("orda_fetch_retries_total") == 1

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, fast_retry: RetryConfig) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url)
            return httpx.Response(404)

        async with client_for(handler, fast_retry) as client:
            with pytest.raises(FetchError) as exc_info:
                await client.fetch_config(BASE_URL)

        assert len(calls) == 1
        assert exc_info.value.status_code == 404
        assert exc_info.value.attempts == 1
        assert exc_info.value.url == WELLKNOWN

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, fast_retry: RetryConfig) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        async with client_for(handler, fast_retry) as client:
            with pytest.raises(FetchError) as exc_info:
                await client.fetch_document(DOC_URL)

        error = exc_info.value
        assert error.attempts == 3
        assert error.reason == "HTTP 503"
        assert str(error) == f"Failed to fetch {DOC_URL} after 3 attempt(s): HTTP 503"

    @pytest.mark.asyncio
    async def test_rate_limit_and_connection_errors_are_retried(
        self, fast_retry: RetryConfig
    ) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url)
            if len(calls) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            if len(calls) == 2:
                return httpx.Response(429, headers={"retry-after": "0"})
            return httpx.Response(200, content=b"{}")

        async with client_for(handler, fast_retry) as client:
            body = await client.fetch_definition(f"{BASE_URL}/openapi.json")

        assert body == b"{}"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_redirect_loop_raises_fetch_error(self, fast_retry: RetryConfig) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(302, headers={"location": str(request.url)})

        async with client_for(handler, fast_retry) as client:
            with pytest.raises(FetchError) as exc_info:
                await client.fetch_document(DOC_URL)

        assert exc_info.value.attempts == 1
        assert exc_info.value.reason.startswith("TooManyRedirects")

    @pytest.mark.asyncio
    async def test_requires_context_manager(self, fast_retry: RetryConfig) -> None:
        client = client_for(lambda request: httpx.Response(200), fast_retry)

        with pytest.raises(FetchError, match="client not connected"):
            await client.fetch_definition(DOC_URL)


class TestFetchConfig:
    @pytest.mark.asyncio
    async def test_base_url_defaults_to_provider_url(self, fast_retry: RetryConfig) -> None:
        async with client_for(lambda r: httpx.Response(200, json=CONFIG), fast_retry) as client:
            config = await client.fetch_config(f"{BASE_URL}/")

        assert config.base_url == BASE_URL
        assert config.resolve_url(config.documents[0].url) == DOC_URL

    @pytest.mark.asyncio
    async def test_declared_base_url_is_kept(self, fast_retry: RetryConfig) -> None:
        declared = {"baseUrl": "https://ord.example.com", **CONFIG}

        async with client_for(lambda r: httpx.Response(200, json=declared), fast_retry) as client:
            config = await client.fetch_config(BASE_URL)

        assert config.base_url == "https://ord.example.com"

    @pytest.mark.asyncio
    async def test_invalid_configuration(self, fast_retry: RetryConfig) -> None:
        async with client_for(lambda r: httpx.Response(200, json={"x": 1}), fast_retry) as client:
            with pytest.raises(FetchError, match="invalid ORD configuration"):
                await client.fetch_config(BASE_URL)


class TestFetchDocument:
    """Conditional document fetches."""

    @pytest.mark.asyncio
    async def test_etag_recorded(self, fast_retry: RetryConfig) -> None:
        body = encode(full_document())

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=body, headers={"etag": '"v1"'})

        async with client_for(handler, fast_retry) as client:
            fetched = await client.fetch_document(DOC_URL)

        assert fetched.body == body
        assert fetched.etag == '"v1"'
        assert not fetched.not_modified

    @pytest.mark.asyncio
    async def test_not_modified_reuses_cached_body(self, fast_retry: RetryConfig) -> None:
        seen_headers = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen_headers.append(request.headers.get("if-none-match"))
            return httpx.Response(304)

        cached = DocumentCacheEntry(
            etag='"v1"',
            body='{"openResourceDiscovery": "1.7"}',
            fetched_at=datetime.now(timezone.utc),
        )

        async with client_for(handler, fast_retry) as client:
            fetched = await client.fetch_document(DOC_URL, cached)

        assert seen_headers == ['"v1"']
        assert fetched.not_modified
        assert fetched.body == b'{"openResourceDiscovery": "1.7"}'
        assert fetched.etag == '"v1"'
