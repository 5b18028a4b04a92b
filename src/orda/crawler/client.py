"""HTTP client for ORD provider discovery.

Fetches a provider's well-known configuration and the ORD documents it
lists. Transient failures (5xx, 429, connection errors, timeouts) are
retried with exponential backoff and jitter; when retries are exhausted a
FetchError is raised. Documents are fetched conditionally with
``If-None-Match`` and a 304 reuses the cached body.

Example:
    >>> async with DiscoveryClient() as client:
    ...     config = await client.fetch_config("https://s4.example.com")
    ...     for ref in config.documents:
    ...         fetched = await client.fetch_document(config.resolve_url(ref.url))
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import ValidationError

from orda.config import RetryConfig
from orda.crawler.state import DocumentCacheEntry
from orda.crawler.wellknown import WellKnownConfig
from orda.errors import FetchError
from orda.models.constants import DEFAULT_REQUEST_TIMEOUT, WELLKNOWN_PATH
from orda.observability.logging import get_logger
from orda.observability.metrics import get_metrics
from orda.utils.sanitization import sanitize_headers, sanitize_url

logger = get_logger(__name__)

HEADER_ETAG = "etag"
HEADER_IF_NONE_MATCH = "if-none-match"
HEADER_RETRY_AFTER = "retry-after"


@dataclass
class FetchedDocument:
    """Body of one ORD document plus its caching metadata."""

    url: str
    body: bytes
    etag: str | None = None
    not_modified: bool = False


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get(HEADER_RETRY_AFTER)
    if value and value.replace(".", "", 1).isdigit():
        return float(value)
    return None


class DiscoveryClient:
    """Async client for the ORD discovery interface.

    Use as an async context manager; the underlying ``httpx.AsyncClient``
    lives for the duration of the block.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        retry: RetryConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            timeout: Per-request timeout in seconds
            retry: Retry and backoff settings
            transport: Optional custom transport (e.g. ``httpx.MockTransport``)
            headers: Extra headers sent with every request
        """
        self.timeout = timeout
        self.retry = retry or RetryConfig()
        self._transport = transport
        self._headers = {"accept": "application/json", **(headers or {})}
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> DiscoveryClient:
        kwargs: dict[str, Any] = {
            "timeout": httpx.Timeout(self.timeout),
            "headers": self._headers,
            "follow_redirects": True,
        }
        if self._transport is not None:
            kwargs["transport"] = self._transport
        self._client = httpx.AsyncClient(**kwargs)
        logger.debug("orda.crawl.client_opened", headers=sanitize_headers(self._headers))
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get(self, url: str, headers: dict[str, str] | None = None) -> httpx.Response:
        """GET with retry; returns 2xx and 304 responses.

        Raises:
            FetchError: On a non-retriable status or once retries are exhausted
        """
        if self._client is None:
            raise FetchError(url, "client not connected; use 'async with'")
        attempts = max(1, self.retry.max_retries)
        reason = "no attempt made"
        status: int | None = None
        for attempt in range(attempts):
            try:
                response = await self._client.get(url, headers=headers)
            except httpx.TransportError as e:
                reason = f"{type(e).__name__}: {e}"
                status = None
                delay = self.retry.backoff(attempt)
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                # redirect loops, undecodable bodies and bad URLs do not heal on retry
                raise FetchError(url, f"{type(e).__name__}: {e}", attempts=attempt + 1) from e
            else:
                status = response.status_code
                if response.status_code < 400:
                    return response
                if response.status_code != 429 and response.status_code < 500:
                    raise FetchError(
                        url, f"HTTP {status}", attempts=attempt + 1, status_code=status
                    )
                reason = f"HTTP {response.status_code}"
                delay = _retry_after(response) or self.retry.backoff(attempt)

            if attempt < attempts - 1:
                get_metrics().increment_counter("orda_fetch_retries_total")
                logger.warning(
                    "orda.crawl.retry",
                    url=sanitize_url(url),
                    attempt=attempt + 1,
                    max_retries=attempts,
                    delay_seconds=round(delay, 2),
                    reason=reason,
                )
                await asyncio.sleep(delay)
        raise FetchError(url, reason, attempts=attempts, status_code=status)

    async def fetch_config(self, base_url: str) -> WellKnownConfig:
        """Fetch and parse ``<base_url>/.well-known/open-resource-discovery``.

        Raises:
            FetchError: If the endpoint cannot be fetched or is not a valid
                ORD configuration
        """
        url = f"{base_url.rstrip('/')}{WELLKNOWN_PATH}"
        response = await self._get(url)
        try:
            config = WellKnownConfig.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise FetchError(url, f"invalid ORD configuration: {e}") from e
        logger.debug(
            "orda.crawl.config_fetched", url=sanitize_url(url), documents=len(config.documents)
        )
        return config.with_default_base_url(base_url)

    async def fetch_document(
        self, url: str, cached: DocumentCacheEntry | None = None
    ) -> FetchedDocument:
        """Fetch one ORD document, conditionally when a cached ETag is known."""
        headers = {}
        if cached is not None and cached.etag:
            headers[HEADER_IF_NONE_MATCH] = cached.etag
        response = await self._get(url, headers=headers)
        if response.status_code == 304 and cached is not None:
            logger.debug("orda.crawl.not_modified", url=sanitize_url(url))
            return FetchedDocument(
                url=url, body=cached.body.encode("utf-8"), etag=cached.etag, not_modified=True
            )
        return FetchedDocument(
            url=url, body=response.content, etag=response.headers.get(HEADER_ETAG)
        )

    async def fetch_definition(self, url: str) -> bytes:
        """Fetch a resource definition (OpenAPI, AsyncAPI, ...) as raw bytes."""
        response = await self._get(url)
        return response.content
