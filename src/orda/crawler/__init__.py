"""Provider discovery and crawl orchestration.

Example:
    >>> from orda.crawler import DiscoveryClient
    >>> async with DiscoveryClient() as client:
    ...     config = await client.fetch_config("https://s4.example.com")
"""

from orda.crawler.client import DiscoveryClient, FetchedDocument
from orda.crawler.orchestrator import (
    CrawlOrchestrator,
    CrawlResult,
    ProviderRegistration,
    crawl_summary,
)
from orda.crawler.state import DocumentCacheEntry, ProviderState
from orda.crawler.wellknown import (
    DocumentReference,
    WellKnownConfig,
    select_access_strategy,
)

__all__ = [
    "CrawlOrchestrator",
    "CrawlResult",
    "DiscoveryClient",
    "DocumentCacheEntry",
    "DocumentReference",
    "FetchedDocument",
    "ProviderRegistration",
    "ProviderState",
    "WellKnownConfig",
    "crawl_summary",
    "select_access_strategy",
]
