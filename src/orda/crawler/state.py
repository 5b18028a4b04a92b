"""Per-provider crawl state.

Owned by the crawl orchestrator and bound to the provider's registration:
ETags and cached bodies for conditional refetch, ``lastUpdate`` values of
resources for definition-fetch skipping, and failure counters. Persisted
through the graph store so it survives restarts.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from orda.models.base import OrdBaseModel


class DocumentCacheEntry(OrdBaseModel):
    """Last successfully fetched version of one ORD document."""

    etag: str | None = None
    body: str
    fetched_at: datetime


class ProviderState(OrdBaseModel):
    """Crawl metadata of one provider.

    Attributes:
        provider_id: Provider identifier
        base_url: Discovery base URL
        documents: Document URL -> cached ETag and body
        resource_last_updates: ORD ID -> ``lastUpdate`` seen at the last
            successful crawl
        failure_count: Total failed crawls
        consecutive_failures: Failed crawls since the last success
        last_success: Time of the last successful crawl
        last_attempt: Time of the last crawl attempt
        last_error: Message of the last failure
    """

    provider_id: str
    base_url: str | None = None
    documents: dict[str, DocumentCacheEntry] = Field(default_factory=dict)
    resource_last_updates: dict[str, str] = Field(default_factory=dict)
    failure_count: int = 0
    consecutive_failures: int = 0
    last_success: datetime | None = None
    last_attempt: datetime | None = None
    last_error: str | None = None

    def record_failure(self, at: datetime, error: str) -> ProviderState:
        return self.model_copy(
            update={
                "failure_count": self.failure_count + 1,
                "consecutive_failures": self.consecutive_failures + 1,
                "last_attempt": at,
                "last_error": error,
            }
        )

    def record_success(
        self,
        at: datetime,
        documents: dict[str, DocumentCacheEntry],
        resource_last_updates: dict[str, str],
    ) -> ProviderState:
        return self.model_copy(
            update={
                "documents": documents,
                "resource_last_updates": resource_last_updates,
                "consecutive_failures": 0,
                "last_success": at,
                "last_attempt": at,
                "last_error": None,
            }
        )
