"""Aggregator façade: parser, merge engine, crawler and store wired together.

Example:
    >>> aggregator = Aggregator(AggregatorConfig(storage_backend="sqlite"))
    >>> await aggregator.load()
    >>> report = await aggregator.ingest("s4", [raw_document])
    >>> aggregator.query.get("sap.s4:apiResource:orders:v1")
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timezone
from typing import Any

from orda import lifecycle
from orda.config import AggregatorConfig
from orda.crawler.client import DiscoveryClient
from orda.crawler.orchestrator import CrawlOrchestrator, CrawlResult, DefinitionHandler
from orda.graph import GraphSnapshot
from orda.merge import Batch, CommitReport, MergeEngine
from orda.models.document import OrdDocument
from orda.models.issues import ValidationIssue
from orda.observability.logging import get_logger
from orda.query import QueryFacade
from orda.store import GraphStoreBase, create_graph_store
from orda.validation.parser import ParseResult, parse_document
from orda.validation.validator import Validator

logger = get_logger(__name__)

RawDocument = bytes | str | dict[str, Any] | OrdDocument


class Aggregator:
    """Entry point of the engine for library users, the CLI and the HTTP API."""

    def __init__(
        self,
        config: AggregatorConfig | None = None,
        store: GraphStoreBase | None = None,
        validator: Validator | None = None,
        client_factory: Callable[[], DiscoveryClient] | None = None,
        on_definition: DefinitionHandler | None = None,
    ) -> None:
        """Initialize the aggregator.

        Args:
            config: Engine settings; defaults to ``AggregatorConfig()``
            store: Graph store; defaults to the backend selected by ``config``
            validator: Optional external validator run on every document
            client_factory: Discovery client builder for crawls
            on_definition: Receives fetched resource definitions
        """
        self.config = config or AggregatorConfig()
        self.store = store if store is not None else create_graph_store(self.config)
        self.validator = validator
        self.engine = MergeEngine(tombstone_grace_days=self.config.tombstone_grace_days)
        self.orchestrator = CrawlOrchestrator(
            committer=self.commit,
            on_stale=self.mark_stale,
            config=self.config,
            store=self.store,
            client_factory=client_factory,
            validator=validator,
            on_definition=on_definition,
        )
        self._query = QueryFacade(lambda: self.engine.snapshot)
        self._write_lock = asyncio.Lock()

    @property
    def query(self) -> QueryFacade:
        return self._query

    @property
    def snapshot(self) -> GraphSnapshot:
        return self.engine.snapshot

    async def load(self) -> GraphSnapshot:
        """Restore the persisted graph and provider crawl state."""
        snapshot = await self.store.load_snapshot()
        if snapshot is not None:
            self.engine.restore(snapshot)
        await self.orchestrator.load_state()
        logger.info(
            "orda.aggregator.loaded",
            revision=self.engine.snapshot.revision,
            entities=len(self.engine.snapshot),
        )
        return self.engine.snapshot

    def parse(
        self, raw: bytes | str | dict[str, Any], spec_version: str | None = None
    ) -> ParseResult:
        return parse_document(raw, spec_version=spec_version, validator=self.validator)

    async def commit(self, batch: Batch) -> CommitReport:
        """Apply one batch and persist the resulting snapshot.

        Raises:
            PersistenceError: If the snapshot cannot be saved
        """
        async with self._write_lock:
            report = self.engine.commit(batch)
            await self.store.save_snapshot(self.engine.snapshot)
        lifecycle.emit_warnings(report.issues)
        return report

    async def ingest(
        self,
        provider_id: str,
        documents: Iterable[RawDocument],
        crawled_at: datetime | None = None,
        complete: bool = True,
        spec_version: str | None = None,
    ) -> CommitReport:
        """Run a provider's documents through the pipeline as one batch.

        Documents that cannot be parsed at all are reported and skipped;
        the batch is then treated as incomplete so that entities missing
        from it are not reported as vanished.
        """
        parsed: list[OrdDocument] = []
        issues: list[ValidationIssue] = []
        for index, raw in enumerate(documents):
            if isinstance(raw, OrdDocument):
                parsed.append(raw)
                continue
            result = self.parse(raw, spec_version=spec_version)
            issues.extend(
                issue.model_copy(
                    update={
                        "provider_id": provider_id,
                        "path": f"documents[{index}].{issue.path}".rstrip("."),
                    }
                )
                for issue in result.issues
            )
            if result.document is None:
                complete = False
                continue
            parsed.append(result.document)
        batch = Batch(
            provider_id=provider_id,
            documents=parsed,
            crawled_at=crawled_at or datetime.now(timezone.utc),
            complete=complete,
            issues=issues,
        )
        return await self.commit(batch)

    async def mark_stale(self, provider_id: str) -> None:
        async with self._write_lock:
            self.engine.mark_provider_stale(provider_id)
            await self.store.save_snapshot(self.engine.snapshot)

    async def purge(self, now: datetime | None = None) -> list[str]:
        """Physically delete tombstoned entities past their grace window."""
        async with self._write_lock:
            revision = self.engine.snapshot.revision
            purged = self.engine.purge(now)
            if self.engine.snapshot.revision != revision:
                await self.store.save_snapshot(self.engine.snapshot)
        if purged:
            logger.info("orda.aggregator.purged", entities=len(purged))
        return purged

    def register_provider(self, provider_id: str, base_url: str) -> None:
        self.orchestrator.register(provider_id, base_url)

    async def deregister_provider(self, provider_id: str) -> None:
        await self.orchestrator.deregister(provider_id)

    async def crawl(self, provider_ids: Sequence[str] | None = None) -> dict[str, CrawlResult]:
        """Crawl all registered providers, or only the given ones."""
        if provider_ids is None:
            return await self.orchestrator.crawl_all()
        results = await asyncio.gather(
            *(self.orchestrator.crawl_provider(provider_id) for provider_id in provider_ids)
        )
        return {result.provider_id: result for result in results}
