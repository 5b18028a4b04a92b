"""Crawl orchestration across registered ORD providers.

One crawl task runs per provider, bounded by ``max_concurrent_providers``;
inside a provider, document and definition fetches fan out bounded by
``max_concurrent_fetches``. A provider's fetched documents become one
Batch that is handed to a single commit worker through a queue, so the
graph only ever sees complete provider batches, one at a time.

A provider whose fetches fail after all retries is marked stale and its
earlier contributions stay in the graph untouched. Deregistering a
provider cancels its in-flight task; a batch that was already queued is
dropped, so nothing partial is committed.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from orda.config import AggregatorConfig
from orda.crawler.client import DiscoveryClient, FetchedDocument
from orda.crawler.state import DocumentCacheEntry, ProviderState
from orda.crawler.wellknown import DocumentReference, WellKnownConfig, select_access_strategy
from orda.errors import FetchError
from orda.lifecycle import should_refetch_definitions
from orda.merge import Batch, CommitReport
from orda.models.document import OrdDocument
from orda.models.enums import IssueCategory
from orda.models.issues import ValidationIssue
from orda.observability.logging import bind_context, get_logger
from orda.observability.metrics import get_metrics
from orda.utils.sanitization import sanitize_url
from orda.validation.parser import parse_document
from orda.validation.validator import Validator

if TYPE_CHECKING:
    from orda.store.base import GraphStore

logger = get_logger(__name__)

Committer = Callable[[Batch], Awaitable[CommitReport]]
StaleHandler = Callable[[str], Awaitable[None]]
DefinitionHandler = Callable[[str, str, bytes], Awaitable[None]]


@dataclass(frozen=True, eq=False)
class ProviderRegistration:
    """A registered provider; identity marks one registration lifetime."""

    provider_id: str
    base_url: str


@dataclass
class CrawlResult:
    """Outcome of one provider crawl."""

    provider_id: str
    ok: bool = False
    report: CommitReport | None = None
    error: str | None = None
    documents: int = 0
    definitions_fetched: int = 0
    definitions_skipped: int = 0
    cancelled: bool = False
    duration_seconds: float = 0.0


@dataclass
class _CrawledBatch:
    registration: ProviderRegistration
    batch: Batch
    state: ProviderState
    result: CrawlResult
    started: float


@dataclass
class _DefinitionStats:
    fetched: int = 0
    skipped: int = 0
    last_updates: dict[str, str] = field(default_factory=dict)


class CrawlOrchestrator:
    """Runs provider crawls and feeds their batches to a single committer.

    Example:
        >>> orchestrator = CrawlOrchestrator(committer=aggregator.commit, on_stale=mark_stale)
        >>> orchestrator.register("s4", "https://s4.example.com")
        >>> results = await orchestrator.crawl_all()
    """

    def __init__(
        self,
        committer: Committer,
        on_stale: StaleHandler,
        config: AggregatorConfig | None = None,
        store: GraphStore | None = None,
        client_factory: Callable[[], DiscoveryClient] | None = None,
        validator: Validator | None = None,
        on_definition: DefinitionHandler | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            committer: Applies one batch to the graph; called by one worker at a time
            on_stale: Marks a provider's contributions stale after a failed crawl
            config: Concurrency, retry and access strategy settings
            store: Optional store for provider crawl state
            client_factory: Builds the discovery client for a crawl run
            validator: Optional external validator passed to the parser
            on_definition: Receives ``(ord_id, url, body)`` of fetched resource definitions
        """
        self.config = config or AggregatorConfig()
        self._committer = committer
        self._on_stale = on_stale
        self._store = store
        self._client_factory = client_factory or self._default_client
        self._validator = validator
        self._on_definition = on_definition
        self._providers: dict[str, ProviderRegistration] = {}
        self._states: dict[str, ProviderState] = {}
        self._tasks: dict[str, asyncio.Task[_CrawledBatch | CrawlResult]] = {}
        self._provider_slots = asyncio.Semaphore(self.config.max_concurrent_providers)
        self._commit_lock = asyncio.Lock()

    def _default_client(self) -> DiscoveryClient:
        return DiscoveryClient(timeout=self.config.request_timeout, retry=self.config.retry)

    @property
    def providers(self) -> dict[str, ProviderRegistration]:
        return dict(self._providers)

    def state(self, provider_id: str) -> ProviderState | None:
        return self._states.get(provider_id)

    async def load_state(self) -> None:
        """Restore provider crawl state (ETags, lastUpdates, failures) from the store."""
        if self._store is None:
            return
        self._states.update(await self._store.load_provider_states())
        for provider_id, state in self._states.items():
            if provider_id not in self._providers and state.base_url:
                self._providers[provider_id] = ProviderRegistration(provider_id, state.base_url)

    def register(self, provider_id: str, base_url: str) -> ProviderRegistration:
        """Register a provider; re-registering with the same URL is a no-op."""
        base_url = base_url.rstrip("/")
        existing = self._providers.get(provider_id)
        if existing is not None and existing.base_url == base_url:
            return existing
        registration = ProviderRegistration(provider_id, base_url)
        self._providers[provider_id] = registration
        logger.info(
            "orda.crawl.provider_registered",
            provider_id=provider_id,
            base_url=sanitize_url(base_url),
        )
        return registration

    async def deregister(self, provider_id: str) -> None:
        """Remove a provider, cancel its in-flight crawl and drop its crawl state."""
        self._providers.pop(provider_id, None)
        task = self._tasks.pop(provider_id, None)
        if task is not None and not task.done():
            task.cancel()
        self._states.pop(provider_id, None)
        if self._store is not None:
            await self._store.delete_provider_state(provider_id)
        logger.info("orda.crawl.provider_deregistered", provider_id=provider_id)

    async def crawl_all(self) -> dict[str, CrawlResult]:
        """Crawl every registered provider concurrently."""
        return await self._run(list(self._providers.values()))

    async def crawl_provider(self, provider_id: str) -> CrawlResult:
        """Crawl one registered provider.

        Raises:
            KeyError: If the provider is not registered
        """
        registration = self._providers[provider_id]
        results = await self._run([registration])
        return results[provider_id]

    async def _run(self, registrations: list[ProviderRegistration]) -> dict[str, CrawlResult]:
        queue: asyncio.Queue[_CrawledBatch | None] = asyncio.Queue()
        results: dict[str, CrawlResult] = {}

        async with self._client_factory() as client:

            async def producer(registration: ProviderRegistration) -> None:
                provider_id = registration.provider_id
                started = time.perf_counter()
                task = asyncio.create_task(self._crawl(client, registration))
                self._tasks[provider_id] = task
                try:
                    await asyncio.wait({task})
                finally:
                    if self._tasks.get(provider_id) is task:
                        del self._tasks[provider_id]
                if task.cancelled():
                    logger.info("orda.crawl.cancelled", provider_id=provider_id)
                    results[provider_id] = CrawlResult(provider_id=provider_id, cancelled=True)
                    return
                try:
                    outcome = task.result()
                except Exception as e:
                    logger.exception("orda.crawl.provider_crashed", provider_id=provider_id)
                    error = FetchError(registration.base_url, f"{type(e).__name__}: {e}")
                    outcome = await self._fail(
                        registration,
                        self._previous_state(registration),
                        datetime.now(timezone.utc),
                        error,
                        started,
                    )
                if isinstance(outcome, CrawlResult):
                    results[provider_id] = outcome
                else:
                    await queue.put(outcome)

            async def consumer() -> None:
                while True:
                    crawled = await queue.get()
                    if crawled is None:
                        break
                    provider_id = crawled.batch.provider_id
                    if self._providers.get(provider_id) is not crawled.registration:
                        logger.info("orda.crawl.batch_dropped", provider_id=provider_id)
                        results[provider_id] = CrawlResult(provider_id=provider_id, cancelled=True)
                        continue
                    results[provider_id] = await self._commit(crawled)

            producers = [asyncio.create_task(producer(r)) for r in registrations]
            worker = asyncio.create_task(consumer())
            try:
                await asyncio.gather(*producers)
                await queue.put(None)
                await worker
            finally:
                for task in (*producers, worker):
                    if not task.done():
                        task.cancel()
        return results

    async def _commit(self, crawled: _CrawledBatch) -> CrawlResult:
        provider_id = crawled.batch.provider_id
        async with self._commit_lock:
            report = await self._committer(crawled.batch)
        await self._save_state(crawled.state)
        result = crawled.result
        result.ok = True
        result.report = report
        result.duration_seconds = time.perf_counter() - crawled.started
        get_metrics().observe_histogram(
            "orda_crawl_duration_seconds", result.duration_seconds, {"status": "success"}
        )
        logger.info(
            "orda.crawl.provider_completed",
            provider_id=provider_id,
            documents=result.documents,
            accepted=len(report.accepted),
            issues=len(report.issues),
            duration_ms=round(result.duration_seconds * 1000, 2),
        )
        return result

    async def _save_state(self, state: ProviderState) -> None:
        self._states[state.provider_id] = state
        if self._store is not None:
            await self._store.save_provider_state(state)

    def _previous_state(self, registration: ProviderRegistration) -> ProviderState:
        previous = self._states.get(registration.provider_id) or ProviderState(
            provider_id=registration.provider_id, base_url=registration.base_url
        )
        return previous.model_copy(update={"base_url": registration.base_url})

    async def _crawl(
        self, client: DiscoveryClient, registration: ProviderRegistration
    ) -> _CrawledBatch | CrawlResult:
        provider_id = registration.provider_id
        started = time.perf_counter()
        bind_context(provider_id=provider_id)
        now = datetime.now(timezone.utc)
        previous = self._previous_state(registration)

        async with self._provider_slots:
            logger.info("orda.crawl.provider_started", provider_id=provider_id)
            fetch_slots = asyncio.Semaphore(self.config.max_concurrent_fetches)
            try:
                config = await client.fetch_config(registration.base_url)
                issues: list[ValidationIssue] = []
                refs = self._accessible_documents(config, provider_id, issues)

                async def fetch(ref: DocumentReference) -> FetchedDocument:
                    url = config.resolve_url(ref.url)
                    async with fetch_slots:
                        return await client.fetch_document(url, previous.documents.get(url))

                fetched = await asyncio.gather(*(fetch(ref) for ref in refs))
            except FetchError as e:
                return await self._fail(registration, previous, now, e, started)

            documents, complete = self._parse(fetched, provider_id, issues)
            stats = await self._fetch_definitions(
                client, config, documents, previous, fetch_slots, issues
            )

        state = previous.record_success(
            now,
            documents={
                doc.url: DocumentCacheEntry(
                    etag=doc.etag, body=doc.body.decode("utf-8", errors="replace"), fetched_at=now
                )
                for doc in fetched
            },
            resource_last_updates=stats.last_updates,
        )
        result = CrawlResult(
            provider_id=provider_id,
            documents=len(documents),
            definitions_fetched=stats.fetched,
            definitions_skipped=stats.skipped,
        )
        batch = Batch(
            provider_id=provider_id,
            documents=documents,
            crawled_at=now,
            complete=complete,
            issues=issues,
        )
        return _CrawledBatch(
            registration=registration, batch=batch, state=state, result=result, started=started
        )

    def _accessible_documents(
        self, config: WellKnownConfig, provider_id: str, issues: list[ValidationIssue]
    ) -> list[DocumentReference]:
        refs = []
        supported = self.config.supported_access_strategies
        for ref in config.documents:
            if select_access_strategy(ref.access_strategies, supported):
                refs.append(ref)
                continue
            issues.append(
                ValidationIssue.warning(
                    IssueCategory.FETCH,
                    sanitize_url(ref.url),
                    "No supported access strategy; document skipped",
                    provider_id=provider_id,
                )
            )
        return refs

    def _parse(
        self, fetched: list[FetchedDocument], provider_id: str, issues: list[ValidationIssue]
    ) -> tuple[list[OrdDocument], bool]:
        documents: list[OrdDocument] = []
        complete = not issues
        for doc in fetched:
            parsed = parse_document(doc.body, validator=self._validator)
            for issue in parsed.issues:
                issues.append(
                    issue.model_copy(
                        update={
                            "provider_id": provider_id,
                            "path": f"{sanitize_url(doc.url)}#{issue.path}".rstrip("#"),
                        }
                    )
                )
            if parsed.document is None:
                complete = False
                continue
            documents.append(parsed.document)
        return documents, complete

    async def _fetch_definitions(
        self,
        client: DiscoveryClient,
        config: WellKnownConfig,
        documents: list[OrdDocument],
        previous: ProviderState,
        fetch_slots: asyncio.Semaphore,
        issues: list[ValidationIssue],
    ) -> _DefinitionStats:
        stats = _DefinitionStats()
        supported = self.config.supported_access_strategies
        jobs: list[tuple[str, str]] = []
        for document in documents:
            for resource in (*document.api_resources, *document.event_resources):
                last_update = resource.lifecycle().last_update
                if last_update is not None:
                    stats.last_updates[resource.ord_id] = last_update.isoformat()
                if not self.config.fetch_resource_definitions:
                    continue
                definitions = resource.resource_definitions or []
                if not should_refetch_definitions(
                    previous.resource_last_updates.get(resource.ord_id), last_update
                ):
                    stats.skipped += len(definitions)
                    continue
                for definition in definitions:
                    if select_access_strategy(definition.access_strategies, supported):
                        jobs.append((resource.ord_id, config.resolve_url(definition.url)))
                        continue
                    issues.append(
                        ValidationIssue.warning(
                            IssueCategory.FETCH,
                            sanitize_url(definition.url),
                            "No supported access strategy; definition skipped",
                            ord_id=resource.ord_id,
                        )
                    )

        if stats.skipped:
            get_metrics().increment_counter("orda_definitions_skipped_total", value=stats.skipped)

        async def fetch(ord_id: str, url: str) -> None:
            async with fetch_slots:
                try:
                    body = await client.fetch_definition(url)
                except FetchError as e:
                    # refetched on the next crawl
                    stats.last_updates.pop(ord_id, None)
                    issues.append(
                        ValidationIssue.warning(
                            IssueCategory.FETCH,
                            sanitize_url(url),
                            f"Resource definition fetch failed: {e.message}",
                            ord_id=ord_id,
                        )
                    )
                    return
            stats.fetched += 1
            if self._on_definition is not None:
                await self._on_definition(ord_id, url, body)

        await asyncio.gather(*(fetch(ord_id, url) for ord_id, url in jobs))
        return stats

    async def _fail(
        self,
        registration: ProviderRegistration,
        previous: ProviderState,
        now: datetime,
        error: FetchError,
        started: float,
    ) -> CrawlResult:
        provider_id = previous.provider_id
        duration = time.perf_counter() - started
        get_metrics().increment_counter("orda_provider_failures_total")
        get_metrics().observe_histogram(
            "orda_crawl_duration_seconds", duration, {"status": "failure"}
        )
        logger.warning(
            "orda.crawl.provider_failed",
            provider_id=provider_id,
            url=sanitize_url(error.url),
            error=error.reason,
            attempts=error.attempts,
        )
        if self._providers.get(provider_id) is registration:
            async with self._commit_lock:
                await self._on_stale(provider_id)
            await self._save_state(previous.record_failure(now, str(error)))
        return CrawlResult(provider_id=provider_id, error=str(error), duration_seconds=duration)


def crawl_summary(results: dict[str, CrawlResult]) -> dict[str, Any]:
    """Counts of succeeded, failed and cancelled crawls, for CLI output and logs."""
    return {
        "succeeded": sorted(p for p, r in results.items() if r.ok),
        "failed": sorted(p for p, r in results.items() if r.error),
        "cancelled": sorted(p for p, r in results.items() if r.cancelled),
    }
