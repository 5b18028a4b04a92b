"""Merge engine: the single writer of the unified graph.

Each provider batch is applied atomically. The engine copies the current
snapshot into a WorkingGraph, runs resolution, merging, tombstones and
lifecycle checks on the copy, and swaps the new snapshot in under a
writer lock. Readers keep whatever snapshot they hold; they never observe
a half-applied batch.

Field policies:

=====================  =====================================================
identity               ``ordId`` and entity kind must match; a kind mismatch
                       is a consistency conflict and the old state is kept
scalar                 last writer wins per field, ordered by ``lastUpdate``
                       (else crawl time), then provider id
union list             ordered, de-duplicated union
label map              key-wise union of value lists
edge list              union keyed by target ORD ID; never dropped unless a
                       tombstone removes the target
=====================  =====================================================

Re-merging the same batch yields a structurally equal graph.
"""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from orda import lifecycle, resolver, tombstones
from orda.errors import ConsistencyError
from orda.graph import (
    Fragment,
    GraphNode,
    GraphSnapshot,
    RecencyStamp,
    WorkingGraph,
)
from orda.inheritance import effective_attributes, package_effective_attributes
from orda.models.constants import TOMBSTONE_GRACE_DAYS
from orda.models.document import OrdDocument, collection_attribute
from orda.models.entities import DOCUMENT_COLLECTIONS, Tombstone
from orda.models.enums import EntityKind, IssueCategory
from orda.models.issues import ValidationIssue
from orda.models.labels import merge_labels, union_values
from orda.models.ordid import OrdId
from orda.observability.logging import get_logger
from orda.observability.metrics import get_metrics

logger = get_logger(__name__)

IDENTITY_FIELDS = frozenset({"ordId"})

UNION_FIELDS = frozenset(
    {
        "tags",
        "countries",
        "lineOfBusiness",
        "industry",
        "successors",
        "partOfProducts",
        "correlationIds",
        "entryPoints",
        "relatedEntityTypes",
        "relatedIntegrationDependencies",
        "partners",
    }
)

LABEL_FIELDS = frozenset({"labels", "documentationLabels"})


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


KEYED_UNION_FIELDS: dict[str, Callable[[Any], str]] = {
    "partOfConsumptionBundles": lambda item: item["ordId"],
    "changelogEntries": lambda item: f"{item['version']}@{item['date']}",
    "entityTypeMappings": _canonical,
}
"""Edge lists merged as a union keyed by the given function."""


def _wins(incoming: RecencyStamp, current: RecencyStamp | None) -> bool:
    # equal stamps: the incoming value wins
    return current is None or incoming.key() >= current.key()


def _newer(a: RecencyStamp, b: RecencyStamp | None) -> RecencyStamp:
    return a if b is None or a.key() >= b.key() else b


def _keyed_union(
    current: list[Any], incoming: list[Any], key: Callable[[Any], str], incoming_wins: bool
) -> list[Any]:
    merged = list(current)
    index = {key(item): i for i, item in enumerate(merged)}
    for item in incoming:
        k = key(item)
        if k not in index:
            index[k] = len(merged)
            merged.append(item)
        elif incoming_wins:
            merged[index[k]] = item
    return merged


def merge_attributes(
    current: Mapping[str, Any],
    stamps: Mapping[str, RecencyStamp],
    incoming: Mapping[str, Any],
    stamp: RecencyStamp,
) -> tuple[dict[str, Any], dict[str, RecencyStamp]]:
    """Merge one redescription into an entity's attributes.

    Fields absent from ``incoming`` are retained.

    Returns:
        The merged attributes and the updated per-field recency stamps.
    """
    merged = dict(current)
    merged_stamps = dict(stamps)
    for name, value in incoming.items():
        if name in IDENTITY_FIELDS:
            merged[name] = value
            continue
        previous = merged_stamps.get(name)
        if name not in merged:
            merged[name] = value
        elif name in UNION_FIELDS:
            merged[name] = union_values(merged[name], value)
        elif name in LABEL_FIELDS:
            merged[name] = merge_labels(merged[name], value)
        elif name in KEYED_UNION_FIELDS:
            merged[name] = _keyed_union(
                merged[name], value, KEYED_UNION_FIELDS[name], _wins(stamp, previous)
            )
        elif _wins(stamp, previous):
            merged[name] = value
        else:
            continue
        merged_stamps[name] = _newer(stamp, previous)
    return merged, merged_stamps


@dataclass
class Batch:
    """All documents of one provider crawl, committed as one unit.

    Attributes:
        provider_id: The contributing provider
        documents: Parsed documents (invalid fragments already removed)
        crawled_at: Crawl timestamp, used when an entity has no ``lastUpdate``
        complete: True when the batch is the provider's full document set;
            enables detection of entities that vanished without a tombstone
        issues: Parse issues carried into the commit report
    """

    provider_id: str
    documents: list[OrdDocument]
    crawled_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    complete: bool = True
    issues: list[ValidationIssue] = field(default_factory=list)


@dataclass
class CommitReport:
    """What one commit did to the graph."""

    provider_id: str
    revision: int
    accepted: list[str] = field(default_factory=list)
    parked: list[str] = field(default_factory=list)
    resolved_pending: list[str] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)
    tombstoned: list[str] = field(default_factory=list)
    reinstated: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    issues: list[ValidationIssue] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def errors(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.is_error]

    def issues_for(self, ord_id: str) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.ord_id == ord_id]


def extract_fragments(batch: Batch) -> tuple[list[Fragment], list[Tombstone]]:
    """Flatten a batch into entity fragments (dependency order) and tombstones."""
    fragments: list[Fragment] = []
    removals: list[Tombstone] = []
    for doc_index, document in enumerate(batch.documents):
        policy = document.policy_attributes()
        for key in DOCUMENT_COLLECTIONS:
            for i, entity in enumerate(getattr(document, collection_attribute(key))):
                last_update = entity.lifecycle().last_update
                fragments.append(
                    Fragment(
                        kind=entity.kind,
                        ord_id=entity.ord_id,
                        attributes=entity.to_wire(),
                        provider_id=batch.provider_id,
                        stamp=RecencyStamp(
                            at=last_update or batch.crawled_at, provider_id=batch.provider_id
                        ),
                        document_policy=policy,
                        path=f"documents[{doc_index}].{key}[{i}]",
                    )
                )
        removals.extend(document.tombstones)
    return fragments, removals


class MergeEngine:
    """Owns the unified graph and applies provider batches to it.

    Example:
        >>> engine = MergeEngine()
        >>> report = engine.commit(Batch(provider_id="s4", documents=[doc]))
        >>> engine.snapshot.get("sap.s4:package:core:v1").state
        <LifecycleState.ACTIVE: 'active'>
    """

    def __init__(
        self,
        snapshot: GraphSnapshot | None = None,
        tombstone_grace_days: int = TOMBSTONE_GRACE_DAYS,
    ) -> None:
        self._snapshot = snapshot or GraphSnapshot()
        self._grace_days = tombstone_grace_days
        self._lock = threading.Lock()

    @property
    def snapshot(self) -> GraphSnapshot:
        """Current immutable snapshot; safe to hold across commits."""
        return self._snapshot

    def restore(self, snapshot: GraphSnapshot) -> None:
        """Replace the graph with a persisted snapshot."""
        with self._lock:
            self._snapshot = snapshot

    def commit(self, batch: Batch) -> CommitReport:
        """Apply one provider batch atomically."""
        start = time.perf_counter()
        with self._lock:
            base = self._snapshot
            work = WorkingGraph.from_snapshot(base)
            report = CommitReport(provider_id=batch.provider_id, revision=base.revision + 1)
            report.issues.extend(batch.issues)
            provider = batch.provider_id

            previously_contributed = work.contributed_by(provider)
            self._clear_provider_conflicts(work, provider)

            fragments, removals = extract_fragments(batch)
            for fragment in fragments:
                report.issues.extend(
                    issue.model_copy(update={"provider_id": provider})
                    for issue in lifecycle.check_entity(
                        fragment.ord_id, fragment.attributes, fragment.path
                    )
                )

            removed_now = {t.ord_id for t in removals}
            candidates = self._filter_suppressed(work, fragments, removed_now, report)

            resolution = resolver.resolve(
                candidates, work.pending, work.nodes, now=batch.crawled_at, excluded=removed_now
            )
            report.issues.extend(resolution.issues)
            for ord_id in resolution.resolved_pending:
                work.pending.pop(ord_id, None)
            for fragment in resolution.accepted:
                work.pending.pop(fragment.ord_id, None)
            work.pending.update(resolution.parked)
            report.parked = sorted(resolution.parked)
            report.resolved_pending = sorted(resolution.resolved_pending)

            touched: set[str] = set()
            for fragment in resolution.accepted:
                if self._merge_fragment(
                    work, fragment, resolution.dangling.get(fragment.ord_id, {}), report
                ):
                    touched.add(fragment.ord_id)
                    report.accepted.append(fragment.ord_id)

            for removal in removals:
                applied, edited, removal_issues = tombstones.apply(
                    work, removal, provider, grace_days=self._grace_days
                )
                report.issues.extend(removal_issues)
                if applied:
                    report.tombstoned.append(removal.ord_id)
                    touched.add(removal.ord_id)
                    touched.update(edited)
                    if removal.ord_id in work.nodes:
                        touched.update(work.children_of(removal.ord_id))

            paths = {f.ord_id: f.path for f in resolution.accepted}
            for ord_id in sorted(paths.keys() & touched):
                report.issues.extend(
                    issue.model_copy(update={"provider_id": provider})
                    for issue in lifecycle.check_successors(
                        work.nodes[ord_id], work.nodes, paths[ord_id]
                    )
                )

            if batch.complete:
                disappeared = lifecycle.check_disappeared(
                    provider,
                    previously_contributed,
                    {f.ord_id for f in fragments},
                    removed_now | set(work.pending),
                )
                report.issues.extend(disappeared)
                for issue in disappeared:
                    node = work.nodes[issue.ord_id or ""]
                    work.update_node(node.ord_id, withdrawn=(*node.withdrawn, provider))

            described = {f.ord_id for f in fragments}
            report.rejected = sorted(
                described - set(report.accepted) - set(work.pending) - removed_now
            )

            self._refresh_dangling(work)
            self._refresh_effective(work, touched)
            self._index_issues(work, report, described | removed_now)
            work.stale_providers.discard(provider)

            self._snapshot = work.freeze(report.revision)

        report.duration_seconds = time.perf_counter() - start
        metrics = get_metrics()
        metrics.increment_counter("orda_batches_committed_total")
        metrics.observe_histogram("orda_commit_duration_seconds", report.duration_seconds)
        logger.info(
            "orda.merge.batch_committed",
            provider_id=provider,
            revision=report.revision,
            accepted=len(report.accepted),
            parked=len(report.parked),
            rejected=len(report.rejected),
            tombstoned=len(report.tombstoned),
            issues=len(report.issues),
        )
        return report

    def mark_provider_stale(self, provider_id: str) -> None:
        """Flag a provider's contributions as stale; nothing is deleted."""
        with self._lock:
            base = self._snapshot
            if provider_id in base.stale_providers:
                return
            work = WorkingGraph.from_snapshot(base)
            work.stale_providers.add(provider_id)
            self._snapshot = work.freeze(base.revision + 1)
        logger.warning("orda.merge.provider_stale", provider_id=provider_id)

    def purge(self, now: datetime | None = None) -> list[str]:
        """Delete tombstoned entities whose grace window has elapsed."""
        now = now or datetime.now(timezone.utc)
        with self._lock:
            base = self._snapshot
            work = WorkingGraph.from_snapshot(base)
            purged = tombstones.purge(work, now)
            if purged or len(work.tombstones) != len(base.tombstones):
                self._snapshot = work.freeze(base.revision + 1)
        return purged

    @staticmethod
    def _clear_provider_conflicts(work: WorkingGraph, provider_id: str) -> None:
        for ord_id, node in list(work.nodes.items()):
            if provider_id in node.conflicts:
                conflicts = {p: r for p, r in node.conflicts.items() if p != provider_id}
                work.update_node(ord_id, conflicts=conflicts)

    @staticmethod
    def _filter_suppressed(
        work: WorkingGraph,
        fragments: Iterable[Fragment],
        removed_now: set[str],
        report: CommitReport,
    ) -> list[Fragment]:
        kept = []
        for fragment in fragments:
            if fragment.ord_id in removed_now:
                report.issues.append(
                    ValidationIssue.warning(
                        IssueCategory.LIFECYCLE,
                        fragment.path,
                        "Entity is described and tombstoned in the same batch; the tombstone wins",
                        ord_id=fragment.ord_id,
                        provider_id=fragment.provider_id,
                    )
                )
                continue
            record = work.tombstones.get(fragment.ord_id)
            if (
                record is not None
                and not record.cancelled
                and not tombstones.supersedes(record, fragment.stamp)
            ):
                report.issues.append(
                    ValidationIssue.warning(
                        IssueCategory.LIFECYCLE,
                        fragment.path,
                        "Description predates the entity's tombstone and is ignored",
                        ord_id=fragment.ord_id,
                        provider_id=fragment.provider_id,
                    )
                )
                continue
            kept.append(fragment)
        return kept

    def _conflict(
        self,
        work: WorkingGraph,
        fragment: Fragment,
        flagged: str,
        error: ConsistencyError,
        report: CommitReport,
    ) -> None:
        node = work.nodes[flagged]
        work.update_node(flagged, conflicts={**node.conflicts, fragment.provider_id: error.reason})
        report.conflicts.append(fragment.ord_id)
        report.issues.append(
            ValidationIssue.error(
                IssueCategory.CONSISTENCY,
                fragment.path,
                error.message,
                ord_id=fragment.ord_id,
                provider_id=fragment.provider_id,
            )
        )
        get_metrics().increment_counter("orda_conflicts_total")
        logger.warning("orda.merge.conflict", **error.to_dict())

    def _merge_fragment(
        self,
        work: WorkingGraph,
        fragment: Fragment,
        dangling: dict[str, list[str]],
        report: CommitReport,
    ) -> bool:
        ord_id = fragment.ord_id
        existing = work.nodes.get(ord_id)

        if existing is not None and existing.kind != fragment.kind:
            error = ConsistencyError(
                ord_id,
                f"described as {fragment.kind.value} but known as {existing.kind.value}",
            )
            self._conflict(work, fragment, ord_id, error, report)
            return False

        if fragment.kind == EntityKind.VENDOR:
            namespace = OrdId.parse(ord_id).vendor_namespace
            owner = work.vendor_owner(namespace)
            if owner is not None and owner != ord_id:
                error = ConsistencyError(
                    ord_id, f"vendor namespace '{namespace}' is already owned by {owner}"
                )
                self._conflict(work, fragment, owner, error, report)
                return False

        if existing is None:
            work.nodes[ord_id] = GraphNode(
                ord_id=ord_id,
                kind=fragment.kind,
                attributes=dict(fragment.attributes),
                providers=(fragment.provider_id,),
                field_stamps={name: fragment.stamp for name in fragment.attributes},
                state=lifecycle.state_of(fragment.attributes),
                dangling=dangling,
                document_policy=fragment.document_policy,
            )
            return True

        if not existing.is_removed:
            report.issues.extend(
                issue.model_copy(update={"provider_id": fragment.provider_id})
                for issue in lifecycle.check_transition(
                    existing, fragment.attributes, fragment.path
                )
            )
        attributes, stamps = merge_attributes(
            existing.attributes, existing.field_stamps, fragment.attributes, fragment.stamp
        )
        changes: dict[str, Any] = {
            "attributes": attributes,
            "field_stamps": stamps,
            "providers": tuple(sorted({*existing.providers, fragment.provider_id})),
            "withdrawn": tuple(p for p in existing.withdrawn if p != fragment.provider_id),
            "dangling": dangling,
            "document_policy": fragment.document_policy or existing.document_policy,
        }
        if not existing.is_removed:
            changes["state"] = lifecycle.transition(existing.state, lifecycle.state_of(attributes))
        work.update_node(ord_id, **changes)

        if existing.is_removed and tombstones.reinstate(work, ord_id) is not None:
            report.reinstated.append(ord_id)
            report.issues.append(
                ValidationIssue.info(
                    IssueCategory.LIFECYCLE,
                    fragment.path,
                    "Tombstoned entity was republished and is active again",
                    ord_id=ord_id,
                    provider_id=fragment.provider_id,
                )
            )
        return True

    @staticmethod
    def _refresh_dangling(work: WorkingGraph) -> None:
        known = work.active_ids()
        for ord_id, node in list(work.nodes.items()):
            dangling = resolver.dangling_references(node.kind, node.attributes, known)
            if dangling != node.dangling:
                work.update_node(ord_id, dangling=dangling)

    @staticmethod
    def _refresh_effective(work: WorkingGraph, touched: set[str]) -> None:
        targets = set(touched)
        for ord_id in touched:
            node = work.nodes.get(ord_id)
            if node is not None and node.kind == EntityKind.PACKAGE:
                targets.update(work.children_of(ord_id))
        for ord_id in sorted(targets):
            node = work.nodes.get(ord_id)
            if node is None:
                continue
            if node.kind.is_resource():
                package = work.nodes.get(node.package_id or "")
                effective = effective_attributes(
                    node.attributes,
                    package.attributes if package is not None else None,
                    node.document_policy,
                )
            elif node.kind == EntityKind.PACKAGE:
                effective = package_effective_attributes(node.attributes, node.document_policy)
            else:
                effective = dict(node.attributes)
            if effective != node.effective:
                work.update_node(ord_id, effective=effective)

    @staticmethod
    def _index_issues(work: WorkingGraph, report: CommitReport, described: set[str]) -> None:
        grouped: dict[str, list[ValidationIssue]] = {}
        for issue in report.issues:
            if issue.ord_id:
                grouped.setdefault(issue.ord_id, []).append(issue)
        for ord_id in described | set(report.resolved_pending):
            work.issues.pop(ord_id, None)
        for ord_id, issues in grouped.items():
            work.issues[ord_id] = tuple(issues)
