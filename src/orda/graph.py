"""Unified metadata graph records.

The graph is an index ``ordId -> GraphNode`` plus edge lists stored as
ORD ID strings inside node attributes; references are resolved by lookup,
never by object pointers, so reference cycles never become structural
cycles.

Readers only ever see a ``GraphSnapshot``. The merge engine builds the
next snapshot on a ``WorkingGraph`` copy and swaps it in once the whole
batch has been applied.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import Field

from orda.models.base import OrdBaseModel
from orda.models.enums import EntityKind, LifecycleState
from orda.models.issues import ValidationIssue
from orda.models.ordid import OrdId


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ORD date-time (``2024-01-01T00:00:00Z``) into an aware datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class RecencyStamp(OrdBaseModel):
    """When and by whom a field value was written.

    Ordering is ``(at, provider_id)``: later writes win, and the provider id
    breaks exact timestamp ties deterministically.
    """

    at: datetime
    provider_id: str

    def key(self) -> tuple[datetime, str]:
        return (self.at, self.provider_id)


class Fragment(OrdBaseModel):
    """One entity description extracted from a provider document."""

    kind: EntityKind
    ord_id: str
    attributes: dict[str, Any]
    provider_id: str
    stamp: RecencyStamp
    document_policy: dict[str, str] = Field(default_factory=dict)
    path: str = ""


class GraphNode(OrdBaseModel):
    """Merged state of one logical entity.

    Attributes:
        attributes: Merged camelCase attributes as declared by providers
        providers: Providers that contributed to this entity
        withdrawn: Providers that stopped describing it without a tombstone
        field_stamps: Recency of each scalar field's current value
        state: Lifecycle state; REMOVED while a tombstone suppresses it
        conflicts: Provider -> reason for rejected contradicting input
        dangling: Reference field -> optional targets not (yet) in the graph
        effective: Attributes after package inheritance
        document_policy: Policy fields of the describing document
    """

    ord_id: str
    kind: EntityKind
    attributes: dict[str, Any]
    providers: tuple[str, ...] = ()
    withdrawn: tuple[str, ...] = ()
    field_stamps: dict[str, RecencyStamp] = Field(default_factory=dict)
    state: LifecycleState = LifecycleState.ACTIVE
    conflicts: dict[str, str] = Field(default_factory=dict)
    dangling: dict[str, list[str]] = Field(default_factory=dict)
    effective: dict[str, Any] = Field(default_factory=dict)
    document_policy: dict[str, str] = Field(default_factory=dict)

    @property
    def is_removed(self) -> bool:
        return self.state == LifecycleState.REMOVED

    @property
    def describers(self) -> tuple[str, ...]:
        """Contributors that still describe the entity."""
        return tuple(p for p in self.providers if p not in self.withdrawn)

    @property
    def is_conflicted(self) -> bool:
        return bool(self.conflicts)

    @property
    def last_update(self) -> datetime | None:
        return parse_timestamp(self.attributes.get("lastUpdate"))

    @property
    def package_id(self) -> str | None:
        return self.attributes.get("partOfPackage")


class TombstoneRecord(OrdBaseModel):
    """A retained removal marker.

    ``cancelled`` is set when a later redescription republished the entity;
    the record is kept so re-sending the same tombstone does not suppress
    it again.
    """

    ord_id: str
    removal_date: datetime
    description: str | None = None
    provider_id: str
    purge_after: datetime
    cancelled: bool = False


class PendingEntity(OrdBaseModel):
    """An entity parked until its mandatory references resolve."""

    fragment: Fragment
    missing: dict[str, str]
    parked_at: datetime


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


@dataclass(frozen=True)
class GraphSnapshot:
    """Immutable view of the merged graph at one revision."""

    nodes: Mapping[str, GraphNode] = field(default_factory=dict)
    tombstones: Mapping[str, TombstoneRecord] = field(default_factory=dict)
    pending: Mapping[str, PendingEntity] = field(default_factory=dict)
    issues: Mapping[str, tuple[ValidationIssue, ...]] = field(default_factory=dict)
    stale_providers: frozenset[str] = frozenset()
    revision: int = 0

    def get(self, ord_id: str) -> GraphNode | None:
        return self.nodes.get(ord_id)

    def __contains__(self, ord_id: object) -> bool:
        return ord_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def active_nodes(self) -> Iterator[GraphNode]:
        return (node for node in self.nodes.values() if not node.is_removed)

    def vendor_owner(self, vendor_namespace: str) -> str | None:
        """ORD ID of the active Vendor owning a vendor namespace, if any."""
        return _vendor_owner(self.nodes, vendor_namespace)

    def is_stale(self, node: GraphNode) -> bool:
        """An entity is stale when every provider still describing it is stale.

        An entity no provider describes any more falls back to all contributors.
        """
        describers = node.describers or node.providers
        return bool(describers) and all(p in self.stale_providers for p in describers)

    def fingerprint(self) -> str:
        """Structural hash of the graph content (revision and issues excluded)."""
        payload = {
            "nodes": {k: v.model_dump(mode="json") for k, v in sorted(self.nodes.items())},
            "tombstones": {
                k: v.model_dump(mode="json") for k, v in sorted(self.tombstones.items())
            },
            "pending": {k: v.model_dump(mode="json") for k, v in sorted(self.pending.items())},
            "stale": sorted(self.stale_providers),
        }
        return hashlib.sha256(_canonical(payload).encode("utf-8")).hexdigest()


def _vendor_owner(nodes: Mapping[str, GraphNode], vendor_namespace: str) -> str | None:
    for node in nodes.values():
        if (
            node.kind == EntityKind.VENDOR
            and not node.is_removed
            and OrdId.parse(node.ord_id).vendor_namespace == vendor_namespace
        ):
            return node.ord_id
    return None


@dataclass
class WorkingGraph:
    """Mutable copy of a snapshot used while one batch is applied."""

    nodes: dict[str, GraphNode]
    tombstones: dict[str, TombstoneRecord]
    pending: dict[str, PendingEntity]
    issues: dict[str, tuple[ValidationIssue, ...]]
    stale_providers: set[str]

    @classmethod
    def from_snapshot(cls, snapshot: GraphSnapshot) -> WorkingGraph:
        return cls(
            nodes=dict(snapshot.nodes),
            tombstones=dict(snapshot.tombstones),
            pending=dict(snapshot.pending),
            issues=dict(snapshot.issues),
            stale_providers=set(snapshot.stale_providers),
        )

    def freeze(self, revision: int) -> GraphSnapshot:
        return GraphSnapshot(
            nodes=dict(self.nodes),
            tombstones=dict(self.tombstones),
            pending=dict(self.pending),
            issues=dict(self.issues),
            stale_providers=frozenset(self.stale_providers),
            revision=revision,
        )

    def active_ids(self) -> set[str]:
        return {ord_id for ord_id, node in self.nodes.items() if not node.is_removed}

    def vendor_owner(self, vendor_namespace: str) -> str | None:
        return _vendor_owner(self.nodes, vendor_namespace)

    def children_of(self, package_id: str) -> list[str]:
        return [
            ord_id for ord_id, node in self.nodes.items() if node.package_id == package_id
        ]

    def contributed_by(self, provider_id: str) -> set[str]:
        return {
            ord_id
            for ord_id, node in self.nodes.items()
            if provider_id in node.describers and not node.is_removed
        }

    def update_node(self, ord_id: str, **changes: Any) -> GraphNode:
        node = self.nodes[ord_id].model_copy(update=changes)
        self.nodes[ord_id] = node
        return node
