"""Read-only query façade over the merged graph.

Every query runs against one immutable GraphSnapshot, so a reader never
observes a half-applied batch. Tombstoned entities are hidden unless
``include_removed`` is set. Staleness, conflicts and dangling references
are reported as flags on each entity rather than failing the read.
"""

from __future__ import annotations

import builtins
from collections.abc import Callable, Iterable
from typing import Any

from pydantic import Field

from orda.graph import GraphNode, GraphSnapshot
from orda.models.base import OrdBaseModel
from orda.models.enums import EntityKind, LifecycleState, PolicyLevel, Visibility
from orda.models.issues import ValidationIssue


class EntityView(OrdBaseModel):
    """One entity as returned to consumers.

    Attributes:
        attributes: Merged attributes as declared by providers
        effective: Attributes after package inheritance
        stale: Every contributing provider failed its last crawl
        conflicted: Contradicting input was rejected for this entity
        dangling: Optional references whose targets are not in the graph
    """

    ord_id: str
    kind: EntityKind
    state: LifecycleState
    attributes: dict[str, Any]
    effective: dict[str, Any]
    providers: list[str] = Field(default_factory=list)
    stale: bool = False
    conflicted: bool = False
    conflicts: dict[str, str] = Field(default_factory=dict)
    dangling: dict[str, list[str]] = Field(default_factory=dict)

    @property
    def removed(self) -> bool:
        return self.state == LifecycleState.REMOVED


class QueryFacade:
    """Queries over the current graph snapshot.

    ``source`` is either a fixed snapshot or a callable returning the
    current one (e.g. ``lambda: engine.snapshot``); each call reads one
    snapshot from start to finish.

    Example:
        >>> facade = QueryFacade(lambda: engine.snapshot)
        >>> [view.ord_id for view in facade.list(kind="apiResource", tags=["finance"])]
    """

    def __init__(self, source: GraphSnapshot | Callable[[], GraphSnapshot]) -> None:
        self._source = source

    @property
    def snapshot(self) -> GraphSnapshot:
        if isinstance(self._source, GraphSnapshot):
            return self._source
        return self._source()

    def get(self, ord_id: str, include_removed: bool = False) -> EntityView | None:
        snapshot = self.snapshot
        node = snapshot.get(ord_id)
        if node is None or (node.is_removed and not include_removed):
            return None
        return _view(snapshot, node)

    def list(
        self,
        kind: EntityKind | str | None = None,
        visibility: Visibility | str | None = None,
        tags: Iterable[str] | None = None,
        policy_level: PolicyLevel | str | None = None,
        include_removed: bool = False,
    ) -> builtins.list[EntityView]:
        """List entities matching every given filter, ordered by ORD ID.

        Filters apply to effective (post-inheritance) values; ``tags`` matches
        entities carrying all of the given tags.
        """
        snapshot = self.snapshot
        wanted_kind = EntityKind(kind) if kind is not None else None
        wanted_visibility = _value(visibility)
        wanted_policy = _value(policy_level)
        wanted_tags = set(tags or ())

        views = []
        for ord_id in sorted(snapshot.nodes):
            node = snapshot.nodes[ord_id]
            if node.is_removed and not include_removed:
                continue
            if wanted_kind is not None and node.kind != wanted_kind:
                continue
            effective = node.effective or node.attributes
            if wanted_visibility is not None and effective.get("visibility") != wanted_visibility:
                continue
            if wanted_policy is not None and effective.get("policyLevel") != wanted_policy:
                continue
            if wanted_tags and not wanted_tags <= set(effective.get("tags") or ()):
                continue
            views.append(_view(snapshot, node))
        return views

    def effective_attributes(
        self, ord_id: str, include_removed: bool = False
    ) -> dict[str, Any] | None:
        view = self.get(ord_id, include_removed=include_removed)
        return view.effective if view is not None else None

    def issues(self, ord_id: str | None = None) -> builtins.list[ValidationIssue]:
        """Issues recorded for one entity, or for all entities when ``ord_id`` is None."""
        snapshot = self.snapshot
        if ord_id is not None:
            return list(snapshot.issues.get(ord_id, ()))
        return [issue for key in sorted(snapshot.issues) for issue in snapshot.issues[key]]

    def pending(self) -> dict[str, dict[str, str]]:
        """Parked entities and the mandatory references they are waiting for."""
        return {ord_id: dict(p.missing) for ord_id, p in sorted(self.snapshot.pending.items())}

    def stats(self) -> dict[str, Any]:
        snapshot = self.snapshot
        by_kind: dict[str, int] = {}
        for node in snapshot.active_nodes():
            by_kind[node.kind.value] = by_kind.get(node.kind.value, 0) + 1
        return {
            "revision": snapshot.revision,
            "entities": sum(by_kind.values()),
            "by_kind": dict(sorted(by_kind.items())),
            "removed": sum(1 for node in snapshot.nodes.values() if node.is_removed),
            "pending": len(snapshot.pending),
            "tombstones": len(snapshot.tombstones),
            "stale_providers": sorted(snapshot.stale_providers),
        }


def _value(value: Any) -> str | None:
    if value is None:
        return None
    return value.value if hasattr(value, "value") else str(value)


def _view(snapshot: GraphSnapshot, node: GraphNode) -> EntityView:
    return EntityView(
        ord_id=node.ord_id,
        kind=node.kind,
        state=node.state,
        attributes=dict(node.attributes),
        effective=dict(node.effective or node.attributes),
        providers=list(node.providers),
        stale=snapshot.is_stale(node),
        conflicted=node.is_conflicted,
        conflicts=dict(node.conflicts),
        dangling={k: list(v) for k, v in node.dangling.items()},
    )
