"""Tombstone processing.

A tombstone suppresses its target from the default query view as of its
``removalDate``. The suppressed entity is retained for the grace window
(``removalDate`` + 31 days) and only then becomes eligible for purge.

Republish wins: when a later description of a tombstoned entity arrives
(its ``lastUpdate``, or crawl time, is after the ``removalDate``), the
tombstone is cancelled and the entity is active again. Re-sending a
tombstone that was already cancelled does not suppress the entity again.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from orda.graph import RecencyStamp, TombstoneRecord, WorkingGraph
from orda.lifecycle import state_of, transition
from orda.models.constants import TOMBSTONE_GRACE_DAYS
from orda.models.entities import Tombstone
from orda.models.enums import EntityKind, IssueCategory, LifecycleState
from orda.models.issues import ValidationIssue
from orda.observability.logging import get_logger
from orda.observability.metrics import get_metrics

logger = get_logger(__name__)


def apply(
    graph: WorkingGraph,
    tombstone: Tombstone,
    provider_id: str,
    grace_days: int = TOMBSTONE_GRACE_DAYS,
) -> tuple[bool, list[str], list[ValidationIssue]]:
    """Apply one tombstone to the working graph.

    Returns:
        ``(applied, edited, issues)``; ``applied`` is False when the tombstone
        was already in effect or was cancelled by a republish, ``edited``
        lists entities whose bundle edges were dropped.
    """
    ord_id = tombstone.ord_id
    removal = tombstone.removal_date
    existing = graph.tombstones.get(ord_id)
    if existing is not None and existing.removal_date == removal:
        return False, [], []

    graph.tombstones[ord_id] = TombstoneRecord(
        ord_id=ord_id,
        removal_date=removal,
        description=tombstone.description,
        provider_id=provider_id,
        purge_after=removal + timedelta(days=grace_days),
    )
    graph.pending.pop(ord_id, None)

    issues: list[ValidationIssue] = []
    edited: list[str] = []
    node = graph.nodes.get(ord_id)
    if node is None:
        issues.append(
            ValidationIssue.info(
                IssueCategory.LIFECYCLE,
                "tombstones",
                "Tombstone recorded for an entity that is not in the graph",
                ord_id=ord_id,
                provider_id=provider_id,
            )
        )
    else:
        graph.update_node(
            ord_id, state=transition(node.state, LifecycleState.REMOVED, via_tombstone=True)
        )
        if node.kind == EntityKind.CONSUMPTION_BUNDLE:
            edited = remove_bundle_edges(graph, ord_id)

    get_metrics().increment_counter("orda_tombstones_applied_total")
    logger.info(
        "orda.tombstone.applied",
        ord_id=ord_id,
        provider_id=provider_id,
        removal_date=removal.isoformat(),
    )
    return True, edited, issues


def remove_bundle_edges(graph: WorkingGraph, bundle_id: str) -> list[str]:
    """Drop every ``partOfConsumptionBundles`` edge pointing at a removed bundle."""
    touched = []
    for ord_id, node in list(graph.nodes.items()):
        refs = node.attributes.get("partOfConsumptionBundles") or []
        kept = [ref for ref in refs if ref.get("ordId") != bundle_id]
        default = node.attributes.get("defaultConsumptionBundle")
        if len(kept) == len(refs) and default != bundle_id:
            continue
        attributes = dict(node.attributes)
        if kept:
            attributes["partOfConsumptionBundles"] = kept
        else:
            attributes.pop("partOfConsumptionBundles", None)
        if default == bundle_id:
            attributes.pop("defaultConsumptionBundle", None)
        graph.update_node(ord_id, attributes=attributes)
        touched.append(ord_id)
    return touched


def supersedes(record: TombstoneRecord, stamp: RecencyStamp) -> bool:
    """True when a description is newer than the tombstone and republishes the entity."""
    return stamp.at > record.removal_date


def reinstate(graph: WorkingGraph, ord_id: str) -> TombstoneRecord | None:
    """Cancel the tombstone of a republished entity and make it active again."""
    record = graph.tombstones.get(ord_id)
    if record is None or record.cancelled:
        return None
    cancelled = record.model_copy(update={"cancelled": True})
    graph.tombstones[ord_id] = cancelled
    node = graph.nodes.get(ord_id)
    if node is not None and node.is_removed:
        graph.update_node(ord_id, state=transition(node.state, state_of(node.attributes)))
    logger.info("orda.tombstone.reinstated", ord_id=ord_id)
    return cancelled


def purge_eligible(tombstones: dict[str, TombstoneRecord], now: datetime) -> list[str]:
    """ORD IDs whose tombstone grace window has elapsed."""
    return sorted(ord_id for ord_id, record in tombstones.items() if record.purge_after <= now)


def purge(graph: WorkingGraph, now: datetime) -> list[str]:
    """Physically delete suppressed entities past their grace window.

    Cancelled records past the window are dropped without touching the
    (reinstated) entity.

    Returns:
        ORD IDs of the purged entities.
    """
    purged = []
    for ord_id in purge_eligible(graph.tombstones, now):
        record = graph.tombstones.pop(ord_id)
        if record.cancelled:
            continue
        node = graph.nodes.get(ord_id)
        if node is not None and node.is_removed:
            del graph.nodes[ord_id]
            graph.issues.pop(ord_id, None)
            purged.append(ord_id)
    if purged:
        get_metrics().increment_counter("orda_entities_purged_total", value=len(purged))
        logger.info("orda.tombstone.purged", count=len(purged))
    return purged
