"""Cross-document reference resolution.

References are ORD ID strings inside entity attributes. Resolution runs
in two passes over a batch:

1. register: every ORD ID of the incoming fragments (and of entities
   parked by earlier commits) joins the set of candidate targets, so
   forward references inside one batch resolve without a prior merge;
2. resolve: each fragment's references are checked against the active
   graph plus the candidates.

A fragment whose mandatory reference (``partOfPackage``, ``vendor``) is
missing is parked and retried on every later commit. Because parking one
fragment can invalidate another that pointed at it, pass 2 repeats until
the candidate set no longer shrinks. Missing optional references are kept
on the node as dangling and re-evaluated on each commit.

Correlation IDs are opaque and never resolved.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Set
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from orda.errors import ReferenceResolutionError
from orda.graph import Fragment, GraphNode, PendingEntity
from orda.models.enums import EntityKind, IssueCategory
from orda.models.issues import ValidationIssue
from orda.models.ordid import kind_of
from orda.observability.logging import get_logger

logger = get_logger(__name__)

_RESOURCES = EntityKind.resources()


@dataclass(frozen=True)
class Reference:
    """One outgoing edge of an entity."""

    field: str
    target: str
    expected: EntityKind | None
    mandatory: bool = False


def _ids(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [v for v in value if isinstance(v, str)]
    return []


def _nested(items: Any, key: str) -> list[str]:
    if not isinstance(items, list):
        return []
    return [
        item[key] for item in items if isinstance(item, dict) and isinstance(item.get(key), str)
    ]


def iter_references(kind: EntityKind, attributes: Mapping[str, Any]) -> Iterator[Reference]:
    """Yield every ORD ID reference declared by an entity."""
    if kind in _RESOURCES:
        for target in _ids(attributes.get("partOfPackage")):
            yield Reference("partOfPackage", target, EntityKind.PACKAGE, mandatory=True)
    if kind in (EntityKind.PACKAGE, EntityKind.PRODUCT):
        for target in _ids(attributes.get("vendor")):
            yield Reference("vendor", target, EntityKind.VENDOR, mandatory=True)

    for target in _ids(attributes.get("partOfProducts")):
        yield Reference("partOfProducts", target, EntityKind.PRODUCT)
    for target in _nested(attributes.get("partOfConsumptionBundles"), "ordId"):
        yield Reference("partOfConsumptionBundles", target, EntityKind.CONSUMPTION_BUNDLE)
    for target in _ids(attributes.get("defaultConsumptionBundle")):
        yield Reference("defaultConsumptionBundle", target, EntityKind.CONSUMPTION_BUNDLE)
    if kind == EntityKind.PRODUCT:
        for target in _ids(attributes.get("parent")):
            yield Reference("parent", target, EntityKind.PRODUCT)
    if kind == EntityKind.VENDOR:
        for target in _ids(attributes.get("partners")):
            yield Reference("partners", target, EntityKind.VENDOR)
    for target in _ids(attributes.get("successors")):
        yield Reference("successors", target, kind)

    mappings = attributes.get("entityTypeMappings")
    if isinstance(mappings, list):
        for mapping in mappings:
            if isinstance(mapping, dict):
                for target in _nested(mapping.get("entityTypeTargets"), "ordId"):
                    yield Reference("entityTypeMappings", target, EntityKind.ENTITY_TYPE)
    for target in _ids(attributes.get("relatedEntityTypes")):
        yield Reference("relatedEntityTypes", target, EntityKind.ENTITY_TYPE)
    for target in _ids(attributes.get("relatedIntegrationDependencies")):
        yield Reference(
            "relatedIntegrationDependencies", target, EntityKind.INTEGRATION_DEPENDENCY
        )

    aspects = attributes.get("aspects")
    if isinstance(aspects, list):
        for aspect in aspects:
            if not isinstance(aspect, dict):
                continue
            for target in _nested(aspect.get("apiResources"), "ordId"):
                yield Reference("aspects.apiResources", target, EntityKind.API_RESOURCE)
            for target in _nested(aspect.get("eventResources"), "ordId"):
                yield Reference("aspects.eventResources", target, EntityKind.EVENT_RESOURCE)


def dangling_references(
    kind: EntityKind, attributes: Mapping[str, Any], known: Set[str]
) -> dict[str, list[str]]:
    """Optional references whose targets are not in ``known``, grouped by field."""
    dangling: dict[str, list[str]] = {}
    for ref in iter_references(kind, attributes):
        if not ref.mandatory and ref.target not in known:
            targets = dangling.setdefault(ref.field, [])
            if ref.target not in targets:
                targets.append(ref.target)
    return dangling


@dataclass
class Resolution:
    """Outcome of resolving one batch.

    Attributes:
        accepted: Fragments whose mandatory references all resolve, in order
        parked: Fragments waiting for a mandatory target, by ORD ID
        resolved_pending: Previously parked ORD IDs that now resolve
        dangling: ORD ID -> field -> unresolved optional targets
        issues: Reference issues found while resolving
    """

    accepted: list[Fragment] = field(default_factory=list)
    parked: dict[str, PendingEntity] = field(default_factory=dict)
    resolved_pending: list[str] = field(default_factory=list)
    dangling: dict[str, dict[str, list[str]]] = field(default_factory=dict)
    issues: list[ValidationIssue] = field(default_factory=list)


def _kind_mismatches(fragment: Fragment) -> list[Reference]:
    return [
        ref
        for ref in iter_references(fragment.kind, fragment.attributes)
        if ref.expected is not None and kind_of(ref.target) != ref.expected
    ]


def resolve(
    fragments: Iterable[Fragment],
    pending: Mapping[str, PendingEntity],
    nodes: Mapping[str, GraphNode],
    now: datetime,
    excluded: Set[str] = frozenset(),
) -> Resolution:
    """Resolve a batch against the graph.

    Args:
        fragments: Fragments of the incoming batch
        pending: Entities parked by earlier commits; retried here
        nodes: Current graph nodes
        now: Timestamp recorded on newly parked entities
        excluded: ORD IDs that must not count as targets (tombstoned in
            this batch)
    """
    result = Resolution()
    incoming = list(fragments)
    incoming_ids = {f.ord_id for f in incoming}

    candidates: dict[str, Fragment] = {}
    was_pending: set[str] = set()
    for ord_id, entity in pending.items():
        if ord_id not in incoming_ids:
            candidates[ord_id] = entity.fragment
            was_pending.add(ord_id)
    for fragment in incoming:
        mismatches = _kind_mismatches(fragment)
        for ref in mismatches:
            result.issues.append(_kind_issue(fragment, ref))
        if any(ref.mandatory for ref in mismatches):
            continue
        candidates[fragment.ord_id] = fragment

    graph_ids = {
        ord_id for ord_id, node in nodes.items() if not node.is_removed and ord_id not in excluded
    }

    # pass 1: register
    resolvable = set(candidates)
    # pass 2: resolve until no further fragment drops out
    missing: dict[str, dict[str, str]] = {}
    changed = True
    while changed:
        changed = False
        known = graph_ids | resolvable
        for ord_id in sorted(resolvable):
            fragment = candidates[ord_id]
            unresolved = {
                ref.field: ref.target
                for ref in iter_references(fragment.kind, fragment.attributes)
                if ref.mandatory and ref.target not in known
            }
            if unresolved:
                missing[ord_id] = unresolved
                resolvable.discard(ord_id)
                changed = True

    known = graph_ids | resolvable
    for ord_id, fragment in candidates.items():
        if ord_id in resolvable:
            result.accepted.append(fragment)
            if ord_id in was_pending:
                result.resolved_pending.append(ord_id)
                logger.info("orda.resolve.pending_resolved", ord_id=ord_id)
            dangling = dangling_references(fragment.kind, fragment.attributes, known)
            result.dangling[ord_id] = dangling
            for field_name, targets in dangling.items():
                for target in targets:
                    result.issues.append(
                        ValidationIssue.warning(
                            IssueCategory.REFERENCE,
                            fragment.path,
                            f"Optional reference {field_name}='{target}' is not resolved yet",
                            ord_id=ord_id,
                            provider_id=fragment.provider_id,
                        )
                    )
            if dangling:
                logger.debug("orda.resolve.dangling_reference", ord_id=ord_id, dangling=dangling)
            continue

        previous = pending.get(ord_id)
        parked_at = previous.parked_at if previous is not None else now
        result.parked[ord_id] = PendingEntity(
            fragment=fragment, missing=missing[ord_id], parked_at=parked_at
        )
        if ord_id not in was_pending:
            for field_name, target in missing[ord_id].items():
                error = ReferenceResolutionError(ord_id, field_name, target)
                result.issues.append(
                    ValidationIssue.error(
                        IssueCategory.REFERENCE,
                        fragment.path,
                        error.message,
                        ord_id=ord_id,
                        provider_id=fragment.provider_id,
                    )
                )
            logger.info("orda.resolve.parked", ord_id=ord_id, missing=missing[ord_id])

    # keep dependency order: taxonomy before resources
    order = {kind: i for i, kind in enumerate(_KIND_ORDER)}
    result.accepted.sort(key=lambda f: order[f.kind])
    return result


_KIND_ORDER: tuple[EntityKind, ...] = (
    EntityKind.VENDOR,
    EntityKind.PRODUCT,
    EntityKind.PACKAGE,
    EntityKind.CONSUMPTION_BUNDLE,
    EntityKind.ENTITY_TYPE,
    EntityKind.API_RESOURCE,
    EntityKind.EVENT_RESOURCE,
    EntityKind.CAPABILITY,
    EntityKind.INTEGRATION_DEPENDENCY,
)


def _kind_issue(fragment: Fragment, ref: Reference) -> ValidationIssue:
    factory = ValidationIssue.error if ref.mandatory else ValidationIssue.warning
    expected = ref.expected.value if ref.expected else "known entity"
    return factory(
        IssueCategory.REFERENCE,
        fragment.path,
        f"{ref.field} points to {ref.target}, which is not a {expected}",
        ord_id=fragment.ord_id,
        provider_id=fragment.provider_id,
    )
