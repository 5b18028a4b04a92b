"""Lifecycle and versioning enforcement.

Per-entity state machine::

    active -> deprecated -> removed
       \\___________________/

``removed`` is reachable only through a tombstone. A republished entity
may come back from ``removed``; a deprecated entity going back to
``active`` is allowed but reported.

All checks return issues; lifecycle deviations never stop the pipeline.
"""

from __future__ import annotations

import re
import warnings
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from orda.errors import InvalidLifecycleTransitionError, LifecycleWarning
from orda.graph import GraphNode, parse_timestamp
from orda.models.enums import IssueCategory, LifecycleState, ReleaseStatus, Severity
from orda.models.issues import ValidationIssue
from orda.models.ordid import OrdId

VALID_TRANSITIONS: dict[LifecycleState, frozenset[LifecycleState]] = {
    LifecycleState.ACTIVE: frozenset({LifecycleState.DEPRECATED, LifecycleState.REMOVED}),
    LifecycleState.DEPRECATED: frozenset({LifecycleState.ACTIVE, LifecycleState.REMOVED}),
    LifecycleState.REMOVED: frozenset({LifecycleState.ACTIVE, LifecycleState.DEPRECATED}),
}

_SEMVER_CORE_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)(?:-([0-9A-Za-z.\-]+))?(?:\+[0-9A-Za-z.\-]+)?$")


def can_transition(
    current: LifecycleState, target: LifecycleState, via_tombstone: bool = False
) -> bool:
    if current == target:
        return True
    if target == LifecycleState.REMOVED and not via_tombstone:
        return False
    return target in VALID_TRANSITIONS[current]


def transition(
    current: LifecycleState, target: LifecycleState, via_tombstone: bool = False
) -> LifecycleState:
    """Validate and perform a lifecycle transition.

    Raises:
        InvalidLifecycleTransitionError: If the move is not allowed, in
            particular any move to ``removed`` without a tombstone
    """
    if not can_transition(current, target, via_tombstone):
        raise InvalidLifecycleTransitionError(current.value, target.value)
    return target


def _prerelease_key(pre: str) -> tuple[tuple[int, int, str], ...]:
    # numeric identifiers sort numerically and before alphanumeric ones
    return tuple(
        (0, int(part), "") if part.isdigit() else (1, 0, part) for part in pre.split(".")
    )


def _semver_key(value: str) -> tuple[int, int, int, int, tuple[tuple[int, int, str], ...]]:
    match = _SEMVER_CORE_RE.match(value)
    if match is None:
        raise ValueError(f"Not a comparable version: {value!r}")
    major, minor, patch, pre = match.groups()
    # a pre-release sorts before its release
    if pre:
        return (int(major), int(minor), int(patch), 0, _prerelease_key(pre))
    return (int(major), int(minor), int(patch), 1, ())


def compare_versions(a: str, b: str) -> int:
    """Compare two semantic versions by SemVer 2.0 precedence; returns -1, 0 or 1.

    Build metadata is ignored, so ``1.0.0+build.1`` equals ``1.0.0``.

    Raises:
        ValueError: If either string is not a ``major.minor.patch[-pre][+build]`` version
    """
    left, right = _semver_key(a), _semver_key(b)
    return (left > right) - (left < right)


def state_of(attributes: Mapping[str, Any]) -> LifecycleState:
    return LifecycleState.from_release_status(attributes.get("releaseStatus"))


def check_entity(
    ord_id: str, attributes: Mapping[str, Any], path: str = ""
) -> list[ValidationIssue]:
    """Check the lifecycle fields of one entity description."""
    issues: list[ValidationIssue] = []
    if attributes.get("releaseStatus") != ReleaseStatus.DEPRECATED.value:
        return issues

    sunset = parse_timestamp(attributes.get("sunsetDate"))
    deprecation = parse_timestamp(attributes.get("deprecationDate"))
    if sunset is None:
        issues.append(
            ValidationIssue.warning(
                IssueCategory.LIFECYCLE,
                path,
                "Deprecated entity must declare a sunsetDate",
                ord_id=ord_id,
            )
        )
    if deprecation is None:
        issues.append(
            ValidationIssue.info(
                IssueCategory.LIFECYCLE,
                path,
                "Deprecated entity should declare a deprecationDate",
                ord_id=ord_id,
            )
        )
    if sunset is not None and deprecation is not None and sunset < deprecation:
        issues.append(
            ValidationIssue.warning(
                IssueCategory.LIFECYCLE,
                path,
                "sunsetDate is before deprecationDate",
                ord_id=ord_id,
            )
        )
    return issues


def check_transition(
    previous: GraphNode | None, incoming: Mapping[str, Any], path: str = ""
) -> list[ValidationIssue]:
    """Compare a redescription with the entity's merged state."""
    if previous is None:
        return []
    issues: list[ValidationIssue] = []
    ord_id = previous.ord_id

    old_version = previous.attributes.get("version")
    new_version = incoming.get("version")
    if old_version and new_version:
        try:
            decreased = compare_versions(new_version, old_version) < 0
        except ValueError:
            decreased = False
        if decreased:
            issues.append(
                ValidationIssue.warning(
                    IssueCategory.LIFECYCLE,
                    path,
                    f"version decreased from {old_version} to {new_version}",
                    ord_id=ord_id,
                )
            )

    if previous.state == LifecycleState.DEPRECATED and state_of(incoming) == LifecycleState.ACTIVE:
        issues.append(
            ValidationIssue.warning(
                IssueCategory.LIFECYCLE,
                path,
                "Deprecated entity was redescribed as active",
                ord_id=ord_id,
            )
        )
    return issues


def check_successors(
    node: GraphNode, nodes: Mapping[str, GraphNode], path: str = ""
) -> list[ValidationIssue]:
    """A deprecated entity must name ``successors`` once a newer major version exists.

    Looks for a non-removed entity with the same namespace, concept and
    resource name but a higher major version anywhere in the graph.
    """
    if node.state != LifecycleState.DEPRECATED or node.attributes.get("successors"):
        return []
    try:
        own = OrdId.parse(node.ord_id)
    except ValueError:
        return []
    if own.major_version is None:
        return []
    newer: list[tuple[int, str]] = []
    for other in nodes.values():
        if other.is_removed or other.kind != own.kind:
            continue
        try:
            candidate = OrdId.parse(other.ord_id)
        except ValueError:
            continue
        if (
            candidate.namespace == own.namespace
            and candidate.name == own.name
            and (candidate.major_version or 0) > own.major_version
        ):
            newer.append((candidate.major_version or 0, other.ord_id))
    if not newer:
        return []
    return [
        ValidationIssue.warning(
            IssueCategory.LIFECYCLE,
            path,
            f"Deprecated entity should list its successor {min(newer)[1]} in successors",
            ord_id=node.ord_id,
        )
    ]


def check_disappeared(
    provider_id: str,
    previous_ids: Iterable[str],
    described_ids: Iterable[str],
    tombstoned_ids: Iterable[str],
) -> list[ValidationIssue]:
    """Entities a provider stopped describing without publishing a tombstone."""
    missing = set(previous_ids) - set(described_ids) - set(tombstoned_ids)
    return [
        ValidationIssue.error(
            IssueCategory.CONSISTENCY,
            "",
            f"Entity is no longer described by provider {provider_id} but has no tombstone",
            ord_id=ord_id,
            provider_id=provider_id,
        )
        for ord_id in sorted(missing)
    ]


def should_refetch_definitions(
    previous_last_update: str | datetime | None, current_last_update: str | datetime | None
) -> bool:
    """Resource definitions are refetched unless ``lastUpdate`` is known and unchanged."""
    previous = parse_timestamp(previous_last_update)
    current = parse_timestamp(current_last_update)
    if previous is None or current is None:
        return True
    return current != previous


def emit_warnings(issues: Iterable[ValidationIssue], stacklevel: int = 2) -> int:
    """Re-emit lifecycle warnings through :mod:`warnings` as LifecycleWarning.

    Lets callers escalate policy deviations with a warnings filter, e.g.
    ``-W error::orda.errors.LifecycleWarning`` in a CI run.
    """
    count = 0
    for issue in issues:
        if issue.category == IssueCategory.LIFECYCLE and issue.severity == Severity.WARNING:
            label = f"{issue.ord_id}: " if issue.ord_id else ""
            warnings.warn(f"{label}{issue.message}", LifecycleWarning, stacklevel=stacklevel + 1)
            count += 1
    return count
