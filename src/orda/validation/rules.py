"""Intra-document rules checked on typed entities.

Field-level constraints are enforced by the Pydantic models. The rules
here span several fields of one entity (``custom*`` companions, entry
point membership, ORD ID major version) or several entities of one
document (duplicate ORD IDs).
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel

from orda.models.entities import APIResource, OrdEntity
from orda.models.enums import EntityKind, IssueCategory
from orda.models.issues import ValidationIssue

SEMVER_PATTERN = (
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
    r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)
_SEMVER_RE = re.compile(SEMVER_PATTERN)

# (enum field, companion field, required when the enum is "custom")
_CUSTOM_COMPANIONS: tuple[tuple[str, str, bool], ...] = (
    ("type", "custom_type", True),
    ("type", "custom_description", False),
    ("policy_level", "custom_policy_level", True),
    ("implementation_standard", "custom_implementation_standard", True),
    ("implementation_standard", "custom_implementation_standard_description", True),
)


def _alias(model: BaseModel, name: str) -> str:
    return type(model).model_fields[name].alias or name


def _join(path: str, segment: str) -> str:
    return f"{path}.{segment}" if path else segment


def _is_custom(value: Any) -> bool:
    return getattr(value, "value", value) == "custom"


def check_custom_companions(model: BaseModel, path: str = "") -> list[ValidationIssue]:
    """Check that every ``custom*`` field is set iff its paired enum is ``custom``.

    Walks nested models and lists of models.
    """
    issues: list[ValidationIssue] = []
    fields = type(model).model_fields
    ord_id = getattr(model, "ord_id", None)
    for enum_name, companion, required in _CUSTOM_COMPANIONS:
        if enum_name not in fields or companion not in fields:
            continue
        custom = _is_custom(getattr(model, enum_name))
        present = getattr(model, companion) is not None
        enum_alias, companion_alias = _alias(model, enum_name), _alias(model, companion)
        where = _join(path, companion_alias)
        if custom and required and not present:
            issues.append(
                ValidationIssue.error(
                    IssueCategory.STRUCTURAL,
                    where,
                    f"{companion_alias} is required when {enum_alias} is 'custom'",
                    ord_id=ord_id,
                )
            )
        elif present and not custom:
            issues.append(
                ValidationIssue.error(
                    IssueCategory.STRUCTURAL,
                    where,
                    f"{companion_alias} is only allowed when {enum_alias} is 'custom'",
                    ord_id=ord_id,
                )
            )

    for name in fields:
        value = getattr(model, name)
        field_path = _join(path, _alias(model, name))
        if isinstance(value, BaseModel):
            nested = check_custom_companions(value, field_path)
        elif isinstance(value, list):
            nested = []
            for i, item in enumerate(value):
                if isinstance(item, BaseModel):
                    nested.extend(check_custom_companions(item, f"{field_path}[{i}]"))
        else:
            continue
        for issue in nested:
            if ord_id and not issue.ord_id:
                issue = issue.model_copy(update={"ord_id": ord_id})
            issues.append(issue)
    return issues


def check_entry_points(resource: APIResource, path: str = "") -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    entry_points = resource.entry_points or []
    seen: set[str] = set()
    for i, entry_point in enumerate(entry_points):
        if entry_point in seen:
            issues.append(
                ValidationIssue.error(
                    IssueCategory.STRUCTURAL,
                    _join(path, f"entryPoints[{i}]"),
                    f"Duplicate entry point {entry_point!r}",
                    ord_id=resource.ord_id,
                )
            )
        seen.add(entry_point)

    for i, bundle in enumerate(resource.part_of_consumption_bundles or []):
        if bundle.default_entry_point is not None and bundle.default_entry_point not in seen:
            issues.append(
                ValidationIssue.error(
                    IssueCategory.STRUCTURAL,
                    _join(path, f"partOfConsumptionBundles[{i}].defaultEntryPoint"),
                    f"defaultEntryPoint {bundle.default_entry_point!r} "
                    "is not one of the resource's entryPoints",
                    ord_id=resource.ord_id,
                )
            )
    return issues


def check_default_consumption_bundle(entity: OrdEntity, path: str = "") -> list[ValidationIssue]:
    default = getattr(entity, "default_consumption_bundle", None)
    if default is None:
        return []
    members = {ref.ord_id for ref in getattr(entity, "part_of_consumption_bundles", None) or []}
    if default in members:
        return []
    return [
        ValidationIssue.error(
            IssueCategory.STRUCTURAL,
            _join(path, "defaultConsumptionBundle"),
            f"defaultConsumptionBundle {default!r} is not listed in partOfConsumptionBundles",
            ord_id=entity.ord_id,
        )
    ]


def check_major_version(entity: OrdEntity, path: str = "") -> list[ValidationIssue]:
    """The major version fragment of the ORD ID must equal the major of ``version``."""
    version = getattr(entity, "version", None)
    if version is None or entity.kind in EntityKind.unversioned():
        return []
    match = _SEMVER_RE.match(version)
    if match is None:
        return [
            ValidationIssue.error(
                IssueCategory.STRUCTURAL,
                _join(path, "version"),
                f"version {version!r} is not a semantic version",
                ord_id=entity.ord_id,
            )
        ]
    major = int(match.group(1))
    declared = entity.parsed_ord_id.major_version
    if declared != major:
        return [
            ValidationIssue.error(
                IssueCategory.STRUCTURAL,
                _join(path, "version"),
                f"ORD ID major version v{declared} does not match version {version!r}",
                ord_id=entity.ord_id,
            )
        ]
    return []


def check_entity(entity: OrdEntity, path: str = "") -> list[ValidationIssue]:
    """Run every single-entity rule; all findings are collected."""
    issues = check_custom_companions(entity, path)
    if isinstance(entity, APIResource):
        issues.extend(check_entry_points(entity, path))
    issues.extend(check_default_consumption_bundle(entity, path))
    issues.extend(check_major_version(entity, path))
    return issues


def find_duplicates(entities: Iterable[tuple[str, OrdEntity]]) -> list[ValidationIssue]:
    """Report every repeated ORD ID after its first occurrence.

    Args:
        entities: ``(path, entity)`` pairs in document order
    """
    issues: list[ValidationIssue] = []
    first_seen: dict[str, str] = {}
    for path, entity in entities:
        if entity.ord_id in first_seen:
            issues.append(
                ValidationIssue.error(
                    IssueCategory.STRUCTURAL,
                    path,
                    f"Duplicate ORD ID {entity.ord_id} "
                    f"(first defined at {first_seen[entity.ord_id]})",
                    ord_id=entity.ord_id,
                )
            )
        else:
            first_seen[entity.ord_id] = path
    return issues
