"""ORD document parsing.

``parse_document`` turns raw provider input into a typed OrdDocument plus
every issue found along the way. Entity fragments are validated one by
one, so a broken fragment is dropped while the rest of the document
survives. Content problems never raise.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from orda.errors import StructuralError
from orda.models.document import OrdDocument, collection_attribute
from orda.models.entities import DOCUMENT_COLLECTIONS, ENTITY_MODELS, OrdEntity, Tombstone
from orda.models.enums import IssueCategory
from orda.models.issues import ValidationIssue, has_errors
from orda.observability.logging import get_logger
from orda.observability.metrics import get_metrics
from orda.validation.rules import check_entity, find_duplicates
from orda.validation.validator import Validator
from orda.validation.versions import COLLECTION_INTRODUCED, is_supported, rules_for

logger = get_logger(__name__)

_HEADER_FIELDS = frozenset(
    {
        "$schema",
        "openResourceDiscovery",
        "description",
        "policyLevel",
        "customPolicyLevel",
        "describedSystemInstance",
    }
)
_TOMBSTONES = "tombstones"


@dataclass
class ParseResult:
    """Outcome of parsing one document.

    Attributes:
        document: The typed document with invalid fragments removed, or None
            if the input is not a processable ORD document
        issues: Every finding, in discovery order
        spec_version: Version whose rule set was applied
    """

    document: OrdDocument | None
    issues: list[ValidationIssue] = field(default_factory=list)
    spec_version: str | None = None

    @property
    def ok(self) -> bool:
        return self.document is not None and not has_errors(self.issues)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.is_error]

    def raise_for_errors(self) -> OrdDocument:
        """Return the document, or raise StructuralError for the first error.

        Raises:
            StructuralError: If any error was reported or nothing could be parsed
        """
        first = next(iter(self.errors), None)
        if first is not None:
            raise StructuralError(first.path, first.message)
        if self.document is None:
            raise StructuralError("", "not an ORD document")
        return self.document


def format_location(loc: tuple[int | str, ...]) -> str:
    """Render a Pydantic error location as ``a.b[0].c``."""
    out = ""
    for part in loc:
        if isinstance(part, int):
            out += f"[{part}]"
        else:
            out = f"{out}.{part}" if out else str(part)
    return out


def issues_from_validation_error(
    error: ValidationError, path: str, ord_id: str | None = None
) -> list[ValidationIssue]:
    issues = []
    for detail in error.errors():
        where = format_location(tuple(detail["loc"]))
        full = f"{path}.{where}" if path and where else (path or where)
        issues.append(
            ValidationIssue.error(IssueCategory.STRUCTURAL, full, detail["msg"], ord_id=ord_id)
        )
    return issues


def _decode(raw: bytes | str | dict[str, Any]) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("ORD document must be a JSON object")
    return data


def _parse_header(data: dict[str, Any], issues: list[ValidationIssue]) -> OrdDocument:
    header = {key: value for key, value in data.items() if key in _HEADER_FIELDS}
    try:
        return OrdDocument.model_validate(header)
    except ValidationError as e:
        issues.extend(issues_from_validation_error(e, ""))
        bad = {str(detail["loc"][0]) for detail in e.errors() if detail["loc"]}
        kept = {key: value for key, value in header.items() if key not in bad}
    try:
        return OrdDocument.model_validate(kept)
    except ValidationError:
        return OrdDocument.model_validate(
            {"openResourceDiscovery": header["openResourceDiscovery"]}
        )


def _parse_collection(
    key: str,
    fragments: Any,
    version_rules: Any,
    issues: list[ValidationIssue],
) -> list[tuple[str, Any]]:
    if not isinstance(fragments, list):
        issues.append(
            ValidationIssue.error(IssueCategory.STRUCTURAL, key, f"{key} must be an array")
        )
        return []
    if not version_rules.allows_collection(key):
        issues.append(
            ValidationIssue.error(
                IssueCategory.STRUCTURAL,
                key,
                f"{key} requires ORD version {COLLECTION_INTRODUCED[key]} or later "
                f"(document declares {version_rules.version})",
            )
        )
        return []

    model = Tombstone if key == _TOMBSTONES else ENTITY_MODELS[DOCUMENT_COLLECTIONS[key]]
    parsed: list[tuple[str, Any]] = []
    for i, fragment in enumerate(fragments):
        path = f"{key}[{i}]"
        if not isinstance(fragment, dict):
            issues.append(
                ValidationIssue.error(IssueCategory.STRUCTURAL, path, "must be an object")
            )
            continue
        ord_id = fragment.get("ordId") if isinstance(fragment.get("ordId"), str) else None

        too_new = version_rules.check_enum_values(key, fragment)
        for field_name, value, since in too_new:
            issues.append(
                ValidationIssue.error(
                    IssueCategory.STRUCTURAL,
                    f"{path}.{field_name}",
                    f"value {value!r} requires ORD version {since} or later",
                    ord_id=ord_id,
                )
            )
        try:
            instance = model.model_validate(fragment)
        except ValidationError as e:
            issues.extend(issues_from_validation_error(e, path, ord_id))
            continue
        if too_new:
            continue
        if isinstance(instance, OrdEntity):
            entity_issues = check_entity(instance, path)
            issues.extend(entity_issues)
            if has_errors(entity_issues):
                continue
        parsed.append((path, instance))
    return parsed


def parse_document(
    raw: bytes | str | dict[str, Any],
    spec_version: str | None = None,
    validator: Validator | None = None,
) -> ParseResult:
    """Parse and validate a single ORD document.

    Args:
        raw: JSON bytes, JSON text or an already decoded object
        spec_version: Rule set to apply; defaults to the document's declared
            ``openResourceDiscovery`` version
        validator: Optional external validator run on the typed document;
            entities it reports errors for are dropped

    Returns:
        ParseResult with the surviving typed document and all issues.

    Example:
        >>> result = parse_document({"openResourceDiscovery": "1.7"})
        >>> result.ok
        True
    """
    issues: list[ValidationIssue] = []
    try:
        data = _decode(raw)
    except (ValueError, UnicodeDecodeError) as e:
        return _reject(StructuralError("", f"Not a JSON document: {e}"), issues)

    declared = data.get("openResourceDiscovery")
    if not isinstance(declared, str) or not is_supported(declared):
        error = StructuralError(
            "openResourceDiscovery", f"Missing or unsupported ORD version: {declared!r}"
        )
        return _reject(error, issues)

    version = declared
    if spec_version is not None and spec_version != declared:
        if not is_supported(spec_version):
            error = StructuralError(
                "openResourceDiscovery", f"Requested rule set {spec_version!r} is not supported"
            )
            return _reject(error, issues)
        issues.append(
            ValidationIssue.warning(
                IssueCategory.STRUCTURAL,
                "openResourceDiscovery",
                f"Document declares {declared} but is validated against {spec_version}",
            )
        )
        version = spec_version
    version_rules = rules_for(version)

    for key in data:
        if key not in _HEADER_FIELDS and key not in DOCUMENT_COLLECTIONS and key != _TOMBSTONES:
            issues.append(
                ValidationIssue.error(
                    IssueCategory.STRUCTURAL, key, f"Unknown document property {key!r}"
                )
            )

    document = _parse_header(data, issues)

    collected: dict[str, list[tuple[str, Any]]] = {}
    for key in (*DOCUMENT_COLLECTIONS, _TOMBSTONES):
        if key in data:
            collected[key] = _parse_collection(key, data[key], version_rules, issues)

    entity_paths = [
        (path, entity)
        for key in DOCUMENT_COLLECTIONS
        for path, entity in collected.get(key, [])
    ]
    duplicates = find_duplicates(entity_paths)
    issues.extend(duplicates)
    duplicate_paths = {issue.path for issue in duplicates}

    updates = {
        collection_attribute(key): [item for path, item in items if path not in duplicate_paths]
        for key, items in collected.items()
    }
    document = document.model_copy(update=updates)

    if validator is not None:
        external = validator.validate(document, version)
        issues.extend(external)
        rejected = {issue.ord_id for issue in external if issue.is_error and issue.ord_id}
        if rejected:
            document = document.model_copy(
                update={
                    collection_attribute(key): [
                        e
                        for e in getattr(document, collection_attribute(key))
                        if e.ord_id not in rejected
                    ]
                    for key in DOCUMENT_COLLECTIONS
                }
            )

    return _finish(ParseResult(document=document, issues=issues, spec_version=version))


def _reject(error: StructuralError, issues: list[ValidationIssue]) -> ParseResult:
    logger.warning("orda.validate.rejected", path=error.path, reason=error.reason)
    issues.append(ValidationIssue.error(IssueCategory.STRUCTURAL, error.path, error.reason))
    return _finish(ParseResult(document=None, issues=issues))


def _finish(result: ParseResult) -> ParseResult:
    metrics = get_metrics()
    metrics.increment_counter(
        "orda_documents_processed_total",
        {"status": "accepted" if result.document is not None else "rejected"},
    )
    for issue in result.issues:
        metrics.increment_counter(
            "orda_validation_issues_total",
            {"category": issue.category.value, "severity": issue.severity.value},
        )
    if result.issues:
        logger.debug(
            "orda.validate.issues",
            spec_version=result.spec_version,
            issue_count=len(result.issues),
            error_count=len(result.errors),
        )
    return result
