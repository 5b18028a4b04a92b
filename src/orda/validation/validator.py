"""Validator collaborator interface.

External validators (OpenAPI or AsyncAPI definition checkers, policy
level validators) plug in through the ``Validator`` protocol and return
issues instead of raising.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from orda.models.document import collection_attribute
from orda.models.entities import DOCUMENT_COLLECTIONS
from orda.models.enums import IssueCategory
from orda.models.issues import ValidationIssue
from orda.validation.rules import check_entity, find_duplicates
from orda.validation.versions import is_supported, rules_for

if TYPE_CHECKING:
    from orda.models.document import OrdDocument


@runtime_checkable
class Validator(Protocol):
    """Validates a typed document against one spec version."""

    def validate(self, document: OrdDocument, spec_version: str) -> list[ValidationIssue]:
        """Return every issue found; never raise for content problems."""
        ...


class DefaultValidator:
    """Intra-document rules on an already typed document.

    ``parse_document`` applies the same rules per fragment while parsing;
    this class exposes them for documents built in code.
    """

    def validate(self, document: OrdDocument, spec_version: str) -> list[ValidationIssue]:
        if not is_supported(spec_version):
            return [
                ValidationIssue.error(
                    IssueCategory.STRUCTURAL,
                    "openResourceDiscovery",
                    f"Unsupported ORD version {spec_version!r}",
                )
            ]
        version_rules = rules_for(spec_version)
        issues: list[ValidationIssue] = []
        paths = []
        for key in DOCUMENT_COLLECTIONS:
            entities = getattr(document, collection_attribute(key))
            if entities and not version_rules.allows_collection(key):
                issues.append(
                    ValidationIssue.error(
                        IssueCategory.STRUCTURAL, key, f"{key} is not defined in ORD {spec_version}"
                    )
                )
            for i, entity in enumerate(entities):
                path = f"{key}[{i}]"
                issues.extend(check_entity(entity, path))
                paths.append((path, entity))
        issues.extend(find_duplicates(paths))
        return issues


class CompositeValidator:
    """Runs several validators in order and concatenates their issues."""

    def __init__(self, validators: Sequence[Validator]) -> None:
        self.validators = list(validators)

    def validate(self, document: OrdDocument, spec_version: str) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        for validator in self.validators:
            issues.extend(validator.validate(document, spec_version))
        return issues


