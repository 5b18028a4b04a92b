"""Validation issue records.

Problems in provider input are collected, not raised, so that a single
bad fragment never hides the rest of a document or batch.
"""

from __future__ import annotations

from collections.abc import Iterable

from pydantic import Field

from orda.models.base import OrdBaseModel
from orda.models.enums import IssueCategory, Severity


class ValidationIssue(OrdBaseModel):
    """One finding reported by the validator, resolver, lifecycle or merge stage.

    Attributes:
        severity: error, warning or info
        category: error taxonomy classification
        path: Location within the document (e.g. ``apiResources[1].title``)
        message: Human-readable description
        ord_id: Affected entity, when known
        provider_id: Provider whose input caused the issue, when known
    """

    severity: Severity
    category: IssueCategory
    path: str = Field(default="", description="Location within the document")
    message: str
    ord_id: str | None = None
    provider_id: str | None = None

    @classmethod
    def error(
        cls, category: IssueCategory, path: str, message: str, **kw: str | None
    ) -> ValidationIssue:
        return cls(severity=Severity.ERROR, category=category, path=path, message=message, **kw)

    @classmethod
    def warning(
        cls, category: IssueCategory, path: str, message: str, **kw: str | None
    ) -> ValidationIssue:
        return cls(severity=Severity.WARNING, category=category, path=path, message=message, **kw)

    @classmethod
    def info(
        cls, category: IssueCategory, path: str, message: str, **kw: str | None
    ) -> ValidationIssue:
        return cls(severity=Severity.INFO, category=category, path=path, message=message, **kw)

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR

    def __str__(self) -> str:
        where = f" at {self.path}" if self.path else ""
        return f"[{self.severity.value}/{self.category.value}]{where}: {self.message}"


def has_errors(issues: Iterable[ValidationIssue]) -> bool:
    return any(issue.is_error for issue in issues)
