"""ORD Aggregator Error Taxonomy.

This module defines the error hierarchy used across the aggregation
pipeline. Most problems found in provider documents are not raised but
collected as :class:`orda.models.issues.ValidationIssue` records; the
exceptions below are raised where a caller has to stop and decide.

Propagation:
    - StructuralError: fatal for the offending document fragment only
    - ReferenceResolutionError: fatal for the referencing entity, retried later
    - ConsistencyError: cross-document invariant violation, entity flagged
    - FetchError: transient provider failure, retried with backoff
    - PersistenceError: graph-wide failure, fatal to the engine
"""

from __future__ import annotations

from typing import Any


class OrdError(Exception):
    """Base exception for all ORD aggregator errors.

    Attributes:
        code: Error code following the ord:<area>/<reason> pattern
        message: Human-readable error message
        details: Optional additional error context
    """

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize to ``{code, message, details}`` dict."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class StructuralError(OrdError):
    """Raised when a document cannot be processed at all.

    Individual fragment violations are reported as issues; this error is
    reserved for input that is not an ORD document (undecodable JSON,
    missing or unsupported ``openResourceDiscovery`` version).

    Attributes:
        path: Location in the document that failed (e.g. ``apiResources[0]``)
    """

    def __init__(self, path: str, reason: str, details: dict[str, Any] | None = None) -> None:
        message = f"Structural error at '{path}': {reason}"
        super().__init__(
            code="ord:document/structural",
            message=message,
            details={"path": path, **(details or {})},
        )
        self.path = path
        self.reason = reason


class ReferenceResolutionError(OrdError):
    """Raised when a mandatory ORD ID reference cannot be resolved.

    The referencing entity is parked and retried on every later commit,
    so the target may arrive in a subsequent batch.

    Attributes:
        ord_id: The referencing entity
        field: The reference field (e.g. ``partOfPackage``)
        target: The ORD ID that could not be found
    """

    def __init__(
        self, ord_id: str, field: str, target: str, details: dict[str, Any] | None = None
    ) -> None:
        message = f"Unresolved reference {field}='{target}' on {ord_id}"
        super().__init__(
            code="ord:reference/unresolved",
            message=message,
            details={"ord_id": ord_id, "field": field, "target": target, **(details or {})},
        )
        self.ord_id = ord_id
        self.field = field
        self.target = target


class ConsistencyError(OrdError):
    """Raised when independently authored documents contradict each other.

    Examples are two different Vendor entities claiming the same vendor
    namespace, or the same ORD ID being described with different types.
    The previous good state of the entity is retained.

    Attributes:
        ord_id: The affected entity
        reason: Short description of the contradiction
    """

    def __init__(self, ord_id: str, reason: str, details: dict[str, Any] | None = None) -> None:
        message = f"Consistency conflict on {ord_id}: {reason}"
        super().__init__(
            code="ord:graph/consistency",
            message=message,
            details={"ord_id": ord_id, "reason": reason, **(details or {})},
        )
        self.ord_id = ord_id
        self.reason = reason


class FetchError(OrdError):
    """Raised when fetching from a provider failed after all retries.

    Attributes:
        url: The URL that could not be fetched
        attempts: Number of attempts made
        status_code: Last HTTP status code, if a response was received
    """

    def __init__(
        self,
        url: str,
        reason: str,
        attempts: int = 1,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        message = f"Failed to fetch {url} after {attempts} attempt(s): {reason}"
        details_dict: dict[str, Any] = {"url": url, "attempts": attempts}
        if status_code is not None:
            details_dict["status_code"] = status_code
        if details:
            details_dict.update(details)
        super().__init__(code="ord:crawl/fetch_failed", message=message, details=details_dict)
        self.url = url
        self.reason = reason
        self.attempts = attempts
        self.status_code = status_code


class InvalidLifecycleTransitionError(OrdError):
    """Raised when an entity lifecycle transition is not allowed.

    Attributes:
        from_state: The current lifecycle state
        to_state: The attempted target state
    """

    def __init__(
        self, from_state: str, to_state: str, details: dict[str, Any] | None = None
    ) -> None:
        message = f"Invalid lifecycle transition from '{from_state}' to '{to_state}'"
        super().__init__(
            code="ord:lifecycle/invalid_transition",
            message=message,
            details={"from_state": from_state, "to_state": to_state, **(details or {})},
        )
        self.from_state = from_state
        self.to_state = to_state


class PersistenceError(OrdError):
    """Raised when the graph store cannot read or write state.

    This is the only error that is fatal to the engine as a whole.
    """

    def __init__(self, operation: str, reason: str, details: dict[str, Any] | None = None) -> None:
        message = f"Persistence failure during {operation}: {reason}"
        super().__init__(
            code="ord:store/persistence",
            message=message,
            details={"operation": operation, **(details or {})},
        )
        self.operation = operation


class LifecycleWarning(UserWarning):
    """Category for non-fatal lifecycle policy deviations.

    Deprecated entities without a sunset date and version decreases are
    reported with this category; they never stop the pipeline.
    """
