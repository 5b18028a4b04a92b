"""Tests for the ORD aggregator error taxonomy."""

import warnings

import pytest

from orda.errors import (
    ConsistencyError,
    FetchError,
    InvalidLifecycleTransitionError,
    LifecycleWarning,
    OrdError,
    PersistenceError,
    ReferenceResolutionError,
    StructuralError,
)


class TestOrdError:
    """Test OrdError base class."""

    def test_basic_error_creation(self) -> None:
        """Test creating a basic OrdError."""
        error = OrdError(code="ord:test/error", message="Test error message")

        assert error.code == "ord:test/error"
        assert error.message == "Test error message"
        assert error.details == {}
        assert str(error) == "Test error message"

    def test_details_not_shared_between_instances(self) -> None:
        error1 = OrdError("code", "msg", {"key": "value1"})
        error2 = OrdError("code", "msg", {"key": "value2"})

        assert error1.details["key"] == "value1"
        assert error2.details["key"] == "value2"

    def test_to_dict(self) -> None:
        error = OrdError("ord:test/error", "boom", {"a": 1})

        assert error.to_dict() == {"code": "ord:test/error", "message": "boom", "details": {"a": 1}}


class TestTaxonomy:
    """Every taxonomy member carries its code and context."""

    def test_structural_error(self) -> None:
        error = StructuralError("apiResources[0]", "missing title")

        assert isinstance(error, OrdError)
        assert error.code == "ord:document/structural"
        assert error.path == "apiResources[0]"
        assert error.reason == "missing title"
        assert "apiResources[0]" in error.message

    def test_reference_resolution_error(self) -> None:
        error = ReferenceResolutionError(
            "sap.s4:apiResource:orders:v1", "partOfPackage", "sap.s4:package:core:v1"
        )

        assert error.code == "ord:reference/unresolved"
        assert error.field == "partOfPackage"
        assert error.target == "sap.s4:package:core:v1"
        assert error.details["ord_id"] == "sap.s4:apiResource:orders:v1"
        assert "partOfPackage='sap.s4:package:core:v1'" in error.message

    def test_consistency_error(self) -> None:
        error = ConsistencyError("sap:vendor:SAP:", "namespace already owned")

        assert error.code == "ord:graph/consistency"
        assert error.reason == "namespace already owned"
        assert error.to_dict()["details"]["ord_id"] == "sap:vendor:SAP:"

    def test_fetch_error_with_status(self) -> None:
        error = FetchError("https://x.example.com/doc", "HTTP 503", attempts=3, status_code=503)

        assert error.code == "ord:crawl/fetch_failed"
        assert error.attempts == 3
        assert error.details["status_code"] == 503
        assert "after 3 attempt(s)" in str(error)

    def test_fetch_error_without_status(self) -> None:
        error = FetchError("https://x.example.com/doc", "ConnectError")

        assert error.status_code is None
        assert "status_code" not in error.details

    def test_invalid_lifecycle_transition(self) -> None:
        error = InvalidLifecycleTransitionError("active", "removed")

        assert error.code == "ord:lifecycle/invalid_transition"
        assert "'active' to 'removed'" in error.message

    def test_persistence_error(self) -> None:
        error = PersistenceError("save_snapshot", "disk full")

        assert error.operation == "save_snapshot"
        assert error.details == {"operation": "save_snapshot"}

    def test_lifecycle_warning_is_user_warning(self) -> None:
        with pytest.warns(LifecycleWarning):
            warnings.warn("deprecated without sunset", LifecycleWarning, stacklevel=1)
