"""Builders for ORD document fragments used across the test suite.

Every builder returns the camelCase wire form of a minimal valid entity;
keyword arguments override or extend fields.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from orda.merge import Batch
from orda.validation.parser import parse_document

VENDOR_ID = "sap:vendor:SAP:"
PRODUCT_ID = "sap:product:S4HANA:"
PACKAGE_ID = "sap.s4:package:core:v1"
API_ID = "sap.s4:apiResource:orders:v1"
EVENT_ID = "sap.s4:eventResource:orderEvents:v1"
BUNDLE_ID = "sap.s4:consumptionBundle:basic:v1"

BASE_URL = "https://s4.example.com"

# Fixed crawl time so recency ordering in tests is deterministic
CRAWL_TIME = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def vendor(ord_id: str = VENDOR_ID, **fields: Any) -> dict[str, Any]:
    return {"ordId": ord_id, "title": "SAP SE", **fields}


def product(ord_id: str = PRODUCT_ID, **fields: Any) -> dict[str, Any]:
    return {
        "ordId": ord_id,
        "title": "SAP S/4HANA",
        "shortDescription": "ERP suite",
        "vendor": VENDOR_ID,
        **fields,
    }


def package(ord_id: str = PACKAGE_ID, **fields: Any) -> dict[str, Any]:
    return {
        "ordId": ord_id,
        "title": "Core",
        "shortDescription": "Core APIs",
        "description": "Core business APIs of the system",
        "version": "1.0.0",
        "vendor": VENDOR_ID,
        **fields,
    }


def api_resource(ord_id: str = API_ID, **fields: Any) -> dict[str, Any]:
    return {
        "ordId": ord_id,
        "title": "Orders API",
        "shortDescription": "Manage sales orders",
        "description": "Create, read and update sales orders",
        "partOfPackage": PACKAGE_ID,
        "version": "1.0.0",
        "visibility": "public",
        "releaseStatus": "active",
        "apiProtocol": "rest",
        **fields,
    }


def event_resource(ord_id: str = EVENT_ID, **fields: Any) -> dict[str, Any]:
    return {
        "ordId": ord_id,
        "title": "Order events",
        "shortDescription": "Sales order change events",
        "description": "Events emitted when a sales order changes",
        "partOfPackage": PACKAGE_ID,
        "version": "1.0.0",
        "visibility": "public",
        "releaseStatus": "active",
        **fields,
    }


def consumption_bundle(ord_id: str = BUNDLE_ID, **fields: Any) -> dict[str, Any]:
    return {"ordId": ord_id, "title": "Basic access", **fields}


def tombstone(
    ord_id: str, removal_date: str = "2024-01-01T00:00:00Z", **fields: Any
) -> dict[str, Any]:
    return {"ordId": ord_id, "removalDate": removal_date, **fields}


def document(version: str = "1.7", **collections: Any) -> dict[str, Any]:
    """An ORD document; ``collections`` are wire keys such as ``apiResources``."""
    return {"openResourceDiscovery": version, **collections}


def full_document(**extra: Any) -> dict[str, Any]:
    """Vendor, package and one API resource, all resolvable within the document.

    ``extra`` adds collections or replaces the default ones.
    """
    collections: dict[str, Any] = {
        "vendors": [vendor()],
        "packages": [package()],
        "apiResources": [api_resource()],
    }
    collections.update(extra)
    return document(**collections)


def encode(data: dict[str, Any]) -> bytes:
    return json.dumps(data).encode("utf-8")


def batch(provider_id: str, *documents: dict[str, Any], crawled_at: datetime, **kw: Any) -> Batch:
    """Parse wire documents and wrap them into a Batch; fails on parse errors."""
    parsed = [parse_document(doc).raise_for_errors() for doc in documents]
    return Batch(provider_id=provider_id, documents=parsed, crawled_at=crawled_at, **kw)
