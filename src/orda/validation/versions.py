"""Per-version rule sets.

The ORD document model grows with each minor version. A document is
validated against the rule set of its declared ``openResourceDiscovery``
version, never against the latest one, so a 1.0 document that uses a
collection introduced later is a structural error.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

from packaging.version import Version

from orda.models.constants import SUPPORTED_SPEC_VERSIONS

COLLECTION_INTRODUCED: dict[str, str] = {
    "vendors": "1.0",
    "products": "1.0",
    "packages": "1.0",
    "consumptionBundles": "1.0",
    "apiResources": "1.0",
    "eventResources": "1.0",
    "tombstones": "1.0",
    "capabilities": "1.4",
    "entityTypes": "1.6",
    "integrationDependencies": "1.7",
}
"""Document collection -> first version that defines it."""

ENUM_VALUE_INTRODUCED: dict[tuple[str, str], dict[str, str]] = {
    ("apiResources", "apiProtocol"): {
        "websocket": "1.3",
        "sap-sql-api-v1": "1.7",
    },
}
"""(collection, field) -> enum value -> first version that allows it."""


@dataclass(frozen=True)
class VersionRules:
    """Rule set of one ORD specification version."""

    version: str
    collections: frozenset[str]
    disallowed_values: dict[tuple[str, str], dict[str, str]] = field(default_factory=dict)

    def allows_collection(self, key: str) -> bool:
        return key in self.collections

    def check_enum_values(
        self, collection: str, fragment: dict[str, Any]
    ) -> list[tuple[str, str, str]]:
        """Return ``(field, value, introduced_in)`` for values newer than this version."""
        violations = []
        for (coll, field_name), values in self.disallowed_values.items():
            if coll != collection:
                continue
            value = fragment.get(field_name)
            if isinstance(value, str) and value in values:
                violations.append((field_name, value, values[value]))
        return violations


def is_supported(version: str) -> bool:
    return version in SUPPORTED_SPEC_VERSIONS


@lru_cache(maxsize=None)
def rules_for(version: str) -> VersionRules:
    """Build the rule set for a supported spec version.

    Raises:
        ValueError: If the version is not supported
    """
    if not is_supported(version):
        raise ValueError(
            f"Unsupported ORD version {version!r}; supported: {', '.join(SUPPORTED_SPEC_VERSIONS)}"
        )
    current = Version(version)
    collections = frozenset(
        key for key, since in COLLECTION_INTRODUCED.items() if Version(since) <= current
    )
    disallowed: dict[tuple[str, str], dict[str, str]] = {}
    for location, values in ENUM_VALUE_INTRODUCED.items():
        newer = {value: since for value, since in values.items() if Version(since) > current}
        if newer:
            disallowed[location] = newer
    return VersionRules(version=version, collections=collections, disallowed_values=disallowed)
