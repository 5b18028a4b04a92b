"""ORD ID parsing.

An ORD ID is a globally unique, namespaced, typed and major-versioned key:

    <namespace>:<conceptName>:<resourceName>:<majorVersion>

Vendor and Product IDs leave the major version fragment empty
(``sap:vendor:SAP:``). The first dotted segment of the namespace is the
vendor namespace (``sap.s4`` -> ``sap``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from orda.models.enums import EntityKind

_ORD_ID_RE = re.compile(
    r"^(?P<namespace>[a-z0-9]+(?:[.][a-z0-9]+)*)"
    r":(?P<concept>[a-zA-Z]+)"
    r":(?P<name>[a-zA-Z0-9._\-]+)"
    r":(?P<version>v0|v[1-9][0-9]*|)$"
)

MAX_ORD_ID_LENGTH = 255


@dataclass(frozen=True)
class OrdId:
    """Parsed ORD ID.

    Example:
        >>> oid = OrdId.parse("sap.s4:apiResource:API_BUSINESS_PARTNER:v1")
        >>> oid.kind, oid.vendor_namespace, oid.major_version
        (<EntityKind.API_RESOURCE: 'apiResource'>, 'sap', 1)
    """

    namespace: str
    kind: EntityKind
    name: str
    major_version: int | None

    @classmethod
    def parse(cls, value: str) -> OrdId:
        """Parse an ORD ID string.

        Raises:
            ValueError: If the string is not a valid ORD ID, uses an unknown
                concept, or has a version fragment that does not fit the concept
        """
        if len(value) > MAX_ORD_ID_LENGTH:
            raise ValueError(f"ORD ID must be at most {MAX_ORD_ID_LENGTH} characters")
        match = _ORD_ID_RE.match(value)
        if match is None:
            raise ValueError(f"Invalid ORD ID: {value!r}")
        try:
            kind = EntityKind(match["concept"])
        except ValueError as e:
            raise ValueError(f"Unknown ORD ID concept {match['concept']!r} in {value!r}") from e
        version = match["version"]
        if kind in EntityKind.unversioned():
            if version:
                raise ValueError(f"{kind.value} ORD ID must not carry a major version: {value!r}")
            major = None
        else:
            if not version:
                raise ValueError(f"{kind.value} ORD ID requires a major version: {value!r}")
            major = int(version[1:])
        return cls(namespace=match["namespace"], kind=kind, name=match["name"], major_version=major)

    @property
    def vendor_namespace(self) -> str:
        return self.namespace.split(".", 1)[0]

    def __str__(self) -> str:
        version = f"v{self.major_version}" if self.major_version is not None else ""
        return f"{self.namespace}:{self.kind.value}:{self.name}:{version}"


def kind_of(value: str) -> EntityKind | None:
    """Return the entity kind encoded in an ORD ID, or None if it does not parse."""
    try:
        return OrdId.parse(value).kind
    except ValueError:
        return None


def validate_ord_id(value: str) -> str:
    """Pydantic-friendly validator: return the value if it is a valid ORD ID."""
    OrdId.parse(value)
    return value
