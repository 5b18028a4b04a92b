"""Enumerations for the ORD aggregator.

Closed value domains of the ORD document model plus the engine's own
state and issue classifications.
"""

from enum import Enum


class EntityKind(str, Enum):
    """ORD entity variants, keyed by the ORD ID concept name.

    Example:
        >>> EntityKind("apiResource").is_resource()
        True
        >>> EntityKind.VENDOR.is_taxonomy()
        True
    """

    API_RESOURCE = "apiResource"
    EVENT_RESOURCE = "eventResource"
    ENTITY_TYPE = "entityType"
    CAPABILITY = "capability"
    INTEGRATION_DEPENDENCY = "integrationDependency"
    PACKAGE = "package"
    PRODUCT = "product"
    VENDOR = "vendor"
    CONSUMPTION_BUNDLE = "consumptionBundle"

    @classmethod
    def resources(cls) -> frozenset["EntityKind"]:
        """Kinds that MUST belong to exactly one package."""
        return frozenset(
            {
                cls.API_RESOURCE,
                cls.EVENT_RESOURCE,
                cls.ENTITY_TYPE,
                cls.CAPABILITY,
                cls.INTEGRATION_DEPENDENCY,
            }
        )

    @classmethod
    def unversioned(cls) -> frozenset["EntityKind"]:
        """Kinds whose ORD ID carries no major version fragment."""
        return frozenset({cls.VENDOR, cls.PRODUCT})

    def is_resource(self) -> bool:
        return self in self.resources()

    def is_taxonomy(self) -> bool:
        return self in {EntityKind.VENDOR, EntityKind.PRODUCT, EntityKind.PACKAGE}


class Visibility(str, Enum):
    """Who is allowed to see (and implicitly access) a resource."""

    PUBLIC = "public"
    INTERNAL = "internal"
    PRIVATE = "private"


class ReleaseStatus(str, Enum):
    """Stability of a resource and its external contract."""

    ACTIVE = "active"
    BETA = "beta"
    DEPRECATED = "deprecated"


class PolicyLevel(str, Enum):
    """Compliance level a document, package or resource must satisfy."""

    NONE = "none"
    SAP_CORE_V1 = "sap:core:v1"
    CUSTOM = "custom"


class ApiProtocol(str, Enum):
    """API protocol including the protocol version if applicable."""

    ODATA_V2 = "odata-v2"
    ODATA_V4 = "odata-v4"
    REST = "rest"
    GRAPHQL = "graphql"
    SOAP_INBOUND = "soap-inbound"
    SOAP_OUTBOUND = "soap-outbound"
    WEBSOCKET = "websocket"
    SAP_RFC = "sap-rfc"
    SAP_SQL_API_V1 = "sap-sql-api-v1"


class Direction(str, Enum):
    INBOUND = "inbound"
    MIXED = "mixed"
    OUTBOUND = "outbound"


class MediaType(str, Enum):
    JSON = "application/json"
    XML = "application/xml"
    YAML = "text/yaml"
    PLAIN = "text/plain"
    OCTET_STREAM = "application/octet-stream"


class AccessStrategyType(str, Enum):
    """Authentication strategies under which resource definitions can be fetched."""

    OPEN = "open"
    SAP_CMP_MTLS_V1 = "sap:cmp-mtls:v1"
    SAP_BUSINESSHUB_BASIC_AUTH_V1 = "sap.businesshub:basic-auth:v1"
    CUSTOM = "custom"


class LifecycleState(str, Enum):
    """Lifecycle of an entity inside the merged graph.

    ``removed`` is only ever reached through a tombstone.
    """

    ACTIVE = "active"
    DEPRECATED = "deprecated"
    REMOVED = "removed"

    @classmethod
    def from_release_status(cls, status: str | None) -> "LifecycleState":
        if status == ReleaseStatus.DEPRECATED.value:
            return cls.DEPRECATED
        return cls.ACTIVE


class Severity(str, Enum):
    """Severity of a reported validation issue."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class IssueCategory(str, Enum):
    """Error taxonomy classification of a reported issue."""

    STRUCTURAL = "structural"
    REFERENCE = "reference"
    CONSISTENCY = "consistency"
    LIFECYCLE = "lifecycle"
    FETCH = "fetch"
