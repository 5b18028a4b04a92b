"""ORD Models.

This module provides the Pydantic models for ORD documents and entities,
plus ORD ID parsing, label maps and validation issue records.
"""

# Base models
from orda.models.base import OpenOrdModel, OrdBaseModel

# Constants
from orda.models.constants import (
    LATEST_SPEC_VERSION,
    SUPPORTED_SPEC_VERSIONS,
    TOMBSTONE_GRACE_DAYS,
    WELLKNOWN_PATH,
)

# Enums
from orda.models.enums import (
    AccessStrategyType,
    ApiProtocol,
    Direction,
    EntityKind,
    IssueCategory,
    LifecycleState,
    MediaType,
    PolicyLevel,
    ReleaseStatus,
    Severity,
    Visibility,
)

# ORD ID utilities
from orda.models.ordid import OrdId, kind_of

# Labels
from orda.models.labels import DocumentationLabels, Labels, merge_labels, union_values

# Entities
from orda.models.entities import (
    DOCUMENT_COLLECTIONS,
    ENTITY_MODELS,
    AccessStrategy,
    APIResource,
    APIResourceDefinition,
    Aspect,
    Capability,
    CapabilityDefinition,
    ChangelogEntry,
    ConsumptionBundle,
    ConsumptionBundleReference,
    CredentialExchangeStrategy,
    EntityType,
    EntityTypeMapping,
    EntityTypeTarget,
    EventResource,
    EventResourceDefinition,
    Extensible,
    IntegrationDependency,
    Lifecycle,
    Link,
    OrdEntity,
    Package,
    PackageLink,
    Product,
    SystemInstance,
    Tombstone,
    Vendor,
)

# Document
from orda.models.document import OrdDocument

# Issues
from orda.models.issues import ValidationIssue, has_errors

__all__ = [
    # Base
    "OpenOrdModel",
    "OrdBaseModel",
    # Constants
    "LATEST_SPEC_VERSION",
    "SUPPORTED_SPEC_VERSIONS",
    "TOMBSTONE_GRACE_DAYS",
    "WELLKNOWN_PATH",
    # Enums
    "AccessStrategyType",
    "ApiProtocol",
    "Direction",
    "EntityKind",
    "IssueCategory",
    "LifecycleState",
    "MediaType",
    "PolicyLevel",
    "ReleaseStatus",
    "Severity",
    "Visibility",
    # ORD IDs
    "OrdId",
    "kind_of",
    # Labels
    "DocumentationLabels",
    "Labels",
    "merge_labels",
    "union_values",
    # Entities
    "DOCUMENT_COLLECTIONS",
    "ENTITY_MODELS",
    "AccessStrategy",
    "APIResource",
    "APIResourceDefinition",
    "Aspect",
    "Capability",
    "CapabilityDefinition",
    "ChangelogEntry",
    "ConsumptionBundle",
    "ConsumptionBundleReference",
    "CredentialExchangeStrategy",
    "EntityType",
    "EntityTypeMapping",
    "EntityTypeTarget",
    "EventResource",
    "EventResourceDefinition",
    "Extensible",
    "IntegrationDependency",
    "Lifecycle",
    "Link",
    "OrdEntity",
    "Package",
    "PackageLink",
    "Product",
    "SystemInstance",
    "Tombstone",
    "Vendor",
    # Document
    "OrdDocument",
    # Issues
    "ValidationIssue",
    "has_errors",
]
