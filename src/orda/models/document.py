"""ORD document model.

An ORD document is the transient unit a provider publishes: a header plus
the entity collections. Documents are consumed by the pipeline and
discarded once merged into the graph.
"""

from __future__ import annotations

from collections.abc import Iterator

from pydantic import Field, model_validator

from orda.models.base import OrdBaseModel
from orda.models.entities import (
    DOCUMENT_COLLECTIONS,
    APIResource,
    Capability,
    ConsumptionBundle,
    EntityType,
    EventResource,
    IntegrationDependency,
    OrdEntity,
    Package,
    Product,
    SystemInstance,
    Tombstone,
    Vendor,
)
from orda.models.enums import EntityKind, PolicyLevel
from orda.models.validators import SpecificationId


class OrdDocument(OrdBaseModel):
    """A typed ORD document.

    Collections are stored in their wire order; ``entities()`` walks them in
    dependency order (taxonomy first, then resources).

    Example:
        >>> doc = OrdDocument.model_validate({"openResourceDiscovery": "1.7"})
        >>> doc.open_resource_discovery
        '1.7'
    """

    schema_uri: str | None = Field(default=None, alias="$schema")
    open_resource_discovery: str
    description: str | None = None
    policy_level: PolicyLevel | None = None
    custom_policy_level: SpecificationId | None = None
    described_system_instance: SystemInstance | None = None

    vendors: list[Vendor] = Field(default_factory=list)
    products: list[Product] = Field(default_factory=list)
    packages: list[Package] = Field(default_factory=list)
    consumption_bundles: list[ConsumptionBundle] = Field(default_factory=list)
    api_resources: list[APIResource] = Field(default_factory=list)
    event_resources: list[EventResource] = Field(default_factory=list)
    entity_types: list[EntityType] = Field(default_factory=list)
    capabilities: list[Capability] = Field(default_factory=list)
    integration_dependencies: list[IntegrationDependency] = Field(default_factory=list)
    tombstones: list[Tombstone] = Field(default_factory=list)

    @model_validator(mode="after")
    def _custom_policy_level(self) -> OrdDocument:
        if self.custom_policy_level is not None and self.policy_level != PolicyLevel.CUSTOM:
            raise ValueError("customPolicyLevel requires policyLevel 'custom'")
        return self

    def collection(self, kind: EntityKind) -> list[OrdEntity]:
        """Return the entity list of one kind."""
        for key, collection_kind in DOCUMENT_COLLECTIONS.items():
            if collection_kind == kind:
                return list(getattr(self, collection_attribute(key)))
        raise KeyError(kind)

    def entities(self) -> Iterator[OrdEntity]:
        for key in DOCUMENT_COLLECTIONS:
            yield from getattr(self, collection_attribute(key))

    def policy_attributes(self) -> dict[str, str]:
        """Document-level policy fields inherited by packages and resources."""
        attrs: dict[str, str] = {}
        if self.policy_level is not None:
            attrs["policyLevel"] = self.policy_level.value
        if self.custom_policy_level is not None:
            attrs["customPolicyLevel"] = self.custom_policy_level
        return attrs


def collection_attribute(collection_key: str) -> str:
    return "".join("_" + c.lower() if c.isupper() else c for c in collection_key)
