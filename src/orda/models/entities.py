"""ORD entity models.

This module defines the ORD resources and taxonomy as they appear in ORD
documents:

- Package, Vendor, Product, ConsumptionBundle: taxonomy and grouping
- APIResource, EventResource, EntityType, Capability, IntegrationDependency:
  resources that MUST belong to exactly one package
- Tombstone: explicit removal marker

Every variant derives directly from OrdEntity, which carries the ORD ID and
exposes the common capability set (kind, lifecycle fields) without any
deeper hierarchy. Pydantic collects every field violation of a fragment in
one pass, which is what the document parser relies on.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Any, ClassVar, Literal

from pydantic import AwareDatetime, Field, field_validator, model_validator

from orda.models.base import OpenOrdModel, OrdBaseModel
from orda.models.enums import (
    AccessStrategyType,
    ApiProtocol,
    Direction,
    EntityKind,
    MediaType,
    PolicyLevel,
    ReleaseStatus,
    Visibility,
)
from orda.models.labels import DocumentationLabels, Labels
from orda.models.ordid import OrdId
from orda.models.validators import (
    CorrelationIdStr,
    CountryCode,
    OrdIdRef,
    ShortDescription,
    SpecificationId,
    Tag,
    Title,
)


# ---------------------------------------------------------------------------
# Sub-objects
# ---------------------------------------------------------------------------


class AccessStrategy(OrdBaseModel):
    """How a resource definition can be authenticated and fetched."""

    type: AccessStrategyType
    custom_type: SpecificationId | None = None
    custom_description: str | None = None


class _Definition(OrdBaseModel):
    media_type: MediaType
    url: str = Field(..., min_length=1)
    access_strategies: list[AccessStrategy] = Field(..., min_length=1)
    custom_type: SpecificationId | None = None


class APIResourceDefinition(_Definition):
    type: Literal[
        "openapi-v2",
        "openapi-v3",
        "raml-v1",
        "edmx",
        "csdl-json",
        "graphql-sdl",
        "wsdl-v1",
        "wsdl-v2",
        "sap-rfc-metadata-v1",
        "sap-sql-api-definition-v1",
        "custom",
    ]


class EventResourceDefinition(_Definition):
    type: Literal["asyncapi-v2", "custom"]


class CapabilityDefinition(_Definition):
    type: Literal["custom", "sap.mdo:mdi-capability-definition:v1"]


class ConsumptionBundleReference(OrdBaseModel):
    """Edge from a resource to a consumption bundle."""

    ord_id: OrdIdRef
    default_entry_point: str | None = None


class ChangelogEntry(OrdBaseModel):
    version: str
    release_status: ReleaseStatus
    date: dt.date
    description: str | None = None
    url: str | None = None


class EntityTypeTarget(OrdBaseModel):
    """Target of an entity type mapping: an ORD ID or a Correlation ID, never both."""

    ord_id: OrdIdRef | None = None
    correlation_id: CorrelationIdStr | None = None

    @model_validator(mode="after")
    def _exactly_one(self) -> EntityTypeTarget:
        if (self.ord_id is None) == (self.correlation_id is None):
            raise ValueError("entity type target needs exactly one of ordId or correlationId")
        return self


class APIModelSelector(OrdBaseModel):
    type: Literal["odata", "json-pointer"]
    entity_set_name: str | None = None
    json_pointer: str | None = None

    @model_validator(mode="after")
    def _selector_field(self) -> APIModelSelector:
        if self.type == "odata" and not self.entity_set_name:
            raise ValueError("odata selector requires entitySetName")
        if self.type == "json-pointer" and not self.json_pointer:
            raise ValueError("json-pointer selector requires jsonPointer")
        return self


class EntityTypeMapping(OrdBaseModel):
    api_model_selectors: list[APIModelSelector] | None = None
    entity_type_targets: list[EntityTypeTarget] = Field(..., min_length=1)


class ResourceLink(OrdBaseModel):
    """Semantic link of an API or event resource."""

    type: Literal[
        "api-documentation",
        "authentication",
        "client-registration",
        "console",
        "payment",
        "service-level-agreement",
        "support",
        "custom",
    ]
    custom_type: SpecificationId | None = None
    url: str


class Link(OpenOrdModel):
    title: str
    url: str
    description: str | None = None


class PackageLink(OpenOrdModel):
    type: Literal[
        "terms-of-service",
        "license",
        "client-registration",
        "payment",
        "sandbox",
        "service-level-agreement",
        "support",
        "custom",
    ]
    custom_type: SpecificationId | None = None
    url: str


class Extensible(OrdBaseModel):
    supported: Literal["no", "manual", "automatic"]
    description: str | None = None

    @model_validator(mode="after")
    def _description_when_extensible(self) -> Extensible:
        if self.supported != "no" and not self.description:
            raise ValueError("description is required when extensibility is supported")
        return self


class CredentialExchangeStrategy(OrdBaseModel):
    type: Literal["custom"]
    custom_type: SpecificationId | None = None
    custom_description: str | None = None
    callback_url: str | None = None


class ResourceIntegrationAspect(OrdBaseModel):
    ord_id: OrdIdRef
    min_version: str | None = None


class EventSubset(OrdBaseModel):
    event_type: str


class EventIntegrationAspect(ResourceIntegrationAspect):
    subset: list[EventSubset] | None = None


class Aspect(OrdBaseModel):
    title: Title
    description: str | None = None
    mandatory: bool
    support_multiple_providers: bool | None = None
    api_resources: list[ResourceIntegrationAspect] | None = None
    event_resources: list[EventIntegrationAspect] | None = None


class SystemInstance(OrdBaseModel):
    base_url: str | None = None
    local_id: str | None = None
    correlation_ids: list[CorrelationIdStr] | None = None
    tags: list[Tag] | None = None
    labels: Labels | None = None
    documentation_labels: DocumentationLabels | None = None

    @field_validator("base_url")
    @classmethod
    def _no_trailing_slash(cls, v: str | None) -> str | None:
        if v is not None and v.endswith("/"):
            raise ValueError("baseUrl must not end with a slash")
        return v


# ---------------------------------------------------------------------------
# Entity variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Lifecycle:
    """Common lifecycle view over any entity variant (absent fields are None)."""

    version: str | None
    release_status: ReleaseStatus | None
    last_update: dt.datetime | None
    deprecation_date: dt.datetime | None
    sunset_date: dt.datetime | None
    successors: tuple[str, ...]


class OrdEntity(OrdBaseModel):
    """Common capability set of every ORD entity variant."""

    kind: ClassVar[EntityKind]

    ord_id: OrdIdRef

    @field_validator("ord_id")
    @classmethod
    def _ord_id_matches_kind(cls, v: str) -> str:
        parsed = OrdId.parse(v)
        if parsed.kind != cls.kind:
            raise ValueError(
                f"ORD ID concept '{parsed.kind.value}' does not match {cls.kind.value}"
            )
        return v

    @property
    def parsed_ord_id(self) -> OrdId:
        return OrdId.parse(self.ord_id)

    def lifecycle(self) -> Lifecycle:
        return Lifecycle(
            version=getattr(self, "version", None),
            release_status=getattr(self, "release_status", None),
            last_update=getattr(self, "last_update", None),
            deprecation_date=getattr(self, "deprecation_date", None),
            sunset_date=getattr(self, "sunset_date", None),
            successors=tuple(getattr(self, "successors", None) or ()),
        )


class _Taxonomy(OrdEntity):
    """Fields shared by taggable entities."""

    tags: list[Tag] | None = None
    labels: Labels | None = None
    documentation_labels: DocumentationLabels | None = None


class Vendor(_Taxonomy):
    kind: ClassVar[EntityKind] = EntityKind.VENDOR

    title: Title
    partners: list[OrdIdRef] | None = None


class Product(_Taxonomy):
    kind: ClassVar[EntityKind] = EntityKind.PRODUCT

    correlation_ids: list[CorrelationIdStr] | None = None
    title: Title
    short_description: ShortDescription
    description: str | None = None
    vendor: OrdIdRef
    parent: OrdIdRef | None = None


class Package(_Taxonomy):
    kind: ClassVar[EntityKind] = EntityKind.PACKAGE

    title: Title
    short_description: ShortDescription
    description: str
    version: str
    policy_level: PolicyLevel | None = None
    custom_policy_level: SpecificationId | None = None
    package_links: list[PackageLink] | None = None
    links: list[Link] | None = None
    license_type: str | None = None
    support_info: str | None = None
    vendor: OrdIdRef
    part_of_products: list[OrdIdRef] | None = None
    countries: list[CountryCode] | None = None
    line_of_business: list[Tag] | None = None
    industry: list[Tag] | None = None


class ConsumptionBundle(_Taxonomy):
    kind: ClassVar[EntityKind] = EntityKind.CONSUMPTION_BUNDLE

    local_id: str | None = None
    correlation_ids: list[CorrelationIdStr] | None = None
    title: Title
    short_description: ShortDescription | None = None
    description: str | None = None
    version: str | None = None
    last_update: AwareDatetime | None = None
    credential_exchange_strategies: list[CredentialExchangeStrategy] | None = None
    links: list[Link] | None = None


class _Resource(_Taxonomy):
    """Fields shared by every package-owned resource."""

    local_id: str | None = None
    correlation_ids: list[CorrelationIdStr] | None = None
    title: Title
    short_description: ShortDescription | None = None
    description: str | None = None
    part_of_package: OrdIdRef
    version: str
    last_update: AwareDatetime | None = None
    visibility: Visibility
    release_status: ReleaseStatus
    links: list[Link] | None = None


class _LifecycleResource(_Resource):
    deprecation_date: AwareDatetime | None = None
    sunset_date: AwareDatetime | None = None
    successors: list[OrdIdRef] | None = None
    changelog_entries: list[ChangelogEntry] | None = None
    part_of_products: list[OrdIdRef] | None = None
    policy_level: PolicyLevel | None = None
    custom_policy_level: SpecificationId | None = None
    system_instance_aware: bool | None = None
    extensible: Extensible | None = None


class _ApiOrEvent(_LifecycleResource):
    short_description: ShortDescription
    description: str
    part_of_consumption_bundles: list[ConsumptionBundleReference] | None = None
    default_consumption_bundle: OrdIdRef | None = None
    disabled: bool | None = None
    entity_type_mappings: list[EntityTypeMapping] | None = None
    custom_implementation_standard: SpecificationId | None = None
    custom_implementation_standard_description: str | None = None
    countries: list[CountryCode] | None = None
    line_of_business: list[Tag] | None = None
    industry: list[Tag] | None = None


class APIResource(_ApiOrEvent):
    kind: ClassVar[EntityKind] = EntityKind.API_RESOURCE

    entry_points: list[str] | None = None
    direction: Direction | None = None
    api_protocol: ApiProtocol
    resource_definitions: list[APIResourceDefinition] | None = None
    implementation_standard: (
        Literal[
            "sap:ord-document-api:v1",
            "cff:open-service-broker:v2",
            "sap:csn-exposure:v1",
            "sap:ape-api:v1",
            "sap:cdi-api:v1",
            "custom",
        ]
        | None
    ) = None
    supported_use_cases: list[Literal["mass-extraction", "mass-import"]] | None = None
    api_resource_links: list[ResourceLink] | None = None


class EventResource(_ApiOrEvent):
    kind: ClassVar[EntityKind] = EntityKind.EVENT_RESOURCE

    resource_definitions: list[EventResourceDefinition] | None = None
    implementation_standard: Literal["custom"] | None = None
    event_resource_links: list[ResourceLink] | None = None


class EntityType(_LifecycleResource):
    kind: ClassVar[EntityKind] = EntityKind.ENTITY_TYPE

    local_id: str
    level: Literal["aggregate"]


class Capability(_Resource):
    kind: ClassVar[EntityKind] = EntityKind.CAPABILITY

    type: Literal["custom", "sap.mdo:mdi-capability:v1"]
    custom_type: SpecificationId | None = None
    related_entity_types: list[OrdIdRef] | None = None
    definitions: list[CapabilityDefinition] | None = None
    system_instance_aware: bool | None = None


class IntegrationDependency(_Resource):
    kind: ClassVar[EntityKind] = EntityKind.INTEGRATION_DEPENDENCY

    sunset_date: AwareDatetime | None = None
    successors: list[OrdIdRef] | None = None
    mandatory: bool
    aspects: list[Aspect] | None = None
    related_integration_dependencies: list[OrdIdRef] | None = None


class Tombstone(OpenOrdModel):
    """Explicit removal marker for a previously published entity."""

    ord_id: OrdIdRef
    removal_date: AwareDatetime
    description: str | None = None


ENTITY_MODELS: dict[EntityKind, type[OrdEntity]] = {
    EntityKind.PACKAGE: Package,
    EntityKind.VENDOR: Vendor,
    EntityKind.PRODUCT: Product,
    EntityKind.CONSUMPTION_BUNDLE: ConsumptionBundle,
    EntityKind.API_RESOURCE: APIResource,
    EntityKind.EVENT_RESOURCE: EventResource,
    EntityKind.ENTITY_TYPE: EntityType,
    EntityKind.CAPABILITY: Capability,
    EntityKind.INTEGRATION_DEPENDENCY: IntegrationDependency,
}
"""Discriminant dispatch: entity kind -> model class."""

DOCUMENT_COLLECTIONS: dict[str, EntityKind] = {
    "vendors": EntityKind.VENDOR,
    "products": EntityKind.PRODUCT,
    "packages": EntityKind.PACKAGE,
    "consumptionBundles": EntityKind.CONSUMPTION_BUNDLE,
    "apiResources": EntityKind.API_RESOURCE,
    "eventResources": EntityKind.EVENT_RESOURCE,
    "entityTypes": EntityKind.ENTITY_TYPE,
    "capabilities": EntityKind.CAPABILITY,
    "integrationDependencies": EntityKind.INTEGRATION_DEPENDENCY,
}
"""ORD document collection key -> entity kind, in dependency order."""


def entity_from_attributes(kind: EntityKind, attributes: dict[str, Any]) -> OrdEntity:
    """Rebuild the typed model of an entity from its camelCase attributes."""
    return ENTITY_MODELS[kind].model_validate(attributes)
