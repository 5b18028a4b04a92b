"""Base Pydantic model configuration for ORD models.

All ORD models inherit from OrdBaseModel to ensure consistent behavior:
- Immutability (frozen=True) so graph snapshots can be shared with readers
- Strict validation (extra="forbid") to catch typos and unknown fields
- camelCase aliases matching the ORD wire format, populated by name or alias
"""

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class OrdBaseModel(BaseModel):
    """Base model for all ORD documents, entities and graph records.

    Field names are snake_case in Python and camelCase on the wire
    (``part_of_package`` <-> ``partOfPackage``).

    Example:
        >>> class Sample(OrdBaseModel):
        ...     ord_id: str
        >>> Sample.model_validate({"ordId": "sap:vendor:SAP:"}).ord_id
        'sap:vendor:SAP:'
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
        validate_default=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON-compatible form used in ORD documents."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class OpenOrdModel(OrdBaseModel):
    """ORD object that allows additional properties (links, tombstones)."""

    model_config = ConfigDict(extra="allow")
