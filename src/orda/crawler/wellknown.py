"""Well-known ORD configuration (RFC 8615).

A provider serves ``GET /.well-known/open-resource-discovery``::

    {
      "baseUrl": "https://s4.example.com",
      "openResourceDiscoveryV1": {
        "documents": [
          {"url": "/ord/v1/documents/1", "accessStrategies": [{"type": "open"}]}
        ]
      }
    }

Only access strategy *selection* happens here; executing a strategy
(obtaining credentials) is left to the transport configuration.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Literal
from urllib.parse import urljoin

from pydantic import Field

from orda.models.base import OpenOrdModel
from orda.models.constants import WELLKNOWN_CONFIG_KEY
from orda.models.entities import AccessStrategy
from orda.models.enums import AccessStrategyType


class DocumentReference(OpenOrdModel):
    """One ORD document listed by the configuration endpoint."""

    url: str
    access_strategies: list[AccessStrategy] = Field(default_factory=list)
    system_instance_aware: bool | None = None
    perspective: Literal["system-version", "system-instance", "system-independent"] | None = None


class OrdV1Configuration(OpenOrdModel):
    documents: list[DocumentReference] = Field(default_factory=list)


class WellKnownConfig(OpenOrdModel):
    """Parsed ORD configuration of one provider."""

    base_url: str | None = None
    open_resource_discovery_v1: OrdV1Configuration = Field(alias=WELLKNOWN_CONFIG_KEY)

    @property
    def documents(self) -> list[DocumentReference]:
        return self.open_resource_discovery_v1.documents

    def with_default_base_url(self, base_url: str) -> WellKnownConfig:
        if self.base_url:
            return self
        return self.model_copy(update={"base_url": base_url.rstrip("/")})

    def resolve_url(self, url: str) -> str:
        """Resolve a (possibly relative) document URL against the base URL."""
        if not self.base_url:
            return url
        return urljoin(f"{self.base_url}/", url.lstrip("/")) if not url.startswith("http") else url


def strategy_key(strategy: AccessStrategy) -> str:
    """``customType`` for custom strategies, else the strategy type value."""
    if strategy.type == AccessStrategyType.CUSTOM and strategy.custom_type:
        return strategy.custom_type
    return strategy.type.value


def select_access_strategy(
    strategies: Sequence[AccessStrategy], supported: Iterable[str]
) -> AccessStrategy | None:
    """Pick the first declared strategy the aggregator supports.

    An empty list means the resource is openly accessible.

    Example:
        >>> select_access_strategy([AccessStrategy(type="open")], ["open"]).type.value
        'open'
    """
    supported_set = set(supported)
    if not strategies:
        return AccessStrategy(type=AccessStrategyType.OPEN) if "open" in supported_set else None
    for strategy in strategies:
        if strategy_key(strategy) in supported_set:
            return strategy
    return None
