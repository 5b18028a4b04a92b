"""Graph store protocol.

The store persists what must survive a restart: the merged graph
(entities, retained tombstones, parked entities) and the crawl state of
every registered provider. Any failure is raised as PersistenceError,
the one error that is fatal to the engine.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Protocol, runtime_checkable

from orda.crawler.state import ProviderState
from orda.graph import GraphSnapshot


@runtime_checkable
class GraphStore(Protocol):
    async def save_snapshot(self, snapshot: GraphSnapshot) -> None: ...
    async def load_snapshot(self) -> GraphSnapshot | None: ...
    async def save_provider_state(self, state: ProviderState) -> None: ...
    async def load_provider_states(self) -> dict[str, ProviderState]: ...
    async def delete_provider_state(self, provider_id: str) -> None: ...


class GraphStoreBase(ABC):
    @abstractmethod
    async def save_snapshot(self, snapshot: GraphSnapshot) -> None:
        """Replace the persisted graph with ``snapshot``."""

    @abstractmethod
    async def load_snapshot(self) -> GraphSnapshot | None:
        """Return the persisted graph, or None if nothing was saved yet."""

    @abstractmethod
    async def save_provider_state(self, state: ProviderState) -> None: ...

    @abstractmethod
    async def load_provider_states(self) -> dict[str, ProviderState]: ...

    @abstractmethod
    async def delete_provider_state(self, provider_id: str) -> None: ...
