"""In-memory graph store for tests and one-shot runs."""

from __future__ import annotations

import asyncio

from orda.crawler.state import ProviderState
from orda.graph import GraphSnapshot
from orda.store.base import GraphStoreBase


class InMemoryGraphStore(GraphStoreBase):
    """Keeps the latest snapshot and provider states in process memory.

    Snapshots are immutable, so holding a reference is a complete copy.
    """

    def __init__(self) -> None:
        self._snapshot: GraphSnapshot | None = None
        self._states: dict[str, ProviderState] = {}
        self._lock = asyncio.Lock()

    async def save_snapshot(self, snapshot: GraphSnapshot) -> None:
        async with self._lock:
            self._snapshot = snapshot

    async def load_snapshot(self) -> GraphSnapshot | None:
        async with self._lock:
            return self._snapshot

    async def save_provider_state(self, state: ProviderState) -> None:
        async with self._lock:
            self._states[state.provider_id] = state

    async def load_provider_states(self) -> dict[str, ProviderState]:
        async with self._lock:
            return dict(self._states)

    async def delete_provider_state(self, provider_id: str) -> None:
        async with self._lock:
            self._states.pop(provider_id, None)
