"""Graph and provider-state persistence.

Example:
    >>> store = create_graph_store(AggregatorConfig(storage_backend="sqlite"))
    >>> await store.save_snapshot(engine.snapshot)
"""

from __future__ import annotations

from orda.config import AggregatorConfig
from orda.store.base import GraphStore, GraphStoreBase
from orda.store.memory import InMemoryGraphStore
from orda.store.sqlite import SQLiteGraphStore


def create_graph_store(config: AggregatorConfig | None = None) -> GraphStoreBase:
    """Build the store selected by ``config.storage_backend``."""
    config = config or AggregatorConfig()
    if config.storage_backend == "sqlite":
        return SQLiteGraphStore(config.storage_path)
    return InMemoryGraphStore()


__all__ = [
    "GraphStore",
    "GraphStoreBase",
    "InMemoryGraphStore",
    "SQLiteGraphStore",
    "create_graph_store",
]
