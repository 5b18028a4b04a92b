"""Shared pytest fixtures for ORD aggregator tests.

This module provides common fixtures used across multiple test modules,
reducing duplication and ensuring consistency in test data.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime
from pathlib import Path

import pytest

from orda.aggregator import Aggregator
from orda.config import AggregatorConfig, RetryConfig
from orda.merge import MergeEngine
from orda.observability.metrics import get_metrics, reset_metrics
from orda.store import InMemoryGraphStore, SQLiteGraphStore

from factories import CRAWL_TIME


@pytest.fixture(autouse=True)
def _reset_metrics() -> Iterator[None]:
    """Start every test with zeroed counters."""
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def crawl_time() -> datetime:
    return CRAWL_TIME


@pytest.fixture
def fast_retry() -> RetryConfig:
    """Retry settings without real backoff sleeps."""
    return RetryConfig(max_retries=3, base_delay=0.0, max_delay=0.0, jitter=False)


@pytest.fixture
def config(fast_retry: RetryConfig) -> AggregatorConfig:
    return AggregatorConfig(retry=fast_retry)


@pytest.fixture
def memory_store() -> InMemoryGraphStore:
    return InMemoryGraphStore()


@pytest.fixture
def sqlite_store(tmp_path: Path) -> SQLiteGraphStore:
    """Fresh SQLiteGraphStore for each test (isolated DB)."""
    return SQLiteGraphStore(db_path=str(tmp_path / "orda_test.db"))


@pytest.fixture
def engine() -> MergeEngine:
    return MergeEngine()


@pytest.fixture
def aggregator(config: AggregatorConfig, memory_store: InMemoryGraphStore) -> Aggregator:
    """Aggregator backed by an in-memory store."""
    return Aggregator(config, store=memory_store)


@pytest.fixture
def metrics():
    return get_metrics()
