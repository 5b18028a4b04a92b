"""Tests for graph store persistence."""

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from orda.config import AggregatorConfig
from orda.crawler.state import DocumentCacheEntry, ProviderState
from orda.errors import PersistenceError
from orda.graph import GraphSnapshot
from orda.merge import MergeEngine
from orda.store import (
    GraphStore,
    InMemoryGraphStore,
    SQLiteGraphStore,
    create_graph_store,
)

from factories import (
    API_ID,
    PACKAGE_ID,
    api_resource,
    batch,
    document,
    full_document,
    tombstone,
)


def populated_snapshot(crawl_time: datetime) -> GraphSnapshot:
    """Graph with an active entity, a tombstone, a parked entity and issues."""
    engine = MergeEngine()
    engine.commit(batch("s4", full_document(), crawled_at=crawl_time))
    engine.commit(
        batch(
            "s4",
            document(
                apiResources=[
                    api_resource(
                        "sap.s4:apiResource:parked:v1", partOfPackage="sap.s4:package:other:v1"
                    )
                ],
                tombstones=[tombstone(API_ID, "2024-06-01T18:00:00Z")],
            ),
            crawled_at=crawl_time + timedelta(days=1),
            complete=False,
        )
    )
    engine.mark_provider_stale("s4")
    return engine.snapshot


class TestSQLiteSnapshot:
    @pytest.mark.asyncio
    async def test_empty_store_has_no_snapshot(self, sqlite_store: SQLiteGraphStore) -> None:
        assert await sqlite_store.load_snapshot() is None

    @pytest.mark.asyncio
    async def test_snapshot_round_trip(
        self, sqlite_store: SQLiteGraphStore, crawl_time: datetime
    ) -> None:
        snapshot = populated_snapshot(crawl_time)

        await sqlite_store.save_snapshot(snapshot)
        loaded = await sqlite_store.load_snapshot()

        assert loaded is not None
        assert loaded.revision == snapshot.revision
        assert loaded.fingerprint() == snapshot.fingerprint()
        assert loaded.stale_providers == frozenset({"s4"})
        assert loaded.nodes[PACKAGE_ID] == snapshot.nodes[PACKAGE_ID]
        assert set(loaded.pending) == {"sap.s4:apiResource:parked:v1"}
        assert loaded.tombstones[API_ID].purge_after == snapshot.tombstones[API_ID].purge_after
        assert loaded.issues == snapshot.issues

    @pytest.mark.asyncio
    async def test_save_replaces_previous_graph(
        self, sqlite_store: SQLiteGraphStore, crawl_time: datetime
    ) -> None:
        await sqlite_store.save_snapshot(populated_snapshot(crawl_time))

        await sqlite_store.save_snapshot(GraphSnapshot(revision=9))
        loaded = await sqlite_store.load_snapshot()

        assert loaded is not None
        assert loaded.revision == 9
        assert len(loaded) == 0
        assert loaded.tombstones == {}

    @pytest.mark.asyncio
    async def test_survives_new_store_instance(
        self, tmp_path: Path, crawl_time: datetime
    ) -> None:
        path = tmp_path / "restart.db"
        snapshot = populated_snapshot(crawl_time)
        await SQLiteGraphStore(path).save_snapshot(snapshot)

        loaded = await SQLiteGraphStore(path).load_snapshot()

        assert loaded is not None
        assert loaded.fingerprint() == snapshot.fingerprint()

    @pytest.mark.asyncio
    async def test_unwritable_location_raises_persistence_error(self, tmp_path: Path) -> None:
        store = SQLiteGraphStore(tmp_path / "missing" / "dir" / "orda.db")

        with pytest.raises(PersistenceError) as exc_info:
            await store.save_snapshot(GraphSnapshot())

        assert exc_info.value.operation == "save_snapshot"
        assert exc_info.value.code == "ord:store/persistence"


class TestProviderState:
    """Crawl state survives restarts in both stores."""

    @pytest.fixture(params=["memory", "sqlite"])
    def store(self, request: pytest.FixtureRequest, tmp_path: Path):
        if request.param == "memory":
            return InMemoryGraphStore()
        return SQLiteGraphStore(tmp_path / "state.db")

    @pytest.mark.asyncio
    async def test_save_load_delete(self, store, crawl_time: datetime) -> None:
        state = ProviderState(
            provider_id="s4",
            base_url="https://s4.example.com",
            documents={
                "https://s4.example.com/ord/v1/documents/1": DocumentCacheEntry(
                    etag='"abc"', body="{}", fetched_at=crawl_time
                )
            },
            resource_last_updates={API_ID: "2024-05-01T00:00:00+00:00"},
        ).record_failure(crawl_time, "HTTP 503")

        await store.save_provider_state(state)
        loaded = await store.load_provider_states()

        assert loaded == {"s4": state}

        await store.delete_provider_state("s4")

        assert await store.load_provider_states() == {}

    @pytest.mark.asyncio
    async def test_save_overwrites(self, store, crawl_time: datetime) -> None:
        first = ProviderState(provider_id="s4")
        await store.save_provider_state(first)

        await store.save_provider_state(first.record_success(crawl_time, {}, {}))

        loaded = (await store.load_provider_states())["s4"]
        assert loaded.last_success == crawl_time

    def test_implements_protocol(self, store) -> None:
        assert isinstance(store, GraphStore)


class TestCreateGraphStore:
    def test_default_is_memory(self) -> None:
        assert isinstance(create_graph_store(), InMemoryGraphStore)

    def test_sqlite_backend(self, tmp_path: Path) -> None:
        config = AggregatorConfig(storage_backend="sqlite", storage_path=str(tmp_path / "g.db"))

        store = create_graph_store(config)

        assert isinstance(store, SQLiteGraphStore)
        assert store.db_path == tmp_path / "g.db"


@pytest.mark.asyncio
async def test_memory_store_keeps_latest_snapshot(crawl_time: datetime) -> None:
    store = InMemoryGraphStore()
    snapshot = populated_snapshot(crawl_time)

    await store.save_snapshot(snapshot)

    assert await store.load_snapshot() is snapshot
