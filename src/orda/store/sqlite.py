"""SQLite graph store; the merged graph and crawl state persist across restarts.

Tables:
    entities: one row per graph node (ord_id, kind, state, node JSON)
    tombstones: retained tombstones with their purge-eligibility timestamp
    pending: entities parked on unresolved mandatory references
    issues: per-entity issues of the last commits
    graph_meta: revision and stale providers
    provider_state: crawl metadata per provider (ETags, lastUpdates, failures)

A snapshot is saved as a full replace inside one transaction, so a
reader of the file never sees half of a commit.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite
from pydantic import TypeAdapter

from orda.crawler.state import ProviderState
from orda.errors import PersistenceError
from orda.graph import GraphNode, GraphSnapshot, PendingEntity, TombstoneRecord
from orda.models.issues import ValidationIssue
from orda.observability.logging import get_logger
from orda.store.base import GraphStoreBase

logger = get_logger(__name__)

_DEFAULT_DB_PATH = "orda_state.db"
_ISSUES_ADAPTER = TypeAdapter(list[ValidationIssue])

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS entities (
        ord_id TEXT PRIMARY KEY,
        kind TEXT NOT NULL,
        state TEXT NOT NULL,
        node TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_entities_kind ON entities (kind)",
    """
    CREATE TABLE IF NOT EXISTS tombstones (
        ord_id TEXT PRIMARY KEY,
        purge_after TEXT NOT NULL,
        record TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pending (
        ord_id TEXT PRIMARY KEY,
        entity TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS issues (
        ord_id TEXT PRIMARY KEY,
        issues TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS graph_meta (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS provider_state (
        provider_id TEXT PRIMARY KEY,
        state TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
)


class SQLiteGraphStore(GraphStoreBase):
    """SQLite-backed GraphStore.

    Every operation opens its own connection; failures of the database are
    raised as PersistenceError.
    """

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    @property
    def db_path(self) -> Path:
        return self._db_path

    async def _ensure_tables(self, conn: aiosqlite.Connection) -> None:
        for statement in _SCHEMA:
            await conn.execute(statement)
        await conn.commit()

    async def save_snapshot(self, snapshot: GraphSnapshot) -> None:
        try:
            async with aiosqlite.connect(self._db_path) as conn:
                await self._ensure_tables(conn)
                for table in ("entities", "tombstones", "pending", "issues", "graph_meta"):
                    await conn.execute(f"DELETE FROM {table}")  # nosec B608
                await conn.executemany(
                    "INSERT INTO entities (ord_id, kind, state, node) VALUES (?, ?, ?, ?)",
                    [
                        (ord_id, node.kind.value, node.state.value, node.model_dump_json())
                        for ord_id, node in snapshot.nodes.items()
                    ],
                )
                await conn.executemany(
                    "INSERT INTO tombstones (ord_id, purge_after, record) VALUES (?, ?, ?)",
                    [
                        (ord_id, record.purge_after.isoformat(), record.model_dump_json())
                        for ord_id, record in snapshot.tombstones.items()
                    ],
                )
                await conn.executemany(
                    "INSERT INTO pending (ord_id, entity) VALUES (?, ?)",
                    [
                        (ord_id, entity.model_dump_json())
                        for ord_id, entity in snapshot.pending.items()
                    ],
                )
                await conn.executemany(
                    "INSERT INTO issues (ord_id, issues) VALUES (?, ?)",
                    [
                        (ord_id, _ISSUES_ADAPTER.dump_json(list(issues)).decode("utf-8"))
                        for ord_id, issues in snapshot.issues.items()
                    ],
                )
                await conn.executemany(
                    "INSERT INTO graph_meta (key, value) VALUES (?, ?)",
                    [
                        ("revision", str(snapshot.revision)),
                        ("stale_providers", json.dumps(sorted(snapshot.stale_providers))),
                    ],
                )
                await conn.commit()
        except (aiosqlite.Error, OSError) as e:
            raise PersistenceError("save_snapshot", str(e)) from e
        logger.debug(
            "orda.store.snapshot_saved",
            revision=snapshot.revision,
            entities=len(snapshot.nodes),
            tombstones=len(snapshot.tombstones),
        )

    async def load_snapshot(self) -> GraphSnapshot | None:
        try:
            async with aiosqlite.connect(self._db_path) as conn:
                await self._ensure_tables(conn)
                async with conn.execute("SELECT key, value FROM graph_meta") as cursor:
                    meta = {row[0]: row[1] async for row in cursor}
                if "revision" not in meta:
                    return None
                async with conn.execute("SELECT ord_id, node FROM entities") as cursor:
                    nodes = {
                        row[0]: GraphNode.model_validate_json(row[1]) async for row in cursor
                    }
                async with conn.execute("SELECT ord_id, record FROM tombstones") as cursor:
                    tombstones = {
                        row[0]: TombstoneRecord.model_validate_json(row[1]) async for row in cursor
                    }
                async with conn.execute("SELECT ord_id, entity FROM pending") as cursor:
                    pending = {
                        row[0]: PendingEntity.model_validate_json(row[1]) async for row in cursor
                    }
                async with conn.execute("SELECT ord_id, issues FROM issues") as cursor:
                    issues = {
                        row[0]: tuple(_ISSUES_ADAPTER.validate_json(row[1])) async for row in cursor
                    }
        except (aiosqlite.Error, OSError, ValueError) as e:
            raise PersistenceError("load_snapshot", str(e)) from e
        return GraphSnapshot(
            nodes=nodes,
            tombstones=tombstones,
            pending=pending,
            issues=issues,
            stale_providers=frozenset(json.loads(meta.get("stale_providers", "[]"))),
            revision=int(meta["revision"]),
        )

    async def save_provider_state(self, state: ProviderState) -> None:
        try:
            async with aiosqlite.connect(self._db_path) as conn:
                await self._ensure_tables(conn)
                await conn.execute(
                    """
                    INSERT OR REPLACE INTO provider_state (provider_id, state, updated_at)
                    VALUES (?, ?, ?)
                    """,
                    (
                        state.provider_id,
                        state.model_dump_json(),
                        datetime.now(timezone.utc).isoformat(),
                    ),
                )
                await conn.commit()
        except (aiosqlite.Error, OSError) as e:
            raise PersistenceError("save_provider_state", str(e)) from e

    async def load_provider_states(self) -> dict[str, ProviderState]:
        try:
            async with aiosqlite.connect(self._db_path) as conn:
                await self._ensure_tables(conn)
                async with conn.execute("SELECT provider_id, state FROM provider_state") as cursor:
                    return {
                        row[0]: ProviderState.model_validate_json(row[1]) async for row in cursor
                    }
        except (aiosqlite.Error, OSError, ValueError) as e:
            raise PersistenceError("load_provider_states", str(e)) from e

    async def delete_provider_state(self, provider_id: str) -> None:
        try:
            async with aiosqlite.connect(self._db_path) as conn:
                await self._ensure_tables(conn)
                await conn.execute(
                    "DELETE FROM provider_state WHERE provider_id = ?", (provider_id,)
                )
                await conn.commit()
        except (aiosqlite.Error, OSError) as e:
            raise PersistenceError("delete_provider_state", str(e)) from e
