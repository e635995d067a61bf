"""
SQLite object store for SchemaBridge.

This module persists the objects the migration driver rewrites, plus the
bookkeeping the driver needs:
- Objects with their stored version and a resource_version counter
- Stored-versions list per kind (which versions are still referenced)
- Migration checkpoints (serialised MigrationCursor)
- Single-run leases per kind

Any store offering the ObjectStore protocol can replace it; the migration
driver only depends on the protocol.

Invariants:
    - resource_version increases by one on every write of an object
    - compare_and_swap never overwrites a row whose resource_version moved
    - At most one unexpired lease per kind

How to change safely:
    - Schema migrations must be backward compatible
    - Use transactions for all write operations
    - Keep compare_and_swap a single IMMEDIATE transaction

Table schema:
    objects:
        - kind TEXT
        - key TEXT
        - stored_version TEXT (version part of apiVersion)
        - body_json TEXT
        - resource_version INTEGER
        - updated_at INTEGER (Unix ms)
        - PRIMARY KEY (kind, key)

    storage_state:
        - kind TEXT PRIMARY KEY
        - stored_versions_json TEXT
        - updated_at INTEGER

    migration_checkpoints:
        - handle TEXT PRIMARY KEY
        - kind TEXT
        - state TEXT
        - cursor_json TEXT
        - updated_at INTEGER

    leases:
        - kind TEXT PRIMARY KEY
        - holder TEXT
        - expires_at INTEGER (Unix ms)
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from ..conversion.objects import object_version
from ..errors import WriteConflictError

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ObjectRef:
    """Listing entry for a persisted object.

    Attributes:
        key: Object key within its kind
        stored_version: Version the object was last written with
            (None if the store cannot report it without reading the object)
        resource_version: Optimistic-concurrency token
    """

    key: str
    stored_version: str | None
    resource_version: int


@dataclass
class StoredObject:
    """A persisted object.

    Attributes:
        kind: Resource kind
        key: Object key within its kind
        obj: Decoded object (including apiVersion)
        resource_version: Optimistic-concurrency token
        updated_at: Last write timestamp (Unix ms)
    """

    kind: str
    key: str
    obj: dict[str, Any]
    resource_version: int
    updated_at: int

    @property
    def stored_version(self) -> str:
        return object_version(self.obj)


class ObjectStore(Protocol):
    """Store interface consumed by the migration driver and manager."""

    async def list_objects(self, kind: str) -> list[ObjectRef]: ...

    async def get(self, kind: str, key: str) -> StoredObject | None: ...

    async def compare_and_swap(
        self,
        kind: str,
        key: str,
        obj: dict[str, Any],
        expected_resource_version: int,
    ) -> int: ...

    async def get_stored_versions(self, kind: str) -> list[str]: ...

    async def set_stored_versions(self, kind: str, versions: list[str]) -> None: ...

    async def save_checkpoint(
        self, handle: str, kind: str, state: str, data: dict[str, Any]
    ) -> None: ...

    async def load_checkpoint(self, handle: str) -> dict[str, Any] | None: ...

    async def latest_checkpoint(self, kind: str) -> dict[str, Any] | None: ...

    async def list_checkpoints(
        self, states: tuple[str, ...] | None = None
    ) -> list[dict[str, Any]]: ...

    async def acquire_lease(self, kind: str, holder: str, ttl_seconds: float) -> bool: ...

    async def release_lease(self, kind: str, holder: str) -> None: ...


class SqliteObjectStore:
    """SQLite implementation of :class:`ObjectStore`.

    Thread safety:
        Each database connection is created per-operation.
        SQLite handles concurrent access via WAL mode; writes are serialised
        within the process by an asyncio lock.

    Example:
        >>> store = SqliteObjectStore("/var/lib/schemabridge")
        >>> await store.initialize()
        >>> rv = await store.put("Widget", "w1", {"apiVersion": "example.com/v1", ...})
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str,
        db_filename: str = "objects.db",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the store.

        Args:
            data_dir: Directory for the SQLite database file
            db_filename: Database file name
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_filename
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._lock = asyncio.Lock()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection, closed on exit."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS objects (
                kind TEXT NOT NULL,
                key TEXT NOT NULL,
                stored_version TEXT NOT NULL,
                body_json TEXT NOT NULL,
                resource_version INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                PRIMARY KEY (kind, key)
            );

            CREATE INDEX IF NOT EXISTS idx_objects_version
                ON objects(kind, stored_version);

            CREATE TABLE IF NOT EXISTS storage_state (
                kind TEXT PRIMARY KEY,
                stored_versions_json TEXT NOT NULL DEFAULT '[]',
                updated_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS migration_checkpoints (
                handle TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                state TEXT NOT NULL,
                cursor_json TEXT NOT NULL,
                updated_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_checkpoints_kind
                ON migration_checkpoints(kind, updated_at DESC);

            CREATE TABLE IF NOT EXISTS leases (
                kind TEXT PRIMARY KEY,
                holder TEXT NOT NULL,
                expires_at INTEGER NOT NULL
            );

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        async with self._lock:
            with self._get_connection() as conn:
                self._create_schema(conn)
        logger.info(f"Initialized object store: {self.db_path}")

    # --- Objects ---

    async def put(self, kind: str, key: str, obj: dict[str, Any]) -> int:
        """Write an object unconditionally.

        Returns:
            The new resource_version
        """
        version = object_version(obj)
        body = json.dumps(obj, sort_keys=True)
        now = _now_ms()
        async with self._lock:
            with self._transaction() as conn:
                row = conn.execute(
                    "SELECT resource_version FROM objects WHERE kind = ? AND key = ?",
                    (kind, key),
                ).fetchone()
                new_rv = 1 if row is None else row["resource_version"] + 1
                conn.execute(
                    """
                    INSERT INTO objects
                        (kind, key, stored_version, body_json, resource_version, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(kind, key) DO UPDATE SET
                        stored_version = excluded.stored_version,
                        body_json = excluded.body_json,
                        resource_version = excluded.resource_version,
                        updated_at = excluded.updated_at
                    """,
                    (kind, key, version, body, new_rv, now),
                )
        return new_rv

    async def get(self, kind: str, key: str) -> StoredObject | None:
        """Read one object, or None if it does not exist."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM objects WHERE kind = ? AND key = ?",
                (kind, key),
            ).fetchone()
        if row is None:
            return None
        return StoredObject(
            kind=row["kind"],
            key=row["key"],
            obj=json.loads(row["body_json"]),
            resource_version=row["resource_version"],
            updated_at=row["updated_at"],
        )

    async def list_objects(self, kind: str) -> list[ObjectRef]:
        """List every object of a kind with its stored version, ordered by key."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT key, stored_version, resource_version FROM objects
                WHERE kind = ? ORDER BY key
                """,
                (kind,),
            ).fetchall()
        return [
            ObjectRef(
                key=row["key"],
                stored_version=row["stored_version"],
                resource_version=row["resource_version"],
            )
            for row in rows
        ]

    async def delete(self, kind: str, key: str) -> bool:
        """Delete an object. Returns whether it existed."""
        async with self._lock:
            with self._transaction() as conn:
                cursor = conn.execute(
                    "DELETE FROM objects WHERE kind = ? AND key = ?", (kind, key)
                )
                return cursor.rowcount > 0

    async def compare_and_swap(
        self,
        kind: str,
        key: str,
        obj: dict[str, Any],
        expected_resource_version: int,
    ) -> int:
        """Write ``obj`` only if the row still has ``expected_resource_version``.

        Returns:
            The new resource_version

        Raises:
            WriteConflictError: If the object changed or was deleted
        """
        version = object_version(obj)
        body = json.dumps(obj, sort_keys=True)
        async with self._lock:
            with self._transaction() as conn:
                row = conn.execute(
                    "SELECT resource_version FROM objects WHERE kind = ? AND key = ?",
                    (kind, key),
                ).fetchone()
                actual = None if row is None else row["resource_version"]
                if actual != expected_resource_version:
                    raise WriteConflictError(kind, key, expected_resource_version, actual)

                new_rv = expected_resource_version + 1
                conn.execute(
                    """
                    UPDATE objects
                    SET stored_version = ?, body_json = ?, resource_version = ?, updated_at = ?
                    WHERE kind = ? AND key = ?
                    """,
                    (version, body, new_rv, _now_ms(), kind, key),
                )
        return new_rv

    async def count_by_version(self, kind: str) -> dict[str, int]:
        """Number of persisted objects per stored version."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT stored_version, COUNT(*) AS n FROM objects
                WHERE kind = ? GROUP BY stored_version
                """,
                (kind,),
            ).fetchall()
        return {row["stored_version"]: row["n"] for row in rows}

    # --- Storage-version bookkeeping ---

    async def get_stored_versions(self, kind: str) -> list[str]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT stored_versions_json FROM storage_state WHERE kind = ?",
                (kind,),
            ).fetchone()
        return [] if row is None else json.loads(row["stored_versions_json"])

    async def set_stored_versions(self, kind: str, versions: list[str]) -> None:
        async with self._lock:
            with self._transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO storage_state (kind, stored_versions_json, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(kind) DO UPDATE SET
                        stored_versions_json = excluded.stored_versions_json,
                        updated_at = excluded.updated_at
                    """,
                    (kind, json.dumps(versions), _now_ms()),
                )

    # --- Checkpoints ---

    async def save_checkpoint(
        self,
        handle: str,
        kind: str,
        state: str,
        data: dict[str, Any],
    ) -> None:
        """Persist a migration cursor under its handle."""
        async with self._lock:
            with self._transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO migration_checkpoints (handle, kind, state, cursor_json, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(handle) DO UPDATE SET
                        state = excluded.state,
                        cursor_json = excluded.cursor_json,
                        updated_at = excluded.updated_at
                    """,
                    (handle, kind, state, json.dumps(data, sort_keys=True), _now_ms()),
                )

    async def load_checkpoint(self, handle: str) -> dict[str, Any] | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT cursor_json FROM migration_checkpoints WHERE handle = ?",
                (handle,),
            ).fetchone()
        return None if row is None else json.loads(row["cursor_json"])

    async def list_checkpoints(self, states: tuple[str, ...] | None = None) -> list[dict[str, Any]]:
        """All checkpoints (optionally filtered by state), newest first."""
        query = "SELECT cursor_json FROM migration_checkpoints"
        params: tuple = ()
        if states:
            query += f" WHERE state IN ({', '.join('?' for _ in states)})"
            params = tuple(states)
        query += " ORDER BY updated_at DESC"
        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [json.loads(row["cursor_json"]) for row in rows]

    async def latest_checkpoint(self, kind: str) -> dict[str, Any] | None:
        """Most recently updated checkpoint for a kind."""
        with self._get_connection() as conn:
            row = conn.execute(
                """
                SELECT cursor_json FROM migration_checkpoints
                WHERE kind = ?
                ORDER BY updated_at DESC
                LIMIT 1
                """,
                (kind,),
            ).fetchone()
        return json.loads(row["cursor_json"]) if row else None

    # --- Leases ---

    async def acquire_lease(self, kind: str, holder: str, ttl_seconds: float) -> bool:
        """Take or renew the run lease for a kind.

        Returns:
            True if ``holder`` now owns the lease, False if another holder does
        """
        now = _now_ms()
        async with self._lock:
            with self._transaction() as conn:
                row = conn.execute(
                    "SELECT holder, expires_at FROM leases WHERE kind = ?", (kind,)
                ).fetchone()
                if row is not None and row["holder"] != holder and row["expires_at"] > now:
                    return False
                conn.execute(
                    """
                    INSERT INTO leases (kind, holder, expires_at) VALUES (?, ?, ?)
                    ON CONFLICT(kind) DO UPDATE SET
                        holder = excluded.holder,
                        expires_at = excluded.expires_at
                    """,
                    (kind, holder, now + int(ttl_seconds * 1000)),
                )
                return True

    async def release_lease(self, kind: str, holder: str) -> None:
        async with self._lock:
            with self._transaction() as conn:
                conn.execute(
                    "DELETE FROM leases WHERE kind = ? AND holder = ?", (kind, holder)
                )
