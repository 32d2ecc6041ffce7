"""
Version store for document refs and snapshots.

This module manages the SQLite database that stores:
- Snapshots: stored content versions, retained as history
- Refs: stable document identities pointing at a head snapshot

Invariants:
    - A ref always has a valid head (NOT NULL foreign key)
    - create_ref and save_snapshot are single transactions
    - autosave updates the head snapshot in place and never appends
    - Snapshots are never deleted

How to change safely:
    - Schema migrations must be backward compatible
    - Keep every multi-statement write inside _transaction()
    - Blocking SQLite calls must go through _run() so the event loop stays free

Table schema:
    snapshots:
        - id TEXT (UUID) PRIMARY KEY
        - for_ref TEXT (UUID)
        - content TEXT (JSON)
        - at_time INTEGER (Unix ms)

    refs:
        - id TEXT (UUIDv7) PRIMARY KEY
        - head TEXT NOT NULL REFERENCES snapshots(id)
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

from ..errors import NotFoundError, StorageError
from .models import DocumentContent, IdLike, Ref, Snapshot, coerce_id, new_ref_id

logger = logging.getLogger(__name__)

T = TypeVar("T")


class VersionStore:
    """SQLite store for refs and their snapshots.

    Each operation acquires one of max_connections slots, opens a
    connection, runs in the default executor and closes the connection.
    The slot semaphore bounds concurrent connections like a pool. A slot
    is released when the executor job finishes, so a cancelled caller
    keeps holding it until its connection is closed.

    Example:
        >>> store = VersionStore("/var/lib/refdb/refs.sqlite3")
        >>> await store.initialize()
        >>> ref_id = await store.create_ref({"title": "untitled"})
        >>> await store.autosave(ref_id, {"title": "renamed"})
        >>> await store.read_head_content(ref_id)
        {'title': 'renamed'}
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        database_path: str,
        max_connections: int = 10,
        busy_timeout_ms: int = 5000,
        wal_mode: bool = True,
    ) -> None:
        """Initialize the version store.

        Args:
            database_path: SQLite database file
            max_connections: Maximum concurrent connections
            busy_timeout_ms: SQLite busy timeout
            wal_mode: Enable SQLite WAL mode
        """
        self.database_path = Path(database_path)
        self.max_connections = max_connections
        self.busy_timeout_ms = busy_timeout_ms
        self.wal_mode = wal_mode
        self._slots = asyncio.Semaphore(max_connections)

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection to the database."""
        conn = sqlite3.connect(
            str(self.database_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self, conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements as one IMMEDIATE transaction."""
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            conn.execute("ROLLBACK")
            raise

    async def _run(self, operation: str, fn: Callable[[sqlite3.Connection], T]) -> T:
        """Run fn with a fresh connection in the default executor.

        sqlite3.Error is wrapped in StorageError. Other exceptions
        (NotFoundError, injected failures) propagate unchanged.
        """

        def work() -> T:
            with self._get_connection() as conn:
                return fn(conn)

        await self._slots.acquire()
        try:
            job = asyncio.get_running_loop().run_in_executor(None, work)
        except BaseException:
            self._slots.release()
            raise
        job.add_done_callback(lambda _: self._slots.release())

        try:
            return await asyncio.shield(job)
        except sqlite3.Error as e:
            logger.error(
                f"Storage operation failed: {operation}: {e}",
                extra={"operation": operation},
            )
            raise StorageError(f"{operation} failed: {e}", operation=operation) from e

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS snapshots (
                id TEXT PRIMARY KEY,
                for_ref TEXT,
                content TEXT NOT NULL,
                at_time INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_snapshots_for_ref ON snapshots(for_ref);

            CREATE TABLE IF NOT EXISTS refs (
                id TEXT PRIMARY KEY,
                head TEXT NOT NULL REFERENCES snapshots(id)
            );

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        await self._run("initialize", self._create_schema)
        logger.info(f"Initialized version store: {self.database_path}")

    # ---------- statement helpers (run inside a transaction) ----------

    def _insert_snapshot(
        self,
        conn: sqlite3.Connection,
        ref_id: str,
        content: DocumentContent,
        at_time: int,
    ) -> str:
        snapshot_id = str(uuid.uuid4())
        conn.execute(
            "INSERT INTO snapshots (id, for_ref, content, at_time) VALUES (?, ?, ?, ?)",
            (snapshot_id, ref_id, json.dumps(content), at_time),
        )
        return snapshot_id

    def _insert_ref(self, conn: sqlite3.Connection, ref_id: str, head: str) -> None:
        conn.execute("INSERT INTO refs (id, head) VALUES (?, ?)", (ref_id, head))

    def _set_head(self, conn: sqlite3.Connection, ref_id: str, head: str) -> int:
        cursor = conn.execute("UPDATE refs SET head = ? WHERE id = ?", (head, ref_id))
        return cursor.rowcount

    # ---------- writes ----------

    async def create_ref(self, content: DocumentContent) -> uuid.UUID:
        """Create a new ref with initial content.

        The first snapshot and the ref pointing at it are committed
        together or not at all.

        Args:
            content: Initial document content

        Returns:
            The new ref identifier

        Raises:
            StorageError: If the backing store fails
        """
        ref_uuid = new_ref_id()
        ref_id = str(ref_uuid)
        now = int(time.time() * 1000)

        def work(conn: sqlite3.Connection) -> str:
            with self._transaction(conn):
                snapshot_id = self._insert_snapshot(conn, ref_id, content, now)
                self._insert_ref(conn, ref_id, snapshot_id)
            return snapshot_id

        snapshot_id = await self._run("create_ref", work)

        logger.debug(
            "Created ref",
            extra={"ref_id": ref_id, "snapshot_id": snapshot_id},
        )
        return ref_uuid

    async def autosave(self, ref_id: IdLike, content: DocumentContent) -> None:
        """Overwrite the content of the ref's head snapshot in place.

        No snapshot is created and the head does not move. A missing ref
        affects zero rows and is not an error.

        Args:
            ref_id: Ref identifier
            content: New document content

        Raises:
            StorageError: If the backing store fails
        """
        ref_key = coerce_id(ref_id)
        now = int(time.time() * 1000)

        def work(conn: sqlite3.Connection) -> int:
            cursor = conn.execute(
                """
                UPDATE snapshots
                SET content = ?, at_time = ?
                WHERE id = (SELECT head FROM refs WHERE id = ?)
                """,
                (json.dumps(content), now, ref_key),
            )
            return cursor.rowcount

        updated = await self._run("autosave", work)
        if not updated:
            logger.debug("Autosave matched no ref", extra={"ref_id": ref_key})

    async def save_snapshot(self, ref_id: IdLike, content: DocumentContent) -> None:
        """Append a new snapshot and make it the ref's head.

        The previous head snapshot is not deleted. A missing ref affects
        zero rows and is not an error; no orphan snapshot is written.

        Args:
            ref_id: Ref identifier
            content: Document content for the new snapshot

        Raises:
            StorageError: If the backing store fails
        """
        ref_key = coerce_id(ref_id)
        now = int(time.time() * 1000)

        def work(conn: sqlite3.Connection) -> str | None:
            with self._transaction(conn):
                exists = conn.execute("SELECT 1 FROM refs WHERE id = ?", (ref_key,)).fetchone()
                if exists is None:
                    return None
                snapshot_id = self._insert_snapshot(conn, ref_key, content, now)
                self._set_head(conn, ref_key, snapshot_id)
            return snapshot_id

        snapshot_id = await self._run("save_snapshot", work)
        if snapshot_id is None:
            logger.debug("Save snapshot matched no ref", extra={"ref_id": ref_key})
        else:
            logger.debug(
                "Saved snapshot",
                extra={"ref_id": ref_key, "snapshot_id": snapshot_id},
            )

    # ---------- reads ----------

    async def read_head_content(self, ref_id: IdLike) -> DocumentContent:
        """Get the content of the ref's head snapshot.

        Raises:
            NotFoundError: If the ref or its head snapshot does not exist
            StorageError: If the backing store fails
        """
        ref_key = coerce_id(ref_id)

        def work(conn: sqlite3.Connection) -> sqlite3.Row | None:
            return conn.execute(
                """
                SELECT content FROM snapshots
                WHERE id = (SELECT head FROM refs WHERE id = ?)
                """,
                (ref_key,),
            ).fetchone()

        row = await self._run("read_head_content", work)
        if row is None:
            raise NotFoundError(f"Ref not found: {ref_key}", ref_id=ref_key)
        return json.loads(row["content"])

    async def get_ref(self, ref_id: IdLike) -> Ref:
        """Get a ref by id.

        Raises:
            NotFoundError: If the ref does not exist
        """
        ref_key = coerce_id(ref_id)

        def work(conn: sqlite3.Connection) -> sqlite3.Row | None:
            return conn.execute("SELECT id, head FROM refs WHERE id = ?", (ref_key,)).fetchone()

        row = await self._run("get_ref", work)
        if row is None:
            raise NotFoundError(f"Ref not found: {ref_key}", ref_id=ref_key)
        return Ref(id=uuid.UUID(row["id"]), head=uuid.UUID(row["head"]))

    async def get_snapshot(self, snapshot_id: IdLike) -> Snapshot:
        """Get a snapshot by its own id, head or not.

        Raises:
            NotFoundError: If the snapshot does not exist
        """
        snapshot_key = coerce_id(snapshot_id)

        def work(conn: sqlite3.Connection) -> sqlite3.Row | None:
            return conn.execute(
                "SELECT * FROM snapshots WHERE id = ?", (snapshot_key,)
            ).fetchone()

        row = await self._run("get_snapshot", work)
        if row is None:
            raise NotFoundError(
                f"Snapshot not found: {snapshot_key}", snapshot_id=snapshot_key
            )
        return self._row_to_snapshot(row)

    async def list_snapshots(self, ref_id: IdLike) -> list[Snapshot]:
        """List the snapshots recorded for a ref in creation order.

        Returns an empty list for an unknown ref.
        """
        ref_key = coerce_id(ref_id)

        def work(conn: sqlite3.Connection) -> list[sqlite3.Row]:
            return conn.execute(
                "SELECT * FROM snapshots WHERE for_ref = ? ORDER BY rowid",
                (ref_key,),
            ).fetchall()

        rows = await self._run("list_snapshots", work)
        return [self._row_to_snapshot(row) for row in rows]

    async def count_snapshots(self) -> int:
        """Count all snapshot rows in the store."""

        def work(conn: sqlite3.Connection) -> int:
            return conn.execute("SELECT COUNT(*) FROM snapshots").fetchone()[0]

        return await self._run("count_snapshots", work)

    def _row_to_snapshot(self, row: sqlite3.Row) -> Snapshot:
        """Convert a database row to a Snapshot."""
        for_ref: Any = row["for_ref"]
        return Snapshot(
            id=uuid.UUID(row["id"]),
            for_ref=uuid.UUID(for_ref) if for_ref else None,
            content=json.loads(row["content"]),
            at_time=row["at_time"],
        )


__all__ = ["VersionStore"]
