"""
Base Database - Row, outbox and meta operations on the local store.

Mirrored tables hold one JSON document per row. User writes go through
put/update/delete, which append an outbox entry in the same transaction as
the row change. Pull writes go through apply_remote_rows and never touch the
outbox.
"""

import asyncio
import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Iterable, Optional

import aiosqlite

from logbook.database.schema import MIRROR_TABLES
from logbook.normalize import get_descriptor, iso_utc

logger = logging.getLogger(__name__)

OUTBOX_OPS = ("insert", "update", "delete")

LAST_SYNC_KEY = "last_sync"
PREFERRED_CONTRIBUTOR_KEY = "preferred_contributor_id"


def _now_iso() -> str:
    return iso_utc(datetime.now(timezone.utc))


class BaseDatabase:
    """Shared operations for the local store."""

    _connection: Optional[aiosqlite.Connection] = None
    _write_lock: Optional[asyncio.Lock] = None
    _last_ts: int = 0
    _write_listeners: Optional[list[Callable[[str], Any]]] = None

    @property
    def conn(self) -> aiosqlite.Connection:
        """Get database connection."""
        if not self._connection:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Run a unit of work under the write lock with a single commit.

        Rolls back on any error. Not reentrant: helpers called inside a
        transaction must use the underscore-prefixed methods.
        """
        if self._write_lock is None:
            self._write_lock = asyncio.Lock()
        async with self._write_lock:
            conn = self.conn
            try:
                yield conn
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise

    @staticmethod
    def _check_table(table: str) -> None:
        if table not in MIRROR_TABLES:
            raise ValueError(f"Unknown table: {table}")

    # -------------------------------------------------------------------------
    # Rows (reads)
    # -------------------------------------------------------------------------

    async def get(self, table: str, row_id: str) -> Optional[dict]:
        """Get a row by id."""
        self._check_table(table)
        return await self._get_row(table, row_id)

    async def _get_row(self, table: str, row_id: str) -> Optional[dict]:
        cursor = await self.conn.execute(f"SELECT data FROM {table} WHERE id = ?", (row_id,))  # noqa: S608
        row = await cursor.fetchone()
        return json.loads(row["data"]) if row else None

    async def query(self, table: str, predicate: Optional[Callable[[dict], bool]] = None) -> list[dict]:
        """Get all rows of a table, optionally filtered by a predicate."""
        self._check_table(table)
        cursor = await self.conn.execute(f"SELECT data FROM {table} ORDER BY rowid")  # noqa: S608
        rows = [json.loads(row["data"]) for row in await cursor.fetchall()]
        if predicate is None:
            return rows
        return [row for row in rows if predicate(row)]

    async def get_ids(self, table: str) -> set[str]:
        """Get the ids of every row in a table."""
        self._check_table(table)
        cursor = await self.conn.execute(f"SELECT id FROM {table}")  # noqa: S608
        return {row["id"] for row in await cursor.fetchall()}

    async def count(self, table: str) -> int:
        self._check_table(table)
        cursor = await self.conn.execute(f"SELECT COUNT(*) FROM {table}")  # noqa: S608
        row = await cursor.fetchone()
        return row[0] if row else 0

    # -------------------------------------------------------------------------
    # Rows (user writes, always paired with an outbox entry)
    # -------------------------------------------------------------------------

    async def put(self, table: str, row: dict) -> dict:
        """
        Insert or update a row and queue the mutation.

        New rows get an id (uuid4 if missing) plus created_at/updated_at and
        queue an 'insert'; existing rows are merged with the changes, get a
        fresh updated_at and queue an 'update' carrying the merged snapshot.

        Returns:
            The stored row
        """
        self._check_table(table)
        async with self.transaction():
            existing = await self._get_row(table, row["id"]) if row.get("id") else None
            now = _now_iso()
            if existing is None:
                record = {**row, "id": row.get("id") or str(uuid.uuid4()), "created_at": now, "updated_at": now}
                op = "insert"
            else:
                record = {**existing, **row, "updated_at": now}
                op = "update"
            if table == "txns":
                record["is_settlement"] = bool(record.get("is_settlement"))
                record["settled"] = bool(record.get("settled"))
                record.setdefault("deleted", False)
            await self._write_row(table, record)
            await self._append_outbox(table, op, record)
        self._notify_write(table)
        return record

    async def update(self, table: str, row_id: str, changes: dict) -> dict:
        """Apply changes to an existing row. Raises KeyError if the row is missing."""
        if await self.get(table, row_id) is None:
            raise KeyError(f"{table}/{row_id} not found")
        return await self.put(table, {**changes, "id": row_id})

    async def delete(self, table: str, row_id: str) -> bool:
        """
        Delete a row and queue the deletion.

        Soft-delete tables keep the row with deleted=True; others remove it.

        Returns:
            False if the row does not exist (nothing queued)
        """
        self._check_table(table)
        descriptor = get_descriptor(table)
        async with self.transaction():
            existing = await self._get_row(table, row_id)
            if existing is None:
                return False
            if descriptor is not None and descriptor.soft_delete:
                await self._write_row(table, {**existing, "deleted": True, "updated_at": _now_iso()})
            else:
                await self.conn.execute(f"DELETE FROM {table} WHERE id = ?", (row_id,))  # noqa: S608
            await self._append_outbox(table, "delete", {"id": row_id})
        self._notify_write(table)
        return True

    def on_write(self, listener: Callable[[str], Any]) -> None:
        """Call ``listener(table)`` after every committed user write."""
        if self._write_listeners is None:
            self._write_listeners = []
        self._write_listeners.append(listener)

    def _notify_write(self, table: str) -> None:
        for listener in list(self._write_listeners or ()):
            try:
                listener(table)
            except Exception as e:
                logger.error(f"Write listener failed for {table}: {e}")

    async def _write_row(self, table: str, row: dict) -> None:
        await self.conn.execute(
            f"INSERT OR REPLACE INTO {table} (id, data, updated_at) VALUES (?, ?, ?)",  # noqa: S608
            (row["id"], json.dumps(row), row.get("updated_at")),
        )

    # -------------------------------------------------------------------------
    # Rows (pull writes, no outbox)
    # -------------------------------------------------------------------------

    async def apply_remote_rows(
        self,
        table: str,
        rows: list[dict],
        prune: bool = True,
        protected_ids: Iterable[str] = (),
    ) -> dict[str, int]:
        """
        Reconcile a table with confirmed remote rows in one transaction.

        Rows with queued outbox entries are read under the same write lock as
        the upsert and prune, so a user write landing mid-pull is never
        overwritten or pruned.

        Args:
            table: Mirror table name
            rows: Rows already in local shape
            prune: Delete local rows whose id is absent from ``rows``
            protected_ids: Extra ids to leave untouched (e.g. malformed remote rows)

        Returns:
            Counts: {'upserted': n, 'pruned': n, 'protected': n}
        """
        self._check_table(table)
        upserted = skipped = pruned = 0
        async with self.transaction():
            protected = set(protected_ids) | await self._pending_ids(table)
            for row in rows:
                if row["id"] in protected:
                    skipped += 1
                    continue
                await self._write_row(table, row)
                upserted += 1

            if prune:
                remote_ids = {row["id"] for row in rows}
                cursor = await self.conn.execute(f"SELECT id FROM {table}")  # noqa: S608
                stale = [r["id"] for r in await cursor.fetchall() if r["id"] not in remote_ids and r["id"] not in protected]
                for row_id in stale:
                    await self.conn.execute(f"DELETE FROM {table} WHERE id = ?", (row_id,))  # noqa: S608
                pruned = len(stale)
        return {"upserted": upserted, "pruned": pruned, "protected": skipped}

    # -------------------------------------------------------------------------
    # Outbox rows
    # -------------------------------------------------------------------------

    def _next_ts(self) -> int:
        """Monotonic enqueue timestamp in microseconds, strictly increasing."""
        ts = max(time.time_ns() // 1000, self._last_ts + 1)
        self._last_ts = ts
        return ts

    async def _append_outbox(self, table: str, op: str, row: dict) -> int:
        if op not in OUTBOX_OPS:
            raise ValueError(f"Unknown outbox operation: {op}")
        cursor = await self.conn.execute(
            "INSERT INTO outbox (table_name, op, row, ts) VALUES (?, ?, ?, ?)",
            (table, op, json.dumps(row), self._next_ts()),
        )
        return cursor.lastrowid

    async def append_outbox(self, table: str, op: str, row: dict) -> int:
        """Append an outbox entry on its own. Returns the entry id."""
        self._check_table(table)
        async with self.transaction():
            return await self._append_outbox(table, op, row)

    async def get_outbox_entries(self, table: Optional[str] = None) -> list[dict]:
        """Outbox entries in replay order."""
        query = "SELECT id, table_name, op, row, ts FROM outbox"
        params: list[Any] = []
        if table:
            query += " WHERE table_name = ?"
            params.append(table)
        query += " ORDER BY ts, id"
        cursor = await self.conn.execute(query, params)
        result = []
        for row in await cursor.fetchall():
            entry = dict(row)
            entry["row"] = json.loads(entry["row"])
            result.append(entry)
        return result

    async def _pending_ids(self, table: str) -> set[str]:
        cursor = await self.conn.execute("SELECT row FROM outbox WHERE table_name = ?", (table,))
        ids = set()
        for record in await cursor.fetchall():
            row = json.loads(record["row"])
            if isinstance(row, dict) and row.get("id"):
                ids.add(row["id"])
        return ids

    async def get_pending_ids(self, table: str) -> set[str]:
        """Row ids of a table that still have queued outbox entries."""
        return await self._pending_ids(table)

    async def delete_outbox_entry(self, entry_id: int) -> bool:
        async with self.transaction() as conn:
            cursor = await conn.execute("DELETE FROM outbox WHERE id = ?", (entry_id,))
        return cursor.rowcount > 0

    async def get_outbox_count(self) -> int:
        cursor = await self.conn.execute("SELECT COUNT(*) FROM outbox")
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def get_max_outbox_ts(self) -> int:
        cursor = await self.conn.execute("SELECT MAX(ts) FROM outbox")
        row = await cursor.fetchone()
        return int(row[0]) if row and row[0] is not None else 0

    # -------------------------------------------------------------------------
    # Meta registry
    # -------------------------------------------------------------------------

    async def get_meta(self, key: str, default: Any = None) -> Any:
        """Get a meta value by key."""
        cursor = await self.conn.execute("SELECT value FROM meta WHERE key = ?", (key,))
        row = await cursor.fetchone()
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except (json.JSONDecodeError, TypeError):
            return row["value"]

    async def set_meta(self, key: str, value: Any) -> None:
        """Set a meta value."""
        json_value = json.dumps(value) if not isinstance(value, str) else value
        async with self.transaction() as conn:
            await conn.execute("INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)", (key, json_value))

    async def delete_meta(self, key: str) -> None:
        async with self.transaction() as conn:
            await conn.execute("DELETE FROM meta WHERE key = ?", (key,))

    async def get_all_meta(self, prefix: str = "") -> dict:
        """Get meta values as a dictionary, optionally limited to keys with a prefix."""
        cursor = await self.conn.execute("SELECT key, value FROM meta WHERE key LIKE ?", (f"{prefix}%",))
        rows = await cursor.fetchall()
        result = {}
        for row in rows:
            try:
                result[row["key"]] = json.loads(row["value"])
            except (json.JSONDecodeError, TypeError):
                result[row["key"]] = row["value"]
        return result

    async def get_last_sync(self) -> Optional[str]:
        return await self.get_meta(LAST_SYNC_KEY)

    async def set_last_sync(self, iso: str) -> None:
        await self.set_meta(LAST_SYNC_KEY, iso)

    async def get_preferred_contributor_id(self) -> Optional[str]:
        return await self.get_meta(PREFERRED_CONTRIBUTOR_KEY)

    async def set_preferred_contributor_id(self, contributor_id: Optional[str]) -> None:
        """Remember the contributor preselected for new transactions; None clears it."""
        if not contributor_id:
            await self.delete_meta(PREFERRED_CONTRIBUTOR_KEY)
            return
        await self.set_meta(PREFERRED_CONTRIBUTOR_KEY, contributor_id)
