"""
Database - Local store for the offline logbook.

Usage:
    db = Database()
    await db.connect()
    txn = await db.put('txns', {'amount': 1200, 'type': 'expense', ...})
    await db.delete('txns', txn['id'])
"""

import json
import logging
from pathlib import Path

import aiosqlite

from logbook.database.base import BaseDatabase
from logbook.database.schema import LATEST_VERSION, SCHEMA_VERSIONS, SchemaVersion, create_sql

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".logbook" / "logbook.db"


class Database(BaseDatabase):
    """Local store: mirrored tables, outbox and meta registry."""

    _instances: dict[str, "Database"] = {}  # path -> instance
    _default_path: str = None

    def __new__(cls, path: str = None):
        """
        One database instance per unique path.

        Args:
            path: Database file path. If None, uses LOGBOOK_DB_PATH or ~/.logbook/logbook.db.
        """
        if path is None:
            if cls._default_path is None:
                import os

                cls._default_path = os.getenv("LOGBOOK_DB_PATH", str(DEFAULT_DB_PATH))
            path = cls._default_path

        if path not in cls._instances:
            instance = super().__new__(cls)
            instance._path = Path(path)
            instance._connection = None
            instance._write_lock = None
            instance._last_ts = 0
            instance._write_listeners = None
            cls._instances[path] = instance

        return cls._instances[path]

    def __init__(self, path: str = None):
        # Path is already set in __new__, nothing to do here
        pass

    @property
    def path(self) -> Path:
        return self._path

    async def connect(self) -> "Database":
        """Connect to database and bring the schema up to date."""
        if self._connection is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = await aiosqlite.connect(self._path)
            self._connection.row_factory = aiosqlite.Row
            await self._connection.execute("PRAGMA journal_mode=WAL")
            await self._connection.execute("PRAGMA busy_timeout=30000")
            await self._init_schema()
            self._last_ts = await self.get_max_outbox_ts()
        return self

    async def close(self):
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    def remove_from_cache(self):
        """Remove this instance from the instance cache. Use for temporary databases."""
        path_str = str(self._path)
        if path_str in self._instances:
            del self._instances[path_str]

    # -------------------------------------------------------------------------
    # Schema
    # -------------------------------------------------------------------------

    async def get_schema_version(self) -> int:
        cursor = await self.conn.execute("PRAGMA user_version")
        row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def _init_schema(self) -> None:
        """Apply every schema version newer than the stored one, in order."""
        current = await self.get_schema_version()
        if current > LATEST_VERSION:
            logger.warning(f"Local schema v{current} is newer than this client (v{LATEST_VERSION})")
            return
        for schema in SCHEMA_VERSIONS:
            if schema.version > current:
                await self._apply_version(schema)

    async def _apply_version(self, schema: SchemaVersion) -> None:
        """Create the version's tables, run its row upgrades and record it, in one commit."""
        await self.conn.executescript(create_sql(schema.tables))
        try:
            upgraded = 0
            for table, upgrade in schema.upgrades.items():
                cursor = await self.conn.execute(f"SELECT id, data FROM {table}")  # noqa: S608
                for row in await cursor.fetchall():
                    data = upgrade(json.loads(row["data"]))
                    await self.conn.execute(
                        f"UPDATE {table} SET data = ?, updated_at = ? WHERE id = ?",  # noqa: S608
                        (json.dumps(data), data.get("updated_at"), row["id"]),
                    )
                    upgraded += 1
            await self.conn.execute(f"PRAGMA user_version = {int(schema.version)}")
            await self.conn.commit()
        except Exception:
            await self.conn.rollback()
            raise
        if upgraded:
            logger.info(f"Schema v{schema.version}: upgraded {upgraded} rows")
