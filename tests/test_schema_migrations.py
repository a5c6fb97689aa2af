"""Tests for versioned schema upgrades of an existing local store."""

import json
import os
import tempfile

import aiosqlite
import pytest

from logbook.database import Database
from logbook.database.schema import LATEST_VERSION, create_sql, get_version


@pytest.fixture
def db_path():
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    os.unlink(path)
    yield path
    for ext in ["", "-wal", "-shm"]:
        if os.path.exists(path + ext):
            os.unlink(path + ext)


async def _seed_v2_store(path: str) -> None:
    """Write a store as a v2 client left it: no settlement flags, no retreats."""
    async with aiosqlite.connect(path) as conn:
        await conn.executescript(create_sql(get_version(2).tables))
        txn = {"id": "t1", "amount": 10.0, "type": "expense", "is_settlement": 0, "updated_at": "2024-01-01"}
        contributor = {"id": "c1", "email": "a@b.co", "updated_at": "2024-01-02"}
        await conn.execute(
            "INSERT INTO txns (id, data, updated_at) VALUES (?, ?, ?)", ("t1", json.dumps(txn), txn["updated_at"])
        )
        await conn.execute(
            "INSERT INTO contributors (id, data, updated_at) VALUES (?, ?, ?)",
            ("c1", json.dumps(contributor), contributor["updated_at"]),
        )
        await conn.execute("PRAGMA user_version = 2")
        await conn.commit()


@pytest.mark.asyncio
async def test_upgrades_v2_store_to_latest(db_path):
    await _seed_v2_store(db_path)

    db = Database(db_path)
    try:
        await db.connect()

        assert await db.get_schema_version() == LATEST_VERSION

        txn = await db.get("txns", "t1")
        assert txn["is_settlement"] is False
        assert txn["settled"] is False
        assert txn["retreat_id"] is None
        assert txn["amount"] == 10.0

        contributor = await db.get("contributors", "c1")
        assert contributor["created_at"] == "2024-01-02"
        assert contributor["auth_user_id"] is None

        # Tables introduced after v2 exist and are usable
        assert await db.count("retreats") == 0
        assert await db.count("settlement_payments") == 0
    finally:
        await db.close()
        db.remove_from_cache()


@pytest.mark.asyncio
async def test_upgrades_run_only_once(db_path):
    await _seed_v2_store(db_path)

    db = Database(db_path)
    try:
        await db.connect()
        await db.update("txns", "t1", {"retreat_id": "r1"})
        await db.close()

        await db.connect()
        assert (await db.get("txns", "t1"))["retreat_id"] == "r1"
    finally:
        await db.close()
        db.remove_from_cache()


@pytest.mark.asyncio
async def test_reconnect_keeps_outbox_ordering(db_path):
    """Timestamps continue after the highest stored outbox timestamp."""
    db = Database(db_path)
    try:
        await db.connect()
        await db.put("verticals", {"id": "v1", "name": "Eggs"})
        first_ts = (await db.get_outbox_entries())[0]["ts"]
        await db.close()

        db._last_ts = 0
        await db.connect()
        await db.put("verticals", {"id": "v2", "name": "Hens"})
        entries = await db.get_outbox_entries()
        assert [e["row"]["id"] for e in entries] == ["v1", "v2"]
        assert entries[1]["ts"] > first_ts
    finally:
        await db.close()
        db.remove_from_cache()


@pytest.mark.asyncio
async def test_newer_store_is_left_alone(db_path):
    async with aiosqlite.connect(db_path) as conn:
        await conn.executescript(create_sql(get_version(LATEST_VERSION).tables))
        await conn.execute(f"PRAGMA user_version = {LATEST_VERSION + 1}")
        await conn.commit()

    db = Database(db_path)
    try:
        await db.connect()
        assert await db.get_schema_version() == LATEST_VERSION + 1
    finally:
        await db.close()
        db.remove_from_cache()
