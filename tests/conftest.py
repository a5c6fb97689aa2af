"""Pytest configuration and fixtures."""

import copy
import os
import tempfile
from typing import Any, Optional

import pytest
import pytest_asyncio

from logbook.connectivity import ConnectivityMonitor
from logbook.database import Database
from logbook.errors import ConnectivityError, RemoteError
from logbook.resilience import RetryPolicy


class FakeRemoteStore:
    """In-memory remote store recording every call.

    Failures are scripted with fail(): the next ``times`` calls of ``method``
    (optionally only for ``table``) raise ``error``.
    """

    def __init__(self, user_id: Optional[str] = "user-1"):
        self.tables: dict[str, dict[str, dict]] = {}
        self.user_id = user_id
        self.reachable = True
        self.calls: list[tuple] = []
        self._failures: list[dict[str, Any]] = []
        self.before_call = None

    def seed(self, table: str, rows: list[dict]) -> None:
        self.tables.setdefault(table, {})
        for row in rows:
            self.tables[table][row["id"]] = copy.deepcopy(row)

    def rows(self, table: str) -> dict[str, dict]:
        return self.tables.get(table, {})

    def fail(self, method: str, table: Optional[str] = None, times: int = 1, error: Optional[Exception] = None):
        self._failures.append(
            {"method": method, "table": table, "times": times, "error": error or RemoteError("boom", status=503)}
        )

    async def _record(self, method: str, table: Optional[str], *args) -> None:
        self.calls.append((method, table, *args))
        if self.before_call is not None:
            await self.before_call(method, table)
        for failure in self._failures:
            if failure["method"] == method and failure["table"] in (None, table) and failure["times"] > 0:
                failure["times"] -= 1
                raise failure["error"]

    async def select(self, table, since=None, filters=None):
        await self._record("select", table, since, filters)
        rows = list(self.tables.get(table, {}).values())
        if since:
            rows = [r for r in rows if (r.get("updated_at") or "") > since]
        for column, value in (filters or {}).items():
            rows = [r for r in rows if r.get(column) == value]
        return copy.deepcopy(rows)

    async def upsert(self, table, row, on_conflict="id"):
        await self._record("upsert", table, copy.deepcopy(row))
        stored = {**self.tables.setdefault(table, {}).get(row[on_conflict], {}), **copy.deepcopy(row)}
        self.tables[table][row[on_conflict]] = stored
        return copy.deepcopy(stored)

    async def insert(self, table, row):
        await self._record("insert", table, copy.deepcopy(row))
        if row["id"] in self.tables.setdefault(table, {}):
            raise RemoteError("duplicate key", status=409, retryable=False)
        self.tables[table][row["id"]] = copy.deepcopy(row)
        return copy.deepcopy(row)

    async def update(self, table, row_id, patch):
        await self._record("update", table, row_id, copy.deepcopy(patch))
        if row_id in self.tables.get(table, {}):
            self.tables[table][row_id].update(copy.deepcopy(patch))

    async def delete(self, table, row_id):
        await self._record("delete", table, row_id)
        self.tables.get(table, {}).pop(row_id, None)

    async def current_user_id(self):
        await self._record("current_user_id", None)
        return self.user_id

    async def ping(self):
        if not self.reachable:
            raise ConnectivityError("unreachable")
        return True


async def no_sleep(_seconds: float) -> None:
    return None


@pytest_asyncio.fixture
async def temp_db():
    """Create a temporary database for testing."""
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    os.unlink(db_path)

    db = Database(db_path)
    await db.connect()

    yield db

    # Cleanup
    await db.close()
    db.remove_from_cache()
    for ext in ["", "-wal", "-shm"]:
        path = db_path + ext
        if os.path.exists(path):
            os.unlink(path)


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def monitor():
    return ConnectivityMonitor(online=True)


@pytest.fixture
def fast_policy():
    """Two attempts, no jitter; paired with no_sleep so tests never wait."""
    return RetryPolicy(max_attempts=2, base_delay=0.01, jitter=0.0)


def make_local_txn(txn_id: str = "t1", **overrides) -> dict:
    row = {
        "id": txn_id,
        "amount": 1500.0,
        "type": "expense",
        "currency": "COP",
        "date": "2024-05-01",
        "time": "09:30",
        "vertical_id": None,
        "category_id": None,
        "contributor_id": None,
        "retreat_id": None,
        "description": "Feed",
        "is_settlement": False,
        "settled": False,
        "deleted": False,
        "created_at": "2024-05-01T09:30:00.000Z",
        "updated_at": "2024-05-01T09:30:00.000Z",
    }
    row.update(overrides)
    return row


def make_remote_txn(txn_id: str = "t1", **overrides) -> dict:
    row = {
        "id": txn_id,
        "client_id": txn_id,
        "user_id": "user-1",
        "amount": "1500.00",
        "type": "Gasto",
        "currency": "COP",
        "occurred_on": "2024-05-01T09:30:00+00:00",
        "vertical_id": None,
        "category_id": None,
        "contributor_id": None,
        "retreat_id": None,
        "description": "Feed",
        "settled": False,
        "deleted_at": None,
        "created_at": "2024-05-01T09:30:00.000Z",
        "updated_at": "2024-05-01T09:30:00.000Z",
    }
    row.update(overrides)
    return row
