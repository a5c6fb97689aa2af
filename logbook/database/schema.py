"""
Versioned local schema.

Each SchemaVersion lists the tables that exist from that version on and an
optional per-table ``upgrade`` that backfills fields introduced by the
version. Upgrades receive a row dict and return the upgraded dict; they run
once per device, when the stored ``PRAGMA user_version`` is below the version.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

RowUpgrade = Callable[[dict], dict]

# Mirrored tables share one physical layout: id + JSON document
MIRROR_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS {name} (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    updated_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_{name}_updated_at ON {name}(updated_at);
"""

OUTBOX_SQL = """
CREATE TABLE IF NOT EXISTS outbox (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    table_name TEXT NOT NULL,
    op TEXT NOT NULL,
    row TEXT NOT NULL,
    ts INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_outbox_ts ON outbox(ts, id);
CREATE INDEX IF NOT EXISTS idx_outbox_table ON outbox(table_name);
"""

META_SQL = """
CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


@dataclass(frozen=True)
class SchemaVersion:
    """One step of the local schema history."""

    version: int
    tables: tuple[str, ...]
    upgrades: dict[str, RowUpgrade] = field(default_factory=dict)


def _txn_settlement_flags(row: dict) -> dict:
    row["is_settlement"] = bool(row.get("is_settlement"))
    row["settled"] = bool(row.get("settled"))
    return row


def _contributor_backfill(row: dict) -> dict:
    if not isinstance(row.get("created_at"), str):
        row["created_at"] = row.get("updated_at")
    if "auth_user_id" not in row:
        row["auth_user_id"] = None
    return row


def _txn_retreat(row: dict) -> dict:
    if "retreat_id" not in row:
        row["retreat_id"] = None
    return row


SCHEMA_VERSIONS: tuple[SchemaVersion, ...] = (
    SchemaVersion(1, ("txns", "verticals", "categories")),
    SchemaVersion(2, ("txns", "verticals", "categories", "contributors")),
    SchemaVersion(
        3,
        ("txns", "verticals", "categories", "contributors", "settlement_payments"),
        upgrades={"txns": _txn_settlement_flags},
    ),
    SchemaVersion(
        4,
        ("txns", "verticals", "categories", "contributors", "settlement_payments"),
        upgrades={"contributors": _contributor_backfill},
    ),
    SchemaVersion(
        5,
        ("txns", "verticals", "categories", "contributors", "settlement_payments", "retreats"),
        upgrades={"txns": _txn_retreat},
    ),
)

LATEST_VERSION = SCHEMA_VERSIONS[-1].version
MIRROR_TABLES = SCHEMA_VERSIONS[-1].tables


def get_version(version: int) -> Optional[SchemaVersion]:
    for schema in SCHEMA_VERSIONS:
        if schema.version == version:
            return schema
    return None


def create_sql(tables: tuple[str, ...]) -> str:
    """DDL creating the given mirror tables plus the outbox and meta tables."""
    parts = [MIRROR_TABLE_SQL.format(name=name) for name in tables]
    parts.append(OUTBOX_SQL)
    parts.append(META_SQL)
    return "\n".join(parts)
