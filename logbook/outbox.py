"""Outbox - ordered queue of local mutations awaiting remote confirmation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from logbook.database import Database

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutboxEntry:
    """One queued mutation: the row snapshot captured when it was made."""

    id: int
    table: str
    op: str
    row: dict
    ts: int

    @classmethod
    def from_record(cls, record: dict) -> "OutboxEntry":
        return cls(
            id=record["id"],
            table=record["table_name"],
            op=record["op"],
            row=record["row"],
            ts=record["ts"],
        )


class Outbox:
    """FIFO view over the outbox table.

    Entries are appended by Database.put/delete together with the row change.
    They are removed only by acknowledge() after the remote store confirmed
    them, or by drop() when they can never be applied.
    """

    def __init__(self, db: Database):
        self._db = db

    async def enqueue(self, table: str, op: str, row: dict) -> int:
        """Append an entry at the tail. Returns its id."""
        return await self._db.append_outbox(table, op, row)

    async def drain(self) -> list[OutboxEntry]:
        """All queued entries in enqueue order."""
        return [OutboxEntry.from_record(r) for r in await self._db.get_outbox_entries()]

    async def head(self) -> Optional[OutboxEntry]:
        """The oldest queued entry, if any."""
        entries = await self.drain()
        return entries[0] if entries else None

    async def acknowledge(self, entry_id: int) -> bool:
        """Remove an entry after its remote application was confirmed."""
        return await self._db.delete_outbox_entry(entry_id)

    async def drop(self, entry_id: int, reason: str = "") -> bool:
        """Discard an entry that can never be applied."""
        removed = await self._db.delete_outbox_entry(entry_id)
        if removed:
            logger.warning(f"Dropped outbox entry {entry_id}: {reason or 'no reason given'}")
        return removed

    async def count(self) -> int:
        return await self._db.get_outbox_count()

    async def pending_ids(self, table: str) -> set[str]:
        """Row ids of a table that still have queued mutations."""
        return await self._db.get_pending_ids(table)
