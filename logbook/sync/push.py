"""Push - replay the outbox against the remote store, oldest entry first."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from logbook.connectivity import ConnectivityMonitor
from logbook.database import Database
from logbook.database.base import OUTBOX_OPS
from logbook.normalize import TableDescriptor, get_descriptor, iso_utc
from logbook.outbox import Outbox, OutboxEntry
from logbook.remote import RemoteStore
from logbook.resilience import RemoteResult, RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)


class PushEngine:
    """Drains the outbox in order and stops at the first entry that fails."""

    def __init__(
        self,
        db: Database,
        remote: RemoteStore,
        connectivity: ConnectivityMonitor,
        retry_policy: Optional[RetryPolicy] = None,
        outbox: Optional[Outbox] = None,
        sleep=None,
    ):
        self._db = db
        self._remote = remote
        self._connectivity = connectivity
        self._policy = retry_policy or RetryPolicy.for_push()
        self._outbox = outbox or Outbox(db)
        self._retry_kwargs: dict[str, Any] = {"sleep": sleep} if sleep else {}
        self.last_error: Optional[str] = None

    async def push(self) -> int:
        """
        Apply queued mutations to the remote store.

        Returns:
            Number of entries applied and acknowledged. 0 when offline or
            when no user is authenticated. Never raises.
        """
        if not self._connectivity.is_online():
            logger.warning("Offline: skipping push")
            return 0

        processed = 0
        try:
            identity = await self._call(self._remote.current_user_id, "resolve user")
            if not identity.ok or not identity.value:
                logger.warning("No authenticated user; skipping push")
                return 0
            user_id = identity.value

            for entry in await self._outbox.drain():
                if not self._connectivity.is_online():
                    logger.warning(f"Connectivity lost; push stopped before entry {entry.id}")
                    break

                descriptor = get_descriptor(entry.table)
                if descriptor is None or not descriptor.push or entry.op not in OUTBOX_OPS:
                    logger.debug(f"Skipping outbox entry {entry.id}: unsupported {entry.table}/{entry.op}")
                    continue

                if not entry.row.get("id"):
                    await self._outbox.drop(entry.id, reason=f"{entry.table} {entry.op} without row id")
                    continue

                result = await self._apply(entry, descriptor, user_id)
                if not result.ok:
                    self.last_error = result.error_message
                    logger.error(
                        f"Push halted at outbox entry {entry.id} ({entry.table} {entry.op}) "
                        f"after {result.attempts} attempts: {result.error_message}"
                    )
                    break

                await self._outbox.acknowledge(entry.id)
                processed += 1
            else:
                self.last_error = None
        except Exception as e:
            self.last_error = str(e)
            logger.warning(f"Push failed: {e}")

        if processed:
            logger.info(f"Pushed {processed} outbox entries")
        return processed

    async def _apply(self, entry: OutboxEntry, descriptor: TableDescriptor, user_id: str) -> RemoteResult:
        table = entry.table
        row_id = entry.row["id"]

        if entry.op == "delete":
            if descriptor.soft_delete:
                now = iso_utc(datetime.now(timezone.utc))
                patch = {"deleted_at": now, "updated_at": now}
                return await self._call(
                    lambda: self._remote.update(table, row_id, patch), f"soft-delete {table}"
                )
            return await self._call(lambda: self._remote.delete(table, row_id), f"delete {table}")

        payload = descriptor.to_push(entry.row, user_id=user_id)
        return await self._call(lambda: self._remote.upsert(table, payload, on_conflict="id"), f"upsert {table}")

    async def _call(self, fn, context: str) -> RemoteResult:
        return await call_with_retry(fn, policy=self._policy, context=context, **self._retry_kwargs)
