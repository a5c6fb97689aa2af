"""Sync coordinator - runs push-then-pull cycles one at a time."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from logbook.connectivity import ConnectivityMonitor
from logbook.normalize import iso_utc
from logbook.sync.pull import PullEngine, PullReport
from logbook.sync.push import PushEngine

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    """Outcome of one full sync cycle."""

    started_at: str
    finished_at: Optional[str] = None
    pushed: int = 0
    pull: Optional[PullReport] = None
    skipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "pushed": self.pushed,
            "pull": self.pull.to_dict() if self.pull else None,
            "skipped": self.skipped,
        }


class SyncCoordinator:
    """
    Serializes sync cycles and wires them to connectivity events.

    Only one cycle runs at a time. Triggers arriving during a cycle collapse
    into a single follow-up cycle that starts when the current one ends.
    """

    def __init__(self, push_engine: PushEngine, pull_engine: PullEngine, connectivity: ConnectivityMonitor):
        self._push = push_engine
        self._pull = pull_engine
        self._connectivity = connectivity
        self._lock = asyncio.Lock()
        self._pending = False
        self._installed = False
        self._tasks: set[asyncio.Task] = set()
        self.last_report: Optional[SyncReport] = None

    @property
    def running(self) -> bool:
        return self._lock.locked()

    @property
    def online(self) -> bool:
        return self._connectivity.is_online()

    def install(self) -> None:
        """Run a full sync on every reconnect and every return to the foreground."""
        if self._installed:
            return
        self._connectivity.on_online(self._on_trigger)
        self._connectivity.on_foreground(self._on_trigger)
        self._installed = True

    async def _on_trigger(self) -> None:
        await self.full_sync()

    async def full_sync(self) -> Optional[SyncReport]:
        """
        Push, then pull (pull runs even if push stopped early).

        Returns:
            The report of the last cycle run, or None if this call was
            coalesced into a cycle already in progress.
        """
        if self._lock.locked():
            self._pending = True
            logger.debug("Sync already running; queued one follow-up cycle")
            return None

        async with self._lock:
            report = await self._run_cycle()
            while self._pending:
                self._pending = False
                report = await self._run_cycle()
        return report

    def request_sync(self) -> asyncio.Task:
        """Schedule a full sync in the background (used after local mutations)."""
        task = asyncio.create_task(self.full_sync())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def notify_write(self, table: str) -> Optional[asyncio.Task]:
        """Database write listener: sync in the background while online."""
        if not self._connectivity.is_online():
            logger.debug(f"Offline: {table} write stays queued until reconnect")
            return None
        return self.request_sync()

    async def wait_idle(self) -> None:
        """Wait for background sync tasks started by request_sync()."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _run_cycle(self) -> SyncReport:
        report = SyncReport(started_at=iso_utc(datetime.now(timezone.utc)))
        if not self._connectivity.is_online():
            logger.warning("Offline: skipping sync cycle")
            report.skipped = True
        else:
            report.pushed = await self._push.push()
            report.pull = await self._pull.pull()
            logger.info(
                f"Sync cycle done: pushed {report.pushed}, "
                f"pulled {len(report.pull.tables)} tables, {len(report.pull.failed)} failed"
            )
        report.finished_at = iso_utc(datetime.now(timezone.utc))
        self.last_report = report
        return report
