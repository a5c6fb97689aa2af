"""Pull - refresh the local mirror from remote snapshots, table by table."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from logbook.connectivity import ConnectivityMonitor
from logbook.database import Database
from logbook.normalize import PULL_ORDER, get_descriptor, iso_utc
from logbook.remote import RemoteStore
from logbook.resilience import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)


@dataclass
class PullReport:
    """What a pull did, per table."""

    started_at: str
    tables: dict[str, dict[str, int]] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: bool = False
    interrupted: bool = False
    watermark: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.skipped and not self.interrupted and not self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at,
            "tables": self.tables,
            "failed": self.failed,
            "skipped": self.skipped,
            "interrupted": self.interrupted,
            "watermark": self.watermark,
        }


class PullEngine:
    """
    Fetches each synchronized table and reconciles the local mirror.

    Full-snapshot mode upserts every remote row and prunes local rows the
    remote no longer has; a successful empty snapshot clears the table. A
    failed fetch leaves the table untouched. Incremental mode fetches rows
    updated since the watermark and never prunes.
    """

    def __init__(
        self,
        db: Database,
        remote: RemoteStore,
        connectivity: ConnectivityMonitor,
        retry_policy: Optional[RetryPolicy] = None,
        tables: Iterable[str] = PULL_ORDER,
        incremental: bool = False,
        sleep=None,
    ):
        self._db = db
        self._remote = remote
        self._connectivity = connectivity
        self._policy = retry_policy or RetryPolicy.for_pull()
        self._tables = tuple(tables)
        self._incremental = incremental
        self._retry_kwargs: dict[str, Any] = {"sleep": sleep} if sleep else {}

    async def pull(self) -> PullReport:
        """
        Pull every table. Never raises.

        The watermark advances to this pull's start time once all tables were
        attempted, even if some failed. It does not move when the pull is
        skipped (offline) or interrupted by a connectivity loss.
        """
        started_at = iso_utc(datetime.now(timezone.utc))
        report = PullReport(started_at=started_at)

        if not self._connectivity.is_online():
            logger.warning("Offline: skipping pull")
            report.skipped = True
            return report

        try:
            since = await self._db.get_last_sync() if self._incremental else None
        except Exception as e:
            logger.warning(f"Could not read watermark, pulling full snapshots: {e}")
            since = None

        for table in self._tables:
            if not self._connectivity.is_online():
                logger.warning(f"Connectivity lost; pull stopped before {table}")
                report.interrupted = True
                break
            try:
                counts = await self._pull_table(table, since)
            except Exception as e:
                logger.error(f"Pull {table} failed locally: {e}")
                report.failed[table] = str(e)
                continue
            if counts is None:
                report.failed[table] = "fetch failed"
                continue
            report.tables[table] = counts

        if not report.interrupted:
            try:
                await self._db.set_last_sync(started_at)
                report.watermark = started_at
            except Exception as e:
                logger.error(f"Could not store watermark: {e}")

        if report.failed:
            logger.warning(f"Pull finished with failures: {', '.join(sorted(report.failed))}")
        return report

    async def _pull_table(self, table: str, since: Optional[str]) -> Optional[dict[str, int]]:
        """Fetch and reconcile one table. Returns None if the fetch failed."""
        descriptor = get_descriptor(table)
        if descriptor is None:
            raise ValueError(f"No descriptor for table {table}")

        result = await call_with_retry(
            lambda: self._remote.select(table, since=since),
            policy=self._policy,
            context=f"pull {table}",
            **self._retry_kwargs,
        )
        if not result.ok:
            return None

        malformed: set[str] = set()
        rows = []
        for raw in result.value or []:
            if not isinstance(raw, dict) or not raw.get("id"):
                logger.warning(f"Pull {table}: skipping row without id")
                continue
            try:
                rows.append(descriptor.to_local(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Pull {table}: skipping malformed row {raw['id']}: {e}")
                malformed.add(raw["id"])

        full_snapshot = since is None
        counts = await self._db.apply_remote_rows(table, rows, prune=full_snapshot, protected_ids=malformed)
        if full_snapshot and not rows:
            logger.info(f"Pull {table}: remote table is empty, local mirror cleared")
        logger.debug(f"Pull {table}: {counts}")
        return counts
