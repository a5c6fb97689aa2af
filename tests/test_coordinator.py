"""Tests for the sync coordinator."""

import asyncio

import pytest

from conftest import no_sleep
from logbook.sync import PullEngine, PushEngine, SyncCoordinator


@pytest.fixture
def coordinator(temp_db, remote, monitor, fast_policy):
    push = PushEngine(temp_db, remote, monitor, retry_policy=fast_policy, sleep=no_sleep)
    pull = PullEngine(temp_db, remote, monitor, retry_policy=fast_policy, sleep=no_sleep)
    return SyncCoordinator(push, pull, monitor)


class TestFullSync:
    @pytest.mark.asyncio
    async def test_pushes_before_pulling(self, temp_db, remote, coordinator):
        await temp_db.put("verticals", {"id": "v1", "name": "Eggs"})

        report = await coordinator.full_sync()

        methods = [c[0] for c in remote.calls if c[0] in ("upsert", "select")]
        assert methods[0] == "upsert"
        assert set(methods[1:]) == {"select"}
        assert report.pushed == 1
        assert report.pull.ok
        assert report.finished_at is not None
        # The pushed row comes back from the pull
        assert await temp_db.get("verticals", "v1") == {"id": "v1", "name": "Eggs"}

    @pytest.mark.asyncio
    async def test_pull_runs_after_push_failure(self, temp_db, remote, coordinator):
        await temp_db.put("verticals", {"id": "v1", "name": "Eggs"})
        remote.fail("upsert", times=10)

        report = await coordinator.full_sync()

        assert report.pushed == 0
        assert report.pull is not None
        assert any(c[0] == "select" for c in remote.calls)
        # The failed row is still pending and survives the pull
        assert await temp_db.get("verticals", "v1") is not None
        assert await temp_db.get_outbox_count() == 1

    @pytest.mark.asyncio
    async def test_offline_cycle_is_skipped(self, remote, monitor, coordinator):
        await monitor.set_online(False)

        report = await coordinator.full_sync()

        assert report.skipped
        assert remote.calls == []
        assert coordinator.last_report is report


class TestCoalescing:
    @pytest.mark.asyncio
    async def test_triggers_during_a_cycle_collapse_into_one_rerun(self, remote, coordinator):
        release = asyncio.Event()
        started = asyncio.Event()

        async def block_first_identity_call(method, table):
            if method == "current_user_id" and not started.is_set():
                started.set()
                await release.wait()

        remote.before_call = block_first_identity_call

        first = asyncio.create_task(coordinator.full_sync())
        await started.wait()
        assert coordinator.running

        # Three triggers while the first cycle is blocked
        assert await coordinator.full_sync() is None
        assert await coordinator.full_sync() is None
        assert await coordinator.full_sync() is None

        release.set()
        report = await first

        identity_calls = [c for c in remote.calls if c[0] == "current_user_id"]
        assert len(identity_calls) == 2
        assert report is coordinator.last_report
        assert not coordinator.running

    @pytest.mark.asyncio
    async def test_request_sync_runs_in_background(self, remote, coordinator):
        task = coordinator.request_sync()
        await coordinator.wait_idle()

        assert task.done()
        assert coordinator.last_report is not None


class TestTriggers:
    @pytest.mark.asyncio
    async def test_reconnect_triggers_sync(self, temp_db, remote, monitor, coordinator):
        coordinator.install()
        coordinator.install()
        await monitor.set_online(False)
        await temp_db.put("verticals", {"id": "v1", "name": "Eggs"})

        await monitor.set_online(True)

        assert "v1" in remote.rows("verticals")
        # install() is idempotent: one cycle per event
        assert len([c for c in remote.calls if c[0] == "current_user_id"]) == 1

    @pytest.mark.asyncio
    async def test_foreground_triggers_sync(self, remote, monitor, coordinator):
        coordinator.install()

        await monitor.foreground()

        assert coordinator.last_report is not None
        assert not coordinator.last_report.skipped

    @pytest.mark.asyncio
    async def test_local_write_syncs_in_background(self, temp_db, remote, coordinator):
        temp_db.on_write(coordinator.notify_write)

        await temp_db.put("verticals", {"id": "v1", "name": "Eggs"})
        await coordinator.wait_idle()

        assert "v1" in remote.rows("verticals")
        assert await temp_db.get_outbox_count() == 0

    @pytest.mark.asyncio
    async def test_offline_write_waits_for_reconnect(self, temp_db, remote, monitor, coordinator):
        temp_db.on_write(coordinator.notify_write)
        await monitor.set_online(False)

        await temp_db.put("verticals", {"id": "v1", "name": "Eggs"})

        assert coordinator.notify_write("verticals") is None
        await coordinator.wait_idle()
        assert remote.calls == []
        assert await temp_db.get_outbox_count() == 1
