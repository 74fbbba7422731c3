"""Tests for SyncScheduler bootstrap, connectivity handling and ticking."""

from __future__ import annotations

import asyncio

import pytest

from school_sync.sync.scheduler import SyncScheduler


def _users_refreshes(remote) -> int:
    return sum(1 for call in remote.list_calls if call == ("users",))


@pytest.fixture
def reports():
    return []


class TestStart:
    async def test_online_start_reconciles_and_ticks(self, engine, remote, reports):
        scheduler = SyncScheduler(engine, interval=60, on_report=reports.append)
        report = await scheduler.start()
        try:
            assert report is not None and report.refreshed
            assert reports == [report]
            assert scheduler.running
            assert _users_refreshes(remote) == 1
        finally:
            await scheduler.stop()
        assert not scheduler.running

    async def test_offline_start_does_nothing(self, engine, remote, reports):
        scheduler = SyncScheduler(
            engine, check_online=lambda: False, on_report=reports.append
        )
        assert await scheduler.start() is None
        assert engine.online is False
        assert not scheduler.running
        assert reports == []
        assert remote.list_calls == []

    async def test_coming_online_at_start_reconciles_once(
        self, offline_engine, remote, reports
    ):
        await offline_engine.create_user("A")
        scheduler = SyncScheduler(
            offline_engine,
            check_online=lambda: True,
            interval=60,
            on_report=reports.append,
        )
        report = await scheduler.start()
        await scheduler.stop()

        assert len(reports) == 1
        assert report.resolved[0].real_id == 1
        assert remote.create_calls == [("user", "A")]
        assert _users_refreshes(remote) == 1

    async def test_async_connectivity_check(self, offline_engine):
        async def probe():
            return True

        scheduler = SyncScheduler(offline_engine, check_online=probe, interval=60)
        await scheduler.start()
        await scheduler.stop()
        assert offline_engine.online is True

    async def test_failing_check_means_offline(self, engine):
        def probe():
            raise OSError("no route to host")

        scheduler = SyncScheduler(engine, check_online=probe)
        assert await scheduler.start() is None
        assert engine.online is False

    def test_interval_must_be_positive(self, engine):
        with pytest.raises(ValueError, match="interval"):
            SyncScheduler(engine, interval=0)


class TestConnectivityChanges:
    async def test_offline_stops_and_online_restarts_ticker(
        self, engine, reports
    ):
        scheduler = SyncScheduler(engine, interval=60, on_report=reports.append)
        await scheduler.start()

        assert await scheduler.on_connectivity_changed(False) is None
        assert not scheduler.running

        report = await scheduler.on_connectivity_changed(True)
        assert report is not None
        assert scheduler.running
        assert reports[-1] is report
        await scheduler.stop()

    async def test_repeated_online_is_ignored(self, engine, remote):
        scheduler = SyncScheduler(engine, interval=60)
        await scheduler.start()
        calls = len(remote.list_calls)
        assert await scheduler.on_connectivity_changed(True) is None
        assert len(remote.list_calls) == calls
        await scheduler.stop()


class TestTicker:
    async def test_reconciles_periodically(self, engine, remote, reports):
        scheduler = SyncScheduler(engine, interval=0.01, on_report=reports.append)
        await scheduler.start()
        await asyncio.sleep(0.1)
        await scheduler.stop()
        assert _users_refreshes(remote) >= 2
        assert len(reports) >= 2

    async def test_tick_sends_writes_queued_meanwhile(self, engine, remote):
        scheduler = SyncScheduler(engine, interval=0.01)
        await scheduler.start()
        await engine.create_user("Later", online=False)
        for _ in range(50):
            if engine.pending_count() == 0:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()
        assert engine.pending_count() == 0
        assert ("user", "Later") in remote.create_calls

    async def test_callback_errors_do_not_stop_ticking(self, engine, remote):
        def explode(report):
            raise RuntimeError("printer on fire")

        scheduler = SyncScheduler(engine, interval=0.01, on_report=explode)
        await scheduler.start()
        await asyncio.sleep(0.05)
        assert scheduler.running
        await scheduler.stop()
        assert _users_refreshes(remote) >= 2

    async def test_remote_errors_do_not_stop_ticking(self, engine, remote):
        scheduler = SyncScheduler(engine, interval=0.01)
        await scheduler.start()
        remote.reachable = False
        await asyncio.sleep(0.05)
        assert scheduler.running
        await scheduler.stop()

    async def test_stop_without_start(self, engine):
        scheduler = SyncScheduler(engine)
        await scheduler.stop()
        assert not scheduler.running
