"""Unit tests for the background refresh scheduler."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from monitor_api.core.exceptions import UpstreamError
from monitor_api.services.scheduler import IDLE, RUNNING, STOPPED, RefreshScheduler
from tests.mocks.clients import NOW


def _scheduler(registry, aggregator, journal, **kwargs) -> RefreshScheduler:
    params = {"interval": 0.01, "initial_delay": 0.0, "days": 30, "retention_days": 90}
    params.update(kwargs)
    return RefreshScheduler(registry, aggregator, journal, **params)


@pytest.mark.asyncio
class TestRunCycle:
    async def test_refreshes_every_client(self, registry, aggregator, journal, store):
        scheduler = _scheduler(registry, aggregator, journal)

        outcome = await scheduler.run_cycle()

        assert outcome == {"acme": True, "globex": True}
        assert await store.get("acme") is not None
        assert await store.get("globex") is not None
        assert scheduler.state == IDLE
        assert scheduler.last_cycle_at is not None

    async def test_failure_isolated_per_client(self, registry, aggregator, journal, store, monkeypatch):
        original = aggregator.recompute

        async def _flaky(client_id, days):
            if client_id == "acme":
                raise UpstreamError("boom")
            return await original(client_id, days)

        monkeypatch.setattr(aggregator, "recompute", _flaky)
        scheduler = _scheduler(registry, aggregator, journal)

        outcome = await scheduler.run_cycle()

        assert outcome == {"acme": False, "globex": True}
        assert await store.get("acme") is None
        assert await store.get("globex") is not None

    async def test_uses_configured_days(self, registry, journal):
        aggregator = AsyncMock()
        scheduler = _scheduler(registry, aggregator, journal, days=7)

        await scheduler.run_cycle()

        aggregator.recompute.assert_any_await("acme", 7)
        aggregator.recompute.assert_any_await("globex", 7)

    async def test_state_running_during_cycle(self, registry, journal):
        scheduler = None
        states = []

        async def _observe(client_id, days):
            states.append(scheduler.state)
            return AsyncMock(total_downtime_formatted="0m")

        aggregator = AsyncMock()
        aggregator.recompute.side_effect = _observe
        scheduler = _scheduler(registry, aggregator, journal)

        await scheduler.run_cycle()

        assert states == [RUNNING, RUNNING]
        assert scheduler.state == IDLE

    async def test_prunes_removed_services_from_journal(self, registry, aggregator, journal):
        await journal.record_opened("acme", "decommissioned", NOW - 60)
        await journal.record_opened("acme", "db01", NOW - 60)
        scheduler = _scheduler(registry, aggregator, journal, retention_days=36500)

        await scheduler.run_cycle()

        services = {e.service for e in await journal.entries("acme")}
        assert "decommissioned" not in services
        assert "db01" in services

    async def test_journal_prune_failure_does_not_block_refresh(self, registry, aggregator, journal, store, monkeypatch):
        monkeypatch.setattr(journal, "prune_older_than", AsyncMock(side_effect=OSError("read-only")))
        scheduler = _scheduler(registry, aggregator, journal)

        outcome = await scheduler.run_cycle()

        assert outcome == {"acme": True, "globex": True}

    async def test_no_clients(self, tmp_path, aggregator, journal):
        from monitor_api.services.tenants import TenantRegistry

        scheduler = _scheduler(TenantRegistry(tmp_path / "none"), aggregator, journal)

        assert await scheduler.run_cycle() == {}


@pytest.mark.asyncio
class TestLoop:
    async def test_start_and_stop(self, registry, journal):
        aggregator = AsyncMock()
        scheduler = _scheduler(registry, aggregator, journal)

        await scheduler.start()
        for _ in range(100):
            if aggregator.recompute.await_count >= 4:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert aggregator.recompute.await_count >= 4
        assert scheduler.state == STOPPED

    async def test_stop_during_initial_delay_runs_nothing(self, registry, journal):
        aggregator = AsyncMock()
        scheduler = _scheduler(registry, aggregator, journal, initial_delay=60.0)

        await scheduler.start()
        await asyncio.sleep(0.01)
        await asyncio.wait_for(scheduler.stop(), timeout=1.0)

        aggregator.recompute.assert_not_awaited()

    async def test_no_new_cycle_after_stop(self, registry, journal):
        release = asyncio.Event()
        started = asyncio.Event()

        async def _slow(client_id, days):
            started.set()
            await release.wait()
            return AsyncMock(total_downtime_formatted="0m")

        aggregator = AsyncMock()
        aggregator.recompute.side_effect = _slow
        scheduler = _scheduler(registry, aggregator, journal, interval=0.0)

        await scheduler.start()
        await asyncio.wait_for(started.wait(), timeout=1.0)
        stopping = asyncio.create_task(scheduler.stop())
        await asyncio.sleep(0.01)
        release.set()
        await asyncio.wait_for(stopping, timeout=1.0)

        # Only the in-flight cycle (one call per client) ran.
        assert aggregator.recompute.await_count == 2

    async def test_loop_survives_cycle_errors(self, registry, journal):
        aggregator = AsyncMock()
        aggregator.recompute.side_effect = RuntimeError("unexpected")
        scheduler = _scheduler(registry, aggregator, journal)

        await scheduler.start()
        for _ in range(100):
            if aggregator.recompute.await_count >= 4:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert aggregator.recompute.await_count >= 4

    async def test_stop_without_start(self, registry, aggregator, journal):
        scheduler = _scheduler(registry, aggregator, journal)
        await scheduler.stop()
        assert scheduler.state == STOPPED

    async def test_stop_past_grace_lets_cycle_finish(self, registry, journal):
        started = asyncio.Event()
        finished: list[str] = []

        async def _slow(client_id, days):
            started.set()
            await asyncio.sleep(0.2)
            finished.append(client_id)
            return AsyncMock(total_downtime_formatted="0m")

        aggregator = AsyncMock()
        aggregator.recompute.side_effect = _slow
        scheduler = _scheduler(registry, aggregator, journal)

        await scheduler.start()
        await asyncio.wait_for(started.wait(), timeout=1.0)
        await scheduler.stop(grace_seconds=0.05)

        assert sorted(finished) == ["acme", "globex"]
        assert scheduler.state == STOPPED
