"""Background refresh — recomputes every client's downtime snapshot on a fixed interval."""

import asyncio
import time
from datetime import datetime, timezone

import structlog

from monitor_api.config import settings
from monitor_api.services.aggregator import DowntimeAggregator
from monitor_api.services.durations import SECONDS_PER_DAY
from monitor_api.services.journal import IncidentJournal
from monitor_api.services.tenants import TenantRegistry

logger = structlog.get_logger()

IDLE = "idle"
RUNNING = "running"
STOPPED = "stopped"


class RefreshScheduler:
    """Runs one refresh cycle per tick, never overlapping cycles.

    A cycle fans out one refresh per client and waits for all of them. Each
    client's failure is logged and isolated. ``stop()`` interrupts the pending
    delay and never aborts a cycle already in flight; it waits for it instead.
    """

    def __init__(
        self,
        registry: TenantRegistry,
        aggregator: DowntimeAggregator,
        journal: IncidentJournal,
        interval: float | None = None,
        initial_delay: float | None = None,
        days: int | None = None,
        retention_days: int | None = None,
    ):
        self._registry = registry
        self._aggregator = aggregator
        self._journal = journal
        self._interval = settings.monitor_refresh_interval_seconds if interval is None else interval
        self._initial_delay = (
            settings.monitor_refresh_initial_delay_seconds if initial_delay is None else initial_delay
        )
        self._days = days or settings.monitor_refresh_days
        self._retention_days = retention_days or settings.monitor_journal_retention_days
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._state = STOPPED
        self._last_cycle_at: datetime | None = None

    @property
    def state(self) -> str:
        return self._state

    @property
    def last_cycle_at(self) -> datetime | None:
        return self._last_cycle_at

    async def start(self) -> None:
        """Start the background loop."""
        if self._task is not None:
            return
        self._stop_event.clear()
        self._state = IDLE
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "refresh_scheduler_started",
            interval_seconds=self._interval,
            initial_delay_seconds=self._initial_delay,
            days=self._days,
        )

    async def stop(self, grace_seconds: float = 30.0) -> None:
        """Signal the loop to stop and wait for it to exit.

        An in-flight cycle runs to completion. Past ``grace_seconds`` a warning is
        logged and the wait continues.
        """
        self._stop_event.set()
        if self._task:
            done, _ = await asyncio.wait({self._task}, timeout=grace_seconds)
            if not done:
                logger.warning("refresh_cycle_still_running", grace_seconds=grace_seconds)
                await self._task
            self._task = None
        self._state = STOPPED
        logger.info("refresh_scheduler_stopped")

    async def _wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True if the stop signal arrived first."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _loop(self) -> None:
        if await self._wait(self._initial_delay):
            return
        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception:
                logger.exception("refresh_cycle_error")
            if await self._wait(self._interval):
                break

    async def run_cycle(self) -> dict[str, bool]:
        """Refresh every known client once. Returns client id → success."""
        started = time.monotonic()
        self._state = RUNNING
        try:
            client_ids = self._registry.list_tenant_ids()
            if not client_ids:
                logger.warning("refresh_no_clients")
                return {}

            logger.info("refresh_cycle_started", clients=len(client_ids))
            results = await asyncio.gather(*(self._refresh_client(c) for c in client_ids))
            outcome = dict(zip(client_ids, results))
        finally:
            self._state = IDLE
            self._last_cycle_at = datetime.now(timezone.utc)

        logger.info(
            "refresh_cycle_finished",
            elapsed_seconds=round(time.monotonic() - started, 1),
            succeeded=sum(outcome.values()),
            failed=len(outcome) - sum(outcome.values()),
        )
        return outcome

    async def _refresh_client(self, client_id: str) -> bool:
        try:
            await self._prune_journal(client_id)
            report = await self._aggregator.recompute(client_id, self._days)
            logger.info("client_refreshed", client_id=client_id, downtime=report.total_downtime_formatted)
            return True
        except Exception:
            logger.exception("client_refresh_failed", client_id=client_id)
            return False

    async def _prune_journal(self, client_id: str) -> None:
        try:
            services = self._registry.service_map(client_id)
            if services:
                await self._journal.prune_removed_services(client_id, set(services))
            threshold = int(time.time()) - self._retention_days * SECONDS_PER_DAY
            await self._journal.prune_older_than(client_id, threshold)
        except Exception:
            logger.exception("journal_prune_failed", client_id=client_id)
