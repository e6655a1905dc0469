"""Downtime aggregation — builds a client's DowntimeReport from per-service reconciliation.

Totals use rounded minutes: each service's raw seconds are rounded up to whole
minutes, and the client total is the sum of those minutes (times 60), so the
displayed total always equals the sum of the displayed per-service values.
"""

import asyncio
import time
from collections.abc import Callable
from datetime import datetime, timezone

import structlog

from monitor_api.core.exceptions import InvalidPeriodError
from monitor_api.schemas.clients import ClientConfig
from monitor_api.schemas.downtime import DowntimeReport, ServiceDowntimeDetail
from monitor_api.services.durations import ceil_minutes, format_duration_rounded_up, format_minutes
from monitor_api.services.journal import IncidentJournal
from monitor_api.services.reconciler import IncidentReconciler
from monitor_api.services.snapshot_store import SnapshotStore
from monitor_api.services.tenants import TenantContext, TenantRegistry
from monitor_api.services.zabbix_client import ZabbixClient

logger = structlog.get_logger()

MIN_DAYS = 1
MAX_DAYS = 90


class DowntimeAggregator:
    def __init__(
        self,
        registry: TenantRegistry,
        store: SnapshotStore,
        journal: IncidentJournal,
        client_factory: Callable[[ClientConfig], ZabbixClient],
        clock: Callable[[], float] = time.time,
    ):
        self._registry = registry
        self._store = store
        self._journal = journal
        self._client_factory = client_factory
        self._clock = clock

    async def recompute(self, tenant_id: str, days: int = 30) -> DowntimeReport:
        """Reconcile every configured service, persist the report, then journal its incidents.

        Raises InvalidPeriodError for ``days`` outside 1..90, NotFoundError for an
        unknown client and PersistenceError if the snapshot cannot be saved.
        """
        if not MIN_DAYS <= days <= MAX_DAYS:
            raise InvalidPeriodError(days)

        ctx = self._registry.context(tenant_id)
        logger.info("downtime_calculation_started", client_id=ctx.tenant_id, days=days, services=len(ctx.services))

        report = await self._build_report(ctx, days)
        await self._store.put(ctx.tenant_id, report)
        for detail in report.services:
            await self._record_journal(ctx.tenant_id, detail.service_name, detail.incidents)

        logger.info(
            "downtime_calculation_finished",
            client_id=ctx.tenant_id,
            total=report.total_downtime_formatted,
            services_with_downtime=report.services_with_downtime,
        )
        return report

    async def _build_report(self, ctx: TenantContext, days: int) -> DowntimeReport:
        timestamp = self._clock()
        now = int(timestamp)
        # generated_at feeds the change token, so keep sub-second precision
        generated_at = datetime.fromtimestamp(timestamp, tz=timezone.utc)

        if not ctx.services:
            logger.warning("client_has_no_services", client_id=ctx.tenant_id)
            return DowntimeReport(client_id=ctx.tenant_id, period_days=days, generated_at=generated_at)

        reconciler = IncidentReconciler(self._client_factory(ctx.config))
        names = sorted(ctx.services, key=str.casefold)
        results = await asyncio.gather(
            *(reconciler.reconcile(name, ctx.address_of(name), days, now=now) for name in names)
        )

        details: list[ServiceDowntimeDetail] = []
        total_minutes = 0
        for name, (seconds, incidents) in zip(names, results):
            total_minutes += ceil_minutes(seconds)
            details.append(
                ServiceDowntimeDetail(
                    service_name=name,
                    ip_address=ctx.address_of(name) or "N/A",
                    total_downtime_seconds=seconds,
                    total_downtime_formatted=format_duration_rounded_up(seconds),
                    incident_count=len(incidents),
                    incidents=incidents,
                )
            )

        return DowntimeReport(
            client_id=ctx.tenant_id,
            period_days=days,
            generated_at=generated_at,
            total_downtime_seconds=total_minutes * 60,
            total_downtime_formatted=format_minutes(total_minutes),
            services_count=len(details),
            services_with_downtime=sum(1 for d in details if d.total_downtime_seconds > 0),
            services=details,
        )

    async def _record_journal(self, tenant_id: str, service_name: str, incidents) -> None:
        if not incidents:
            return
        try:
            await self._journal.sync_incidents(tenant_id, service_name, incidents)
        except Exception:
            logger.exception("journal_sync_failed", client_id=tenant_id, service=service_name)
