"""Incident reconciliation — pairs Zabbix problem events with their recoveries.

For one service over a trailing window of ``days``:

1. Resolve the service address to Zabbix host ids (none → no downtime).
2. Fetch problem events naming the service and the stopped-service marker,
   restricted to those hosts and to ``[now - days*86400, now]``, oldest first.
3. Batch-resolve every recovery reference to its own timestamp.
4. Build one Incident per problem event. Events starting before the window
   are dropped, not clipped. A missing or unresolvable recovery leaves the
   incident open, with its duration counted up to ``now``.
"""

import time
from datetime import datetime, timezone

import structlog

from monitor_api.config import settings
from monitor_api.core.exceptions import UpstreamError
from monitor_api.schemas.downtime import Incident
from monitor_api.services.durations import SECONDS_PER_DAY, format_duration
from monitor_api.services.zabbix_client import PROBLEM, ZabbixClient

logger = structlog.get_logger()


def _to_datetime(unix_seconds: int) -> datetime:
    return datetime.fromtimestamp(unix_seconds, tz=timezone.utc)


class IncidentReconciler:
    def __init__(self, client: ZabbixClient, marker: str | None = None):
        self._client = client
        self._marker = marker or settings.monitor_stopped_marker

    async def reconcile(
        self,
        service_name: str,
        address: str | None,
        days: int,
        now: int | None = None,
    ) -> tuple[int, list[Incident]]:
        """Return ``(total_seconds, incidents)`` for one service.

        Upstream failures are logged and yield an empty result so that one bad
        service never fails the whole client.
        """
        now = int(time.time()) if now is None else now
        period_start = now - days * SECONDS_PER_DAY

        try:
            if not address:
                logger.warning("service_address_missing", service=service_name)
                return 0, []

            host_ids = await self._client.resolve_hosts(address)
            if not host_ids:
                logger.warning("service_host_not_found", service=service_name, address=address)
                return 0, []

            events = await self._client.get_events(
                host_ids,
                [service_name, self._marker],
                time_from=period_start,
                time_till=now,
                value=PROBLEM,
            )
            if not events:
                logger.debug("service_no_incidents", service=service_name)
                return 0, []

            recovery_ids = sorted({e.recovery_event_id for e in events if e.recovery_event_id})
            recoveries: dict[str, int] = {}
            if recovery_ids:
                recoveries = {
                    r.eventid: r.clock for r in await self._client.get_events_by_ids(recovery_ids)
                }
        except UpstreamError as e:
            logger.error("service_reconcile_failed", service=service_name, error=e.message)
            return 0, []

        total_seconds = 0
        incidents: list[Incident] = []

        for event in sorted(events, key=lambda e: e.clock):
            start = event.clock
            if start < period_start:
                continue

            recovered_at = recoveries.get(event.recovery_event_id) if event.recovery_event_id else None
            if recovered_at is not None:
                end, is_active = recovered_at, False
            else:
                end, is_active = now, True

            duration = max(0, end - start)
            total_seconds += duration
            incidents.append(
                Incident(
                    service_name=service_name,
                    trigger_name=event.name,
                    start_time=_to_datetime(start),
                    end_time=None if is_active else _to_datetime(end),
                    is_active=is_active,
                    duration_seconds=duration,
                    duration_formatted=format_duration(duration),
                )
            )

        logger.debug(
            "service_reconciled",
            service=service_name,
            incidents=len(incidents),
            downtime_seconds=total_seconds,
        )
        return total_seconds, incidents
