import time
from datetime import timezone
from email.utils import format_datetime

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse

from monitor_api.config import settings
from monitor_api.core.exceptions import ReportNotReadyError
from monitor_api.dependencies import (
    get_aggregator,
    get_journal,
    get_registry,
    get_store,
    require_client,
)
from monitor_api.schemas.downtime import (
    DashboardAvailability,
    DashboardProblems,
    DashboardResponse,
    DowntimeReport,
    DowntimeSummary,
    HistoryResponse,
    ProblemEntry,
    ServiceHistory,
    ServiceStatus,
)
from monitor_api.services.aggregator import DowntimeAggregator
from monitor_api.services.durations import SECONDS_PER_DAY
from monitor_api.services.journal import IncidentJournal
from monitor_api.services.snapshot_store import SnapshotStore, change_token
from monitor_api.services.tenants import TenantRegistry

router = APIRouter()

CACHE_CONTROL = "public, max-age=60"


def _etag_matches(header: str | None, etag: str) -> bool:
    """RFC 9110 weak comparison against an If-None-Match list (or "*")."""
    if not header:
        return False
    for candidate in header.split(","):
        candidate = candidate.strip()
        if candidate == "*" or candidate.removeprefix("W/") == etag:
            return True
    return False


def _conditional(request: Request, report: DowntimeReport, payload) -> Response:
    """Attach snapshot cache headers; 304 when the caller already holds this version."""
    etag = change_token(report)
    headers = {
        "ETag": etag,
        "Cache-Control": CACHE_CONTROL,
        "Last-Modified": format_datetime(report.generated_at.astimezone(timezone.utc), usegmt=True),
    }
    if _etag_matches(request.headers.get("if-none-match"), etag):
        return Response(status_code=304, headers=headers)
    return JSONResponse(content=payload, headers=headers)


async def _require_report(store: SnapshotStore, client_id: str) -> DowntimeReport:
    report = await store.get(client_id)
    if report is None:
        raise ReportNotReadyError(client_id)
    return report


@router.get("/api/{client_id}/downtime/calculate")
async def calculate_downtime(
    days: int = 30,
    tenant: str = Depends(require_client),
    aggregator: DowntimeAggregator = Depends(get_aggregator),
) -> DowntimeReport:
    """Recompute the client's report now (queries Zabbix) and store it."""
    return await aggregator.recompute(tenant, days)


@router.get("/api/{client_id}/downtime/report")
async def downtime_report(
    request: Request,
    tenant: str = Depends(require_client),
    store: SnapshotStore = Depends(get_store),
):
    """Latest stored report."""
    report = await _require_report(store, tenant)
    return _conditional(request, report, report.model_dump(mode="json"))


@router.get("/api/{client_id}/downtime/summary")
async def downtime_summary(
    request: Request,
    tenant: str = Depends(require_client),
    store: SnapshotStore = Depends(get_store),
):
    report = await _require_report(store, tenant)
    summary = DowntimeSummary(
        client_id=report.client_id,
        period_days=report.period_days,
        generated_at=report.generated_at,
        total_downtime=report.total_downtime_formatted,
        total_downtime_seconds=report.total_downtime_seconds,
        services_count=report.services_count,
        services_with_downtime=report.services_with_downtime,
        availability=report.availability,
    )
    return _conditional(request, report, summary.model_dump(mode="json"))


@router.get("/api/{client_id}/services")
async def service_statuses(
    request: Request,
    tenant: str = Depends(require_client),
    store: SnapshotStore = Depends(get_store),
    registry: TenantRegistry = Depends(get_registry),
):
    """Running/Stopped per configured service, read from the stored report."""
    configured = sorted(registry.service_map(tenant), key=str.casefold)
    report = await store.get(tenant)

    if report is None:
        return [
            ServiceStatus(name=name, status="Unknown", active=True, last_check="awaiting data").model_dump()
            for name in configured
        ]

    by_name = {s.service_name.casefold(): s for s in report.services}
    last_check = report.generated_at.strftime("%Y-%m-%d %H:%M:%S")
    statuses = []
    for name in configured:
        detail = by_name.get(name.casefold())
        stopped = detail is not None and detail.has_active_incident
        statuses.append(
            ServiceStatus(
                name=name,
                status="Stopped" if stopped else "Running",
                active=not stopped,
                last_check=last_check,
            ).model_dump()
        )
    return _conditional(request, report, statuses)


@router.get("/api/{client_id}/problems")
async def problems(
    request: Request,
    resolved: int | None = Query(None, ge=0, le=1, description="1 = resolved only, 0 = active only"),
    tenant: str = Depends(require_client),
    store: SnapshotStore = Depends(get_store),
):
    """Incidents from the stored report, most severe and most recent first."""
    report = await _require_report(store, tenant)

    entries: list[ProblemEntry] = []
    marker = settings.monitor_stopped_marker.casefold()
    for service in report.services:
        for incident in service.incidents:
            if resolved == 1 and incident.is_active:
                continue
            if resolved == 0 and not incident.is_active:
                continue
            high = marker in incident.trigger_name.casefold()
            entries.append(
                ProblemEntry(
                    service_name=service.service_name,
                    name=incident.trigger_name,
                    severity="high" if high else "average",
                    severity_level=4 if high else 3,
                    status="active" if incident.is_active else "resolved",
                    started=incident.start_time,
                    duration_minutes=round(incident.duration_seconds / 60.0, 2),
                )
            )

    entries.sort(key=lambda p: (p.severity_level, p.started), reverse=True)
    return _conditional(request, report, [p.model_dump(mode="json") for p in entries])


@router.get("/api/{client_id}/dashboard")
async def dashboard(
    request: Request,
    tenant: str = Depends(require_client),
    store: SnapshotStore = Depends(get_store),
    registry: TenantRegistry = Depends(get_registry),
):
    report = await _require_report(store, tenant)

    active = sum(1 for s in report.services for i in s.incidents if i.is_active)
    resolved = sum(1 for s in report.services for i in s.incidents if not i.is_active)
    total_minutes = report.period_days * 24 * 60.0 * report.services_count
    downtime_minutes = report.total_downtime_seconds / 60.0

    body = DashboardResponse(
        client_id=report.client_id,
        host_addresses=sorted(set(registry.service_map(tenant).values())),
        availability=DashboardAvailability(
            percent=report.availability,
            downtime_minutes=downtime_minutes,
            uptime_minutes=total_minutes - downtime_minutes,
            total_minutes=total_minutes,
        ),
        problems=DashboardProblems(total=active + resolved, active=active, resolved=resolved),
        generated_at=report.generated_at,
    )
    return _conditional(request, report, body.model_dump(mode="json"))


@router.get("/api/{client_id}/history")
async def downtime_history(
    service: str | None = None,
    days: int = Query(30, ge=1, le=90),
    tenant: str = Depends(require_client),
    registry: TenantRegistry = Depends(get_registry),
    journal: IncidentJournal = Depends(get_journal),
) -> HistoryResponse:
    """Resolved downtime minutes per service, from the incident journal."""
    now = int(time.time())
    time_from = now - days * SECONDS_PER_DAY
    names = [service] if service else sorted(registry.service_map(tenant), key=str.casefold)

    services = [
        ServiceHistory(
            service_name=name,
            downtime_minutes=round(
                await journal.historical_downtime_minutes(tenant, name, time_from, now), 2
            ),
        )
        for name in names
    ]
    return HistoryResponse(client_id=tenant, days=days, services=services)
