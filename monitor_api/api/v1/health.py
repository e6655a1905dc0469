import time
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from monitor_api.config import settings
from monitor_api.schemas.health import HealthResponse

router = APIRouter()

_start_time = time.monotonic()
_started_at = datetime.now(timezone.utc)


@router.get("/health")
async def health_check(request: Request) -> HealthResponse:
    """Process health — never touches Zabbix."""
    scheduler = getattr(request.app.state, "scheduler", None)
    registry = getattr(request.app.state, "registry", None)
    last_cycle = scheduler.last_cycle_at if scheduler else None

    return HealthResponse(
        status="healthy",
        started_at=_started_at.isoformat(),
        uptime_seconds=round(time.monotonic() - _start_time, 1),
        zabbix_server=settings.zabbix_server,
        clients=len(registry.list_tenant_ids()) if registry else 0,
        scheduler_state=scheduler.state if scheduler else "stopped",
        last_refresh_at=last_cycle.isoformat() if last_cycle else None,
    )
