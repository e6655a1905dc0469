from fastapi import APIRouter, Depends

from monitor_api.core.exceptions import NotFoundError
from monitor_api.dependencies import get_client_factory, get_registry, require_client
from monitor_api.schemas.zabbix import HostInfoResponse
from monitor_api.services.tenants import TenantRegistry

router = APIRouter()


@router.get("/api/{client_id}/host-info")
async def host_info(
    tenant: str = Depends(require_client),
    registry: TenantRegistry = Depends(get_registry),
    client_factory=Depends(get_client_factory),
) -> HostInfoResponse:
    """Live Zabbix host details for the client's first configured address."""
    ctx = registry.context(tenant)
    addresses = list(dict.fromkeys(ctx.services.values()))
    if not addresses:
        raise NotFoundError(f"Client '{tenant}' has no configured hosts.")

    hosts = await client_factory(ctx.config).get_hosts(addresses[0])
    if not hosts:
        raise NotFoundError(f"No Zabbix host matches address '{addresses[0]}'.")

    host = hosts[0]
    iface = host.interfaces[0] if host.interfaces else None
    return HostInfoResponse(
        hostid=host.hostid,
        hostname=host.name,
        ip=iface.ip if iface else "N/A",
        status="Online" if iface and iface.available == "1" else "Offline",
        available=iface.available if iface else "",
        error=iface.error if iface else "",
    )
