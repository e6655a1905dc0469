from fastapi import APIRouter, Depends

from monitor_api.dependencies import get_registry
from monitor_api.schemas.downtime import ClientsResponse
from monitor_api.services.tenants import TenantRegistry

router = APIRouter()


@router.get("/api/clients")
async def list_clients(registry: TenantRegistry = Depends(get_registry)) -> ClientsResponse:
    return ClientsResponse(clients=registry.list_tenant_ids())
