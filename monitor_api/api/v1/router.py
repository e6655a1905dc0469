from fastapi import APIRouter

from monitor_api.api.v1.clients import router as clients_router
from monitor_api.api.v1.downtime import router as downtime_router
from monitor_api.api.v1.health import router as health_router
from monitor_api.api.v1.hosts import router as hosts_router

v1_router = APIRouter()

v1_router.include_router(health_router, tags=["Health"])
v1_router.include_router(clients_router, tags=["Clients"])
v1_router.include_router(downtime_router, tags=["Downtime"])
v1_router.include_router(hosts_router, tags=["Hosts"])
