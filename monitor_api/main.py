from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from monitor_api.api.v1.router import v1_router
from monitor_api.config import settings
from monitor_api.core.exceptions import MonitorError, monitor_error_handler
from monitor_api.core.middleware import RequestLoggingMiddleware
from monitor_api.schemas.clients import ClientConfig
from monitor_api.services.aggregator import DowntimeAggregator
from monitor_api.services.journal import IncidentJournal
from monitor_api.services.scheduler import RefreshScheduler
from monitor_api.services.snapshot_store import SnapshotStore
from monitor_api.services.tenants import TenantRegistry
from monitor_api.services.zabbix_client import ZabbixClient

_NAME_TO_LEVEL = {
    "debug": 10,
    "info": 20,
    "warning": 30,
    "warn": 30,
    "error": 40,
    "critical": 50,
}

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        _NAME_TO_LEVEL.get(settings.monitor_log_level.lower(), 20)
    ),
)

logger = structlog.get_logger()


def build_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            connect=settings.monitor_http_connect_timeout,
            read=settings.monitor_http_read_timeout,
            write=5.0,
            pool=5.0,
        ),
        verify=settings.zabbix_verify_tls,
    )


def build_services(http_client: httpx.AsyncClient, clients_dir: str | None = None) -> dict:
    """Wire the client factory, registry, store, journal, aggregator and scheduler around one HTTP client."""
    clients_dir = clients_dir or settings.monitor_clients_dir

    def client_factory(config: ClientConfig) -> ZabbixClient:
        return ZabbixClient(
            base_url=config.zabbix_server or settings.zabbix_server,
            api_token=config.zabbix_api_token or settings.zabbix_api_token,
            http_client=http_client,
        )

    registry = TenantRegistry(clients_dir)
    store = SnapshotStore(clients_dir)
    journal = IncidentJournal(clients_dir)
    aggregator = DowntimeAggregator(registry, store, journal, client_factory)
    scheduler = RefreshScheduler(registry, aggregator, journal)
    return {
        "registry": registry,
        "snapshot_store": store,
        "journal": journal,
        "aggregator": aggregator,
        "scheduler": scheduler,
        "client_factory": client_factory,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    http_client = build_http_client()
    services = build_services(http_client)
    for name, service in services.items():
        setattr(app.state, name, service)

    services["snapshot_store"].cleanup_orphaned_tmp()

    if settings.monitor_refresh_enabled:
        await services["scheduler"].start()

    logger.info(
        "monitor_api_starting",
        zabbix_server=settings.zabbix_server,
        clients=len(services["registry"].list_tenant_ids()),
        refresh_enabled=settings.monitor_refresh_enabled,
    )
    yield

    await services["scheduler"].stop()
    await http_client.aclose()
    logger.info("monitor_api_stopping")


app = FastAPI(
    title="Monitor Services API",
    description="Per-client service downtime and availability reports built from Zabbix events",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_exception_handler(MonitorError, monitor_error_handler)

# Starlette: last-added = outermost. RequestLogging wraps CORS.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.monitor_cors_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(v1_router)


@app.get("/")
async def root():
    return {"service": "monitor-services-api", "version": "0.1.0"}
