from collections.abc import Callable

from fastapi import Request

from monitor_api.schemas.clients import ClientConfig
from monitor_api.services.aggregator import DowntimeAggregator
from monitor_api.services.journal import IncidentJournal
from monitor_api.services.snapshot_store import SnapshotStore
from monitor_api.services.tenants import TenantRegistry
from monitor_api.services.zabbix_client import ZabbixClient


def get_registry(request: Request) -> TenantRegistry:
    return request.app.state.registry


def get_store(request: Request) -> SnapshotStore:
    return request.app.state.snapshot_store


def get_journal(request: Request) -> IncidentJournal:
    return request.app.state.journal


def get_aggregator(request: Request) -> DowntimeAggregator:
    return request.app.state.aggregator


def get_client_factory(request: Request) -> Callable[[ClientConfig], ZabbixClient]:
    return request.app.state.client_factory


def require_client(client_id: str, request: Request) -> str:
    """Resolve the path's client id to its canonical form (404 for unknown clients)."""
    return get_registry(request).canonical_id(client_id)
