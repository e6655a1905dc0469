import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from monitor_api.schemas.clients import ClientConfig
from monitor_api.services.aggregator import DowntimeAggregator
from monitor_api.services.journal import IncidentJournal
from monitor_api.services.snapshot_store import SnapshotStore
from monitor_api.services.tenants import TenantRegistry
from monitor_api.services.zabbix_client import ZabbixClient
from tests.mocks.clients import NOW, write_client
from tests.mocks.fake_zabbix import FakeHost, FakeZabbix


@pytest.fixture
def clients_dir(tmp_path):
    """Two clients: acme (db01 + web01) and globex (mail01)."""
    base = tmp_path / "clientes"
    write_client(base, "acme", {"db01": "10.0.0.5", "web01": "10.0.0.6"}, zabbixApiToken="acme-token")
    write_client(base, "globex", {"mail01": "10.1.0.9"})
    return base


@pytest.fixture
def fake_zabbix():
    return FakeZabbix(
        hosts=[
            FakeHost(hostid="101", ips=["10.0.0.5"], name="db-server"),
            FakeHost(hostid="102", ips=["10.0.0.6"], name="web-server"),
            FakeHost(hostid="201", ips=["10.1.0.9"], name="mail-server"),
        ]
    )


@pytest_asyncio.fixture
async def zabbix_http(fake_zabbix):
    """httpx client routed in-process to the fake Zabbix app."""
    transport = ASGITransport(app=fake_zabbix.build_app())
    async with AsyncClient(transport=transport, base_url="http://fake-zabbix") as client:
        yield client


@pytest.fixture
def zabbix_client(zabbix_http):
    return ZabbixClient(base_url="http://fake-zabbix", api_token="test-token", http_client=zabbix_http)


@pytest.fixture
def registry(clients_dir):
    return TenantRegistry(clients_dir)


@pytest.fixture
def store(clients_dir):
    return SnapshotStore(clients_dir)


@pytest.fixture
def journal(clients_dir):
    return IncidentJournal(clients_dir)


@pytest.fixture
def client_factory(zabbix_http):
    """Per-client Zabbix clients, all routed to the fake."""

    def _factory(config: ClientConfig) -> ZabbixClient:
        return ZabbixClient("http://fake-zabbix", config.zabbix_api_token or "", http_client=zabbix_http)

    return _factory


@pytest.fixture
def aggregator(registry, store, journal, client_factory):
    return DowntimeAggregator(registry, store, journal, client_factory, clock=lambda: NOW)


@pytest_asyncio.fixture
async def app_with_services(registry, store, journal, aggregator, client_factory):
    """FastAPI app with services wired to tmp client dirs and the fake Zabbix."""
    from monitor_api.main import app

    app.state.registry = registry
    app.state.snapshot_store = store
    app.state.journal = journal
    app.state.aggregator = aggregator
    app.state.client_factory = client_factory
    app.state.scheduler = None
    yield app


@pytest_asyncio.fixture
async def api_client(app_with_services):
    transport = ASGITransport(app=app_with_services)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
