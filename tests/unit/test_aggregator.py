"""Unit tests for client-level downtime aggregation."""

import json
import math

import httpx
import pytest

from monitor_api.core.exceptions import InvalidPeriodError, NotFoundError, PersistenceError
from monitor_api.services.aggregator import DowntimeAggregator
from monitor_api.services.snapshot_store import change_token
from monitor_api.services.zabbix_client import ZabbixClient
from tests.mocks.clients import DAY, MARKER, NOW, write_client


def _trigger(service: str) -> str:
    return f"{service} {MARKER}"


@pytest.mark.asyncio
class TestRecompute:
    async def test_example_db01_rounds_up_to_three_minutes(self, aggregator, fake_zabbix):
        t0 = NOW - 3600
        fake_zabbix.add_problem("1", t0, _trigger("db01"), "101", recovered_at=t0 + 125)

        report = await aggregator.recompute("acme", 30)

        db01 = next(s for s in report.services if s.service_name == "db01")
        assert db01.total_downtime_seconds == 125
        assert db01.total_downtime_formatted == "3m"
        assert db01.incident_count == 1
        assert db01.incidents[0].duration_formatted == "2m"
        assert db01.ip_address == "10.0.0.5"
        assert report.total_downtime_seconds == 180
        assert report.total_downtime_formatted == "3m"

    async def test_total_is_sum_of_rounded_minutes(self, aggregator, fake_zabbix):
        fake_zabbix.add_problem("1", NOW - 1000, _trigger("db01"), "101", recovered_at=NOW - 1000 + 61)
        fake_zabbix.add_problem("2", NOW - 2000, _trigger("web01"), "102", recovered_at=NOW - 2000 + 1)

        report = await aggregator.recompute("acme", 30)

        raw = {s.service_name: s.total_downtime_seconds for s in report.services}
        assert raw == {"db01": 61, "web01": 1}
        assert report.total_downtime_seconds == 60 * sum(math.ceil(v / 60) for v in raw.values())
        assert report.total_downtime_seconds == 180
        assert report.services_with_downtime == 2

    async def test_services_sorted_by_name(self, aggregator, clients_dir):
        write_client(clients_dir, "initech", {"zeta": "10.2.0.1", "Alpha": "10.2.0.2", "beta": "10.2.0.3"})
        aggregator._registry.reload()

        report = await aggregator.recompute("initech", 30)

        assert [s.service_name for s in report.services] == ["Alpha", "beta", "zeta"]

    async def test_unresolved_service_still_counted(self, aggregator, clients_dir, fake_zabbix):
        write_client(clients_dir, "initech", {"db01": "10.0.0.5", "ghost": "192.168.50.50"})
        aggregator._registry.reload()
        fake_zabbix.add_problem("1", NOW - 600, _trigger("db01"), "101")

        report = await aggregator.recompute("initech", 30)

        assert report.services_count == 2
        assert report.services_with_downtime == 1
        ghost = next(s for s in report.services if s.service_name == "ghost")
        assert ghost.total_downtime_seconds == 0
        assert ghost.incidents == []

    async def test_availability_formula(self, aggregator, fake_zabbix):
        fake_zabbix.add_problem("1", NOW - 7200, _trigger("db01"), "101", recovered_at=NOW - 3600)

        report = await aggregator.recompute("acme", 30)

        expected = round((1 - 3600 / (30 * DAY * 2)) * 100, 2)
        assert report.availability == expected

    async def test_zero_downtime_is_full_availability(self, aggregator):
        report = await aggregator.recompute("acme", 30)

        assert report.total_downtime_seconds == 0
        assert report.availability == 100.0
        assert report.services_count == 2
        assert report.services_with_downtime == 0

    async def test_client_without_services(self, aggregator, clients_dir, store):
        write_client(clients_dir, "empty", {})
        aggregator._registry.reload()

        report = await aggregator.recompute("empty", 30)

        assert report.services == []
        assert report.services_count == 0
        assert report.availability == 100.0
        assert await store.get("empty") is not None

    async def test_case_insensitive_client_id(self, aggregator):
        report = await aggregator.recompute("ACME", 30)
        assert report.client_id == "acme"

    async def test_uses_client_token(self, aggregator, fake_zabbix):
        await aggregator.recompute("acme", 30)
        assert fake_zabbix.auth_headers
        assert set(fake_zabbix.auth_headers) == {"Bearer acme-token"}


@pytest.mark.asyncio
class TestValidation:
    @pytest.mark.parametrize("days", [0, -1, 91, 365])
    async def test_rejects_out_of_range_days(self, aggregator, days):
        with pytest.raises(InvalidPeriodError):
            await aggregator.recompute("acme", days)

    @pytest.mark.parametrize("days", [1, 90])
    async def test_accepts_range_bounds(self, aggregator, days):
        report = await aggregator.recompute("acme", days)
        assert report.period_days == days

    async def test_unknown_client(self, aggregator):
        with pytest.raises(NotFoundError):
            await aggregator.recompute("unknown-tenant", 30)


@pytest.mark.asyncio
class TestSideEffects:
    async def test_report_is_persisted(self, aggregator, store):
        report = await aggregator.recompute("acme", 30)
        assert await store.get("acme") == report

    async def test_idempotent_recompute(self, aggregator, fake_zabbix):
        fake_zabbix.add_problem("1", NOW - 600, _trigger("db01"), "101", recovered_at=NOW - 100)
        fake_zabbix.add_problem("2", NOW - 50, _trigger("web01"), "102")

        first = await aggregator.recompute("acme", 30)
        second = await aggregator.recompute("acme", 30)

        assert first.services == second.services

    async def test_incidents_written_to_journal(self, aggregator, journal, fake_zabbix):
        fake_zabbix.add_problem("1", NOW - 600, _trigger("db01"), "101", recovered_at=NOW - 100)
        fake_zabbix.add_problem("2", NOW - 50, _trigger("web01"), "102")

        await aggregator.recompute("acme", 30)
        await aggregator.recompute("acme", 30)

        entries = await journal.entries("acme")
        assert sorted((e.kind, e.service) for e in entries) == [("opened", "web01"), ("resolved", "db01")]

    async def test_journal_failure_is_swallowed(self, aggregator, journal, fake_zabbix, monkeypatch):
        fake_zabbix.add_problem("1", NOW - 600, _trigger("db01"), "101")

        async def _boom(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(journal, "sync_incidents", _boom)

        report = await aggregator.recompute("acme", 30)

        assert report.services_with_downtime == 1

    async def test_snapshot_failure_skips_journal(
        self, registry, journal, zabbix_client, store, fake_zabbix, monkeypatch
    ):
        fake_zabbix.add_problem("1", NOW - 600, _trigger("db01"), "101", recovered_at=NOW - 100)

        async def _fail(*args, **kwargs):
            raise PersistenceError("rename failed")

        monkeypatch.setattr(store, "put", _fail)
        aggregator = DowntimeAggregator(registry, store, journal, lambda config: zabbix_client, clock=lambda: NOW)

        with pytest.raises(PersistenceError):
            await aggregator.recompute("acme", 30)
        assert await journal.entries("acme") == []

    async def test_back_to_back_reports_get_distinct_tokens(
        self, registry, store, journal, zabbix_client, fake_zabbix
    ):
        ticks = iter([NOW + 0.25, NOW + 0.5])
        aggregator = DowntimeAggregator(
            registry, store, journal, lambda config: zabbix_client, clock=lambda: next(ticks)
        )

        first = await aggregator.recompute("acme", 30)
        fake_zabbix.add_problem("1", NOW - 600, _trigger("db01"), "101", recovered_at=NOW - 100)
        second = await aggregator.recompute("acme", 30)

        assert first.services != second.services
        assert change_token(first) != change_token(second)


@pytest.mark.asyncio
class TestUpstreamIsolation:
    async def test_transport_error_on_one_service(self, registry, store, journal, zabbix_http, fake_zabbix):
        fake_zabbix.add_problem("1", NOW - 600, _trigger("db01"), "101", recovered_at=NOW - 100)

        async def _handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            if "10.0.0.6" in json.dumps(body.get("params", {})):
                raise httpx.ReadError("connection reset by peer", request=request)
            response = await zabbix_http.post("/api_jsonrpc.php", json=body)
            return httpx.Response(response.status_code, json=response.json())

        async with httpx.AsyncClient(transport=httpx.MockTransport(_handler)) as http:
            client = ZabbixClient("http://fake-zabbix", "acme-token", http_client=http)
            aggregator = DowntimeAggregator(registry, store, journal, lambda config: client, clock=lambda: NOW)

            report = await aggregator.recompute("acme", 30)

        downtime = {s.service_name: s.total_downtime_seconds for s in report.services}
        assert report.services_count == 2
        assert downtime == {"db01": 500, "web01": 0}
