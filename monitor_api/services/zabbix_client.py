"""Zabbix JSON-RPC client — host resolution and problem/recovery event lookups."""

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from monitor_api.core.exceptions import UpstreamError
from monitor_api.schemas.zabbix import ZabbixEvent, ZabbixHost

logger = structlog.get_logger()

PROBLEM = 1
RECOVERY = 0

_HOST_OUTPUT = ["hostid", "host", "name", "status", "available"]
_INTERFACE_OUTPUT = ["ip", "available", "error"]


class ZabbixClient:
    """Thin async JSON-RPC client bound to one Zabbix server and token.

    The token travels on each request, so one shared ``httpx.AsyncClient`` can
    serve every client configuration concurrently.
    """

    def __init__(self, base_url: str, api_token: str = "", http_client: httpx.AsyncClient | None = None):
        self.base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {api_token}"} if api_token else {}
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(connect=5.0, read=30.0, write=5.0, pool=5.0)
        )
        self._request_id = 0

    @property
    def api_url(self) -> str:
        return f"{self.base_url}/api_jsonrpc.php"

    async def request(self, method: str, params: dict) -> list | dict:
        """Call a JSON-RPC method and return its ``result`` member."""
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "method": method, "params": params, "id": self._request_id}

        try:
            response = await self._client.post(self.api_url, json=payload, headers=self._headers)
            response.raise_for_status()
            body = response.json()
        except httpx.ConnectError as e:
            raise UpstreamError(f"Cannot connect to Zabbix at {self.base_url}: {e}")
        except httpx.HTTPStatusError as e:
            raise UpstreamError(f"Zabbix returned error: {e.response.status_code}")
        except httpx.TimeoutException:
            raise UpstreamError("Zabbix request timed out.")
        except httpx.HTTPError as e:
            raise UpstreamError(f"Zabbix transport error for {method}: {e}")
        except ValueError:
            raise UpstreamError(f"Zabbix returned a non-JSON response for {method}.")

        if not isinstance(body, dict):
            raise UpstreamError(f"Zabbix returned an unexpected response for {method}.")

        if body.get("error"):
            err = body["error"]
            raise UpstreamError(
                f"Zabbix {method} failed: {err.get('message', 'unknown error')}",
                details={"code": err.get("code"), "data": err.get("data", "")},
            )
        return body.get("result") or []

    @staticmethod
    def _parse(model: type[BaseModel], rows, method: str) -> list:
        """Validate result rows, reporting malformed payloads as upstream errors."""
        if not isinstance(rows, list):
            raise UpstreamError(f"Zabbix {method} returned a non-list result.")
        try:
            return [model.model_validate(row) for row in rows]
        except ValidationError as e:
            raise UpstreamError(
                f"Zabbix {method} returned a malformed result.", details={"errors": e.error_count()}
            )

    async def get_hosts(self, address: str) -> list[ZabbixHost]:
        """Return the hosts whose interface matches ``address``.

        Tries the exact ``filter.ip`` lookup first, then falls back to scanning
        every host's interfaces.
        """
        result = await self.request(
            "host.get",
            {"output": _HOST_OUTPUT, "selectInterfaces": _INTERFACE_OUTPUT, "filter": {"ip": address}},
        )
        hosts = self._parse(ZabbixHost, result, "host.get")

        if not hosts:
            logger.debug("zabbix_host_fallback_lookup", address=address)
            result = await self.request(
                "host.get",
                {"output": _HOST_OUTPUT, "selectInterfaces": _INTERFACE_OUTPUT},
            )
            wanted = address.strip()
            hosts = [
                h
                for h in self._parse(ZabbixHost, result, "host.get")
                if any(i.ip.strip() == wanted for i in h.interfaces)
            ]

        return hosts

    async def resolve_hosts(self, address: str) -> list[str]:
        return [h.hostid for h in await self.get_hosts(address)]

    async def get_events(
        self,
        host_ids: list[str],
        text_filter: list[str],
        time_from: int,
        time_till: int,
        value: int = PROBLEM,
    ) -> list[ZabbixEvent]:
        """Events whose name contains every term of ``text_filter``, oldest first."""
        params = {
            "output": ["eventid", "clock", "r_eventid", "name"],
            "search": {"name": text_filter},
            "searchByAny": False,
            "time_from": time_from,
            "time_till": time_till,
            "value": value,
            "sortfield": ["clock"],
            "sortorder": "ASC",
        }
        if host_ids:
            params["hostids"] = host_ids

        result = await self.request("event.get", params)
        return self._parse(ZabbixEvent, result, "event.get")

    async def get_events_by_ids(self, event_ids: list[str]) -> list[ZabbixEvent]:
        if not event_ids:
            return []
        result = await self.request("event.get", {"output": ["eventid", "clock"], "eventids": event_ids})
        return self._parse(ZabbixEvent, result, "event.get")
