"""Client registry — static per-client configuration and monitored-service maps on disk.

Layout under ``settings.monitor_clients_dir``::

    <client_id>/config.json     client name + optional Zabbix server/token
    <client_id>/servicos.txt    one "service name;address" per line
"""

import json
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from monitor_api.config import settings
from monitor_api.core.exceptions import NotFoundError
from monitor_api.schemas.clients import ClientConfig

logger = structlog.get_logger()

SERVICES_FILE = "servicos.txt"
CONFIG_FILE = "config.json"


@dataclass(frozen=True)
class TenantContext:
    """Everything one client's reconciliation needs, passed explicitly per call."""

    tenant_id: str
    config: ClientConfig
    services: dict[str, str] = field(default_factory=dict)  # service name → address

    def address_of(self, service_name: str) -> str | None:
        return self.services.get(service_name)


class TenantRegistry:
    """Loads every ``<client>/config.json`` once; service maps are re-read on demand."""

    def __init__(self, clients_dir: str | Path | None = None):
        self._base = Path(clients_dir or settings.monitor_clients_dir)
        self._configs: dict[str, ClientConfig] = {}
        self._ids: dict[str, str] = {}  # casefolded id → directory name
        self.reload()

    @property
    def base_dir(self) -> Path:
        return self._base

    def reload(self) -> None:
        """(Re)load all client configs from disk."""
        self._configs.clear()
        self._ids.clear()

        if not self._base.is_dir():
            logger.warning("clients_dir_missing", path=str(self._base))
            self._base.mkdir(parents=True, exist_ok=True)
            return

        for client_dir in sorted(p for p in self._base.iterdir() if p.is_dir()):
            config_path = client_dir / CONFIG_FILE
            if not config_path.exists():
                continue
            try:
                config = ClientConfig.model_validate(json.loads(config_path.read_text(encoding="utf-8")))
            except Exception as e:
                logger.error("client_config_load_error", client_id=client_dir.name, error=str(e))
                continue

            config = config.model_copy(
                update={
                    "client_id": config.client_id or client_dir.name,
                    "zabbix_server": config.zabbix_server or settings.zabbix_server,
                    "zabbix_api_token": config.zabbix_api_token or settings.zabbix_api_token,
                }
            )
            self._configs[client_dir.name.casefold()] = config
            self._ids[client_dir.name.casefold()] = client_dir.name
            logger.info("client_config_loaded", client_id=client_dir.name, name=config.client_name)

        logger.info("clients_loaded", count=len(self._configs))

    def list_tenant_ids(self) -> list[str]:
        return sorted(self._ids.values())

    def exists(self, tenant_id: str | None) -> bool:
        return bool(tenant_id) and tenant_id.casefold() in self._configs

    def get_config(self, tenant_id: str) -> ClientConfig | None:
        if not tenant_id:
            return None
        return self._configs.get(tenant_id.casefold())

    def service_map(self, tenant_id: str) -> dict[str, str]:
        """Parse ``servicos.txt`` into service name → address.

        Blank lines are skipped; lines without a ``;`` separator or with an empty
        name/address are logged and ignored.
        """
        directory = self._ids.get(tenant_id.casefold(), tenant_id)
        path = self._base / directory / SERVICES_FILE
        if not path.exists():
            logger.warning("services_file_missing", client_id=tenant_id, path=str(path))
            return {}

        services: dict[str, str] = {}
        for line in path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            name, sep, address = line.partition(";")
            name, address = name.strip(), address.strip()
            if not sep or not name or not address:
                logger.warning("services_file_invalid_line", client_id=tenant_id, line=line)
                continue
            services[name] = address
        return services

    def canonical_id(self, tenant_id: str) -> str:
        """Directory-cased client id, or NotFoundError for unknown clients."""
        if not self.exists(tenant_id):
            raise NotFoundError(f"Client '{tenant_id}' not found.")
        return self._ids[tenant_id.casefold()]

    def context(self, tenant_id: str) -> TenantContext:
        """Build the tenant-scoped context, or raise NotFoundError for unknown clients."""
        canonical = self.canonical_id(tenant_id)
        return TenantContext(
            tenant_id=canonical,
            config=self._configs[canonical.casefold()],
            services=self.service_map(canonical),
        )
