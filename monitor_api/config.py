from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Logging
    monitor_log_level: str = "info"

    # Per-client directories (config.json, servicos.txt, reports, journal)
    monitor_clients_dir: str = "clientes"

    # Zabbix backend defaults (per-client config.json may override)
    zabbix_server: str = "http://localhost/zabbix"
    zabbix_api_token: str = ""
    zabbix_verify_tls: bool = False

    # HTTP client timeouts (seconds)
    monitor_http_connect_timeout: float = 5.0
    monitor_http_read_timeout: float = 30.0

    # Trigger text that marks a stopped service
    monitor_stopped_marker: str = "is not running"

    # Background refresh
    monitor_refresh_enabled: bool = True
    monitor_refresh_interval_seconds: float = 60.0
    monitor_refresh_initial_delay_seconds: float = 10.0
    monitor_refresh_days: int = 30

    # Incident journal
    monitor_journal_retention_days: int = 90

    # CORS
    monitor_cors_origins: str = "*"

    model_config = {"env_prefix": "", "case_sensitive": False, "env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
