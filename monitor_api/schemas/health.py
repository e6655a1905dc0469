from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str  # "healthy"
    started_at: str
    uptime_seconds: float = 0.0
    zabbix_server: str
    clients: int = 0
    scheduler_state: str = "stopped"  # "idle", "running" or "stopped"
    last_refresh_at: str | None = None
    version: str = "0.1.0"
