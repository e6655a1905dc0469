from datetime import datetime

from pydantic import BaseModel, computed_field, model_validator

from monitor_api.services.durations import availability_percent


class Incident(BaseModel):
    model_config = {"frozen": True}

    service_name: str
    trigger_name: str
    start_time: datetime
    end_time: datetime | None = None
    is_active: bool
    duration_seconds: int
    duration_formatted: str = "0m"

    @model_validator(mode="after")
    def _check_state(self) -> "Incident":
        if self.is_active != (self.end_time is None):
            raise ValueError("an incident is active exactly when it has no end_time")
        if self.duration_seconds < 0:
            raise ValueError("duration_seconds must be >= 0")
        return self


class ServiceDowntimeDetail(BaseModel):
    model_config = {"frozen": True}

    service_name: str
    ip_address: str = "N/A"
    total_downtime_seconds: int = 0
    total_downtime_formatted: str = "0m"
    incident_count: int = 0
    incidents: list[Incident] = []

    @property
    def has_active_incident(self) -> bool:
        return any(i.is_active for i in self.incidents)


class DowntimeReport(BaseModel):
    model_config = {"frozen": True}

    client_id: str
    period_days: int
    generated_at: datetime
    total_downtime_seconds: int = 0  # sum of per-service rounded minutes, x60
    total_downtime_formatted: str = "0m"
    services_count: int = 0
    services_with_downtime: int = 0
    services: list[ServiceDowntimeDetail] = []

    @computed_field
    @property
    def availability(self) -> float:
        return availability_percent(self.total_downtime_seconds, self.period_days, self.services_count)


class DowntimeSummary(BaseModel):
    client_id: str
    period_days: int
    generated_at: datetime
    total_downtime: str
    total_downtime_seconds: int
    services_count: int
    services_with_downtime: int
    availability: float


class ServiceStatus(BaseModel):
    name: str
    status: str  # "Running", "Stopped" or "Unknown"
    active: bool
    last_check: str


class ProblemEntry(BaseModel):
    service_name: str
    name: str
    severity: str  # "high" or "average"
    severity_level: int
    status: str  # "active" or "resolved"
    started: datetime
    duration_minutes: float


class DashboardAvailability(BaseModel):
    percent: float
    downtime_minutes: float
    uptime_minutes: float
    total_minutes: float


class DashboardProblems(BaseModel):
    total: int
    active: int
    resolved: int


class DashboardResponse(BaseModel):
    client_id: str
    host_addresses: list[str]
    availability: DashboardAvailability
    problems: DashboardProblems
    generated_at: datetime


class ClientsResponse(BaseModel):
    clients: list[str]


class ServiceHistory(BaseModel):
    service_name: str
    downtime_minutes: float


class HistoryResponse(BaseModel):
    client_id: str
    days: int
    services: list[ServiceHistory]
