from pydantic import BaseModel


class ZabbixInterface(BaseModel):
    ip: str = ""
    available: str = ""
    error: str = ""


class ZabbixHost(BaseModel):
    hostid: str
    host: str = ""
    name: str = ""
    status: str = ""
    available: str = ""
    interfaces: list[ZabbixInterface] = []


class ZabbixEvent(BaseModel):
    eventid: str
    clock: int
    r_eventid: str = "0"
    name: str = ""

    @property
    def recovery_event_id(self) -> str | None:
        """Recovery event reference, or None when the problem has none ("0" or empty)."""
        if not self.r_eventid or self.r_eventid == "0":
            return None
        return self.r_eventid


class HostInfoResponse(BaseModel):
    hostid: str
    hostname: str
    ip: str = "N/A"
    status: str  # "Online" or "Offline"
    available: str = ""
    error: str = ""
