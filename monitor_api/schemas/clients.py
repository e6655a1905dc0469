from pydantic import AliasChoices, BaseModel, Field


class ClientConfig(BaseModel):
    """Per-client ``config.json``. Accepts snake_case or camelCase keys."""

    client_id: str = Field("", validation_alias=AliasChoices("client_id", "clientId", "ClientId"))
    client_name: str = Field("", validation_alias=AliasChoices("client_name", "clientName", "ClientName"))
    zabbix_server: str | None = Field(
        None, validation_alias=AliasChoices("zabbix_server", "zabbixServer", "ZabbixServer")
    )
    zabbix_api_token: str | None = Field(
        None, validation_alias=AliasChoices("zabbix_api_token", "zabbixApiToken", "ZabbixApiToken")
    )
