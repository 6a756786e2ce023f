"""Pydantic schemas for Hetzner Robot webservice responses.

These schemas document the structure of Robot API responses,
providing type safety and validation for data received from the API.
Every object is wrapped in a single-key envelope ({"server": {...}},
{"key": {...}}); the client unwraps it before validation.

API Documentation: https://robot.hetzner.com/doc/webservice/en.html
"""

from datetime import UTC, date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RobotServer(BaseModel):
    """Dedicated server from GET /server and GET /server/{server-ip}.

    `server_name` is the only field the account owner can write; the
    provisioner uses it as its ownership ledger.
    """

    model_config = ConfigDict(extra="allow")

    server_ip: str = Field(..., description="Primary IPv4 address")
    server_number: int = Field(..., description="Unique server ID in Robot")
    server_name: str = Field("", description="Mutable server name")
    product: str | None = Field(None, description="Product/plan name")
    dc: str | None = Field(None, description="Datacenter")
    status: str | None = Field(None, description="Server status (ready, in process)")
    cancelled: bool = Field(False, description="Server has been cancelled")
    paid_until: datetime | None = Field(None, description="End of the paid period (UTC)")

    @field_validator("server_name", mode="before")
    @classmethod
    def _none_name_is_empty(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("paid_until", mode="before")
    @classmethod
    def _parse_paid_until(cls, value: object) -> object:
        """Robot sends plain dates ("2024-05-01"); normalise to aware UTC datetimes."""
        if value in (None, ""):
            return None
        if isinstance(value, datetime):
            return value if value.tzinfo else value.replace(tzinfo=UTC)
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day, tzinfo=UTC)
        if isinstance(value, str):
            if len(value) == len("YYYY-MM-DD"):
                return datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=UTC)
            parsed = datetime.fromisoformat(value)
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
        return value

    @property
    def is_ready(self) -> bool:
        return self.status == "ready"


class RobotSSHKey(BaseModel):
    """Stored SSH key from GET /key."""

    model_config = ConfigDict(extra="allow")

    name: str = Field(..., description="Key name chosen at upload time")
    fingerprint: str = Field(..., description="MD5 fingerprint used by rescue/boot endpoints")
    type: str | None = Field(None, description="Key algorithm (ED25519, RSA, ...)")
    size: int | None = Field(None, description="Key size in bits")
    data: str | None = Field(None, description="Public key in OpenSSH format")


class RobotRescue(BaseModel):
    """Rescue boot configuration from POST /boot/{server-ip}/rescue."""

    model_config = ConfigDict(extra="allow")

    server_ip: str = Field(..., description="Server IPv4 address")
    server_number: int | None = Field(None, description="Server ID")
    os: str | list[str] | None = Field(None, description="Activated rescue OS")
    active: bool = Field(False, description="Rescue boot is armed for the next reset")
    password: str | None = Field(None, description="Root password (only when no key was given)")
    authorized_key: list | None = Field(None, description="Keys injected into the rescue system")


class RobotReset(BaseModel):
    """Reset result from POST /reset/{server-ip}."""

    model_config = ConfigDict(extra="allow")

    server_ip: str = Field(..., description="Server IPv4 address")
    type: str | list[str] | None = Field(None, description="Executed reset type")


class RobotErrorBody(BaseModel):
    """Error envelope content: {"error": {"status": 403, "code": "...", "message": "..."}}."""

    model_config = ConfigDict(extra="allow")

    status: int | None = None
    code: str = "UNKNOWN"
    message: str = ""
