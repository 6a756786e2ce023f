"""Request and status models exchanged with the calling orchestrator."""

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from .claims import DELIMITER


class SSHCredentials(BaseModel):
    """Key material used for rescue activation and remote commands."""

    model_config = ConfigDict(frozen=True)

    key_name: str = Field(..., min_length=1, description="Name of the key stored in Robot")
    private_key: SecretStr = Field(..., description="OpenSSH/PEM private key")
    port: int = Field(22, ge=1, le=65535, description="SSH port of rescue and installed OS")


class ProvisioningRequest(BaseModel):
    """One logical machine to be backed by a physical server.

    Immutable for the duration of a provisioning attempt.
    """

    model_config = ConfigDict(frozen=True)

    cluster_name: str
    machine_name: str
    server_type: str
    image_path: str
    partition: str | None = Field(
        None, description="installimage PART lines; default layout if unset"
    )
    ssh: SSHCredentials

    @field_validator("cluster_name", "machine_name", "server_type")
    @classmethod
    def _valid_name_segment(cls, value: str) -> str:
        if not value:
            raise ValueError("must not be empty")
        if DELIMITER in value:
            raise ValueError(f"must not contain {DELIMITER!r}")
        return value


class MachineStatus(BaseModel):
    """Observed state of the logical machine, persisted by the caller."""

    server_ip: str | None = None
    server_id: int | None = None
    server_name: str | None = None
    provider_id: str | None = None
    server_state: str | None = None
    provisioning_state: str | None = None
    ready: bool = False

    # Terminal problems that need deletion rather than retry
    failure_reason: str | None = None
    failure_message: str | None = None

    def set_failure(self, reason: str, message: str) -> None:
        self.failure_reason = reason
        self.failure_message = message
        self.ready = False
