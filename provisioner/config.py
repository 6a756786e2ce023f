"""Provisioner configuration.

Every timing and vendor constant the engine uses lives here so it can be
tuned from the environment (or .env) without code changes.

Robot credentials: ROBOT_USER, ROBOT_PASSWORD
"""

from datetime import timedelta
from functools import lru_cache

from pydantic import Field

from shared.config import BaseSettings, robot_password_field, robot_url_field, robot_user_field

DEFAULT_PARTITION_LAYOUT = "PART /boot ext3 512M\nPART / ext4 all"


class ProvisionerSettings(BaseSettings):
    """Bare-metal provisioner settings."""

    # Robot webservice
    robot_base_url: str = robot_url_field()
    robot_user: str | None = robot_user_field(required=False)
    robot_password: str | None = robot_password_field(required=False)

    # Claim ledger
    cancellation_lookahead_hours: float = Field(
        default=36,
        ge=0,
        description="Cancelled servers paid until less than this far ahead are unusable",
    )

    # Requeue intervals (seconds)
    rate_limit_backoff_seconds: float = Field(default=660, ge=0)
    rate_limit_backoff_delete_seconds: float = Field(default=120, ge=0)
    server_not_ready_requeue_seconds: float = Field(default=300, ge=0)
    bootstrap_not_ready_requeue_seconds: float = Field(default=15, ge=0)
    ssh_unreachable_requeue_seconds: float = Field(default=60, ge=0)
    claim_lost_requeue_seconds: float = Field(default=15, ge=0)

    # SSH
    ssh_user: str = Field(default="root")
    ssh_max_wait_seconds: float = Field(
        default=200,
        gt=0,
        description="Wall-clock budget for establishing one SSH connection",
    )
    ssh_retry_interval_seconds: float = Field(default=30, gt=0)
    ssh_connect_timeout_seconds: float = Field(default=15, gt=0)
    ssh_command_timeout_seconds: float | None = Field(
        default=None,
        description="Per-command timeout; unset means wait for the command indefinitely",
    )

    # Settle windows around reboots, run remotely as `sleep N`
    pre_reboot_settle_seconds: int = Field(default=30, ge=0)
    post_reboot_settle_seconds: int = Field(default=60, ge=0)

    # installimage
    default_partition_layout: str = Field(default=DEFAULT_PARTITION_LAYOUT)
    install_command: str = Field(default="bash /root/.oldroot/nfs/install/installimage")
    autosetup_path: str = Field(default="/autosetup")
    bootloader: str = Field(default="grub")

    # Robot rescue/reset
    rescue_os: str = Field(default="linux")
    reset_type: str = Field(default="hw")

    # cloud-init
    cloud_init_seed_dir: str = Field(default="/var/lib/cloud/seed/nocloud")
    cloud_init_instance_id: str = Field(default="iid-system-uuid")
    external_cloud_provider: bool = Field(
        default=True,
        description="Add cloud-provider=external to the kubeadm join kubelet args",
    )

    provider_id_prefix: str = Field(default="hcloud://")

    @property
    def cancellation_lookahead(self) -> timedelta:
        return timedelta(hours=self.cancellation_lookahead_hours)


@lru_cache
def get_settings() -> ProvisionerSettings:
    """Get cached settings instance."""
    return ProvisionerSettings()
