from unittest.mock import AsyncMock

import pytest
import structlog

from helpers import LSBLK_EMPTY_DISKS, LSBLK_INSTALLED, FakeExecutor
from provisioner.config import ProvisionerSettings
from provisioner.models import ProvisioningRequest, SSHCredentials
from shared.schemas.robot import RobotSSHKey


@pytest.fixture(autouse=True)
def clear_log_context():
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def settings():
    return ProvisionerSettings(
        _env_file=None,
        robot_user="robot-user",
        robot_password="robot-pass",  # noqa: S106
    )


@pytest.fixture
def provisioning_request():
    return ProvisioningRequest(
        cluster_name="c1",
        machine_name="m1",
        server_type="ax41",
        image_path="/root/.oldroot/nfs/images/Ubuntu-2004-focal-64-minimal.tar.gz",
        ssh=SSHCredentials(key_name="cluster-key", private_key="dummy-private-key"),
    )


@pytest.fixture
def robot():
    client = AsyncMock()
    client.list_ssh_keys.return_value = [
        RobotSSHKey(name="other-key", fingerprint="00:11"),
        RobotSSHKey(name="cluster-key", fingerprint="aa:bb:cc"),
    ]
    return client


@pytest.fixture
def executor():
    return FakeExecutor(
        {
            "hostname": "rescue\n",
            "lsblk": [LSBLK_EMPTY_DISKS, LSBLK_INSTALLED],
        }
    )
