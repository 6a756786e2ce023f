"""Builders and fakes shared by the unit tests."""

from datetime import UTC, datetime
import json

from provisioner.ssh import CommandResult
from shared.clients.robot import RobotAPIError
from shared.schemas.robot import RobotServer

NOW = datetime(2030, 1, 1, 12, 0, tzinfo=UTC)

LSBLK_EMPTY_DISKS = json.dumps(
    {
        "blockdevices": [
            {"name": "sda", "size": "476,9G", "rota": False, "fstype": None, "label": None},
            {"name": "sdb", "size": "1,8T", "rota": False, "fstype": None, "label": None},
            {"name": "sdc", "size": "3,6T", "rota": True, "fstype": None, "label": None},
        ]
    }
)

LSBLK_INSTALLED = json.dumps(
    {
        "blockdevices": [
            {
                "name": "sda",
                "size": "476,9G",
                "rota": False,
                "fstype": None,
                "label": None,
                "children": [
                    {"name": "sda1", "size": "512M", "rota": False, "fstype": "ext3"},
                    {"name": "sda2", "size": "476,4G", "rota": False, "fstype": "ext4"},
                ],
            },
            {"name": "sdb", "size": "1,8T", "rota": False, "fstype": None, "label": None},
            {"name": "sdc", "size": "3,6T", "rota": True, "fstype": None, "label": None},
        ]
    }
)


def make_server(
    name: str,
    ip: str = "10.0.0.1",
    number: int = 1001,
    status: str = "ready",
    cancelled: bool = False,
    paid_until: datetime | None = None,
) -> RobotServer:
    return RobotServer(
        server_ip=ip,
        server_number=number,
        server_name=name,
        status=status,
        cancelled=cancelled,
        paid_until=paid_until,
    )


def rate_limit_error() -> RobotAPIError:
    return RobotAPIError("GET", "/server", 403, "RATE_LIMIT_EXCEEDED", "Rate limit exceeded")


class FakeExecutor:
    """Records remote commands and answers them by command prefix.

    A response may be a string (stdout), an exception (raised) or a list of
    those, consumed one per call.
    """

    def __init__(self, responses: dict | None = None):
        self.responses = responses or {}
        self.calls: list[tuple[str, str | bytes | None]] = []

    @property
    def commands(self) -> list[str]:
        return [command for command, _ in self.calls]

    def input_for(self, prefix: str) -> str | bytes | None:
        return next((stdin for command, stdin in self.calls if command.startswith(prefix)), None)

    async def run(self, command, ip, port=22, input=None, check=True):
        self.calls.append((command, input))
        for prefix, response in self.responses.items():
            if not command.startswith(prefix):
                continue
            if isinstance(response, list):
                response = response.pop(0) if len(response) > 1 else response[0]
            if isinstance(response, BaseException):
                raise response
            return CommandResult(stdout=response, stderr="", exit_status=0)
        return CommandResult(stdout="", stderr="", exit_status=0)
