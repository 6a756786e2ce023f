"""Remote command execution over SSH.

Every call opens a fresh key-authenticated connection, runs exactly one
command and closes the connection again. Machines drop off the network on
every reset, so connecting is retried for a bounded wall-clock budget.

Host keys are NOT verified: the rescue system generates new host keys on
every boot and the installed OS generates its own after imaging, so there is
nothing stable to pin against.
"""

import asyncio
from dataclasses import dataclass
import time

import asyncssh

from shared.logging import get_logger

from .config import ProvisionerSettings, get_settings
from .errors import (
    InvalidSSHKeyError,
    RemoteCommandError,
    RemoteDisconnectedError,
    RemoteSessionError,
    SSHUnreachableError,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class CommandResult:
    stdout: str
    stderr: str
    exit_status: int | None


def _text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    return value


class RemoteExecutor:
    """Runs single commands on a target machine as root."""

    def __init__(
        self,
        private_key: str,
        settings: ProvisionerSettings | None = None,
        username: str | None = None,
    ):
        self._private_key = private_key
        self._settings = settings or get_settings()
        self.username = username or self._settings.ssh_user
        self._key: asyncssh.SSHKey | None = None

    def _client_keys(self) -> list[asyncssh.SSHKey]:
        if self._key is None:
            try:
                self._key = asyncssh.import_private_key(self._private_key)
            except (asyncssh.KeyImportError, ValueError) as e:
                raise InvalidSSHKeyError(f"unable to parse private key: {e}") from e
        return [self._key]

    async def _connect(self, ip: str, port: int) -> asyncssh.SSHClientConnection:
        """Connect with retries until the wait budget is spent."""
        client_keys = self._client_keys()
        interval = self._settings.ssh_retry_interval_seconds
        attempts = max(1, int(self._settings.ssh_max_wait_seconds // interval))

        last_error: BaseException | None = None
        for attempt in range(1, attempts + 1):
            try:
                return await asyncssh.connect(
                    ip,
                    port=port,
                    username=self.username,
                    client_keys=client_keys,
                    known_hosts=None,
                    agent_path=None,
                    preferred_auth="publickey",
                    connect_timeout=self._settings.ssh_connect_timeout_seconds,
                )
            except (OSError, TimeoutError, asyncssh.Error) as e:
                last_error = e
                logger.info(
                    "ssh_connect_retry",
                    host=ip,
                    port=port,
                    attempt=attempt,
                    max_attempts=attempts,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                if attempt < attempts:
                    await asyncio.sleep(interval)

        logger.warning("ssh_unreachable", host=ip, port=port, attempts=attempts)
        raise SSHUnreachableError(
            f"unable to establish connection to {ip}:{port} after {attempts} attempts: {last_error}"
        ) from last_error

    async def run(
        self,
        command: str,
        ip: str,
        port: int = 22,
        input: str | bytes | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Run one command and return its output.

        Args:
            command: Shell command line, executed by the remote login shell
            ip: Target address
            port: SSH port
            input: Optional data written to the command's stdin; bytes are sent
                as-is and the output is decoded leniently afterwards
            check: Raise RemoteCommandError on a non-zero exit status

        Raises:
            SSHUnreachableError: No connection within the wait budget
            RemoteSessionError: Connected, but no session could be opened
            RemoteDisconnectedError: Session ended without exit status
            RemoteCommandError: Command failed (only with check=True)
        """
        conn = await self._connect(ip, port)
        timeout = self._settings.ssh_command_timeout_seconds
        start = time.time()
        options = {"encoding": None} if isinstance(input, bytes) else {}

        async with conn:
            try:
                result = await conn.run(
                    command, input=input, check=False, timeout=timeout, **options
                )
            except asyncssh.ChannelOpenError as e:
                raise RemoteSessionError(f"unable to open session on {ip}:{port}: {e}") from e
            except asyncssh.DisconnectError as e:
                raise RemoteDisconnectedError(
                    f"connection to {ip}:{port} lost while running command: {e}"
                ) from e
            except TimeoutError as e:
                raise RemoteCommandError(
                    command, None, stderr=f"timed out after {timeout}s"
                ) from e

        duration_ms = (time.time() - start) * 1000
        if result.exit_status is None and result.exit_signal is None:
            raise RemoteDisconnectedError(
                "remote command exited without exit status or exit signal"
            )

        stdout = _text(result.stdout)
        stderr = _text(result.stderr)
        logger.debug(
            "ssh_command_completed",
            host=ip,
            exit_status=result.exit_status,
            duration_ms=round(duration_ms, 2),
        )
        if check and result.exit_status != 0:
            raise RemoteCommandError(command, result.exit_status, stdout, stderr)
        return CommandResult(stdout=stdout, stderr=stderr, exit_status=result.exit_status)
