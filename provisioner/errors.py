"""Error taxonomy for the bare-metal provisioner.

Rate limiting is not a class here: it is recognised by message, because it
surfaces from the Robot client wrapped inside whatever step was running.
"""

RATE_LIMIT_MARKER = "rate limit exceeded"


class ProvisioningError(Exception):
    """Base class for all provisioning failures."""


class AmbiguousStateError(ProvisioningError):
    """Inventory or disk state allows more than one interpretation.

    Retrying cannot resolve it, so these are surfaced and never requeued.
    """


class DuplicateClaimError(AmbiguousStateError):
    """More than one server carries the claim for the same logical machine."""


class AmbiguousDeviceError(AmbiguousStateError):
    """More than one drive carries the `os` label."""


class NoServerAvailableError(ProvisioningError):
    """The pool holds no free server of the requested type."""


class SSHKeyNotFoundError(ProvisioningError):
    """The configured key name is not stored in Robot."""


class NoDeviceAvailableError(ProvisioningError):
    """No drive is left to install the operating system on."""


class UnpartitionedDeviceError(ProvisioningError):
    """The install target has no partitions after installimage ran."""


class InvalidSizeError(ProvisioningError, ValueError):
    """A block device size string could not be parsed."""


class RescueBootError(ProvisioningError):
    """The machine did not come up in the rescue system."""


class ClaimLostError(ProvisioningError):
    """The server name changed under us; another claimant won the race."""


class UserDataError(ProvisioningError):
    """The bootstrap payload is not a usable cloud-config document."""


class SSHError(ProvisioningError):
    """Base class for remote execution failures."""


class InvalidSSHKeyError(SSHError):
    """The private key could not be parsed."""


class SSHUnreachableError(SSHError):
    """No SSH connection could be established within the wait budget."""


class RemoteSessionError(SSHError):
    """The connection was up but a session could not be opened on it."""


class RemoteDisconnectedError(SSHError):
    """The session ended without exit status or exit signal.

    Expected when the command itself takes the machine down (reboot).
    """


class RemoteCommandError(SSHError):
    """A remote command exited non-zero."""

    def __init__(self, command: str, exit_status: int | None, stdout: str = "", stderr: str = ""):
        self.command = command
        self.exit_status = exit_status
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(
            f"command {_first_line(command)!r} exited with {exit_status}: {stderr.strip()[:500]}"
        )


def _first_line(command: str) -> str:
    first, _, rest = command.partition("\n")
    return f"{first} ..." if rest else first


def is_rate_limited(exc: BaseException) -> bool:
    """True if the error, or anything it was raised from, is a Robot rate limit."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        if RATE_LIMIT_MARKER in str(current).lower():
            return True
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return False
