"""Claim-and-provision state machine for one logical machine.

Each state has exactly one transition coroutine. A transition either moves
on (Continue), asks to be invoked again later (Suspend) or gives up (Fail).
Waiting never happens in-process, apart from the SSH connect retries and
the remote settle windows around reboots: everything else is a Suspend, and
the next invocation starts over at SCANNING.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
import shlex

from shared.clients.robot import RobotClient
from shared.logging import get_logger
from shared.schemas.robot import RobotServer

from .bootstrap import BootstrapDataNotReady, BootstrapDataProvider
from .claims import (
    claimed_name,
    find_attached,
    find_free,
    is_expiring,
    list_matching,
    parse_claim,
)
from .config import ProvisionerSettings, get_settings
from .devices import (
    LSBLK_COMMAND,
    BlockDevice,
    label_children_command,
    parse_block_devices,
    select_install_device,
    wipe_command,
)
from .errors import (
    ClaimLostError,
    RemoteDisconnectedError,
    RescueBootError,
    SSHKeyNotFoundError,
    SSHUnreachableError,
    is_rate_limited,
)
from .models import MachineStatus, ProvisioningRequest
from .ssh import RemoteExecutor
from .tracing import log_step_execution
from .userdata import ensure_external_cloud_provider

logger = get_logger(__name__)

UPDATE_ERROR_REASON = "UpdateError"
RESCUE_HOSTNAME_MARKER = "rescue"


class ProvisioningState(str, Enum):
    """Steps of a provisioning attempt, in execution order."""

    SCANNING = "scanning"
    ATTACHED_FOUND = "attached_found"
    CLAIMING_NEW = "claiming_new"
    WAITING_FOR_READY = "waiting_for_ready"
    WAITING_FOR_BOOTSTRAP_DATA = "waiting_for_bootstrap_data"
    RESCUE_ACTIVATING = "rescue_activating"
    RESCUE_CONFIRMING = "rescue_confirming"
    DEVICE_SELECTING = "device_selecting"
    IMAGING = "imaging"
    RELABELING = "relabeling"
    REBOOTING_INSTALLED = "rebooting_installed"
    CLOUD_INIT_INJECTING = "cloud_init_injecting"
    REBOOTING_SEEDED = "rebooting_seeded"
    CLAIMING = "claiming"
    DONE = "done"


# A failure in these states leaves a half-written drive behind
_WIPE_ON_FAILURE = frozenset({ProvisioningState.IMAGING, ProvisioningState.RELABELING})


@dataclass(frozen=True)
class Continue:
    next_state: ProvisioningState


@dataclass(frozen=True)
class Suspend:
    after: float
    reason: str


@dataclass(frozen=True)
class Fail:
    error: Exception


Outcome = Continue | Suspend | Fail


@dataclass
class ProvisioningContext:
    """Facts gathered by earlier steps of the current invocation."""

    matches: list[RobotServer] = field(default_factory=list)
    server: RobotServer | None = None
    bootstrap_data: bytes | None = None
    devices: list[BlockDevice] = field(default_factory=list)
    drive: str | None = None


class ProvisioningPipeline:
    """Drives one invocation from SCANNING to DONE, or to the first Suspend/Fail."""

    def __init__(
        self,
        request: ProvisioningRequest,
        robot: RobotClient,
        executor: RemoteExecutor,
        bootstrap: BootstrapDataProvider,
        settings: ProvisionerSettings | None = None,
        status: MachineStatus | None = None,
        now: datetime | None = None,
    ):
        self.request = request
        self.robot = robot
        self.executor = executor
        self.bootstrap = bootstrap
        self.settings = settings or get_settings()
        self.status = status or MachineStatus()
        self.now = now or datetime.now(UTC)
        self.context = ProvisioningContext()

        self._transitions = {
            ProvisioningState.SCANNING: self._scan,
            ProvisioningState.ATTACHED_FOUND: self._attached_found,
            ProvisioningState.CLAIMING_NEW: self._claim_new,
            ProvisioningState.WAITING_FOR_READY: self._wait_for_ready,
            ProvisioningState.WAITING_FOR_BOOTSTRAP_DATA: self._wait_for_bootstrap_data,
            ProvisioningState.RESCUE_ACTIVATING: self._activate_rescue,
            ProvisioningState.RESCUE_CONFIRMING: self._confirm_rescue,
            ProvisioningState.DEVICE_SELECTING: self._select_device,
            ProvisioningState.IMAGING: self._install_image,
            ProvisioningState.RELABELING: self._relabel,
            ProvisioningState.REBOOTING_INSTALLED: self._reboot_installed,
            ProvisioningState.CLOUD_INIT_INJECTING: self._inject_cloud_init,
            ProvisioningState.REBOOTING_SEEDED: self._reboot_seeded,
            ProvisioningState.CLAIMING: self._claim,
        }

    @property
    def lookahead(self) -> timedelta:
        return self.settings.cancellation_lookahead

    @property
    def claimed_name(self) -> str:
        return claimed_name(
            self.request.cluster_name, self.request.server_type, self.request.machine_name
        )

    @property
    def server(self) -> RobotServer:
        if self.context.server is None:
            raise RuntimeError("no server selected yet")
        return self.context.server

    @property
    def port(self) -> int:
        return self.request.ssh.port

    async def run(self, state: ProvisioningState = ProvisioningState.SCANNING) -> Outcome:
        """Run transitions until DONE, a Suspend or a Fail."""
        while state != ProvisioningState.DONE:
            self.status.provisioning_state = state.value
            outcome = await self._step(state)
            if not isinstance(outcome, Continue):
                return outcome
            state = outcome.next_state

        self.status.provisioning_state = ProvisioningState.DONE.value
        return Continue(ProvisioningState.DONE)

    async def _step(self, state: ProvisioningState) -> Outcome:
        try:
            return await self._transitions[state]()
        except Exception as e:
            if is_rate_limited(e):
                logger.warning(
                    "robot_rate_limit_exceeded",
                    state=state.value,
                    requeue_after=self.settings.rate_limit_backoff_seconds,
                )
                return Suspend(self.settings.rate_limit_backoff_seconds, "rate limit exceeded")
            if isinstance(e, SSHUnreachableError):
                return Suspend(self.settings.ssh_unreachable_requeue_seconds, str(e))
            if isinstance(e, ClaimLostError):
                return Suspend(self.settings.claim_lost_requeue_seconds, str(e))

            if state in _WIPE_ON_FAILURE:
                await self._wipe_drive()
            return Fail(e)

    async def _wipe_drive(self) -> None:
        """Best-effort cleanup of the install target; never raises."""
        drive = self.context.drive
        if drive is None or self.context.server is None:
            return
        try:
            await self.executor.run(wipe_command(drive), self.server.server_ip, self.port)
            logger.info("install_device_wiped", drive=drive)
        except Exception as e:
            logger.warning(
                "install_device_wipe_failed",
                drive=drive,
                error=str(e),
                error_type=type(e).__name__,
            )

    def _record_server(self, server: RobotServer) -> None:
        self.context.server = server
        self.status.server_ip = server.server_ip
        self.status.server_id = server.server_number
        self.status.server_name = server.server_name

    def _mark_running(self, server: RobotServer) -> None:
        self.status.server_name = server.server_name
        self.status.provider_id = f"{self.settings.provider_id_prefix}{server.server_number}"
        self.status.server_state = "running"
        self.status.ready = True

    async def _run(self, command: str, input: str | bytes | None = None) -> str:
        result = await self.executor.run(command, self.server.server_ip, self.port, input=input)
        return result.stdout

    async def _reboot(self) -> None:
        """Reboot the machine; losing the session on the way down is expected."""
        await self._run(f"sleep {self.settings.pre_reboot_settle_seconds}")
        try:
            await self._run("reboot")
        except RemoteDisconnectedError:
            logger.debug("reboot_disconnect_ignored", server_ip=self.server.server_ip)
        logger.info("server_rebooted", server_ip=self.server.server_ip)

    def _autosetup(self) -> str:
        partition = self.request.partition or self.settings.default_partition_layout
        lines = [
            f"DRIVE1 /dev/{self.context.drive}",
            f"BOOTLOADER {self.settings.bootloader}",
            f"HOSTNAME {self.claimed_name}",
            partition.strip(),
            f"IMAGE {self.request.image_path}",
        ]
        return "\n".join(lines) + "\n"

    # Transitions

    @log_step_execution("scanning")
    async def _scan(self) -> Outcome:
        servers = await self.robot.list_servers()
        matches = list_matching(
            servers,
            self.request.cluster_name,
            self.request.server_type,
            now=self.now,
            lookahead=self.lookahead,
        )
        logger.debug("matching_servers_listed", total=len(servers), matching=len(matches))
        self.context.matches = matches

        attached = find_attached(matches, self.request.machine_name)
        if attached is not None:
            self._record_server(attached)
            return Continue(ProvisioningState.ATTACHED_FOUND)
        return Continue(ProvisioningState.CLAIMING_NEW)

    @log_step_execution("attached_found")
    async def _attached_found(self) -> Outcome:
        server = self.server
        if is_expiring(server, now=self.now, lookahead=self.lookahead):
            message = (
                "Machine has been cancelled and is paid until less than "
                f"{self.settings.cancellation_lookahead_hours:g} hours"
            )
            logger.warning(
                "attached_server_cancelled",
                server_ip=server.server_ip,
                paid_until=server.paid_until.isoformat() if server.paid_until else None,
            )
            self.status.set_failure(UPDATE_ERROR_REASON, message)
            return Continue(ProvisioningState.DONE)

        self._mark_running(server)
        return Continue(ProvisioningState.DONE)

    @log_step_execution("claiming_new")
    async def _claim_new(self) -> Outcome:
        candidate = find_free(self.context.matches, self.request.server_type)

        # Re-read right before committing to it; a concurrent claimant may
        # have renamed it since the listing
        current = await self.robot.get_server(candidate.server_ip)
        if not parse_claim(current.server_name).is_free:
            raise ClaimLostError(
                f"server {current.server_ip} was claimed as {current.server_name!r} meanwhile"
            )

        self._record_server(current)
        logger.info(
            "free_server_selected", server_ip=current.server_ip, server_name=current.server_name
        )
        return Continue(ProvisioningState.WAITING_FOR_READY)

    @log_step_execution("waiting_for_ready")
    async def _wait_for_ready(self) -> Outcome:
        if not self.server.is_ready:
            logger.info(
                "server_not_ready", server_ip=self.server.server_ip, status=self.server.status
            )
            return Suspend(
                self.settings.server_not_ready_requeue_seconds,
                f"server status is {self.server.status}",
            )
        return Continue(ProvisioningState.WAITING_FOR_BOOTSTRAP_DATA)

    @log_step_execution("waiting_for_bootstrap_data")
    async def _wait_for_bootstrap_data(self) -> Outcome:
        try:
            data = await self.bootstrap.get_bootstrap_data()
        except BootstrapDataNotReady as e:
            logger.info("bootstrap_data_not_ready", reason=str(e))
            return Suspend(self.settings.bootstrap_not_ready_requeue_seconds, str(e))

        if self.settings.external_cloud_provider:
            data = ensure_external_cloud_provider(data)
        self.context.bootstrap_data = data
        self.status.server_state = "initializing"
        return Continue(ProvisioningState.RESCUE_ACTIVATING)

    @log_step_execution("rescue_activating")
    async def _activate_rescue(self) -> Outcome:
        key_name = self.request.ssh.key_name
        keys = await self.robot.list_ssh_keys()
        if not keys:
            raise SSHKeyNotFoundError("no SSH keys stored in Robot")
        fingerprint = next((key.fingerprint for key in keys if key.name == key_name), None)
        if fingerprint is None:
            raise SSHKeyNotFoundError(f"no SSH key with name {key_name!r} found in Robot")

        ip = self.server.server_ip
        await self.robot.activate_rescue(ip, fingerprint, rescue_os=self.settings.rescue_os)
        await self.robot.reset_server(ip, reset_type=self.settings.reset_type)
        logger.info("rescue_activated", server_ip=ip, key_name=key_name, fingerprint=fingerprint)
        return Continue(ProvisioningState.RESCUE_CONFIRMING)

    @log_step_execution("rescue_confirming")
    async def _confirm_rescue(self) -> Outcome:
        hostname = (await self._run("hostname")).strip()
        if RESCUE_HOSTNAME_MARKER not in hostname:
            raise RescueBootError(
                f"server {self.server.server_ip} did not boot into rescue, hostname is {hostname!r}"
            )
        return Continue(ProvisioningState.DEVICE_SELECTING)

    @log_step_execution("device_selecting")
    async def _select_device(self) -> Outcome:
        self.context.devices = parse_block_devices(await self._run(LSBLK_COMMAND))
        self.context.drive = select_install_device(self.context.devices)
        return Continue(ProvisioningState.IMAGING)

    @log_step_execution("imaging")
    async def _install_image(self) -> Outcome:
        path = self.settings.autosetup_path
        await self._run(f"cat > {shlex.quote(path)}", input=self._autosetup())
        await self._run(self.settings.install_command)
        logger.info(
            "image_installed",
            server_ip=self.server.server_ip,
            drive=self.context.drive,
            image=self.request.image_path,
        )
        return Continue(ProvisioningState.RELABELING)

    @log_step_execution("relabeling")
    async def _relabel(self) -> Outcome:
        self.context.devices = parse_block_devices(await self._run(LSBLK_COMMAND))
        command = label_children_command(self.context.devices, self.context.drive or "")
        await self._run(command)
        return Continue(ProvisioningState.REBOOTING_INSTALLED)

    @log_step_execution("rebooting_installed")
    async def _reboot_installed(self) -> Outcome:
        await self._reboot()
        # Also waits for the installed OS to accept connections again
        await self._run(f"sleep {self.settings.post_reboot_settle_seconds}")
        return Continue(ProvisioningState.CLOUD_INIT_INJECTING)

    @log_step_execution("cloud_init_injecting")
    async def _inject_cloud_init(self) -> Outcome:
        seed_dir = self.settings.cloud_init_seed_dir.rstrip("/")
        await self._run(f"mkdir -p {shlex.quote(seed_dir)}")
        await self._run(
            f"cat > {shlex.quote(seed_dir + '/meta-data')}",
            input=f"instance-id: {self.settings.cloud_init_instance_id}\n",
        )
        await self._run(
            f"cat > {shlex.quote(seed_dir + '/user-data')}",
            input=self.context.bootstrap_data or b"",
        )
        return Continue(ProvisioningState.REBOOTING_SEEDED)

    @log_step_execution("rebooting_seeded")
    async def _reboot_seeded(self) -> Outcome:
        await self._reboot()
        return Continue(ProvisioningState.CLAIMING)

    @log_step_execution("claiming")
    async def _claim(self) -> Outcome:
        ip = self.server.server_ip
        name = self.claimed_name
        await self.robot.set_server_name(ip, name)

        current = await self.robot.get_server(ip)
        if current.server_name != name:
            raise ClaimLostError(
                f"server {ip} is named {current.server_name!r} after claiming it as {name!r}"
            )

        self._record_server(current)
        self._mark_running(current)
        logger.info("server_claimed", server_ip=ip, server_name=name)
        return Continue(ProvisioningState.DONE)
