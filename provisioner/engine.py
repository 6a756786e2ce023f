"""Entry points called by the orchestrator: reconcile and delete."""

from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from shared.clients.robot import RobotClient
from shared.logging import get_logger, new_correlation_id

from .bootstrap import BootstrapDataProvider
from .claims import find_attached, list_matching, released_name
from .config import ProvisionerSettings, get_settings
from .errors import ProvisioningError, is_rate_limited
from .models import MachineStatus, ProvisioningRequest
from .pipeline import Fail, ProvisioningPipeline, Suspend
from .ssh import RemoteExecutor

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    """None means done; otherwise invoke again after this many seconds."""

    requeue_after: float | None = None

    @property
    def done(self) -> bool:
        return self.requeue_after is None


class BareMetalEngine:
    """Claims, provisions and releases the server behind one logical machine."""

    def __init__(
        self,
        request: ProvisioningRequest,
        robot: RobotClient,
        executor: RemoteExecutor | None = None,
        bootstrap: BootstrapDataProvider | None = None,
        settings: ProvisionerSettings | None = None,
        status: MachineStatus | None = None,
    ):
        self.request = request
        self.robot = robot
        self.settings = settings or get_settings()
        self.executor = executor or RemoteExecutor(
            request.ssh.private_key.get_secret_value(), settings=self.settings
        )
        self.bootstrap = bootstrap
        self.status = status or MachineStatus()

    def _bind_context(self) -> None:
        new_correlation_id()
        structlog.contextvars.bind_contextvars(
            cluster=self.request.cluster_name,
            machine=self.request.machine_name,
        )

    def _unbind_context(self) -> None:
        structlog.contextvars.unbind_contextvars("cluster", "machine", "correlation_id")

    async def reconcile(self, now: datetime | None = None) -> ReconcileResult:
        """Run one provisioning pass.

        Returns:
            ReconcileResult with requeue_after set when the pass has to wait.

        Raises:
            ProvisioningError: The pass failed and retrying will not help by itself.
        """
        if self.bootstrap is None:
            raise ProvisioningError("no bootstrap data provider configured")

        self._bind_context()
        try:
            logger.info("reconcile_started", server_type=self.request.server_type)
            pipeline = ProvisioningPipeline(
                self.request,
                self.robot,
                self.executor,
                self.bootstrap,
                settings=self.settings,
                status=self.status,
                now=now,
            )
            outcome = await pipeline.run()

            if isinstance(outcome, Suspend):
                logger.info(
                    "reconcile_suspended",
                    requeue_after=outcome.after,
                    reason=outcome.reason,
                    state=self.status.provisioning_state,
                )
                return ReconcileResult(requeue_after=outcome.after)

            if isinstance(outcome, Fail):
                error = outcome.error
                logger.error(
                    "reconcile_failed",
                    state=self.status.provisioning_state,
                    error=str(error),
                    error_type=type(error).__name__,
                )
                if isinstance(error, ProvisioningError):
                    raise error
                state = self.status.provisioning_state
                raise ProvisioningError(
                    f"failed to provision machine in state {state}: {error}"
                ) from error

            logger.info(
                "reconcile_completed",
                server_ip=self.status.server_ip,
                ready=self.status.ready,
                failure_reason=self.status.failure_reason,
            )
            return ReconcileResult()
        finally:
            self._unbind_context()

    async def delete(self, now: datetime | None = None) -> ReconcileResult:
        """Release the attached server, if any. Nothing on the machine is touched."""
        self._bind_context()
        try:
            return await release_machine(
                self.robot,
                self.request.cluster_name,
                self.request.server_type,
                self.request.machine_name,
                settings=self.settings,
                now=now,
            )
        finally:
            self._unbind_context()


async def release_machine(
    robot: RobotClient,
    cluster_name: str,
    server_type: str,
    machine_name: str,
    settings: ProvisionerSettings | None = None,
    now: datetime | None = None,
) -> ReconcileResult:
    """Rename the server attached to the machine to the released pattern.

    The installed drive keeps its `os` label, so the server can be reused
    as is by whichever machine claims it next.
    """
    settings = settings or get_settings()
    try:
        servers = await robot.list_servers()
    except Exception as e:
        if is_rate_limited(e):
            return _delete_backoff(settings)
        raise

    matches = list_matching(
        servers,
        cluster_name,
        server_type,
        now=now or datetime.now(UTC),
        lookahead=settings.cancellation_lookahead,
    )
    attached = find_attached(matches, machine_name)
    if attached is None:
        logger.info("delete_nothing_attached", machine_name=machine_name)
        return ReconcileResult()

    name = released_name(server_type, machine_name)
    try:
        await robot.set_server_name(attached.server_ip, name)
    except Exception as e:
        if is_rate_limited(e):
            return _delete_backoff(settings)
        raise

    logger.info("server_released", server_ip=attached.server_ip, server_name=name)
    return ReconcileResult()


def _delete_backoff(settings: ProvisionerSettings) -> ReconcileResult:
    after = settings.rate_limit_backoff_delete_seconds
    logger.warning("robot_rate_limit_exceeded", operation="delete", requeue_after=after)
    return ReconcileResult(requeue_after=after)
