"""Claim ledger on top of the Robot server name.

Robot offers no labels and no locking for dedicated servers, so ownership is
encoded in the one writable field, the server name:

    free      {serverType}--{anything}
    claimed   {clusterName}--{serverType}--{machineName}
    released  {serverType}--unused-{machineName}

A released server is a free server as far as matching goes; the suffix only
records who used it last.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

from shared.logging import get_logger
from shared.schemas.robot import RobotServer

from .errors import DuplicateClaimError, NoServerAvailableError

logger = get_logger(__name__)

DELIMITER = "--"
RELEASED_PREFIX = "unused-"
DEFAULT_LOOKAHEAD = timedelta(hours=36)


class ClaimKind(str, Enum):
    FREE = "free"
    RELEASED = "released"
    CLAIMED = "claimed"
    FOREIGN = "foreign"


@dataclass(frozen=True)
class ClaimName:
    kind: ClaimKind
    server_type: str | None = None
    cluster_name: str | None = None
    machine_name: str | None = None

    @property
    def is_free(self) -> bool:
        return self.kind in (ClaimKind.FREE, ClaimKind.RELEASED)


def parse_claim(name: str) -> ClaimName:
    """Interpret a server name according to the naming convention."""
    parts = name.split(DELIMITER)
    if len(parts) == 2 and parts[0]:
        server_type, suffix = parts
        if suffix.startswith(RELEASED_PREFIX):
            return ClaimName(
                ClaimKind.RELEASED,
                server_type=server_type,
                machine_name=suffix[len(RELEASED_PREFIX) :],
            )
        return ClaimName(ClaimKind.FREE, server_type=server_type)
    if len(parts) == 3 and all(parts):
        cluster_name, server_type, machine_name = parts
        return ClaimName(
            ClaimKind.CLAIMED,
            server_type=server_type,
            cluster_name=cluster_name,
            machine_name=machine_name,
        )
    return ClaimName(ClaimKind.FOREIGN)


def claimed_name(cluster_name: str, server_type: str, machine_name: str) -> str:
    return DELIMITER.join((cluster_name, server_type, machine_name))


def released_name(server_type: str, machine_name: str) -> str:
    return f"{server_type}{DELIMITER}{RELEASED_PREFIX}{machine_name}"


def is_expiring(
    server: RobotServer,
    now: datetime | None = None,
    lookahead: timedelta = DEFAULT_LOOKAHEAD,
) -> bool:
    """True if the server is cancelled and its paid period ends within the lookahead."""
    if not server.cancelled:
        return False
    if server.paid_until is None:
        # Cancelled without a known end date: treat as already expiring
        return True
    now = now or datetime.now(UTC)
    return server.paid_until < now + lookahead


def list_matching(
    servers: Iterable[RobotServer],
    cluster_name: str,
    server_type: str,
    now: datetime | None = None,
    lookahead: timedelta = DEFAULT_LOOKAHEAD,
) -> list[RobotServer]:
    """Servers of the requested type that are free, or claimed by this cluster.

    Free servers that will expire within the lookahead are left out; they
    would be gone before the machine is useful.
    """
    now = now or datetime.now(UTC)
    matching: list[RobotServer] = []
    for server in servers:
        claim = parse_claim(server.server_name)
        if claim.server_type != server_type:
            continue
        if claim.is_free:
            if is_expiring(server, now, lookahead):
                logger.debug(
                    "free_server_skipped_expiring",
                    server_ip=server.server_ip,
                    paid_until=server.paid_until.isoformat() if server.paid_until else None,
                )
                continue
            matching.append(server)
        elif claim.kind == ClaimKind.CLAIMED and claim.cluster_name == cluster_name:
            matching.append(server)
    return matching


def find_attached(matches: Iterable[RobotServer], machine_name: str) -> RobotServer | None:
    """The server claimed for this logical machine, if any.

    Expects the output of list_matching, i.e. claims of one cluster only.
    """
    attached = [
        server
        for server in matches
        if (claim := parse_claim(server.server_name)).kind == ClaimKind.CLAIMED
        and claim.machine_name == machine_name
    ]
    if len(attached) > 1:
        logger.error(
            "duplicate_claim_detected",
            machine_name=machine_name,
            server_ips=[s.server_ip for s in attached],
        )
        raise DuplicateClaimError(
            f"there are {len(attached)} servers attached to the cluster with name "
            f"{attached[0].server_name}"
        )
    return attached[0] if attached else None


def find_free(matches: Iterable[RobotServer], server_type: str) -> RobotServer:
    """Pick one unclaimed server out of the matching pool."""
    matches = list(matches)
    if not matches:
        raise NoServerAvailableError(f"no bare metal server found of type {server_type}")
    for server in matches:
        if parse_claim(server.server_name).is_free:
            return server
    raise NoServerAvailableError(f"no available servers of type {server_type} left")
