"""Claim-and-provision engine for Hetzner dedicated (bare-metal) servers."""

from .engine import BareMetalEngine, ReconcileResult, release_machine
from .models import MachineStatus, ProvisioningRequest, SSHCredentials

__all__ = [
    "BareMetalEngine",
    "ReconcileResult",
    "release_machine",
    "MachineStatus",
    "ProvisioningRequest",
    "SSHCredentials",
]
