"""Sources of the cluster-join payload (cloud-init user-data).

The payload is produced by other cluster components and usually shows up
some time after the machine is requested; until then a provider raises
BootstrapDataNotReady and the engine asks to be called again shortly.
"""

from pathlib import Path
from typing import Protocol, runtime_checkable


class BootstrapDataNotReady(Exception):
    """The join payload has not been generated yet."""


@runtime_checkable
class BootstrapDataProvider(Protocol):
    async def get_bootstrap_data(self) -> bytes:
        """Return the raw payload or raise BootstrapDataNotReady."""
        ...


class StaticBootstrapDataProvider:
    """Payload held in memory; None means not ready yet."""

    def __init__(self, data: bytes | None = None):
        self.data = data

    async def get_bootstrap_data(self) -> bytes:
        if not self.data:
            raise BootstrapDataNotReady("bootstrap data is not set")
        return self.data


class FileBootstrapDataProvider:
    """Payload read from a file written by the bootstrap component."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    async def get_bootstrap_data(self) -> bytes:
        if not self.path.exists():
            raise BootstrapDataNotReady(f"{self.path} does not exist yet")
        data = self.path.read_bytes()
        if not data.strip():
            raise BootstrapDataNotReady(f"{self.path} is empty")
        return data
