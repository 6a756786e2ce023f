"""Install-target selection over an lsblk inventory.

The rescue system reports its disks with

    lsblk -o name,size,rota,fstype,label -e1 -e7 --json

and the selector picks exactly one `sd*` drive for installimage. After a
successful install every partition of that drive is labelled `os`, which is
how the same drive is recognised on a later pass.
"""

from decimal import Decimal, InvalidOperation

from pydantic import BaseModel, ConfigDict, Field

from shared.logging import get_logger

from .errors import (
    AmbiguousDeviceError,
    InvalidSizeError,
    NoDeviceAvailableError,
    UnpartitionedDeviceError,
)

logger = get_logger(__name__)

LSBLK_COMMAND = "lsblk -o name,size,rota,fstype,label -e1 -e7 --json"
OS_LABEL = "os"
DISK_PREFIX = "sd"

# Sizes are compared in megabytes
_SIZE_UNITS = {"T": 1_000_000, "G": 1_000, "M": 1}


class BlockDeviceChild(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    size: str | None = None
    rota: bool = False
    fstype: str | None = None
    label: str | None = None


class BlockDevice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    size: str | None = None
    rota: bool = False
    fstype: str | None = None
    label: str | None = None
    children: list[BlockDeviceChild] | None = None

    @property
    def is_disk(self) -> bool:
        return self.name.startswith(DISK_PREFIX)

    @property
    def is_partitioned(self) -> bool:
        return bool(self.children)

    @property
    def has_os_label(self) -> bool:
        return any(child.label == OS_LABEL for child in self.children or [])


class BlockDevices(BaseModel):
    blockdevices: list[BlockDevice] = Field(default_factory=list)


def parse_block_devices(raw: str) -> list[BlockDevice]:
    """Parse the JSON emitted by LSBLK_COMMAND."""
    return BlockDevices.model_validate_json(raw).blockdevices


def parse_size(value: str) -> int:
    """Convert an lsblk size such as "3,5T" into megabytes (3500000).

    Only the uppercase M, G and T units lsblk prints are accepted.
    """
    text = value.strip().replace(",", ".")
    if not text:
        raise InvalidSizeError(f"empty size {value!r}")

    unit = text[-1]
    multiplier = _SIZE_UNITS.get(unit)
    if multiplier is None:
        raise InvalidSizeError(f"unknown unit in size {value!r}")

    try:
        magnitude = Decimal(text[:-1])
    except InvalidOperation as e:
        raise InvalidSizeError(f"cannot convert size {value!r} to a number") from e
    if not magnitude.is_finite():
        raise InvalidSizeError(f"cannot convert size {value!r} to a number")
    return int(magnitude * multiplier)


def select_install_device(devices: list[BlockDevice]) -> str:
    """Choose the drive to install the operating system on.

    Rules, in order:
    1. A drive whose partitions carry the `os` label was installed by us
       before; reuse it. More than one such drive is ambiguous.
    2. Otherwise only unpartitioned `sd*` drives qualify, SSDs preferred.
    3. Among several candidates the strictly smallest wins; on a tie for
       smallest, the lexicographically greatest name wins.
    """
    disks = [device for device in devices if device.is_disk]

    labelled = [disk.name for disk in disks if disk.is_partitioned and disk.has_os_label]
    if len(labelled) > 1:
        raise AmbiguousDeviceError(
            f"found {len(labelled)} devices with the {OS_LABEL!r} label: {', '.join(labelled)}"
        )
    if labelled:
        logger.info("install_device_relabel_detected", drive=labelled[0])
        return labelled[0]

    unpartitioned = [disk for disk in disks if not disk.is_partitioned]
    if not unpartitioned:
        raise NoDeviceAvailableError("no device is left for installing the operating system")

    ssds = [disk for disk in unpartitioned if not disk.rota]
    candidates = ssds or unpartitioned
    if len(candidates) == 1:
        return candidates[0].name

    sized = sorted(
        ((parse_size(disk.size or ""), disk.name) for disk in candidates), key=lambda d: d[0]
    )
    smallest_size = sized[0][0]
    if smallest_size < sized[1][0]:
        drive = sized[0][1]
    else:
        drive = max(name for size, name in sized if size == smallest_size)

    logger.info(
        "install_device_selected",
        drive=drive,
        candidates=[name for _, name in sized],
        ssd_only=bool(ssds),
    )
    return drive


def label_children_command(devices: list[BlockDevice], drive: str) -> str:
    """Shell snippet that writes the `os` label to every partition of the drive."""
    device = next((d for d in devices if d.name == drive), None)
    if device is None:
        raise NoDeviceAvailableError(f"no device with name {drive} found")
    if not device.children:
        raise UnpartitionedDeviceError(
            f"no children for device with name {drive} found, installimage did not work properly"
        )
    return "\n".join(f"e2label /dev/{child.name} {OS_LABEL}" for child in device.children)


def wipe_command(drive: str) -> str:
    return f"wipefs -a /dev/{drive}"
