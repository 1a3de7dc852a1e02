"""Root disk detection and disk size arithmetic."""

import math

from ..api.exceptions import InvalidArgumentError

ROOT_DISK_CANDIDATES = ("scsi0", "virtio0", "sata0", "ide0")

_UNIT_TO_GB = {
    "": 1 / (1024.0 * 1024.0 * 1024.0),
    "K": 1 / (1024.0 * 1024.0),
    "M": 1 / 1024.0,
    "G": 1.0,
    "T": 1024.0,
}


def detect_root_disk(config: dict[str, str] | None) -> str:
    """Pick the disk slot that holds the root filesystem.

    Preference order: ``bootdisk``, the first candidate in the ``boot``
    order list, then the first candidate slot present in the config.

    Args:
        config: Normalized VM config mapping

    Returns:
        Disk slot name, or "" when none can be determined
    """
    if not config:
        return ""
    bootdisk = config.get("bootdisk", "").strip()
    if bootdisk:
        return bootdisk
    boot = config.get("boot", "").strip()
    if boot:
        disk = detect_boot_order_disk(boot)
        if disk:
            return disk
    for candidate in ROOT_DISK_CANDIDATES:
        if candidate in config:
            return candidate
    return ""


def detect_boot_order_disk(boot: str) -> str:
    """Return the first root disk candidate named in ``order=`` of a boot spec."""
    boot = boot.strip()
    idx = boot.find("order=")
    if idx == -1:
        return ""
    order = boot[idx + len("order="):].split(",", 1)[0].strip()
    for part in order.replace(";", " ").replace(",", " ").split():
        if part in ROOT_DISK_CANDIDATES:
            return part
    return ""


def extract_disk_size_token(disk_spec: str) -> str:
    """Extract the ``size=`` value from a disk config string."""
    disk_spec = disk_spec.strip()
    idx = disk_spec.find("size=")
    if idx == -1:
        return ""
    rest = disk_spec[idx + len("size="):]
    for i, ch in enumerate(rest):
        if ch in ", \t\r\n":
            rest = rest[:i]
            break
    return rest.strip()


def parse_size_gb(size: str) -> float:
    """Convert a Proxmox size token such as ``2.8G`` or ``512M`` into GB.

    Args:
        size: Size token; K/M/G/T suffixes optionally followed by B, bare bytes

    Returns:
        Size in (binary) gigabytes

    Raises:
        InvalidArgumentError: If the token is empty, malformed or has an unknown unit
    """
    size = size.strip()
    if not size:
        raise InvalidArgumentError("empty size")
    upper = size.upper()
    i = 0
    while i < len(upper) and (upper[i].isdigit() or upper[i] == "."):
        i += 1
    if i == 0:
        raise InvalidArgumentError(f"invalid size {size!r}")
    number, unit = upper[:i], upper[i:].strip()
    if unit.endswith("B"):
        unit = unit[:-1]
    try:
        value = float(number)
    except ValueError as e:
        raise InvalidArgumentError(f"invalid size {size!r}") from e
    if unit not in _UNIT_TO_GB:
        raise InvalidArgumentError(f"unknown unit {unit!r} in size {size!r}")
    return value * _UNIT_TO_GB[unit]


def resize_delta_gb(current_gb: float, target_gb: int) -> int:
    """Return how many whole GB to add so the disk reaches ``target_gb``.

    Disks never shrink: the result is 0 when the floor of the current size
    already meets the target.
    """
    if target_gb <= 0:
        return 0
    current_gb = max(current_gb, 0.0)
    return max(target_gb - math.floor(current_gb), 0)
