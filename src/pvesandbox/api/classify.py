"""Classification of remote error text into pvesandbox error kinds.

Proxmox reports most failures as free-form text, through the API ``errors``
map or on CLI stderr. Both transports route that text through the helpers
below so the indicator lists live in one place.
"""

VM_NOT_FOUND_INDICATORS = (
    "does not exist",
    "no such vm",
    "no such qemu",
    "no such vmid",
    "vmid does not exist",
    "no vmid found",
)

VOLUME_NOT_FOUND_INDICATORS = (
    "volume does not exist",
    "no such volume",
    "volume not found",
    "cannot find volume",
    "can't find volume",
)

FULL_CLONE_INDICATORS = (
    "linked clone",
    "does not support snapshots",
)

FWGROUP_SCHEMA_INDICATORS = (
    ("property is not defined in schema", "additional properties"),
    ("schema does not allow additional properties",),
    ("parameter verification failed", "additional properties"),
)

GUEST_AGENT_NOT_RUNNING = "guest agent is not running"

NOT_IMPLEMENTED_INDICATORS = (
    "not implemented",
    "unsupported",
    "not supported",
)


def _text(err: BaseException | str | None) -> str:
    if err is None:
        return ""
    return str(err).lower()


def is_vm_not_found(err: BaseException | str | None) -> bool:
    """Return True when the error text says the VM does not exist."""
    msg = _text(err)
    if not msg:
        return False
    if any(indicator in msg for indicator in VM_NOT_FOUND_INDICATORS):
        return True
    return "not found" in msg and "vm" in msg


def is_volume_not_found(err: BaseException | str | None) -> bool:
    """Return True when the error text says the volume does not exist."""
    msg = _text(err)
    if not msg:
        return False
    if any(indicator in msg for indicator in VOLUME_NOT_FOUND_INDICATORS):
        return True
    return "volume" in msg and ("not found" in msg or "does not exist" in msg)


def should_retry_full_clone(err: BaseException | str | None) -> bool:
    """Return True when a linked clone was refused and a full clone may work."""
    msg = _text(err)
    if not msg:
        return False
    if any(indicator in msg for indicator in FULL_CLONE_INDICATORS):
        return True
    return "snapshot" in msg and "clone" in msg


def is_unsupported_fwgroup_error(err: BaseException | str | None) -> bool:
    """Return True when the remote schema rejected the ``fwgroup`` net0 option."""
    msg = _text(err)
    if not msg:
        return False
    if "fwgroup" in msg:
        return True
    return any(all(part in msg for part in group) for group in FWGROUP_SCHEMA_INDICATORS)


def is_guest_agent_not_running(err: BaseException | str | None) -> bool:
    """Return True when the guest agent has not started yet."""
    return GUEST_AGENT_NOT_RUNNING in _text(err)


def is_not_implemented(err: BaseException | str | None) -> bool:
    """Return True when the API does not implement the requested operation."""
    msg = _text(err)
    return any(indicator in msg for indicator in NOT_IMPLEMENTED_INDICATORS)
