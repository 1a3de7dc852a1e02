"""Parsing and building of Proxmox VM config values."""

from typing import Any

from ..api.exceptions import InvalidArgumentError
from ..models.vm import Status, VMConfig


def parse_config_output(output: str) -> dict[str, str]:
    """Parse ``qm config`` output into a mapping.

    Each line is ``key: value``; the value may itself contain colons.

    Args:
        output: Raw command output

    Returns:
        Mapping of config keys to trimmed values
    """
    config: dict[str, str] = {}
    for line in output.splitlines():
        line = line.strip()
        if not line or ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = key.strip()
        if not key:
            continue
        config[key] = value.strip()
    return config


def format_config_value(value: Any) -> str:
    """Render an API config value the way ``qm config`` would print it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


def normalize_config(raw: dict[str, Any] | None) -> dict[str, str]:
    """Stringify an API config mapping, dropping null values."""
    if not raw:
        return {}
    return {key: format_config_value(value) for key, value in raw.items() if value is not None}


def agent_config_enabled(value: Any) -> bool:
    """Decide whether an ``agent`` config value enables the guest agent.

    Accepts numbers and strings such as ``1``, ``0``, ``1,fstrim_cloned_disks=1``
    or ``enabled=1``. A present value that names neither state counts as
    enabled.

    Args:
        value: Raw ``agent`` config value

    Returns:
        True if the guest agent is enabled

    Raises:
        InvalidArgumentError: If the value is empty or of an unsupported type
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if not isinstance(value, str):
        raise InvalidArgumentError(f"unknown agent config type {type(value).__name__}")

    value = value.strip()
    if not value:
        raise InvalidArgumentError("empty agent config")
    if value == "1":
        return True
    if value == "0":
        return False

    parts = value.split(",")
    head = parts[0].strip()
    if head == "1":
        return True
    if head == "0":
        return False

    enabled: bool | None = None
    for part in parts:
        key, sep, val = part.strip().partition("=")
        if not sep:
            continue
        key, val = key.strip(), val.strip()
        if key == "enabled":
            enabled = val == "1"
        elif key == "disabled" and val == "1":
            return False
    if enabled is not None:
        return enabled
    return True


def has_cloudinit_drive(config: dict[str, Any]) -> bool:
    """Return True if any config value references a cloud-init drive."""
    return any("cloudinit" in str(v).lower() for v in config.values())


def build_net0(
    model: str,
    bridge: str,
    firewall: bool | None,
    firewall_group: str,
) -> str:
    """Build a ``net0`` value.

    Args:
        model: NIC model, possibly with extra options (defaults to virtio)
        bridge: Bridge name, omitted when empty
        firewall: Tri-state firewall flag, omitted when None
        firewall_group: Firewall security group, omitted when empty

    Returns:
        The ``model[,bridge=..][,firewall=0|1][,fwgroup=..]`` string
    """
    model = model or "virtio"
    parts = [model]
    if bridge and "bridge=" not in model:
        parts.append(f"bridge={bridge}")
    if firewall is not None and "firewall=" not in model:
        parts.append("firewall=1" if firewall else "firewall=0")
    if firewall_group and "fwgroup=" not in model:
        parts.append(f"fwgroup={firewall_group}")
    return ",".join(parts)


def format_cicustom(value: str) -> str:
    """Qualify a bare snippet reference as ``user=`` cicustom data."""
    if "=" in value:
        return value
    return f"user={value}"


def config_params(cfg: VMConfig, include_firewall_group: bool = True) -> dict[str, str]:
    """Collect the set fields of a VMConfig as Proxmox config parameters.

    Args:
        cfg: Desired settings
        include_firewall_group: Emit ``fwgroup=`` inside net0 when set

    Returns:
        Ordered mapping of parameter name to value; empty when nothing is set
    """
    params: dict[str, str] = {}
    if cfg.name:
        params["name"] = cfg.name
    if cfg.cores > 0:
        params["cores"] = str(cfg.cores)
    if cfg.memory_mb > 0:
        params["memory"] = str(cfg.memory_mb)
    if cfg.scsihw:
        params["scsihw"] = cfg.scsihw
    if cfg.cpu_pinning:
        params["cpulist"] = cfg.cpu_pinning
    firewall_group = cfg.firewall_group if include_firewall_group else ""
    if cfg.bridge or cfg.net_model or cfg.firewall is not None or firewall_group:
        params["net0"] = build_net0(cfg.net_model, cfg.bridge, cfg.firewall, firewall_group)
    if cfg.cloud_init:
        params["cicustom"] = format_cicustom(cfg.cloud_init)
    return params


def split_volume_id(volume_id: str) -> tuple[str, str]:
    """Split a ``storage:name`` volume ID.

    Raises:
        InvalidArgumentError: If either part is missing
    """
    storage, sep, name = volume_id.strip().partition(":")
    storage, name = storage.strip(), name.strip()
    if not sep or not storage or not name:
        raise InvalidArgumentError(f"invalid volume id {volume_id!r}: expected storage:name")
    return storage, name


def volume_storage(volume_id: str) -> str:
    """Return the storage part of a volume ID, or "" if it has none."""
    storage, sep, _ = volume_id.strip().partition(":")
    return storage if sep else ""


def normalize_snapshot_name(name: str) -> str:
    """Trim a snapshot name, rejecting empty ones."""
    name = (name or "").strip()
    if not name:
        raise InvalidArgumentError("snapshot name is required")
    return name


def parse_status_output(output: str) -> Status:
    """Parse ``qm status`` output such as ``status: running``.

    Raises:
        InvalidArgumentError: If the output is empty
    """
    out = output.strip()
    if not out:
        raise InvalidArgumentError("empty status output")
    if "status:" in out:
        out = out.split("status:", 1)[1].strip().split("\n", 1)[0].strip()
    else:
        out = out.split()[0]
    return Status.from_remote(out)
