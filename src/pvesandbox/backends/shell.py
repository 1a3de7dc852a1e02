"""Backend implementation over the Proxmox CLI tools (qm, pvesh, pvesm)."""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

from ..api.classify import (
    is_unsupported_fwgroup_error,
    is_vm_not_found,
    should_retry_full_clone,
)
from ..api.exceptions import (
    CommandError,
    InvalidArgumentError,
    PVESandboxError,
    StorageUnsupportedError,
    TimeoutError,
    VMNotFoundError,
)
from ..discovery import DEFAULT_ATTEMPTS, GuestIPDiscovery
from ..models.config import DEFAULT_COMMAND_TIMEOUT, ProxmoxSettings
from ..models.storage import VolumeInfo
from ..models.vm import VMID, Snapshot, Status, VMConfig, VMStats
from ..utils.disk import detect_root_disk, extract_disk_size_token, parse_size_gb, resize_delta_gb
from ..utils.network import config_macs, parse_agent_addresses, parse_node_list
from ..utils.pveconfig import (
    config_params,
    normalize_snapshot_name,
    parse_config_output,
    parse_status_output,
    split_volume_id,
)
from ..utils.shell import (
    BashRunner,
    CommandRunner,
    ExecRunner,
    format_command,
    validate_command_args,
)
from .api import (
    check_clone_pair,
    check_template_config,
    parse_snapshot_entries,
    vm_error,
    volume_error,
)
from .base import Backend, is_zfs_storage_type

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[Any]]

GUEST_IP_INITIAL_WAIT = 0.5
GUEST_IP_MAX_WAIT = 10.0


def parse_json_output(output: str, what: str) -> Any:
    """Decode ``--output-format json`` output.

    Raises:
        InvalidArgumentError: If the output is not JSON
    """
    try:
        return json.loads(output)
    except ValueError as e:
        raise InvalidArgumentError(f"parse {what}: {e}") from e


def parse_pvesm_status(output: str, storage: str) -> str:
    """Find a storage's type in ``pvesm status`` output.

    JSON (list, ``{"data": [...]}`` or a single object) is tried first, then
    the plain table format.

    Returns:
        The storage type, or "" if the storage is not listed
    """
    try:
        payload = json.loads(output)
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        payload = payload.get("data", [payload])
    if isinstance(payload, list):
        for entry in payload:
            if isinstance(entry, dict) and entry.get("storage") == storage:
                return str(entry.get("type") or "")

    for line in output.splitlines():
        fields = line.split()
        if len(fields) < 2 or fields[0] == "Name":
            continue
        if fields[0] == storage:
            return fields[1]
    return ""


class ShellBackend(Backend):
    """Drive a Proxmox node through ``qm``, ``pvesh`` and ``pvesm``."""

    def __init__(
        self,
        runner: CommandRunner | None = None,
        node: str = "",
        agent_cidr: str = "",
        clone_mode: str = "linked",
        qm_path: str = "qm",
        pvesh_path: str = "pvesh",
        pvesm_path: str = "pvesm",
        command_timeout: float | None = DEFAULT_COMMAND_TIMEOUT,
        dhcp_lease_paths: list[str] | None = None,
        guest_ip_attempts: int = DEFAULT_ATTEMPTS,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        """Initialize the shell backend.

        Args:
            runner: Command execution strategy; ExecRunner when None
            node: Node name; detected via ``pvesh get /nodes`` when empty
            agent_cidr: Preferred netblock for guest IPs
            clone_mode: ``linked`` or ``full``
            qm_path: VM controller binary
            pvesh_path: Cluster shell binary
            pvesm_path: Storage manager binary
            command_timeout: Seconds allowed per command; None disables the bound
            dhcp_lease_paths: Lease files read during guest IP discovery
            guest_ip_attempts: Discovery rounds when no timeout is given
            sleep: Awaitable sleep, replaced in tests
        """
        self.runner = runner or ExecRunner()
        self._node = node.strip()
        self._node_lock = asyncio.Lock()
        self.agent_cidr = agent_cidr
        self.clone_mode = clone_mode
        self.qm_path = qm_path or "qm"
        self.pvesh_path = pvesh_path or "pvesh"
        self.pvesm_path = pvesm_path or "pvesm"
        self.command_timeout = command_timeout
        self._discovery = GuestIPDiscovery(
            agent_cidr=agent_cidr,
            lease_paths=dhcp_lease_paths,
            initial_wait=GUEST_IP_INITIAL_WAIT,
            max_wait=GUEST_IP_MAX_WAIT,
            attempts=guest_ip_attempts,
            sleep=sleep,
        )

    @classmethod
    def from_settings(cls, settings: ProxmoxSettings) -> "ShellBackend":
        """Build a shell backend from settings."""
        runner = BashRunner() if settings.bash_runner else ExecRunner()
        return cls(
            runner=runner,
            node=settings.node,
            agent_cidr=settings.agent_cidr,
            clone_mode=settings.clone_mode,
            qm_path=settings.qm_path,
            pvesh_path=settings.pvesh_path,
            pvesm_path=settings.pvesm_path,
            command_timeout=settings.command_timeout,
            dhcp_lease_paths=settings.dhcp_lease_paths,
        )

    @property
    def name(self) -> str:
        return "shell"

    async def run(self, name: str, *args: str) -> str:
        """Validate and run one command under the command timeout.

        Raises:
            InvalidArgumentError: If any token contains control characters
            CommandError: If the command fails
            TimeoutError: If the command outlives ``command_timeout``
        """
        validate_command_args(name, args)
        if not self.command_timeout or self.command_timeout <= 0:
            return await self.runner.run(name, *args)
        try:
            return await asyncio.wait_for(self.runner.run(name, *args), self.command_timeout)
        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"command {format_command([name, *args])} timed out after {self.command_timeout:g}s"
            ) from e

    async def qm(self, *args: str) -> str:
        return await self.run(self.qm_path, *args)

    async def pvesh_json(self, path: str, what: str) -> Any:
        out = await self.run(self.pvesh_path, "get", path, "--output-format", "json")
        return parse_json_output(out, what)

    async def pvesm(self, *args: str) -> str:
        return await self.run(self.pvesm_path, *args)

    async def ensure_node(self) -> str:
        """Return the configured node, discovering it on first use."""
        if self._node:
            return self._node
        async with self._node_lock:
            if not self._node:
                out = await self.run(self.pvesh_path, "get", "/nodes", "--output-format", "json")
                node = parse_node_list(out)
                logger.info("Using Proxmox node %s", node)
                self._node = node
        return self._node

    # VM lifecycle

    async def clone(self, template: VMID, target: VMID, name: str) -> None:
        def clone_args(full: bool) -> list[str]:
            args = ["clone", str(template), str(target), "--full", "1" if full else "0"]
            if name:
                args += ["--name", name]
            return args

        full = self.clone_mode.strip().lower() == "full"
        try:
            await self.qm(*clone_args(full))
        except CommandError as e:
            if full or not should_retry_full_clone(e):
                raise vm_error(template, e) from e
            logger.info("Linked clone of %s refused, retrying as full clone: %s", template, e)
            try:
                await self.qm(*clone_args(True))
            except CommandError as retry_err:
                raise CommandError(
                    e.command,
                    f"linked clone failed: {e}; full clone retry failed: {retry_err}",
                ) from retry_err

    async def configure(self, vmid: VMID, cfg: VMConfig) -> None:
        def set_args(include_firewall_group: bool) -> list[str]:
            args = ["set", str(vmid)]
            for key, value in config_params(cfg, include_firewall_group).items():
                args += [f"--{key}", value]
            return args

        args = set_args(True)
        if len(args) > 2:
            try:
                await self.qm(*args)
            except CommandError as e:
                if not cfg.firewall_group or not is_unsupported_fwgroup_error(e):
                    raise vm_error(vmid, e) from e
                logger.warning(
                    "VM %s: firewall group %s rejected, retrying without it",
                    vmid,
                    cfg.firewall_group,
                )
                retry_args = set_args(False)
                if len(retry_args) > 2:
                    try:
                        await self.qm(*retry_args)
                    except CommandError as retry_err:
                        raise CommandError(
                            e.command, f"{e}; retry without fwgroup failed: {retry_err}"
                        ) from retry_err
        if cfg.root_disk_gb > 0:
            await self._ensure_root_disk_size(vmid, cfg.root_disk, cfg.root_disk_gb)

    async def _ensure_root_disk_size(self, vmid: VMID, disk: str, target_gb: int) -> None:
        config = parse_config_output(await self._vm_command(vmid, "config", str(vmid)))
        disk = disk.strip() or detect_root_disk(config)
        if not disk:
            raise PVESandboxError(f"unable to determine root disk for vm {vmid}")
        if disk not in config:
            raise PVESandboxError(f"root disk {disk} missing from vm {vmid} config")
        token = extract_disk_size_token(config[disk])
        if not token:
            raise PVESandboxError(f"unable to determine current size of {disk} for vm {vmid}")
        delta = resize_delta_gb(parse_size_gb(token), target_gb)
        if delta > 0:
            await self.qm("resize", str(vmid), disk, f"+{delta}G")

    async def _vm_command(self, vmid: VMID, *args: str) -> str:
        try:
            return await self.qm(*args)
        except CommandError as e:
            raise vm_error(vmid, e) from e

    async def start(self, vmid: VMID) -> None:
        await self._vm_command(vmid, "start", str(vmid))

    async def stop(self, vmid: VMID) -> None:
        await self._vm_command(vmid, "stop", str(vmid))

    async def suspend(self, vmid: VMID) -> None:
        await self._vm_command(vmid, "suspend", str(vmid), "--todisk", "0")

    async def resume(self, vmid: VMID) -> None:
        await self._vm_command(vmid, "resume", str(vmid))

    async def destroy(self, vmid: VMID) -> None:
        await self._vm_command(vmid, "destroy", str(vmid), "--purge", "1")

    # Snapshots

    async def snapshot_create(self, vmid: VMID, name: str) -> None:
        name = normalize_snapshot_name(name)
        await self._vm_command(vmid, "snapshot", str(vmid), name, "--vmstate", "0")

    async def snapshot_rollback(self, vmid: VMID, name: str) -> None:
        name = normalize_snapshot_name(name)
        await self._vm_command(vmid, "rollback", str(vmid), name)

    async def snapshot_delete(self, vmid: VMID, name: str) -> None:
        name = normalize_snapshot_name(name)
        await self._vm_command(vmid, "delsnapshot", str(vmid), name)

    async def snapshot_list(self, vmid: VMID) -> list[Snapshot]:
        node = await self.ensure_node()
        try:
            entries = await self.pvesh_json(f"/nodes/{node}/qemu/{vmid}/snapshot", "snapshot list")
        except CommandError as e:
            raise vm_error(vmid, e) from e
        return parse_snapshot_entries(entries)

    # Observation

    async def status(self, vmid: VMID) -> Status:
        return parse_status_output(await self._vm_command(vmid, "status", str(vmid)))

    async def current_stats(self, vmid: VMID) -> VMStats:
        node = await self.ensure_node()
        try:
            current = await self.pvesh_json(
                f"/nodes/{node}/qemu/{vmid}/status/current", "current stats"
            )
        except CommandError as e:
            raise vm_error(vmid, e) from e
        cpu = current.get("cpu") if isinstance(current, dict) else None
        return VMStats(cpu_usage=float(cpu or 0.0))

    async def guest_ip(self, vmid: VMID, timeout: float | None = None) -> str:
        async def load_macs() -> list[str]:
            return config_macs(parse_config_output(await self.qm("config", str(vmid))))

        async def query_agent():
            node = await self.ensure_node()
            out = await self.run(
                self.pvesh_path,
                "get",
                f"/nodes/{node}/qemu/{vmid}/agent/network-get-interfaces",
                "--output-format",
                "json",
            )
            return parse_agent_addresses(out)

        return await self._discovery.discover(vmid, load_macs, query_agent, timeout=timeout)

    async def vm_config(self, vmid: VMID) -> dict[str, str]:
        return parse_config_output(await self._vm_command(vmid, "config", str(vmid)))

    async def validate_template(self, template: VMID) -> None:
        try:
            out = await self.qm("config", str(template))
        except CommandError as e:
            if is_vm_not_found(e):
                raise VMNotFoundError(f"template VM {template} does not exist") from e
            raise
        check_template_config(template, parse_config_output(out))

    # Volumes

    async def create_volume(self, storage: str, name: str, size_gb: int) -> str:
        storage, name = storage.strip(), name.strip()
        if not storage:
            raise InvalidArgumentError("storage is required")
        if not name:
            raise InvalidArgumentError("volume name is required")
        if size_gb <= 0:
            raise InvalidArgumentError("size_gb must be positive")
        volume_id = (await self.pvesm("alloc", storage, "0", name, f"{size_gb}G")).strip()
        if not volume_id:
            raise CommandError(format_command([self.pvesm_path, "alloc", storage]), "empty volume id")
        return volume_id

    async def attach_volume(self, vmid: VMID, volume_id: str, slot: str) -> None:
        volume_id, slot = volume_id.strip(), slot.strip()
        if not volume_id:
            raise InvalidArgumentError("volume id is required")
        if not slot:
            raise InvalidArgumentError("slot is required")
        await self._vm_command(vmid, "set", str(vmid), f"--{slot}", volume_id)

    async def detach_volume(self, vmid: VMID, slot: str) -> None:
        slot = slot.strip()
        if not slot:
            raise InvalidArgumentError("slot is required")
        await self._vm_command(vmid, "set", str(vmid), "--delete", slot)

    async def _volume_command(self, volume_id: str, *args: str) -> str:
        try:
            return await self.pvesm(*args)
        except CommandError as e:
            raise volume_error(volume_id, e) from e

    async def delete_volume(self, volume_id: str) -> None:
        split_volume_id(volume_id)
        volume_id = volume_id.strip()
        await self._volume_command(volume_id, "free", volume_id)

    async def volume_info(self, volume_id: str) -> VolumeInfo:
        storage, _ = split_volume_id(volume_id)
        volume_id = volume_id.strip()
        path = await self._volume_command(volume_id, "path", volume_id)
        return VolumeInfo(volume_id=volume_id, storage=storage, path=path.strip())

    async def storage_type(self, storage: str) -> str:
        """Look up a storage's type with ``pvesm status``."""
        storage = storage.strip()
        if not storage:
            raise InvalidArgumentError("storage is required")
        out = await self.pvesm("status", "--storage", storage, "--output-format", "json")
        storage_type = parse_pvesm_status(out, storage)
        if not storage_type:
            raise PVESandboxError(f"storage {storage} not found in pvesm status output")
        return storage_type

    async def _ensure_zfs_storage(self, storage: str, op: str) -> None:
        storage_type = await self.storage_type(storage)
        if not is_zfs_storage_type(storage_type):
            raise StorageUnsupportedError(
                f"{op} requires zfs storage; storage {storage} has type {storage_type}"
            )

    async def volume_snapshot_create(self, volume_id: str, name: str) -> None:
        name = normalize_snapshot_name(name)
        storage, _ = split_volume_id(volume_id)
        volume_id = volume_id.strip()
        await self._ensure_zfs_storage(storage, "volume snapshot")
        await self._volume_command(volume_id, "snapshot", volume_id, name)

    async def volume_snapshot_restore(self, volume_id: str, name: str) -> None:
        name = normalize_snapshot_name(name)
        storage, _ = split_volume_id(volume_id)
        volume_id = volume_id.strip()
        await self._ensure_zfs_storage(storage, "volume snapshot restore")
        await self._volume_command(volume_id, "rollback", volume_id, name)

    async def volume_snapshot_delete(self, volume_id: str, name: str) -> None:
        name = normalize_snapshot_name(name)
        storage, _ = split_volume_id(volume_id)
        volume_id = volume_id.strip()
        await self._ensure_zfs_storage(storage, "volume snapshot delete")
        await self._volume_command(volume_id, "delsnapshot", volume_id, name)

    async def volume_clone(self, source_volume_id: str, target_volume_id: str) -> None:
        source, target = check_clone_pair(source_volume_id, target_volume_id)
        storage, _ = split_volume_id(source)
        await self._ensure_zfs_storage(storage, "volume clone")
        await self._volume_command(source, "clone", source, target)

    async def volume_clone_from_snapshot(
        self, source_volume_id: str, snapshot: str, target_volume_id: str
    ) -> None:
        snapshot = normalize_snapshot_name(snapshot)
        source, target = check_clone_pair(source_volume_id, target_volume_id)
        storage, _ = split_volume_id(source)
        await self._ensure_zfs_storage(storage, "volume clone")
        await self._volume_command(source, "clone", source, target, "--snapname", snapshot)
