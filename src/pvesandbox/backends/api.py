"""Backend implementation over the Proxmox VE REST API."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable, TypeVar

from ..api.classify import (
    is_not_implemented,
    is_unsupported_fwgroup_error,
    is_vm_not_found,
    is_volume_not_found,
    should_retry_full_clone,
)
from ..api.client import ProxmoxClient
from ..api.exceptions import (
    APIError,
    InvalidArgumentError,
    InvalidTemplateError,
    PVESandboxError,
    StorageUnsupportedError,
    VMNotFoundError,
    VolumeNotFoundError,
)
from ..api.tasks import TaskWaiter
from ..discovery import GuestIPDiscovery
from ..models.config import ProxmoxSettings
from ..models.storage import VolumeInfo
from ..models.vm import VMID, Snapshot, Status, VMConfig, VMStats
from ..utils.disk import detect_root_disk, extract_disk_size_token, parse_size_gb, resize_delta_gb
from ..utils.network import config_macs, parse_agent_addresses, parse_node_list
from ..utils.pveconfig import (
    agent_config_enabled,
    config_params,
    has_cloudinit_drive,
    normalize_config,
    normalize_snapshot_name,
    split_volume_id,
)
from .base import Backend, is_zfs_storage_type

if TYPE_CHECKING:
    from .shell import ShellBackend

logger = logging.getLogger(__name__)

T = TypeVar("T")
Sleeper = Callable[[float], Awaitable[Any]]

GUEST_IP_INITIAL_WAIT = 0.25
GUEST_IP_MAX_WAIT = 2.0


def vm_error(vmid: VMID, err: PVESandboxError) -> PVESandboxError:
    # A missing volume named in a config update is not a missing VM.
    if is_volume_not_found(err):
        return err
    if is_vm_not_found(err):
        return VMNotFoundError(f"vm {vmid} not found: {err}")
    return err


def volume_error(volume_id: str, err: PVESandboxError) -> PVESandboxError:
    if is_volume_not_found(err):
        return VolumeNotFoundError(f"volume {volume_id} not found: {err}")
    return err


def _can_fall_back(err: APIError) -> bool:
    return err.status_code in (404, 501) or is_not_implemented(err)


class APIBackend(Backend):
    """Drive a Proxmox cluster through ``/api2/json``."""

    def __init__(
        self,
        client: ProxmoxClient,
        node: str = "",
        agent_cidr: str = "",
        clone_mode: str = "linked",
        dhcp_lease_paths: list[str] | None = None,
        shell_fallback: "ShellBackend | None" = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        """Initialize the API backend.

        Args:
            client: Authenticated API client
            node: Node to operate on; detected from ``/nodes`` when empty
            agent_cidr: Preferred netblock for guest IPs
            clone_mode: ``linked`` or ``full``
            dhcp_lease_paths: Lease files read during guest IP discovery
            shell_fallback: Shell backend used for volume operations the API lacks
            sleep: Awaitable sleep, replaced in tests
        """
        self.client = client
        self._node = node.strip()
        self._node_lock = asyncio.Lock()
        self.agent_cidr = agent_cidr
        self.clone_mode = clone_mode
        self.shell_fallback = shell_fallback
        self._tasks = TaskWaiter(client.get_task_status, sleep=sleep)
        self._discovery = GuestIPDiscovery(
            agent_cidr=agent_cidr,
            lease_paths=dhcp_lease_paths,
            initial_wait=GUEST_IP_INITIAL_WAIT,
            max_wait=GUEST_IP_MAX_WAIT,
            sleep=sleep,
        )

    @classmethod
    def from_settings(
        cls, settings: ProxmoxSettings, shell_fallback: "ShellBackend | None" = None
    ) -> "APIBackend":
        """Build an API backend from settings.

        Raises:
            ConfigError: If the token is missing or TLS settings are invalid
        """
        client = ProxmoxClient(
            settings.api_url,
            settings.api_token or "",
            tls_insecure=settings.tls_insecure,
            tls_ca_path=settings.tls_ca_path,
            timeout=settings.command_timeout,
        )
        return cls(
            client,
            node=settings.node,
            agent_cidr=settings.agent_cidr,
            clone_mode=settings.clone_mode,
            dhcp_lease_paths=settings.dhcp_lease_paths,
            shell_fallback=shell_fallback,
        )

    @property
    def name(self) -> str:
        return "api"

    async def close(self) -> None:
        """Release the HTTP connection pool."""
        await self.client.close()

    async def ensure_node(self) -> str:
        """Return the configured node, discovering it on first use."""
        if self._node:
            return self._node
        async with self._node_lock:
            if not self._node:
                node = parse_node_list(await self.client.get_nodes())
                logger.info("Using Proxmox node %s", node)
                self._node = node
        return self._node

    # VM lifecycle

    async def clone(self, template: VMID, target: VMID, name: str) -> None:
        node = await self.ensure_node()
        full = self.clone_mode.strip().lower() == "full"
        try:
            result = await self.client.clone_vm(node, template, target, name, full=full)
        except APIError as e:
            if full or not should_retry_full_clone(e):
                raise vm_error(template, e) from e
            logger.info("Linked clone of %s refused, retrying as full clone: %s", template, e)
            try:
                result = await self.client.clone_vm(node, template, target, name, full=True)
            except APIError as retry_err:
                raise APIError(
                    f"linked clone failed: {e}; full clone retry failed: {retry_err}",
                    status_code=retry_err.status_code,
                ) from retry_err
        await self._tasks.wait(node, result)

    async def configure(self, vmid: VMID, cfg: VMConfig) -> None:
        node = await self.ensure_node()
        params = config_params(cfg)
        if params:
            try:
                await self.client.update_vm_config(node, vmid, params)
            except APIError as e:
                if not cfg.firewall_group or not is_unsupported_fwgroup_error(e):
                    raise vm_error(vmid, e) from e
                logger.warning(
                    "VM %s: firewall group %s rejected, retrying without it",
                    vmid,
                    cfg.firewall_group,
                )
                retry_params = config_params(cfg, include_firewall_group=False)
                if retry_params:
                    try:
                        await self.client.update_vm_config(node, vmid, retry_params)
                    except APIError as retry_err:
                        raise APIError(
                            f"{e}; retry without fwgroup failed: {retry_err}",
                            status_code=retry_err.status_code,
                        ) from retry_err
        if cfg.root_disk_gb > 0:
            await self._ensure_root_disk_size(node, vmid, cfg.root_disk, cfg.root_disk_gb)

    async def _ensure_root_disk_size(
        self, node: str, vmid: VMID, disk: str, target_gb: int
    ) -> None:
        try:
            config = normalize_config(await self.client.get_vm_config(node, vmid))
        except APIError as e:
            raise vm_error(vmid, e) from e
        disk = disk.strip() or detect_root_disk(config)
        if not disk:
            raise PVESandboxError(f"unable to determine root disk for vm {vmid}")
        if disk not in config:
            raise PVESandboxError(f"root disk {disk} missing from vm {vmid} config")
        token = extract_disk_size_token(config[disk])
        if not token:
            raise PVESandboxError(f"unable to determine current size of {disk} for vm {vmid}")
        delta = resize_delta_gb(parse_size_gb(token), target_gb)
        if delta <= 0:
            return
        logger.debug("VM %s: growing %s by %dG", vmid, disk, delta)
        result = await self.client.resize_vm_disk(node, vmid, disk, f"+{delta}G")
        await self._tasks.wait(node, result)

    async def _power(self, vmid: VMID, action: str) -> None:
        node = await self.ensure_node()
        try:
            result = await self.client.vm_status_action(node, vmid, action)
        except APIError as e:
            raise vm_error(vmid, e) from e
        await self._tasks.wait(node, result)

    async def start(self, vmid: VMID) -> None:
        await self._power(vmid, "start")

    async def stop(self, vmid: VMID) -> None:
        await self._power(vmid, "stop")

    async def suspend(self, vmid: VMID) -> None:
        await self._power(vmid, "suspend")

    async def resume(self, vmid: VMID) -> None:
        await self._power(vmid, "resume")

    async def destroy(self, vmid: VMID) -> None:
        node = await self.ensure_node()
        try:
            result = await self.client.delete_vm(node, vmid, purge=True)
        except APIError as e:
            raise vm_error(vmid, e) from e
        await self._tasks.wait(node, result)

    # Snapshots

    async def _snapshot_op(self, vmid: VMID, call: Callable[[str], Awaitable[Any]]) -> None:
        node = await self.ensure_node()
        try:
            result = await call(node)
        except APIError as e:
            raise vm_error(vmid, e) from e
        await self._tasks.wait(node, result)

    async def snapshot_create(self, vmid: VMID, name: str) -> None:
        name = normalize_snapshot_name(name)
        await self._snapshot_op(vmid, lambda n: self.client.create_vm_snapshot(n, vmid, name))

    async def snapshot_rollback(self, vmid: VMID, name: str) -> None:
        name = normalize_snapshot_name(name)
        await self._snapshot_op(vmid, lambda n: self.client.rollback_vm_snapshot(n, vmid, name))

    async def snapshot_delete(self, vmid: VMID, name: str) -> None:
        name = normalize_snapshot_name(name)
        await self._snapshot_op(vmid, lambda n: self.client.delete_vm_snapshot(n, vmid, name))

    async def snapshot_list(self, vmid: VMID) -> list[Snapshot]:
        node = await self.ensure_node()
        try:
            entries = await self.client.get_vm_snapshots(node, vmid)
        except APIError as e:
            raise vm_error(vmid, e) from e
        return parse_snapshot_entries(entries)

    # Observation

    async def status(self, vmid: VMID) -> Status:
        node = await self.ensure_node()
        try:
            current = await self.client.get_vm_current_status(node, vmid)
        except APIError as e:
            raise vm_error(vmid, e) from e
        return Status.from_remote(str(current.get("status", "")))

    async def current_stats(self, vmid: VMID) -> VMStats:
        node = await self.ensure_node()
        try:
            current = await self.client.get_vm_current_status(node, vmid)
        except APIError as e:
            raise vm_error(vmid, e) from e
        return VMStats(cpu_usage=float(current.get("cpu") or 0.0))

    async def guest_ip(self, vmid: VMID, timeout: float | None = None) -> str:
        # Surface a bad CIDR before any remote call.
        self._discovery.validate()
        node = await self.ensure_node()

        async def load_macs() -> list[str]:
            return config_macs(normalize_config(await self.client.get_vm_config(node, vmid)))

        async def query_agent():
            return parse_agent_addresses(await self.client.get_vm_agent_interfaces(node, vmid))

        return await self._discovery.discover(vmid, load_macs, query_agent, timeout=timeout)

    async def vm_config(self, vmid: VMID) -> dict[str, str]:
        node = await self.ensure_node()
        try:
            return normalize_config(await self.client.get_vm_config(node, vmid))
        except APIError as e:
            raise vm_error(vmid, e) from e

    async def validate_template(self, template: VMID) -> None:
        node = await self.ensure_node()
        try:
            config = await self.client.get_vm_config(node, template)
        except APIError as e:
            if is_vm_not_found(e):
                raise VMNotFoundError(f"template VM {template} does not exist") from e
            raise
        check_template_config(template, config)

    # Volumes

    async def create_volume(self, storage: str, name: str, size_gb: int) -> str:
        storage, name = storage.strip(), name.strip()
        if not storage:
            raise InvalidArgumentError("storage is required")
        if not name:
            raise InvalidArgumentError("volume name is required")
        if size_gb <= 0:
            raise InvalidArgumentError("size_gb must be positive")
        node = await self.ensure_node()
        result = await self.client.create_storage_volume(node, storage, name, f"{size_gb}G")
        volume_id = result.get("volid", "") if isinstance(result, dict) else result or ""
        volume_id = str(volume_id).strip()
        if not volume_id:
            raise APIError("empty volume id in response")
        return volume_id

    async def attach_volume(self, vmid: VMID, volume_id: str, slot: str) -> None:
        volume_id, slot = volume_id.strip(), slot.strip()
        if not volume_id:
            raise InvalidArgumentError("volume id is required")
        if not slot:
            raise InvalidArgumentError("slot is required")
        node = await self.ensure_node()
        try:
            result = await self.client.update_vm_config(node, vmid, {slot: volume_id})
        except APIError as e:
            raise vm_error(vmid, e) from e
        await self._tasks.wait(node, result)

    async def detach_volume(self, vmid: VMID, slot: str) -> None:
        slot = slot.strip()
        if not slot:
            raise InvalidArgumentError("slot is required")
        node = await self.ensure_node()
        try:
            result = await self.client.update_vm_config(node, vmid, {"delete": slot})
        except APIError as e:
            raise vm_error(vmid, e) from e
        await self._tasks.wait(node, result)

    async def delete_volume(self, volume_id: str) -> None:
        storage, _ = split_volume_id(volume_id)
        volume_id = volume_id.strip()
        node = await self.ensure_node()
        try:
            result = await self.client.delete_storage_volume(node, storage, volume_id)
        except APIError as e:
            raise volume_error(volume_id, e) from e
        await self._tasks.wait(node, result)

    async def volume_info(self, volume_id: str) -> VolumeInfo:
        storage, _ = split_volume_id(volume_id)
        volume_id = volume_id.strip()
        node = await self.ensure_node()
        try:
            result = await self.client.get_storage_volume(node, storage, volume_id)
        except APIError as e:
            raise volume_error(volume_id, e) from e
        canonical = str(result.get("volid") or "").strip()
        return VolumeInfo(
            volume_id=canonical or volume_id,
            storage=storage,
            path=str(result.get("path") or ""),
        )

    async def _ensure_zfs_storage(self, node: str, storage: str, op: str) -> None:
        status = await self.client.get_storage_status(node, storage)
        storage_type = str(status.get("type") or "")
        if not is_zfs_storage_type(storage_type):
            raise StorageUnsupportedError(
                f"{op} requires zfs storage; storage {storage} has type {storage_type or 'unknown'}"
            )

    async def _zfs_volume_op(
        self,
        op: str,
        volume_id: str,
        call: Callable[[str, str], Awaitable[Any]],
        fallback: Callable[["ShellBackend"], Awaitable[None]],
    ) -> None:
        storage, _ = split_volume_id(volume_id)
        node = await self.ensure_node()
        await self._ensure_zfs_storage(node, storage, op)
        try:
            result = await call(node, storage)
        except APIError as e:
            if self.shell_fallback is not None and _can_fall_back(e):
                logger.info("%s not available via API (%s), using shell fallback", op, e)
                await fallback(self.shell_fallback)
                return
            raise volume_error(volume_id, e) from e
        await self._tasks.wait(node, result)

    async def volume_snapshot_create(self, volume_id: str, name: str) -> None:
        name = normalize_snapshot_name(name)
        volume_id = volume_id.strip()
        await self._zfs_volume_op(
            "volume snapshot",
            volume_id,
            lambda n, s: self.client.create_volume_snapshot(n, s, volume_id, name),
            lambda sh: sh.volume_snapshot_create(volume_id, name),
        )

    async def volume_snapshot_restore(self, volume_id: str, name: str) -> None:
        name = normalize_snapshot_name(name)
        volume_id = volume_id.strip()
        await self._zfs_volume_op(
            "volume snapshot restore",
            volume_id,
            lambda n, s: self.client.rollback_volume_snapshot(n, s, volume_id, name),
            lambda sh: sh.volume_snapshot_restore(volume_id, name),
        )

    async def volume_snapshot_delete(self, volume_id: str, name: str) -> None:
        name = normalize_snapshot_name(name)
        volume_id = volume_id.strip()
        await self._zfs_volume_op(
            "volume snapshot delete",
            volume_id,
            lambda n, s: self.client.delete_volume_snapshot(n, s, volume_id, name),
            lambda sh: sh.volume_snapshot_delete(volume_id, name),
        )

    async def volume_clone(self, source_volume_id: str, target_volume_id: str) -> None:
        source, target = check_clone_pair(source_volume_id, target_volume_id)
        await self._zfs_volume_op(
            "volume clone",
            source,
            lambda n, s: self.client.clone_volume(n, s, source, target),
            lambda sh: sh.volume_clone(source, target),
        )

    async def volume_clone_from_snapshot(
        self, source_volume_id: str, snapshot: str, target_volume_id: str
    ) -> None:
        snapshot = normalize_snapshot_name(snapshot)
        source, target = check_clone_pair(source_volume_id, target_volume_id)
        await self._zfs_volume_op(
            "volume clone",
            source,
            lambda n, s: self.client.clone_volume(n, s, source, target, snapname=snapshot),
            lambda sh: sh.volume_clone_from_snapshot(source, snapshot, target),
        )


def check_clone_pair(source_volume_id: str, target_volume_id: str) -> tuple[str, str]:
    """Validate a volume clone pair, which must share one storage.

    Returns:
        The trimmed source and target IDs

    Raises:
        InvalidArgumentError: If either ID is malformed
        StorageUnsupportedError: If the volumes live on different storages
    """
    source_storage, _ = split_volume_id(source_volume_id)
    target_storage, _ = split_volume_id(target_volume_id)
    if source_storage != target_storage:
        raise StorageUnsupportedError(
            f"volume clone across storages is not supported ({source_storage} -> {target_storage})"
        )
    return source_volume_id.strip(), target_volume_id.strip()


def check_template_config(template: VMID, config: dict[str, Any]) -> None:
    """Require the guest agent and a cloud-init drive on a template config.

    Raises:
        InvalidTemplateError: If either requirement is not met
    """
    if "agent" not in config:
        raise InvalidTemplateError(
            f"template VM {template} does not have qemu-guest-agent enabled "
            "(missing 'agent:' config)"
        )
    try:
        enabled = agent_config_enabled(config["agent"])
    except InvalidArgumentError as e:
        raise InvalidTemplateError(f"template VM {template} has invalid agent config: {e}") from e
    if not enabled:
        raise InvalidTemplateError(
            f"template VM {template} has qemu-guest-agent explicitly disabled"
        )
    if not has_cloudinit_drive(normalize_config(config)):
        raise InvalidTemplateError(
            f"template VM {template} does not have a cloud-init drive configured"
        )


def parse_snapshot_entries(entries: Any) -> list[Snapshot]:
    """Convert snapshot listing entries, skipping the ``current`` pseudo-entry."""
    snapshots = []
    for entry in entries or []:
        if not isinstance(entry, dict):
            continue
        name = str(entry.get("name") or "").strip()
        if not name or name == "current":
            continue
        created_at = None
        snaptime = entry.get("snaptime")
        if snaptime:
            created_at = datetime.fromtimestamp(int(snaptime), tz=timezone.utc)
        snapshots.append(
            Snapshot(
                name=name,
                description=str(entry.get("description") or ""),
                created_at=created_at,
            )
        )
    return snapshots
