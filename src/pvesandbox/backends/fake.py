"""Deterministic in-memory backend for tests and dry runs."""

import threading
from dataclasses import dataclass, field

from ..api.exceptions import PVESandboxError, VMNotFoundError, VolumeNotFoundError
from ..models.storage import VolumeInfo
from ..models.vm import VMID, Snapshot, Status, VMConfig, VMStats
from ..utils.pveconfig import normalize_snapshot_name, split_volume_id
from .api import check_clone_pair
from .base import Backend

FAKE_CPU_USAGE = 0.01

_TEXT_FIELDS = ("name", "bridge", "net_model", "firewall_group", "cloud_init", "cpu_pinning")
_SIZE_FIELDS = ("cores", "memory_mb", "root_disk_gb")


def fake_ip_for_vm(vmid: VMID) -> str:
    """Return the fixed guest address handed out for a VM."""
    return f"10.77.0.{vmid % 250 + 2}"


def _fake_path(volume_id: str) -> str:
    return "/fake/" + volume_id.replace(":", "/")


@dataclass
class _FakeVM:
    vmid: VMID
    name: str
    status: Status = Status.STOPPED
    suspended: bool = False
    config: VMConfig = field(default_factory=VMConfig)
    snapshots: dict[str, Snapshot] = field(default_factory=dict)
    volumes: dict[str, str] = field(default_factory=dict)


@dataclass
class _FakeVolume:
    volume_id: str
    storage: str
    size_gb: int
    attached_vm: VMID = 0
    slot: str = ""
    snapshots: set[str] = field(default_factory=set)

    @property
    def path(self) -> str:
        return _fake_path(self.volume_id)


class FakeBackend(Backend):
    """Backend keeping VMs and volumes in memory.

    All state sits behind one lock, so the fake can be shared between tasks
    and threads. Nothing sleeps or touches the network.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._vms: dict[VMID, _FakeVM] = {}
        self._volumes: dict[str, _FakeVolume] = {}
        self._next_volume_seq = 1

    @property
    def name(self) -> str:
        return "fake"

    def add_template(self, vmid: VMID) -> None:
        """Seed a stopped template VM; a no-op if the VMID is taken."""
        with self._lock:
            if vmid not in self._vms:
                name = f"template-{vmid}"
                self._vms[vmid] = _FakeVM(vmid=vmid, name=name, config=VMConfig(name=name))

    def _vm(self, vmid: VMID) -> _FakeVM:
        vm = self._vms.get(vmid)
        if vm is None:
            raise VMNotFoundError(f"vm {vmid} not found")
        return vm

    def _volume(self, volume_id: str) -> _FakeVolume:
        split_volume_id(volume_id)
        volume = self._volumes.get(volume_id.strip())
        if volume is None:
            raise VolumeNotFoundError(f"volume {volume_id.strip()} not found")
        return volume

    # VM lifecycle

    async def clone(self, template: VMID, target: VMID, name: str) -> None:
        with self._lock:
            self._vm(template)
            if target in self._vms:
                raise PVESandboxError(f"vm {target} already exists")
            name = name.strip()
            self._vms[target] = _FakeVM(vmid=target, name=name, config=VMConfig(name=name))

    async def configure(self, vmid: VMID, cfg: VMConfig) -> None:
        with self._lock:
            vm = self._vm(vmid)
            updates = {}
            for key in _TEXT_FIELDS:
                value = getattr(cfg, key).strip()
                if value:
                    updates[key] = value
            for key in _SIZE_FIELDS:
                if getattr(cfg, key) > 0:
                    updates[key] = getattr(cfg, key)
            if cfg.firewall is not None:
                updates["firewall"] = cfg.firewall
            vm.config = vm.config.model_copy(update=updates)
            if "name" in updates:
                vm.name = updates["name"]

    async def start(self, vmid: VMID) -> None:
        with self._lock:
            vm = self._vm(vmid)
            vm.status = Status.RUNNING
            vm.suspended = False

    async def stop(self, vmid: VMID) -> None:
        with self._lock:
            vm = self._vm(vmid)
            vm.status = Status.STOPPED
            vm.suspended = False

    async def suspend(self, vmid: VMID) -> None:
        with self._lock:
            self._vm(vmid).suspended = True

    async def resume(self, vmid: VMID) -> None:
        with self._lock:
            self._vm(vmid).suspended = False

    async def destroy(self, vmid: VMID) -> None:
        with self._lock:
            vm = self._vm(vmid)
            for volume_id in vm.volumes.values():
                volume = self._volumes.get(volume_id)
                if volume is not None and volume.attached_vm == vmid:
                    volume.attached_vm = 0
                    volume.slot = ""
            del self._vms[vmid]

    # Snapshots

    async def snapshot_create(self, vmid: VMID, name: str) -> None:
        name = normalize_snapshot_name(name)
        with self._lock:
            self._vm(vmid).snapshots[name] = Snapshot(name=name)

    async def snapshot_rollback(self, vmid: VMID, name: str) -> None:
        name = normalize_snapshot_name(name)
        with self._lock:
            if name not in self._vm(vmid).snapshots:
                raise PVESandboxError(f"snapshot {name!r} not found")

    async def snapshot_delete(self, vmid: VMID, name: str) -> None:
        name = normalize_snapshot_name(name)
        with self._lock:
            self._vm(vmid).snapshots.pop(name, None)

    async def snapshot_list(self, vmid: VMID) -> list[Snapshot]:
        with self._lock:
            return list(self._vm(vmid).snapshots.values())

    # Observation

    async def status(self, vmid: VMID) -> Status:
        with self._lock:
            return self._vm(vmid).status

    async def current_stats(self, vmid: VMID) -> VMStats:
        with self._lock:
            self._vm(vmid)
            return VMStats(cpu_usage=FAKE_CPU_USAGE)

    async def guest_ip(self, vmid: VMID, timeout: float | None = None) -> str:
        with self._lock:
            self._vm(vmid)
            return fake_ip_for_vm(vmid)

    async def vm_config(self, vmid: VMID) -> dict[str, str]:
        with self._lock:
            vm = self._vm(vmid)
            config = {"name": vm.name, "bridge": vm.config.bridge}
            config.update(vm.volumes)
            return config

    async def validate_template(self, template: VMID) -> None:
        with self._lock:
            if template not in self._vms:
                raise VMNotFoundError(f"template VM {template} does not exist")

    # Volumes

    async def create_volume(self, storage: str, name: str, size_gb: int) -> str:
        with self._lock:
            storage = storage.strip() or "local"
            name = name.strip() or f"vol-{self._next_volume_seq}"
            volume_id = f"{storage}:vm-{name}-disk-1"
            if volume_id in self._volumes:
                volume_id = f"{storage}:vm-{name}-disk-{self._next_volume_seq}"
            self._next_volume_seq += 1
            self._volumes[volume_id] = _FakeVolume(volume_id, storage, size_gb)
            return volume_id

    async def attach_volume(self, vmid: VMID, volume_id: str, slot: str) -> None:
        with self._lock:
            vm = self._vm(vmid)
            volume = self._volume(volume_id)
            if volume.attached_vm and volume.attached_vm != vmid:
                raise PVESandboxError(
                    f"volume {volume.volume_id} already attached to vm {volume.attached_vm}"
                )
            slot = slot.strip() or "scsi1"
            vm.volumes[slot] = volume.volume_id
            volume.attached_vm = vmid
            volume.slot = slot

    async def detach_volume(self, vmid: VMID, slot: str) -> None:
        with self._lock:
            vm = self._vm(vmid)
            volume_id = vm.volumes.pop(slot.strip(), None)
            volume = self._volumes.get(volume_id) if volume_id else None
            if volume is not None and volume.attached_vm == vmid:
                volume.attached_vm = 0
                volume.slot = ""

    async def delete_volume(self, volume_id: str) -> None:
        with self._lock:
            volume = self._volume(volume_id)
            del self._volumes[volume.volume_id]

    async def volume_info(self, volume_id: str) -> VolumeInfo:
        with self._lock:
            volume = self._volume(volume_id)
            return VolumeInfo(volume_id=volume.volume_id, storage=volume.storage, path=volume.path)

    async def volume_snapshot_create(self, volume_id: str, name: str) -> None:
        name = normalize_snapshot_name(name)
        with self._lock:
            self._volume(volume_id).snapshots.add(name)

    async def volume_snapshot_restore(self, volume_id: str, name: str) -> None:
        name = normalize_snapshot_name(name)
        with self._lock:
            if name not in self._volume(volume_id).snapshots:
                raise PVESandboxError(f"snapshot {name!r} not found")

    async def volume_snapshot_delete(self, volume_id: str, name: str) -> None:
        name = normalize_snapshot_name(name)
        with self._lock:
            self._volume(volume_id).snapshots.discard(name)

    def _clone_into(self, source: _FakeVolume, target: str) -> None:
        if target in self._volumes:
            raise PVESandboxError(f"volume {target} already exists")
        self._volumes[target] = _FakeVolume(target, source.storage, source.size_gb)

    async def volume_clone(self, source_volume_id: str, target_volume_id: str) -> None:
        source_id, target_id = check_clone_pair(source_volume_id, target_volume_id)
        with self._lock:
            self._clone_into(self._volume(source_id), target_id)

    async def volume_clone_from_snapshot(
        self, source_volume_id: str, snapshot: str, target_volume_id: str
    ) -> None:
        snapshot = normalize_snapshot_name(snapshot)
        source_id, target_id = check_clone_pair(source_volume_id, target_volume_id)
        with self._lock:
            source = self._volume(source_id)
            if snapshot not in source.snapshots:
                raise PVESandboxError(f"snapshot {snapshot!r} not found")
            self._clone_into(source, target_id)
