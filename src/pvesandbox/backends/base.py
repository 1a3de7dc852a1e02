"""Backend contract for driving a Proxmox VE cluster."""

from abc import ABC, abstractmethod

from ..models.storage import VolumeInfo
from ..models.vm import VMID, Snapshot, Status, VMConfig, VMStats

ZFS_STORAGE_TYPES = frozenset({"zfspool", "zfs"})


def is_zfs_storage_type(storage_type: str) -> bool:
    """Return True if volume snapshots and clones are supported on the type."""
    return storage_type.strip().lower() in ZFS_STORAGE_TYPES


class Backend(ABC):
    """Lifecycle, snapshot, volume and discovery operations on one cluster.

    Every mutating call waits for the remote task to finish before returning.
    Implementations are safe to share between tasks; concurrent mutations of
    the same VM are not serialized.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Transport name (``api``, ``shell``, ``fake``)."""
        ...

    async def close(self) -> None:
        """Release transport resources; a no-op unless overridden."""
        return None

    # VM lifecycle

    @abstractmethod
    async def clone(self, template: VMID, target: VMID, name: str) -> None:
        """Clone ``template`` into a new VM ``target``.

        Linked clones are preferred when configured; storages that refuse a
        linked clone get one retry as a full clone.
        """
        ...

    @abstractmethod
    async def configure(self, vmid: VMID, cfg: VMConfig) -> None:
        """Apply the set fields of ``cfg`` and grow the root disk if requested."""
        ...

    @abstractmethod
    async def start(self, vmid: VMID) -> None:
        ...

    @abstractmethod
    async def stop(self, vmid: VMID) -> None:
        ...

    @abstractmethod
    async def suspend(self, vmid: VMID) -> None:
        ...

    @abstractmethod
    async def resume(self, vmid: VMID) -> None:
        ...

    @abstractmethod
    async def destroy(self, vmid: VMID) -> None:
        """Delete the VM and purge it from jobs and HA."""
        ...

    # Snapshots

    @abstractmethod
    async def snapshot_create(self, vmid: VMID, name: str) -> None:
        """Take a disk-only snapshot."""
        ...

    @abstractmethod
    async def snapshot_rollback(self, vmid: VMID, name: str) -> None:
        ...

    @abstractmethod
    async def snapshot_delete(self, vmid: VMID, name: str) -> None:
        ...

    @abstractmethod
    async def snapshot_list(self, vmid: VMID) -> list[Snapshot]:
        ...

    # Observation

    @abstractmethod
    async def status(self, vmid: VMID) -> Status:
        ...

    @abstractmethod
    async def current_stats(self, vmid: VMID) -> VMStats:
        ...

    @abstractmethod
    async def guest_ip(self, vmid: VMID, timeout: float | None = None) -> str:
        """Discover the guest's IPv4 address from DHCP leases or the guest agent.

        Args:
            vmid: VM to probe
            timeout: Discovery budget in seconds; a fixed number of rounds when None
        """
        ...

    @abstractmethod
    async def vm_config(self, vmid: VMID) -> dict[str, str]:
        """Return the VM config as a flat string mapping."""
        ...

    @abstractmethod
    async def validate_template(self, template: VMID) -> None:
        """Check the template has the guest agent enabled and a cloud-init drive."""
        ...

    # Volumes

    @abstractmethod
    async def create_volume(self, storage: str, name: str, size_gb: int) -> str:
        """Allocate an unowned volume and return its ``storage:name`` ID."""
        ...

    @abstractmethod
    async def attach_volume(self, vmid: VMID, volume_id: str, slot: str) -> None:
        ...

    @abstractmethod
    async def detach_volume(self, vmid: VMID, slot: str) -> None:
        ...

    @abstractmethod
    async def delete_volume(self, volume_id: str) -> None:
        ...

    @abstractmethod
    async def volume_info(self, volume_id: str) -> VolumeInfo:
        ...

    @abstractmethod
    async def volume_snapshot_create(self, volume_id: str, name: str) -> None:
        ...

    @abstractmethod
    async def volume_snapshot_restore(self, volume_id: str, name: str) -> None:
        ...

    @abstractmethod
    async def volume_snapshot_delete(self, volume_id: str, name: str) -> None:
        ...

    @abstractmethod
    async def volume_clone(self, source_volume_id: str, target_volume_id: str) -> None:
        ...

    @abstractmethod
    async def volume_clone_from_snapshot(
        self, source_volume_id: str, snapshot: str, target_volume_id: str
    ) -> None:
        ...
