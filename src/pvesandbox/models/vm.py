"""VM (QEMU) models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

VMID = int


class Status(str, Enum):
    """Coarse VM power state."""

    RUNNING = "running"
    STOPPED = "stopped"
    UNKNOWN = "unknown"

    @classmethod
    def from_remote(cls, value: str | None) -> "Status":
        """Map a remote status string to a Status, case-insensitively."""
        normalized = (value or "").strip().lower()
        if normalized == "running":
            return cls.RUNNING
        if normalized == "stopped":
            return cls.STOPPED
        return cls.UNKNOWN


class VMConfig(BaseModel):
    """Desired VM settings.

    Zero, empty and None values mean "leave untouched".
    """

    name: str = ""
    cores: int = Field(0, ge=0)
    memory_mb: int = Field(0, ge=0)
    bridge: str = ""
    net_model: str = ""
    cloud_init: str = ""
    cpu_pinning: str = ""
    scsihw: str = ""
    root_disk_gb: int = Field(0, ge=0)
    root_disk: str = Field("", description="Disk slot to grow; empty auto-detects")
    firewall: bool | None = None
    firewall_group: str = ""


class VMStats(BaseModel):
    """Point-in-time VM statistics."""

    cpu_usage: float = 0.0


class Snapshot(BaseModel):
    """VM snapshot information (disk-only)."""

    name: str
    description: str = ""
    created_at: datetime | None = None


class TaskStatus(BaseModel):
    """Task status information."""

    model_config = {"extra": "allow"}

    status: str = ""
    exitstatus: str | None = None
    upid: str | None = None
    node: str | None = None
    type: str | None = None
