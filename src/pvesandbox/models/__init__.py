"""Data models."""

from .config import ProxmoxSettings
from .snippet import CloudInitSnippet, SnippetInput
from .storage import VolumeInfo
from .vm import VMID, Snapshot, Status, TaskStatus, VMConfig, VMStats

__all__ = [
    "CloudInitSnippet",
    "ProxmoxSettings",
    "Snapshot",
    "SnippetInput",
    "Status",
    "TaskStatus",
    "VMConfig",
    "VMID",
    "VMStats",
    "VolumeInfo",
]
