"""CLI commands."""

from . import config, main, snippet, vm, volume

__all__ = ["config", "main", "snippet", "vm", "volume"]
