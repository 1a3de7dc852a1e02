"""Proxmox transports behind one Backend contract."""

import logging

from ..api.exceptions import ConfigError
from ..models.config import ProxmoxSettings
from .api import APIBackend
from .base import Backend, is_zfs_storage_type
from .fake import FakeBackend
from .shell import ShellBackend

logger = logging.getLogger(__name__)


def create_backend(settings: ProxmoxSettings) -> Backend:
    """Build the transport selected by ``settings.backend``.

    Args:
        settings: Cluster settings

    Returns:
        An API backend (optionally with a shell fallback) or a shell backend

    Raises:
        ConfigError: If the API backend is selected without a token
    """
    if settings.backend == "api":
        if not settings.api_token:
            raise ConfigError("api backend requires an API token")
        fallback = ShellBackend.from_settings(settings) if settings.shell_fallback else None
        logger.debug(
            "Using API backend at %s (shell fallback %s)",
            settings.api_url,
            "on" if fallback else "off",
        )
        return APIBackend.from_settings(settings, shell_fallback=fallback)
    logger.debug("Using shell backend")
    return ShellBackend.from_settings(settings)


__all__ = [
    "APIBackend",
    "Backend",
    "FakeBackend",
    "ShellBackend",
    "create_backend",
    "is_zfs_storage_type",
]
