"""API client, authentication and error kinds."""

from .auth import AuthHandler
from .client import ProxmoxClient
from .exceptions import (
    APIError,
    AuthenticationError,
    CommandError,
    ConfigError,
    GuestIPNotFoundError,
    InvalidArgumentError,
    InvalidTemplateError,
    NetworkError,
    PermissionError,
    PVESandboxError,
    StorageUnsupportedError,
    TaskFailedError,
    TimeoutError,
    VMNotFoundError,
    VolumeNotFoundError,
)

__all__ = [
    "APIError",
    "AuthHandler",
    "AuthenticationError",
    "CommandError",
    "ConfigError",
    "GuestIPNotFoundError",
    "InvalidArgumentError",
    "InvalidTemplateError",
    "NetworkError",
    "PermissionError",
    "ProxmoxClient",
    "PVESandboxError",
    "StorageUnsupportedError",
    "TaskFailedError",
    "TimeoutError",
    "VMNotFoundError",
    "VolumeNotFoundError",
]
