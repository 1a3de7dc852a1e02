"""Exceptions raised by pvesandbox backends."""


class PVESandboxError(Exception):
    """Base exception for pvesandbox."""

    pass


class ConfigError(PVESandboxError):
    """Configuration related errors."""

    pass


class InvalidArgumentError(PVESandboxError, ValueError):
    """Caller supplied input rejected before any remote call."""

    pass


class APIError(PVESandboxError):
    """General API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """Initialize API error.

        Args:
            message: Error message
            status_code: HTTP status code if applicable
        """
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Authentication failures (401)."""

    def __init__(self, message: str = "Authentication failed or expired") -> None:
        super().__init__(message, status_code=401)


class PermissionError(APIError):
    """Permission denied (403)."""

    def __init__(self, message: str = "Permission denied") -> None:
        """Initialize permission error.

        Args:
            message: Error message
        """
        super().__init__(message, status_code=403)


class NetworkError(PVESandboxError):
    """Network related errors."""

    pass


class TimeoutError(PVESandboxError):
    """Request or command timeout errors."""

    pass


class CommandError(PVESandboxError):
    """A Proxmox CLI command exited unsuccessfully."""

    def __init__(
        self,
        command: str,
        reason: str,
        stderr: str = "",
        returncode: int | None = None,
    ) -> None:
        """Initialize command error.

        Args:
            command: Display form of the command line
            reason: Why the command failed (exit status, spawn error)
            stderr: Captured standard error, trimmed
            returncode: Process exit code if the process ran
        """
        message = f"command {command} failed: {reason}"
        if stderr:
            message = f"{message}: {stderr}"
        super().__init__(message)
        self.command = command
        self.stderr = stderr
        self.returncode = returncode


class TaskFailedError(PVESandboxError):
    """An asynchronous Proxmox task finished with a non-OK exit status."""

    def __init__(self, upid: str, exitstatus: str) -> None:
        super().__init__(f"task {upid} failed: exitstatus={exitstatus}")
        self.upid = upid
        self.exitstatus = exitstatus


class VMNotFoundError(PVESandboxError):
    """The referenced VM does not exist."""

    pass


class VolumeNotFoundError(PVESandboxError):
    """The referenced volume does not exist."""

    pass


class GuestIPNotFoundError(PVESandboxError):
    """No guest IP could be discovered from DHCP leases or the guest agent."""

    pass


class StorageUnsupportedError(PVESandboxError):
    """The storage backend cannot perform the requested volume operation."""

    pass


class InvalidTemplateError(PVESandboxError):
    """A template VM lacks the guest agent or a cloud-init drive."""

    pass
