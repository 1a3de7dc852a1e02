"""Safe execution of Proxmox CLI commands."""

import asyncio
import logging
from abc import ABC, abstractmethod

from ..api.exceptions import CommandError, InvalidArgumentError

logger = logging.getLogger(__name__)

SHELL_SPECIAL = frozenset(" \t\n\r\v\f\\'\"$`;&|<>()*?!#[]{}~")


def validate_command_token(label: str, value: str, allow_empty: bool = False) -> None:
    """Reject empty (unless allowed) or control-character laden tokens.

    Raises:
        InvalidArgumentError: If the token is unsafe to pass to a process
    """
    if not allow_empty and not value.strip():
        raise InvalidArgumentError(f"{label} is required")
    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in value):
        raise InvalidArgumentError(f"{label} contains control characters")


def validate_command_args(name: str, args: list[str] | tuple[str, ...]) -> None:
    """Validate a command name and its arguments before execution."""
    validate_command_token("command name", name)
    for arg in args:
        validate_command_token("command argument", arg, allow_empty=True)


def shell_quote(value: str) -> str:
    """Quote a value for display as a POSIX shell word."""
    if value == "":
        return "''"
    if not any(ch in SHELL_SPECIAL for ch in value):
        return value
    return "'" + value.replace("'", "'\\''") + "'"


def format_command(args: list[str] | tuple[str, ...]) -> str:
    """Render an argument vector as a copy-pasteable command line."""
    return " ".join(shell_quote(arg) for arg in args)


class CommandRunner(ABC):
    """Strategy for executing a command and returning its stdout."""

    @abstractmethod
    async def run(self, name: str, *args: str) -> str:
        """Run ``name`` with ``args``.

        Returns:
            Captured standard output

        Raises:
            CommandError: If the process could not start or exited non-zero
            InvalidArgumentError: If the name or an argument is unsafe to pass
        """
        ...


async def run_process(argv: list[str], display: str) -> str:
    """Run an argument vector without a shell and capture its output.

    The child is killed if the awaiting task is cancelled.

    Args:
        argv: Program and arguments passed directly to exec
        display: Command line used in error messages

    Returns:
        Decoded standard output

    Raises:
        CommandError: On spawn failure or non-zero exit
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise CommandError(display, str(e)) from e

    try:
        stdout, stderr = await process.communicate()
    except asyncio.CancelledError:
        if process.returncode is None:
            process.kill()
            await process.wait()
        raise

    if process.returncode != 0:
        raise CommandError(
            display,
            f"exit status {process.returncode}",
            stderr.decode(errors="replace").strip(),
            returncode=process.returncode,
        )
    return stdout.decode(errors="replace")


class ExecRunner(CommandRunner):
    """Run commands directly via exec."""

    async def run(self, name: str, *args: str) -> str:
        validate_command_args(name, args)
        display = format_command([name, *args])
        logger.debug("exec: %s", display)
        return await run_process([name, *args], display)


class BashRunner(CommandRunner):
    """Run commands through ``bash -c 'exec "$@"'``.

    Some Proxmox tools misbehave without a shell parent. Arguments are
    passed positionally, never interpolated into the script.
    """

    async def run(self, name: str, *args: str) -> str:
        validate_command_args(name, args)
        display = format_command([name, *args])
        logger.debug("bash exec: %s", display)
        return await run_process(["bash", "-c", 'exec "$@"', "bash", name, *args], display)
