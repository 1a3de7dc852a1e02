"""Helpers shared by the CLI command groups."""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Coroutine, TypeVar

import typer
from rich.progress import Progress, SpinnerColumn, TextColumn

from ..backends import Backend, create_backend
from ..config import ConfigManager
from ..models.config import ProxmoxSettings
from ..utils import confirm, console, print_cancelled

T = TypeVar("T")


def profile_name(ctx: typer.Context) -> str | None:
    """Return the ``--profile`` given to the root command, if any."""
    return (ctx.obj or {}).get("profile")


def load_settings(ctx: typer.Context) -> ProxmoxSettings:
    return ConfigManager().get_profile(profile_name(ctx))


@asynccontextmanager
async def open_backend(ctx: typer.Context) -> AsyncIterator[Backend]:
    """Build the backend for the selected profile and close it afterwards.

    Raises:
        ConfigError: If the profile is missing or incomplete
    """
    backend = create_backend(load_settings(ctx))
    try:
        yield backend
    finally:
        await backend.close()


async def run_with_spinner(description: str, coro: Coroutine[Any, Any, T]) -> T:
    """Await ``coro`` while showing a spinner.

    Args:
        description: Spinner text (e.g. "Starting VM 100...")
        coro: Backend call to await

    Returns:
        Whatever ``coro`` returns
    """
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task(description=description, total=None)
        return await coro


def confirm_action(message: str, yes: bool) -> bool:
    """Ask before a destructive action unless ``--yes`` was given."""
    if yes:
        return True
    if not confirm(message, default=False):
        print_cancelled()
        return False
    return True
