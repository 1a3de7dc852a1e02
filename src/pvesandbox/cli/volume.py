"""Volume commands."""

import typer

from ..api.exceptions import PVESandboxError
from ..utils import console, print_error, print_success
from ..utils.helpers import async_to_sync, ordered_group
from ._shared import confirm_action, open_backend, run_with_spinner

_CMD_ORDER = [
    "create", "attach", "detach", "delete",
    "snapshot", "restore", "delete-snapshot", "clone",
    "info",
]

app = typer.Typer(help="Manage data volumes", no_args_is_help=True, cls=ordered_group(_CMD_ORDER))


@app.command("create")
@async_to_sync
async def create_volume(
    ctx: typer.Context,
    storage: str = typer.Argument(..., help="Storage ID (e.g. local-zfs)"),
    name: str = typer.Argument(..., help="Volume name"),
    size: int = typer.Option(..., "--size", "-s", min=1, help="Size in GB"),
) -> None:
    """Allocate an unattached volume."""
    try:
        async with open_backend(ctx) as backend:
            volume_id = await run_with_spinner(
                f"Allocating {size}G on {storage}...", backend.create_volume(storage, name, size)
            )
        console.print(volume_id)
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("info")
@async_to_sync
async def volume_info(
    ctx: typer.Context, volume_id: str = typer.Argument(..., help="Volume ID (storage:name)")
) -> None:
    """Show where a volume lives."""
    try:
        async with open_backend(ctx) as backend:
            info = await backend.volume_info(volume_id)
        console.print(f"[cyan]Volume:[/cyan]  {info.volume_id}")
        console.print(f"[cyan]Storage:[/cyan] {info.storage}")
        console.print(f"[cyan]Path:[/cyan]    {info.path or '-'}")
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("attach")
@async_to_sync
async def attach_volume(
    ctx: typer.Context,
    vmid: int = typer.Argument(..., help="VM ID"),
    volume_id: str = typer.Argument(..., help="Volume ID (storage:name)"),
    slot: str = typer.Option("scsi1", "--slot", help="Disk slot"),
) -> None:
    """Attach a volume to a VM."""
    try:
        async with open_backend(ctx) as backend:
            await run_with_spinner(
                f"Attaching {volume_id} to VM {vmid}...",
                backend.attach_volume(vmid, volume_id, slot),
            )
        print_success(f"{volume_id} attached to VM {vmid} as {slot}")
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("detach")
@async_to_sync
async def detach_volume(
    ctx: typer.Context,
    vmid: int = typer.Argument(..., help="VM ID"),
    slot: str = typer.Argument(..., help="Disk slot (e.g. scsi1)"),
) -> None:
    """Detach the volume in a slot."""
    try:
        async with open_backend(ctx) as backend:
            await run_with_spinner(
                f"Detaching {slot} from VM {vmid}...", backend.detach_volume(vmid, slot)
            )
        print_success(f"{slot} detached from VM {vmid}")
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("delete")
@async_to_sync
async def delete_volume(
    ctx: typer.Context,
    volume_id: str = typer.Argument(..., help="Volume ID (storage:name)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Free a volume."""
    if not confirm_action(f"Delete volume {volume_id}?", yes):
        return
    try:
        async with open_backend(ctx) as backend:
            await run_with_spinner(f"Deleting {volume_id}...", backend.delete_volume(volume_id))
        print_success(f"Volume {volume_id} deleted")
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("snapshot")
@async_to_sync
async def snapshot_volume(
    ctx: typer.Context,
    volume_id: str = typer.Argument(..., help="Volume ID (storage:name)"),
    name: str = typer.Argument(..., help="Snapshot name"),
) -> None:
    """Snapshot a ZFS volume."""
    try:
        async with open_backend(ctx) as backend:
            await run_with_spinner(
                f"Snapshotting {volume_id}...", backend.volume_snapshot_create(volume_id, name)
            )
        print_success(f"Snapshot '{name.strip()}' of {volume_id} created")
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("restore")
@async_to_sync
async def restore_volume(
    ctx: typer.Context,
    volume_id: str = typer.Argument(..., help="Volume ID (storage:name)"),
    name: str = typer.Argument(..., help="Snapshot name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Roll a ZFS volume back to a snapshot."""
    if not confirm_action(f"Restore {volume_id} to snapshot '{name}'?", yes):
        return
    try:
        async with open_backend(ctx) as backend:
            await run_with_spinner(
                f"Restoring {volume_id}...", backend.volume_snapshot_restore(volume_id, name)
            )
        print_success(f"{volume_id} restored to '{name.strip()}'")
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("delete-snapshot")
@async_to_sync
async def delete_volume_snapshot(
    ctx: typer.Context,
    volume_id: str = typer.Argument(..., help="Volume ID (storage:name)"),
    name: str = typer.Argument(..., help="Snapshot name"),
) -> None:
    """Delete a ZFS volume snapshot."""
    try:
        async with open_backend(ctx) as backend:
            await run_with_spinner(
                f"Deleting snapshot '{name}'...", backend.volume_snapshot_delete(volume_id, name)
            )
        print_success(f"Snapshot '{name.strip()}' of {volume_id} deleted")
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("clone")
@async_to_sync
async def clone_volume(
    ctx: typer.Context,
    source: str = typer.Argument(..., help="Source volume ID"),
    target: str = typer.Argument(..., help="Target volume ID on the same storage"),
    snapshot: str = typer.Option("", "--snapshot", "-s", help="Clone from this snapshot"),
) -> None:
    """Clone a ZFS volume, optionally from a snapshot."""
    try:
        async with open_backend(ctx) as backend:
            if snapshot:
                call = backend.volume_clone_from_snapshot(source, snapshot, target)
            else:
                call = backend.volume_clone(source, target)
            await run_with_spinner(f"Cloning {source} to {target}...", call)
        print_success(f"{source} cloned to {target}")
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)
