"""VM lifecycle commands."""

import typer
from rich.table import Table

from ..api.exceptions import PVESandboxError
from ..models.vm import VMConfig
from ..utils import (
    console,
    get_status_color,
    print_error,
    print_info,
    print_success,
)
from ..utils.helpers import async_to_sync, ordered_group
from ._shared import confirm_action, open_backend, run_with_spinner

_CMD_ORDER = [
    "start", "stop", "suspend", "resume",
    "clone", "configure", "destroy",
    "snapshot",
    "status", "stats", "ip", "config", "validate-template",
]

app = typer.Typer(help="Manage sandbox VMs", no_args_is_help=True, cls=ordered_group(_CMD_ORDER))


async def _power(ctx: typer.Context, vmid: int, action: str, done: str) -> None:
    try:
        async with open_backend(ctx) as backend:
            call = getattr(backend, action)
            await run_with_spinner(f"{action.capitalize()} VM {vmid}...", call(vmid))
        print_success(f"VM {vmid} {done}")
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("start")
@async_to_sync
async def start_vm(ctx: typer.Context, vmid: int = typer.Argument(..., help="VM ID")) -> None:
    """Start a VM."""
    await _power(ctx, vmid, "start", "started")


@app.command("stop")
@async_to_sync
async def stop_vm(ctx: typer.Context, vmid: int = typer.Argument(..., help="VM ID")) -> None:
    """Hard-stop a VM."""
    await _power(ctx, vmid, "stop", "stopped")


@app.command("suspend")
@async_to_sync
async def suspend_vm(ctx: typer.Context, vmid: int = typer.Argument(..., help="VM ID")) -> None:
    """Pause a VM in memory."""
    await _power(ctx, vmid, "suspend", "suspended")


@app.command("resume")
@async_to_sync
async def resume_vm(ctx: typer.Context, vmid: int = typer.Argument(..., help="VM ID")) -> None:
    """Resume a suspended VM."""
    await _power(ctx, vmid, "resume", "resumed")


@app.command("destroy")
@async_to_sync
async def destroy_vm(
    ctx: typer.Context,
    vmid: int = typer.Argument(..., help="VM ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Destroy a VM and purge it from jobs and HA."""
    if not confirm_action(f"Destroy VM {vmid}?", yes):
        return
    await _power(ctx, vmid, "destroy", "destroyed")


@app.command("clone")
@async_to_sync
async def clone_vm(
    ctx: typer.Context,
    template: int = typer.Argument(..., help="Template VM ID"),
    target: int = typer.Argument(..., help="New VM ID"),
    name: str = typer.Option("", "--name", "-n", help="Name of the new VM"),
) -> None:
    """Clone a template into a new VM."""
    try:
        async with open_backend(ctx) as backend:
            await run_with_spinner(
                f"Cloning {template} to {target}...", backend.clone(template, target, name)
            )
        print_success(f"VM {target} cloned from template {template}")
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("configure")
@async_to_sync
async def configure_vm(
    ctx: typer.Context,
    vmid: int = typer.Argument(..., help="VM ID"),
    name: str = typer.Option("", "--name", help="VM name"),
    cores: int = typer.Option(0, "--cores", min=0, help="CPU cores"),
    memory: int = typer.Option(0, "--memory", min=0, help="Memory in MB"),
    bridge: str = typer.Option("", "--bridge", help="Bridge for net0"),
    net_model: str = typer.Option("", "--net-model", help="NIC model for net0 (default virtio)"),
    firewall: bool = typer.Option(None, "--firewall/--no-firewall", help="Toggle net0 firewall"),
    firewall_group: str = typer.Option("", "--firewall-group", help="Firewall group for net0"),
    cloud_init: str = typer.Option("", "--cloud-init", help="cicustom value or snippet reference"),
    cpu_pinning: str = typer.Option("", "--cpu-pinning", help="Host CPU list (e.g. 0-3)"),
    scsihw: str = typer.Option("", "--scsihw", help="SCSI controller type"),
    disk_size: int = typer.Option(0, "--disk-size", min=0, help="Grow root disk to GB"),
    root_disk: str = typer.Option("", "--root-disk", help="Root disk slot (auto-detected)"),
) -> None:
    """Apply settings to a VM and grow its root disk."""
    cfg = VMConfig(
        name=name,
        cores=cores,
        memory_mb=memory,
        bridge=bridge,
        net_model=net_model,
        firewall=firewall,
        firewall_group=firewall_group,
        cloud_init=cloud_init,
        cpu_pinning=cpu_pinning,
        scsihw=scsihw,
        root_disk_gb=disk_size,
        root_disk=root_disk,
    )
    try:
        async with open_backend(ctx) as backend:
            await run_with_spinner(f"Configuring VM {vmid}...", backend.configure(vmid, cfg))
        print_success(f"VM {vmid} configured")
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("status")
@async_to_sync
async def vm_status(ctx: typer.Context, vmid: int = typer.Argument(..., help="VM ID")) -> None:
    """Show a VM's power state."""
    try:
        async with open_backend(ctx) as backend:
            status = await backend.status(vmid)
        color = get_status_color(status.value)
        console.print(f"VM {vmid}: [{color}]{status.value}[/{color}]")
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("stats")
@async_to_sync
async def vm_stats(ctx: typer.Context, vmid: int = typer.Argument(..., help="VM ID")) -> None:
    """Show current CPU usage."""
    try:
        async with open_backend(ctx) as backend:
            stats = await backend.current_stats(vmid)
        console.print(f"VM {vmid}: cpu {stats.cpu_usage * 100:.1f}%")
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("ip")
@async_to_sync
async def vm_ip(
    ctx: typer.Context,
    vmid: int = typer.Argument(..., help="VM ID"),
    timeout: float = typer.Option(None, "--timeout", "-t", help="Give up after N seconds"),
) -> None:
    """Discover a VM's guest IPv4 address."""
    try:
        async with open_backend(ctx) as backend:
            ip = await run_with_spinner(
                f"Waiting for VM {vmid} address...", backend.guest_ip(vmid, timeout=timeout)
            )
        console.print(ip)
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("config")
@async_to_sync
async def vm_config(ctx: typer.Context, vmid: int = typer.Argument(..., help="VM ID")) -> None:
    """Print a VM's configuration."""
    try:
        async with open_backend(ctx) as backend:
            config = await backend.vm_config(vmid)
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)

    table = Table(title=f"VM {vmid} config", show_header=True, header_style="bold cyan")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key in sorted(config):
        table.add_row(key, config[key])
    console.print(table)


@app.command("validate-template")
@async_to_sync
async def validate_template(
    ctx: typer.Context, template: int = typer.Argument(..., help="Template VM ID")
) -> None:
    """Check a template has the guest agent and a cloud-init drive."""
    try:
        async with open_backend(ctx) as backend:
            await backend.validate_template(template)
        print_success(f"Template {template} is usable")
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)


snapshot_app = typer.Typer(
    help="Manage VM snapshots",
    no_args_is_help=True,
    cls=ordered_group(["create", "delete", "rollback", "list"]),
)
app.add_typer(snapshot_app, name="snapshot")


@snapshot_app.command("list")
@async_to_sync
async def list_snapshots(ctx: typer.Context, vmid: int = typer.Argument(..., help="VM ID")) -> None:
    """List VM snapshots."""
    try:
        async with open_backend(ctx) as backend:
            snapshots = await backend.snapshot_list(vmid)
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if not snapshots:
        print_info(f"No snapshots found for VM {vmid}")
        return
    table = Table(title=f"Snapshots for VM {vmid}", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Date")
    for snap in snapshots:
        date = snap.created_at.strftime("%Y-%m-%d %H:%M:%S") if snap.created_at else "-"
        table.add_row(snap.name, snap.description or "-", date)
    console.print(table)


@snapshot_app.command("create")
@async_to_sync
async def create_snapshot(
    ctx: typer.Context,
    vmid: int = typer.Argument(..., help="VM ID"),
    name: str = typer.Argument(..., help="Snapshot name"),
) -> None:
    """Take a disk-only snapshot."""
    try:
        async with open_backend(ctx) as backend:
            await run_with_spinner(
                f"Creating snapshot '{name}'...", backend.snapshot_create(vmid, name)
            )
        print_success(f"Snapshot '{name.strip()}' created for VM {vmid}")
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)


@snapshot_app.command("rollback")
@async_to_sync
async def rollback_snapshot(
    ctx: typer.Context,
    vmid: int = typer.Argument(..., help="VM ID"),
    name: str = typer.Argument(..., help="Snapshot name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Roll a VM back to a snapshot."""
    if not confirm_action(f"Rollback VM {vmid} to snapshot '{name}'?", yes):
        return
    try:
        async with open_backend(ctx) as backend:
            await run_with_spinner(
                f"Rolling back to '{name}'...", backend.snapshot_rollback(vmid, name)
            )
        print_success(f"VM {vmid} rolled back to '{name.strip()}'")
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)


@snapshot_app.command("delete")
@async_to_sync
async def delete_snapshot(
    ctx: typer.Context,
    vmid: int = typer.Argument(..., help="VM ID"),
    name: str = typer.Argument(..., help="Snapshot name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete a VM snapshot."""
    if not confirm_action(f"Delete snapshot '{name}' of VM {vmid}?", yes):
        return
    try:
        async with open_backend(ctx) as backend:
            await run_with_spinner(
                f"Deleting snapshot '{name}'...", backend.snapshot_delete(vmid, name)
            )
        print_success(f"Snapshot '{name.strip()}' deleted")
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)
