"""Profile management commands."""

from getpass import getpass

import typer
from pydantic import ValidationError
from rich.panel import Panel
from rich.table import Table

from ..api.exceptions import PVESandboxError
from ..config import ConfigManager
from ..models.config import (
    DEFAULT_API_URL,
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_SNIPPET_STORAGE,
    DEFAULT_SNIPPETS_DIR,
    ProxmoxSettings,
)
from ..utils import confirm, console, print_cancelled, print_error, print_info, print_success
from ..utils.helpers import ordered_group

app = typer.Typer(
    help="Manage pvesandbox profiles",
    no_args_is_help=True,
    cls=ordered_group(["add", "remove", "use", "list", "show"]),
)


def _mask(token: str | None) -> str:
    if not token:
        return "-"
    token_id, _, _ = token.partition("=")
    return f"{token_id}=****"


def _render_profile_panel(name: str, settings: ProxmoxSettings, is_default: bool = False) -> Panel:
    """Build a Rich Panel for a profile."""
    lines = ["[bold]── Transport ──[/bold]"]
    lines.append(f"[bold]Backend:[/bold]     {settings.backend}")
    if settings.backend == "api":
        lines.append(f"[bold]API URL:[/bold]     {settings.api_url}")
        lines.append(f"[bold]Token:[/bold]       {_mask(settings.api_token)}")
        tls = "insecure" if settings.tls_insecure else settings.tls_ca_path or "system CAs"
        lines.append(f"[bold]TLS:[/bold]         {tls}")
        lines.append(f"[bold]Fallback:[/bold]    {'shell' if settings.shell_fallback else 'none'}")
    else:
        lines.append(f"[bold]Tools:[/bold]       {settings.qm_path}, {settings.pvesh_path}, {settings.pvesm_path}")
        lines.append(f"[bold]Via bash:[/bold]    {'Yes' if settings.bash_runner else 'No'}")
    lines.append(f"[bold]Node:[/bold]        {settings.node or 'auto-detect'}")
    lines.append(f"[bold]Timeout:[/bold]     {settings.command_timeout:g}s")

    lines.append("")
    lines.append("[bold]── Sandboxes ──[/bold]")
    lines.append(f"[bold]Clone mode:[/bold]  {settings.clone_mode}")
    lines.append(f"[bold]Agent CIDR:[/bold]  {settings.agent_cidr or '-'}")
    leases = ", ".join(settings.dhcp_lease_paths) or "defaults"
    lines.append(f"[bold]Leases:[/bold]      {leases}")
    lines.append(f"[bold]Snippets:[/bold]    {settings.snippet_storage} ({settings.snippets_dir})")

    if is_default:
        lines.append("")
        lines.append("[green]Default profile[/green]")

    return Panel("\n".join(lines), title=f"Profile: {name}", border_style="blue")


@app.command("add")
def add_profile(
    name: str = typer.Argument(..., help="Profile name"),
    backend: str = typer.Option("shell", "--backend", "-b", help="Transport: api or shell"),
    api_url: str = typer.Option(DEFAULT_API_URL, "--api-url", help="Proxmox API URL"),
    api_token: str = typer.Option(
        None, "--api-token", help="USER@REALM!TOKENID=SECRET (prompted when omitted)"
    ),
    node: str = typer.Option("", "--node", "-n", help="Node name (auto-detected when empty)"),
    tls_insecure: bool = typer.Option(False, "--tls-insecure", help="Skip TLS verification"),
    tls_ca_path: str = typer.Option("", "--tls-ca", help="PEM bundle added to system CAs"),
    clone_mode: str = typer.Option("linked", "--clone-mode", help="linked or full"),
    agent_cidr: str = typer.Option("", "--agent-cidr", help="Preferred guest netblock"),
    command_timeout: float = typer.Option(
        DEFAULT_COMMAND_TIMEOUT, "--timeout", help="Per-request/command timeout (seconds)"
    ),
    lease_paths: list[str] = typer.Option(
        None, "--lease-path", help="DHCP lease file or glob (repeatable)"
    ),
    shell_fallback: bool = typer.Option(
        False, "--shell-fallback", help="Use qm/pvesm for volume ops the API lacks"
    ),
    bash_runner: bool = typer.Option(True, "--bash/--no-bash", help="Run tools through bash"),
    snippets_dir: str = typer.Option(DEFAULT_SNIPPETS_DIR, "--snippets-dir", help="Snippets directory"),
    snippet_storage: str = typer.Option(
        DEFAULT_SNIPPET_STORAGE, "--snippet-storage", help="Storage holding snippets"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Save without confirmation"),
) -> None:
    """Add or replace a profile."""
    config_manager = ConfigManager()

    try:
        if backend.strip().lower() == "api" and not api_token:
            api_token = getpass("API token (USER@REALM!TOKENID=SECRET): ").strip()

        try:
            settings = ProxmoxSettings(
                backend=backend,
                api_url=api_url,
                api_token=api_token or None,
                node=node,
                tls_insecure=tls_insecure,
                tls_ca_path=tls_ca_path,
                clone_mode=clone_mode,
                agent_cidr=agent_cidr,
                command_timeout=command_timeout,
                dhcp_lease_paths=lease_paths or [],
                shell_fallback=shell_fallback,
                bash_runner=bash_runner,
                snippets_dir=snippets_dir,
                snippet_storage=snippet_storage,
            )
        except ValidationError as e:
            print_error(f"Invalid profile: {e}")
            raise typer.Exit(1)

        console.print(_render_profile_panel(name, settings))
        if not yes and not confirm("Save this profile?", default=True):
            print_cancelled()
            raise typer.Exit()

        config_manager.add_profile(name, settings)
        if config_manager.get().default_profile == name:
            print_success(f"Profile '{name}' added (set as default)")
        else:
            print_success(f"Profile '{name}' added")

    except KeyboardInterrupt:
        console.print()
        print_cancelled()
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("remove")
def remove_profile(
    name: str = typer.Argument(..., help="Profile name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Remove a profile."""
    config_manager = ConfigManager()

    try:
        if not yes and not confirm(f"Remove profile '{name}'?", default=False):
            print_cancelled()
            return
        config_manager.remove_profile(name)
        print_success(f"Profile '{name}' removed")
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("use")
def use_profile(name: str = typer.Argument(..., help="Profile name")) -> None:
    """Set the default profile."""
    config_manager = ConfigManager()

    try:
        config_manager.set_default_profile(name)
        print_success(f"Default profile set to '{name}'")
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("list")
def list_profiles() -> None:
    """List all profiles."""
    config_manager = ConfigManager()

    try:
        config = config_manager.get()
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if not config.profiles:
        print_info("No profiles configured. Run 'pvesandbox config add' to create one.")
        return

    table = Table(title="Configured Profiles", show_header=True, header_style="bold cyan")
    table.add_column("Profile", style="cyan")
    table.add_column("Backend")
    table.add_column("Target")
    table.add_column("Node")
    table.add_column("Default", style="green")
    for profile_name, settings in config.profiles.items():
        target = settings.api_url if settings.backend == "api" else "local tools"
        table.add_row(
            profile_name,
            settings.backend,
            target,
            settings.node or "auto",
            "✓" if profile_name == config.default_profile else "",
        )
    console.print(table)


@app.command("show")
def show_profile(
    name: str = typer.Argument(None, help="Profile name (default profile when omitted)"),
) -> None:
    """Show profile details."""
    config_manager = ConfigManager()

    try:
        settings = config_manager.get_profile(name)
        config = config_manager.get()
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)

    name = name or config.default_profile or ""
    console.print(_render_profile_panel(name, settings, name == config.default_profile))
