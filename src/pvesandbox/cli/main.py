"""Main CLI application."""

import typer
from rich.console import Console

from .. import __version__
from ..utils.log import setup_logging
from . import config, snippet, vm, volume

console = Console()

app = typer.Typer(
    name="pvesandbox",
    help="Provision and drive Proxmox VE sandbox VMs",
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)

app.add_typer(config.app, name="config")
app.add_typer(vm.app, name="vm")
app.add_typer(volume.app, name="volume")
app.add_typer(snippet.app, name="snippet")


def version_callback(value: bool) -> None:
    if value:
        console.print(f"pvesandbox version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    profile: str = typer.Option(None, "--profile", "-p", help="Profile to use"),
    verbose: bool = typer.Option(False, "--verbose", help="Log requests and commands"),
    version: bool = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """pvesandbox - Proxmox VE backend for short-lived sandbox VMs.

    Get started:
        pvesandbox config add lab --backend api   # Set up a profile
        pvesandbox vm validate-template 9000      # Check a template
        pvesandbox --help                         # Show all commands
    """
    setup_logging(verbose)
    ctx.obj = {"profile": profile}


if __name__ == "__main__":
    app()
