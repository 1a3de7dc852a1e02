"""Cloud-init snippet commands."""

from pathlib import Path

import typer

from ..api.exceptions import PVESandboxError
from ..models.snippet import CloudInitSnippet, SnippetInput
from ..snippets import SnippetStore
from ..utils import console, print_error, print_success
from ._shared import load_settings

app = typer.Typer(help="Manage cloud-init snippets", no_args_is_help=True)


def _store(ctx: typer.Context) -> SnippetStore:
    settings = load_settings(ctx)
    return SnippetStore(storage=settings.snippet_storage, directory=settings.snippets_dir)


@app.command("create")
def create_snippet(
    ctx: typer.Context,
    vmid: int = typer.Argument(..., help="VM the snippet is for"),
    ssh_key_file: Path = typer.Option(
        ..., "--ssh-key-file", "-k", exists=True, dir_okay=False, help="Public key for the agent user"
    ),
    token: str = typer.Option(..., "--token", help="Bootstrap token"),
    controller: str = typer.Option(..., "--controller", help="Controller URL"),
    hostname: str = typer.Option("", "--hostname", help="Guest hostname (default sandbox-VMID)"),
) -> None:
    """Write a cloud-init user-data snippet and print its reference."""
    try:
        store = _store(ctx)
        snippet = store.create(
            SnippetInput(
                vmid=vmid,
                hostname=hostname,
                ssh_public_key=ssh_key_file.read_text(),
                bootstrap_token=token,
                controller_url=controller,
            )
        )
    except OSError as e:
        print_error(f"Cannot read {ssh_key_file}: {e}")
        raise typer.Exit(1)
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)

    print_success(f"Snippet written to {snippet.full_path}")
    console.print(snippet.storage_path)


@app.command("delete")
def delete_snippet(
    ctx: typer.Context,
    reference: str = typer.Argument(..., help="Snippet filename or storage:snippets/FILE reference"),
) -> None:
    """Remove a snippet file."""
    filename = Path(reference.rpartition(":snippets/")[2]).name
    if not filename:
        print_error(f"Invalid snippet reference '{reference}'")
        raise typer.Exit(1)
    try:
        store = _store(ctx)
        store.delete(
            CloudInitSnippet(
                vmid=0,
                filename=filename,
                full_path=str(Path(store.directory) / filename),
                storage=store.storage,
                storage_path=f"{store.storage}:snippets/{filename}",
            )
        )
    except PVESandboxError as e:
        print_error(str(e))
        raise typer.Exit(1)
    print_success(f"Snippet {filename} removed")
