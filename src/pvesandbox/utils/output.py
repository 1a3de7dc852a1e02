"""Output formatting utilities using Rich."""

from rich.console import Console
from rich.prompt import Confirm

console = Console()


def print_error(msg: str) -> None:
    """Print an error message to the console.

    Args:
        msg: The error message to display.
    """
    console.print(f"[bold red]Error:[/bold red] {msg}")


def print_success(msg: str) -> None:
    """Print a success message to the console.

    Args:
        msg: The success message to display.
    """
    console.print(f"[bold green]✓[/bold green] {msg}")


def print_info(msg: str) -> None:
    """Print an info message to the console."""
    console.print(f"[cyan]{msg}[/cyan]")


def print_cancelled(msg: str = "Cancelled") -> None:
    console.print(f"[yellow]{msg}[/yellow]")


def confirm(message: str, default: bool = False) -> bool:
    """Prompt user for confirmation.

    Args:
        message: The confirmation message to display.
        default: Default choice if user just presses enter.

    Returns:
        True if user confirmed, False otherwise.
    """
    return Confirm.ask(message, default=default)


def get_status_color(status: str) -> str:
    """Get the Rich color name for a VM status string.

    Args:
        status: The status string (e.g., 'running', 'stopped').

    Returns:
        Rich color name ('green', 'red' or 'yellow').
    """
    status_lower = status.lower()
    if status_lower == "running":
        return "green"
    elif status_lower == "stopped":
        return "red"
    return "yellow"
