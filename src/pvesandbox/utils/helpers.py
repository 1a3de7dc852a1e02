"""Helper utilities."""

import asyncio
from functools import wraps
from typing import Any, Callable

from typer.core import TyperGroup


def async_to_sync(func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator to run async functions synchronously."""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        return asyncio.run(func(*args, **kwargs))

    return wrapper


def ordered_group(order: list[str]) -> type[TyperGroup]:
    """Create a TyperGroup subclass that orders commands."""

    class _OrderedGroup(TyperGroup):
        def list_commands(self, ctx: Any) -> list[str]:
            commands = super().list_commands(ctx)
            rank = {n: i for i, n in enumerate(order)}
            return sorted(commands, key=lambda n: rank.get(n, 99))

    return _OrderedGroup


def next_backoff(current: float, maximum: float) -> float:
    """Double a poll interval, saturating at ``maximum``.

    Args:
        current: Interval just waited, in seconds
        maximum: Upper bound, in seconds

    Returns:
        Next interval in seconds
    """
    if current <= 0:
        return maximum
    return min(current * 2, maximum)
