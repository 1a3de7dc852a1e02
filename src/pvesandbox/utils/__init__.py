"""Utility functions and helpers."""

from .helpers import (
    async_to_sync,
    next_backoff,
    ordered_group,
)
from .output import (
    confirm,
    console,
    get_status_color,
    print_cancelled,
    print_error,
    print_info,
    print_success,
)

__all__ = [
    "async_to_sync",
    "confirm",
    "console",
    "get_status_color",
    "next_backoff",
    "ordered_group",
    "print_cancelled",
    "print_error",
    "print_info",
    "print_success",
]
