"""Waiting for asynchronous Proxmox tasks (UPIDs)."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from ..models.vm import TaskStatus
from ..utils.helpers import next_backoff
from .exceptions import TaskFailedError

logger = logging.getLogger(__name__)

UPID_PREFIX = "UPID:"

StatusFetcher = Callable[[str, str], Awaitable[dict[str, Any]]]
Sleeper = Callable[[float], Awaitable[Any]]


def parse_task_upid(data: Any) -> str | None:
    """Return the task UPID carried by a mutating response, if any.

    Args:
        data: The unwrapped ``data`` field of an API response

    Returns:
        The UPID string, or None when the call completed synchronously
    """
    if isinstance(data, str):
        upid = data.strip()
        if upid.startswith(UPID_PREFIX):
            return upid
    return None


def task_succeeded(status: TaskStatus) -> bool:
    """Return True if a stopped task reported success."""
    exitstatus = (status.exitstatus or "").strip()
    return exitstatus == "" or exitstatus.upper() == "OK"


@dataclass
class PendingTask:
    """A remote task that has been started but not yet awaited."""

    node: str
    upid: str


class TaskWaiter:
    """Poll task status with exponential backoff until it stops."""

    def __init__(
        self,
        fetch_status: StatusFetcher,
        sleep: Sleeper = asyncio.sleep,
        initial_wait: float = 0.5,
        max_wait: float = 5.0,
    ) -> None:
        """Initialize the waiter.

        Args:
            fetch_status: Coroutine returning the raw task status for (node, upid)
            sleep: Awaitable sleep, replaced in tests
            initial_wait: First poll interval in seconds
            max_wait: Upper bound for the poll interval
        """
        self._fetch_status = fetch_status
        self._sleep = sleep
        self.initial_wait = initial_wait
        self.max_wait = max_wait

    async def wait(self, node: str, data: Any) -> None:
        """Wait for the task referenced by a response body.

        Responses that do not carry a UPID completed synchronously and
        return immediately.

        Args:
            node: Node the task runs on
            data: Unwrapped response data of the mutating call

        Raises:
            TaskFailedError: If the task stopped with a non-OK exit status
        """
        upid = parse_task_upid(data)
        if upid is None:
            return
        await self.wait_task(PendingTask(node=node, upid=upid))

    async def wait_task(self, task: PendingTask) -> None:
        """Poll a pending task until it reaches a terminal state."""
        wait = self.initial_wait
        while True:
            raw = await self._fetch_status(task.node, task.upid)
            status = TaskStatus.model_validate(raw or {})
            if status.status == "stopped":
                if task_succeeded(status):
                    logger.debug("Task %s finished", task.upid)
                    return
                raise TaskFailedError(task.upid, status.exitstatus or "")
            logger.debug("Task %s still %s, next poll in %.2fs", task.upid, status.status, wait)
            await self._sleep(wait)
            wait = next_backoff(wait, self.max_wait)
