"""Guest IP discovery shared by the API and shell backends.

Two sources are polled alternately with exponential backoff: DHCP lease
files on the Proxmox host (matched by the VM's NIC MACs) and the QEMU
guest agent. Leases are checked first since they usually appear well
before the agent starts inside the guest.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable

from .api.classify import is_guest_agent_not_running
from .api.exceptions import GuestIPNotFoundError, PVESandboxError
from .utils.helpers import next_backoff
from .utils.leases import expand_lease_paths, find_lease_ip
from .utils.network import IPv4Address, IPv4Network, parse_netblock, select_ip

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 30

MACLoader = Callable[[], Awaitable[list[str]]]
AgentQuery = Callable[[], Awaitable[list[IPv4Address]]]
Sleeper = Callable[[float], Awaitable[Any]]


class GuestIPDiscovery:
    """Poll DHCP leases and the guest agent until the VM reports an address."""

    def __init__(
        self,
        agent_cidr: str = "",
        lease_paths: list[str] | None = None,
        initial_wait: float = 0.5,
        max_wait: float = 10.0,
        attempts: int = DEFAULT_ATTEMPTS,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        """Initialize discovery.

        Args:
            agent_cidr: Preferred netblock for the returned address
            lease_paths: Lease files or globs; built-in defaults when empty
            initial_wait: First pause between rounds, in seconds
            max_wait: Upper bound for the pause
            attempts: Rounds to try when no timeout is given
            sleep: Awaitable sleep, replaced in tests
        """
        self.agent_cidr = agent_cidr
        self.lease_paths = list(lease_paths or [])
        self.initial_wait = initial_wait
        self.max_wait = max_wait
        self.attempts = attempts if attempts > 0 else DEFAULT_ATTEMPTS
        self._sleep = sleep

    def validate(self) -> None:
        """Raise InvalidArgumentError if the agent CIDR is malformed."""
        parse_netblock(self.agent_cidr)

    async def discover(
        self,
        vmid: int,
        load_macs: MACLoader,
        query_agent: AgentQuery,
        timeout: float | None = None,
    ) -> str:
        """Discover the guest IPv4 address of a VM.

        Args:
            vmid: VM being probed, for log messages
            load_macs: Returns the VM's NIC MACs; called once
            query_agent: Returns the addresses reported by the guest agent
            timeout: Total budget in seconds; ``attempts`` rounds when None

        Returns:
            The selected IPv4 address

        Raises:
            InvalidArgumentError: If the agent CIDR is malformed
            GuestIPNotFoundError: If neither source produced an address in time
        """
        netblock = parse_netblock(self.agent_cidr)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None

        lease_files = expand_lease_paths(self.lease_paths)
        dhcp_err: object = "no lease found"
        agent_err: object = "no address reported"
        macs: list[str] = []
        if not lease_files:
            dhcp_err = "no DHCP lease files configured"
        else:
            try:
                macs = await load_macs()
            except PVESandboxError as e:
                dhcp_err = e
                logger.debug("VM %s: cannot read NIC MACs: %s", vmid, e)
            else:
                if not macs:
                    dhcp_err = "no NIC MAC addresses in VM config"

        wait = self.initial_wait
        attempt = 0
        while True:
            attempt += 1
            if macs:
                ip, err = await self._lease_ip(lease_files, macs, netblock)
                if ip:
                    logger.debug("VM %s: address %s from DHCP lease", vmid, ip)
                    return ip
                dhcp_err = err or "no lease found"

            try:
                ip = select_ip(await query_agent(), netblock)
            except PVESandboxError as e:
                agent_err = e
                if not is_guest_agent_not_running(e):
                    logger.debug("VM %s: guest agent query failed: %s", vmid, e)
            else:
                if ip:
                    logger.debug("VM %s: address %s from guest agent", vmid, ip)
                    return ip
                agent_err = "no address reported"

            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                pause = min(wait, remaining)
            else:
                if attempt >= self.attempts:
                    break
                pause = wait
            await self._sleep(pause)
            wait = next_backoff(wait, self.max_wait)

        raise GuestIPNotFoundError(
            f"guest IP not found for vm {vmid}: dhcp={dhcp_err} qemu-guest-agent={agent_err}"
        )

    async def _lease_ip(
        self, paths: list[str], macs: list[str], netblock: IPv4Network | None
    ) -> tuple[str, str]:
        read_err = ""
        for path in paths:
            try:
                content = await asyncio.to_thread(Path(path).read_text, errors="replace")
            except FileNotFoundError:
                continue
            except OSError as e:
                read_err = f"read {path}: {e}"
                continue
            ip = find_lease_ip(content, macs, netblock)
            if ip:
                return ip, ""
        return "", read_err
