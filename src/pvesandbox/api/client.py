"""Proxmox VE API client."""

import asyncio
import logging
from typing import Any
from urllib.parse import quote

import httpx

from .auth import AuthHandler
from .exceptions import (
    APIError,
    AuthenticationError,
    NetworkError,
    PermissionError,
    TimeoutError,
)

logger = logging.getLogger(__name__)

API_PATH = "/api2/json"
DEFAULT_TIMEOUT = 120.0


def normalize_base_url(url: str) -> str:
    """Strip trailing slashes and make sure the URL ends in ``/api2/json``."""
    url = url.strip().rstrip("/")
    if not url.endswith(API_PATH):
        url = f"{url}{API_PATH}"
    return url


def _seg(value: Any) -> str:
    """Escape one URL path segment, keeping colons readable."""
    return quote(str(value), safe=":")


class ProxmoxClient:
    """Async client for Proxmox VE API."""

    def __init__(
        self,
        base_url: str,
        api_token: str,
        tls_insecure: bool = False,
        tls_ca_path: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize Proxmox client.

        Args:
            base_url: Cluster URL, ``/api2/json`` is appended when missing
            api_token: API token, ``USER@REALM!TOKENID=SECRET``
            tls_insecure: Skip certificate verification
            tls_ca_path: Extra PEM bundle to trust
            timeout: Per-request timeout in seconds
            transport: Custom httpx transport (tests)

        Raises:
            ConfigError: If the token or TLS settings are invalid
        """
        self.base_url = normalize_base_url(base_url)
        self.auth_handler = AuthHandler(api_token, tls_insecure, tls_ca_path)
        self.timeout = timeout
        self._headers = self.auth_handler.get_token_headers()
        self._verify = self.auth_handler.ssl_verify()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "ProxmoxClient":
        """Async context manager entry.

        Returns:
            Self
        """
        self._ensure_connected()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the client connection."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_connected(self) -> httpx.AsyncClient:
        """Create the HTTP client on first use.

        Returns:
            HTTP client
        """
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=self._headers,
                verify=self._verify,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        retry_count: int | None = None,
    ) -> Any:
        """Make an API request.

        Reads are retried on transient network failures; writes are sent once.

        Args:
            method: HTTP method
            endpoint: API endpoint (without /api2/json prefix)
            params: Query parameters
            data: Form-encoded request body
            retry_count: Attempts for transient failures

        Returns:
            The ``data`` member of the response envelope

        Raises:
            APIError: On API errors
            NetworkError: On network errors
            TimeoutError: On timeout
        """
        client = self._ensure_connected()
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        if retry_count is None:
            retry_count = 3 if method == "GET" else 1

        for attempt in range(retry_count):
            logger.debug("%s %s", method, endpoint)
            try:
                response = await client.request(method, url, params=params, data=data)
            except httpx.TimeoutException as e:
                if attempt < retry_count - 1:
                    await asyncio.sleep(2**attempt)
                    continue
                raise TimeoutError(f"Request to {endpoint} timed out") from e
            except httpx.RequestError as e:
                if attempt < retry_count - 1:
                    await asyncio.sleep(2**attempt)
                    continue
                raise NetworkError(f"Network error: {e}") from e

            return self._handle_response(response)

        raise APIError("Max retries exceeded")

    def _handle_response(self, response: httpx.Response) -> Any:
        if response.status_code != 200:
            message = (
                f"API error (status {response.status_code}): "
                f"{self._extract_error_message(response)}"
            )
            if response.status_code == 401:
                raise AuthenticationError(message)
            if response.status_code == 403:
                raise PermissionError(message)
            raise APIError(message, status_code=response.status_code)

        try:
            result = response.json()
        except ValueError:
            return response.text
        if isinstance(result, dict):
            return result.get("data")
        return result

    def _extract_error_message(self, response: httpx.Response) -> str:
        """Extract error message from response.

        Args:
            response: HTTP response

        Returns:
            Error message
        """
        try:
            data = response.json()
        except ValueError:
            return response.text.strip() or response.reason_phrase or f"HTTP {response.status_code}"
        if isinstance(data, dict):
            errors = data.get("errors")
            if isinstance(errors, dict) and errors:
                return "; ".join(f"{k}: {v}" if k else str(v) for k, v in errors.items())
            if data.get("message"):
                return str(data["message"]).strip()
        return response.text.strip() or f"HTTP {response.status_code}"

    async def get(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        """Make a GET request."""
        return await self._request("GET", endpoint, params=params)

    async def post(self, endpoint: str, data: dict[str, Any] | None = None) -> Any:
        """Make a POST request."""
        return await self._request("POST", endpoint, data=data)

    async def put(self, endpoint: str, data: dict[str, Any] | None = None) -> Any:
        """Make a PUT request."""
        return await self._request("PUT", endpoint, data=data)

    async def delete(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        """Make a DELETE request."""
        return await self._request("DELETE", endpoint, params=params)

    # Nodes and tasks

    async def get_nodes(self) -> list[dict[str, Any]]:
        """Get list of cluster nodes.

        Returns:
            List of node information
        """
        return await self.get("/nodes") or []

    async def get_task_status(self, node: str, upid: str) -> dict[str, Any]:
        """Get task status.

        Args:
            node: Node name
            upid: Task UPID

        Returns:
            Task status
        """
        return await self.get(f"/nodes/{_seg(node)}/tasks/{_seg(upid)}/status") or {}

    # VMs

    def _vm(self, node: str, vmid: int) -> str:
        return f"/nodes/{_seg(node)}/qemu/{int(vmid)}"

    async def clone_vm(
        self, node: str, vmid: int, newid: int, name: str = "", full: bool = False
    ) -> Any:
        """Clone a VM.

        Args:
            node: Node name
            vmid: Source (template) VM ID
            newid: New VM ID
            name: Name of the new VM, omitted when empty
            full: Full copy instead of a linked clone

        Returns:
            Task UPID
        """
        data: dict[str, Any] = {"newid": str(newid), "full": "1" if full else "0"}
        if name:
            data["name"] = name
        return await self.post(f"{self._vm(node, vmid)}/clone", data=data)

    async def get_vm_config(self, node: str, vmid: int) -> dict[str, Any]:
        """Get VM configuration.

        Args:
            node: Node name
            vmid: VM ID

        Returns:
            VM configuration
        """
        return await self.get(f"{self._vm(node, vmid)}/config") or {}

    async def update_vm_config(self, node: str, vmid: int, params: dict[str, Any]) -> Any:
        """Update VM configuration.

        Args:
            node: Node name
            vmid: VM ID
            params: Configuration parameters to set

        Returns:
            Task UPID or None for synchronous updates
        """
        return await self.put(f"{self._vm(node, vmid)}/config", data=params)

    async def resize_vm_disk(self, node: str, vmid: int, disk: str, size: str) -> Any:
        """Resize a VM disk.

        Args:
            node: Node name
            vmid: VM ID
            disk: Disk name (e.g. scsi0)
            size: New size or increment (e.g. +10G)

        Returns:
            Task UPID
        """
        return await self.put(
            f"{self._vm(node, vmid)}/resize", data={"disk": disk, "size": size}
        )

    async def vm_status_action(self, node: str, vmid: int, action: str) -> Any:
        """Run a power action (start, stop, suspend, resume).

        Returns:
            Task UPID
        """
        return await self.post(f"{self._vm(node, vmid)}/status/{_seg(action)}")

    async def get_vm_current_status(self, node: str, vmid: int) -> dict[str, Any]:
        """Get VM runtime status (state, cpu, memory)."""
        return await self.get(f"{self._vm(node, vmid)}/status/current") or {}

    async def delete_vm(self, node: str, vmid: int, purge: bool = True) -> Any:
        """Delete a VM.

        Args:
            node: Node name
            vmid: VM ID
            purge: Remove from backup jobs, replication and HA

        Returns:
            Task UPID
        """
        params = {"purge": "1"} if purge else None
        return await self.delete(self._vm(node, vmid), params=params)

    async def get_vm_snapshots(self, node: str, vmid: int) -> list[dict[str, Any]]:
        """Get VM snapshots."""
        return await self.get(f"{self._vm(node, vmid)}/snapshot") or []

    async def create_vm_snapshot(self, node: str, vmid: int, snapname: str) -> Any:
        """Create a disk-only VM snapshot.

        Returns:
            Task UPID
        """
        return await self.post(
            f"{self._vm(node, vmid)}/snapshot", data={"snapname": snapname, "vmstate": "0"}
        )

    async def rollback_vm_snapshot(self, node: str, vmid: int, snapname: str) -> Any:
        """Rollback VM to a snapshot.

        Returns:
            Task UPID
        """
        return await self.post(f"{self._vm(node, vmid)}/snapshot/{_seg(snapname)}/rollback")

    async def delete_vm_snapshot(self, node: str, vmid: int, snapname: str) -> Any:
        """Delete a VM snapshot.

        Returns:
            Task UPID
        """
        return await self.delete(f"{self._vm(node, vmid)}/snapshot/{_seg(snapname)}")

    async def get_vm_agent_interfaces(self, node: str, vmid: int) -> Any:
        """Get network interfaces reported by the QEMU guest agent.

        Raises:
            APIError: If the agent is not running or not configured
        """
        return await self.get(f"{self._vm(node, vmid)}/agent/network-get-interfaces")

    # Storage

    def _storage(self, node: str, storage: str) -> str:
        return f"/nodes/{_seg(node)}/storage/{_seg(storage)}"

    async def get_storage_status(self, node: str, storage: str) -> dict[str, Any]:
        """Get storage status (type, capacity)."""
        return await self.get(f"{self._storage(node, storage)}/status") or {}

    async def create_storage_volume(
        self, node: str, storage: str, filename: str, size: str, vmid: int = 0
    ) -> Any:
        """Allocate a volume.

        Args:
            node: Node name
            storage: Storage ID
            filename: Volume name
            size: Size with unit (e.g. 10G)
            vmid: Owner VM ID, 0 for unowned

        Returns:
            The new volume ID
        """
        return await self.post(
            f"{self._storage(node, storage)}/content",
            data={"vmid": str(vmid), "filename": filename, "size": size},
        )

    async def get_storage_volume(self, node: str, storage: str, volume_id: str) -> dict[str, Any]:
        """Get volume attributes (path, size, format)."""
        return await self.get(f"{self._storage(node, storage)}/content/{_seg(volume_id)}") or {}

    async def delete_storage_volume(self, node: str, storage: str, volume_id: str) -> Any:
        """Delete a volume.

        Returns:
            Task UPID or None
        """
        return await self.delete(f"{self._storage(node, storage)}/content/{_seg(volume_id)}")

    async def create_volume_snapshot(
        self, node: str, storage: str, volume_id: str, snapname: str
    ) -> Any:
        """Snapshot a single volume."""
        return await self.post(
            f"{self._storage(node, storage)}/content/{_seg(volume_id)}/snapshot",
            data={"snapname": snapname},
        )

    async def rollback_volume_snapshot(
        self, node: str, storage: str, volume_id: str, snapname: str
    ) -> Any:
        """Roll a volume back to a snapshot."""
        return await self.post(
            f"{self._storage(node, storage)}/content/{_seg(volume_id)}"
            f"/snapshot/{_seg(snapname)}/rollback"
        )

    async def delete_volume_snapshot(
        self, node: str, storage: str, volume_id: str, snapname: str
    ) -> Any:
        """Delete a volume snapshot."""
        return await self.delete(
            f"{self._storage(node, storage)}/content/{_seg(volume_id)}/snapshot/{_seg(snapname)}"
        )

    async def clone_volume(
        self,
        node: str,
        storage: str,
        volume_id: str,
        target: str,
        snapname: str = "",
    ) -> Any:
        """Clone a volume, optionally from one of its snapshots.

        Args:
            node: Node name
            storage: Storage ID of both volumes
            volume_id: Source volume ID
            target: Target volume ID
            snapname: Source snapshot, empty for the current state

        Returns:
            Task UPID or None
        """
        data = {"target": target}
        if snapname:
            data["snapname"] = snapname
        return await self.post(
            f"{self._storage(node, storage)}/content/{_seg(volume_id)}/clone", data=data
        )
