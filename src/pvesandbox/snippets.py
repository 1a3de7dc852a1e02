"""Cloud-init user-data snippets for sandbox VMs.

Snippets are YAML files written to the Proxmox snippets directory and
referenced from a VM's ``cicustom`` option as ``{storage}:snippets/{file}``.
"""

import json
import logging
import os
import re
import secrets
from pathlib import Path
from typing import Callable

import yaml

from .api.exceptions import InvalidArgumentError, PVESandboxError
from .models.config import DEFAULT_SNIPPET_STORAGE, DEFAULT_SNIPPETS_DIR
from .models.snippet import CloudInitSnippet, SnippetInput

logger = logging.getLogger(__name__)

SUFFIX_BYTES = 8
CREATE_ATTEMPTS = 5
BOOTSTRAP_PATH = "/etc/agentlab/bootstrap.json"

_STORAGE_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")
_LABEL_RE = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?$")


def validate_hostname(hostname: str) -> None:
    """Check a hostname against DNS label rules.

    Raises:
        InvalidArgumentError: If the name is too long or a label is malformed
    """
    if len(hostname) > 253:
        raise InvalidArgumentError(f"hostname {hostname!r} exceeds 253 characters")
    for label in hostname.split("."):
        if not _LABEL_RE.match(label):
            raise InvalidArgumentError(f"invalid hostname {hostname!r}: bad label {label!r}")


def render_user_data(hostname: str, ssh_key: str, token: str, controller: str, vmid: int) -> str:
    """Render the ``#cloud-config`` document for one sandbox VM."""
    bootstrap = json.dumps({"token": token, "controller": controller, "vmid": vmid})
    document = {
        "hostname": hostname,
        "ssh_pwauth": False,
        "users": [
            {
                "name": "agent",
                "shell": "/bin/bash",
                "sudo": "ALL=(ALL) NOPASSWD:ALL",
                "ssh_authorized_keys": [ssh_key],
            }
        ],
        "growpart": {"mode": "auto", "devices": ["/"]},
        "resize_rootfs": True,
        "write_files": [
            {
                "path": BOOTSTRAP_PATH,
                "owner": "agent:agent",
                "permissions": "0600",
                "defer": True,
                "content": bootstrap + "\n",
            }
        ],
        "runcmd": [
            ["sh", "-c", "command -v qemu-ga >/dev/null || apt-get install -y qemu-guest-agent"],
            ["systemctl", "enable", "--now", "qemu-guest-agent"],
            ["systemctl", "enable", "--now", "ssh"],
        ],
    }
    return "#cloud-config\n" + yaml.safe_dump(document, default_flow_style=False, sort_keys=False)


class SnippetStore:
    """Write and remove per-VM cloud-init snippets."""

    def __init__(
        self,
        storage: str = DEFAULT_SNIPPET_STORAGE,
        directory: str = DEFAULT_SNIPPETS_DIR,
        token_bytes: Callable[[int], bytes] = secrets.token_bytes,
    ) -> None:
        """Initialize the store.

        Args:
            storage: Proxmox storage holding the snippets content type
            directory: Filesystem directory backing that storage's snippets
            token_bytes: Random source for filename suffixes, replaced in tests
        """
        self.storage = storage.strip() or DEFAULT_SNIPPET_STORAGE
        self.directory = directory.strip() or DEFAULT_SNIPPETS_DIR
        self._token_bytes = token_bytes

    def create(self, snippet: SnippetInput) -> CloudInitSnippet:
        """Write a new snippet for a VM.

        Args:
            snippet: Values rendered into the user-data

        Returns:
            The written snippet and its storage reference

        Raises:
            InvalidArgumentError: If any input is invalid
            PVESandboxError: If the file cannot be written
        """
        if snippet.vmid <= 0:
            raise InvalidArgumentError("vmid must be greater than zero")
        hostname = snippet.hostname.strip() or f"sandbox-{snippet.vmid}"
        validate_hostname(hostname)
        ssh_key = snippet.ssh_public_key.strip()
        if not ssh_key:
            raise InvalidArgumentError("ssh public key is required")
        if "\n" in ssh_key or "\r" in ssh_key:
            raise InvalidArgumentError("ssh public key must be a single line")
        token = snippet.bootstrap_token.strip()
        if not token:
            raise InvalidArgumentError("bootstrap token is required")
        controller = snippet.controller_url.strip()
        if not controller:
            raise InvalidArgumentError("controller URL is required")
        if not _STORAGE_RE.match(self.storage):
            raise InvalidArgumentError(f"invalid snippet storage name {self.storage!r}")
        base = Path(self.directory)
        if not base.is_absolute():
            raise InvalidArgumentError(f"snippets directory must be absolute: {self.directory}")

        content = render_user_data(hostname, ssh_key, token, controller, snippet.vmid)
        try:
            base.mkdir(mode=0o755, parents=True, exist_ok=True)
            base = base.resolve()
        except OSError as e:
            raise PVESandboxError(f"create snippets dir: {e}") from e

        for _ in range(CREATE_ATTEMPTS):
            filename = f"agentlab-{snippet.vmid}-{self._token_bytes(SUFFIX_BYTES).hex()}.yaml"
            path = base / filename
            if path.resolve().parent != base:
                raise InvalidArgumentError(f"snippet path {path} escapes {base}")
            try:
                fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            except FileExistsError:
                continue
            except OSError as e:
                raise PVESandboxError(f"create snippet file: {e}") from e
            try:
                with os.fdopen(fd, "w") as f:
                    f.write(content)
            except OSError as e:
                path.unlink(missing_ok=True)
                raise PVESandboxError(f"write snippet: {e}") from e
            logger.debug("Wrote cloud-init snippet %s for VM %s", path, snippet.vmid)
            return CloudInitSnippet(
                vmid=snippet.vmid,
                filename=filename,
                full_path=str(path),
                storage=self.storage,
                storage_path=f"{self.storage}:snippets/{filename}",
            )

        raise PVESandboxError("unable to create unique snippet filename")

    def delete(self, snippet: CloudInitSnippet) -> None:
        """Remove a snippet file; a file that is already gone is not an error.

        Raises:
            PVESandboxError: If the file exists but cannot be removed
        """
        if not snippet.full_path:
            return
        try:
            Path(snippet.full_path).unlink(missing_ok=True)
        except OSError as e:
            raise PVESandboxError(f"remove snippet: {e}") from e
