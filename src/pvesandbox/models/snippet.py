"""Cloud-init snippet models."""

from pydantic import BaseModel


class SnippetInput(BaseModel):
    """Inputs rendered into a per-VM cloud-init user-data snippet."""

    vmid: int
    hostname: str = ""
    ssh_public_key: str
    bootstrap_token: str
    controller_url: str


class CloudInitSnippet(BaseModel):
    """A snippet written to the snippet storage directory."""

    vmid: int
    filename: str
    full_path: str
    storage: str
    storage_path: str
