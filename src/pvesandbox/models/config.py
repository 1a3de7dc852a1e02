"""Configuration models."""

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_API_URL = "https://localhost:8006"
DEFAULT_SNIPPETS_DIR = "/var/lib/vz/snippets"
DEFAULT_SNIPPET_STORAGE = "local"
DEFAULT_COMMAND_TIMEOUT = 120.0


class ProxmoxSettings(BaseModel):
    """Connection and behaviour settings for one Proxmox cluster."""

    backend: str = Field(default="shell", pattern="^(api|shell)$")
    api_url: str = DEFAULT_API_URL
    api_token: str | None = Field(None, description="USER@REALM!TOKENID=SECRET")
    node: str = ""
    tls_insecure: bool = False
    tls_ca_path: str = ""
    clone_mode: str = Field(default="linked", pattern="^(linked|full)$")
    agent_cidr: str = ""
    command_timeout: float = Field(DEFAULT_COMMAND_TIMEOUT, gt=0)
    dhcp_lease_paths: list[str] = Field(default_factory=list)
    shell_fallback: bool = False
    qm_path: str = "qm"
    pvesh_path: str = "pvesh"
    pvesm_path: str = "pvesm"
    bash_runner: bool = True
    snippets_dir: str = DEFAULT_SNIPPETS_DIR
    snippet_storage: str = DEFAULT_SNIPPET_STORAGE

    @field_validator("backend", "clone_mode", mode="before")
    @classmethod
    def normalize_choice(cls, v: str | None) -> str | None:
        """Accept choices case-insensitively and with surrounding whitespace.

        Args:
            v: Raw field value

        Returns:
            Normalized value
        """
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @model_validator(mode="after")
    def check_tls(self) -> "ProxmoxSettings":
        """Reject contradictory TLS settings.

        Raises:
            ValueError: If verification is disabled while a CA bundle is set
        """
        if self.tls_insecure and self.tls_ca_path:
            raise ValueError("tls_insecure cannot be combined with tls_ca_path")
        return self
