"""Authentication and TLS handling for the Proxmox VE API."""

import ssl
from pathlib import Path

from .exceptions import ConfigError

PEM_CERT_MARKER = "-----BEGIN CERTIFICATE-----"


class AuthHandler:
    """Build the token header and TLS verification settings for API requests."""

    def __init__(
        self,
        api_token: str,
        tls_insecure: bool = False,
        tls_ca_path: str = "",
    ) -> None:
        """Initialize auth handler.

        Args:
            api_token: Token in ``USER@REALM!TOKENID=SECRET`` form
            tls_insecure: Skip certificate verification
            tls_ca_path: PEM bundle added to the system trust roots

        Raises:
            ConfigError: If the token is malformed or the TLS options conflict
        """
        token_id, sep, secret = (api_token or "").strip().partition("=")
        if not sep or not token_id.strip() or not secret.strip():
            raise ConfigError("API token must look like USER@REALM!TOKENID=SECRET")
        if tls_insecure and tls_ca_path:
            raise ConfigError("tls_insecure cannot be combined with tls_ca_path")
        self.token_id = token_id.strip()
        self._secret = secret.strip()
        self.tls_insecure = tls_insecure
        self.tls_ca_path = tls_ca_path

    def get_token_headers(self) -> dict[str, str]:
        """Get headers for API token authentication.

        Returns:
            Headers dict with Authorization
        """
        return {"Authorization": f"PVEAPIToken={self.token_id}={self._secret}"}

    def ssl_verify(self) -> ssl.SSLContext | bool:
        """Return the ``verify`` argument for httpx.

        Returns:
            False when verification is disabled, an SSL context trusting the
            system roots plus the custom bundle, or True for system roots only

        Raises:
            ConfigError: If the CA bundle is unreadable or holds no certificates
        """
        if self.tls_insecure:
            return False
        if not self.tls_ca_path:
            return True
        path = Path(self.tls_ca_path).expanduser()
        try:
            pem = path.read_text()
        except OSError as e:
            raise ConfigError(f"read CA bundle {path}: {e}") from e
        if PEM_CERT_MARKER not in pem:
            raise ConfigError(f"CA bundle {path} contains no certificates")
        context = ssl.create_default_context()
        try:
            context.load_verify_locations(cadata=pem)
        except ssl.SSLError as e:
            raise ConfigError(f"load CA bundle {path}: {e}") from e
        return context
