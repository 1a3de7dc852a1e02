"""Age encryption for API tokens stored in the config file."""

import base64
import binascii
from pathlib import Path

import pyrage

from .api.exceptions import ConfigError

AGE_PREFIX = "AGE:"
IDENTITY_FILE = Path.home() / ".config" / "pvesandbox" / ".age-identity"


def _load_identity(path: Path | None = None) -> pyrage.x25519.Identity:
    """Load the local age identity, generating it on first use."""
    path = path or IDENTITY_FILE
    if path.exists():
        return pyrage.x25519.Identity.from_str(path.read_text().strip())
    path.parent.mkdir(parents=True, exist_ok=True)
    identity = pyrage.x25519.Identity.generate()
    path.write_text(str(identity))
    path.chmod(0o600)
    return identity


def is_encrypted(value: str) -> bool:
    return value.startswith(AGE_PREFIX)


def encrypt(value: str, identity_file: Path | None = None) -> str:
    """Encrypt a value to ``AGE:<base64>``; already encrypted values pass through."""
    if is_encrypted(value):
        return value
    recipient = _load_identity(identity_file).to_public()
    return AGE_PREFIX + base64.b64encode(pyrage.encrypt(value.encode(), [recipient])).decode()


def decrypt(value: str, identity_file: Path | None = None) -> str:
    """Decrypt an ``AGE:`` value; plaintext passes through.

    Raises:
        ConfigError: If the value was encrypted for a different identity or is corrupt
    """
    if not is_encrypted(value):
        return value
    try:
        raw = base64.b64decode(value[len(AGE_PREFIX):], validate=True)
        return pyrage.decrypt(raw, [_load_identity(identity_file)]).decode()
    except (binascii.Error, pyrage.DecryptError) as e:
        raise ConfigError(f"Cannot decrypt stored API token: {e}") from e
