"""Profile storage for pvesandbox settings."""

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from ..api.exceptions import ConfigError
from ..crypto import decrypt, encrypt, is_encrypted
from ..models.config import ProxmoxSettings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "pvesandbox"


class Config(BaseModel):
    """Top-level configuration file."""

    default_profile: str | None = None
    profiles: dict[str, ProxmoxSettings] = Field(default_factory=dict)


class ConfigManager:
    """Load and save named cluster profiles.

    API tokens are age-encrypted on disk and decrypted on load. A plaintext
    token found on disk is encrypted by rewriting the file.
    """

    def __init__(self, config_dir: Path | None = None) -> None:
        """Initialize config manager.

        Args:
            config_dir: Custom config directory (defaults to ~/.config/pvesandbox)
        """
        self.config_dir = config_dir or DEFAULT_CONFIG_DIR
        self.config_file = self.config_dir / "config.yaml"
        self._config: Config | None = None

    def exists(self) -> bool:
        return self.config_file.exists()

    def load(self) -> Config:
        """Load configuration from file.

        Raises:
            ConfigError: If the file is missing, unreadable or invalid
        """
        if not self.exists():
            raise ConfigError(
                f"Configuration file not found at {self.config_file}. "
                "Run 'pvesandbox config add' to create one."
            )
        try:
            with open(self.config_file) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in config file: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read config: {e}") from e

        try:
            config = Config(**data)
        except ValidationError as e:
            raise ConfigError(f"Invalid config file {self.config_file}: {e}") from e

        if self._decrypt_tokens(config):
            logger.info("Encrypting plaintext API tokens in %s", self.config_file)
            self.save(config)
        self._config = config
        return config

    def save(self, config: Config) -> None:
        """Write configuration, encrypting tokens.

        Raises:
            ConfigError: If the file cannot be written
        """
        data = config.model_dump(exclude_none=True)
        for profile in data.get("profiles", {}).values():
            if profile.get("api_token"):
                profile["api_token"] = encrypt(profile["api_token"])
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            os.chmod(self.config_dir, 0o700)
            with open(self.config_file, "w") as f:
                yaml.safe_dump(data, f, default_flow_style=False)
            os.chmod(self.config_file, 0o600)
        except OSError as e:
            raise ConfigError(f"Failed to save config: {e}") from e
        self._config = config

    def get(self) -> Config:
        if self._config is None:
            self._config = self.load()
        return self._config

    def get_profile(self, name: str | None = None) -> ProxmoxSettings:
        """Return a profile by name, or the default profile.

        Raises:
            ConfigError: If no profile matches
        """
        config = self.get()
        if name is None:
            if config.default_profile is None:
                raise ConfigError("No default profile set. Use --profile to specify one.")
            name = config.default_profile
        if name not in config.profiles:
            raise ConfigError(
                f"Profile '{name}' not found. Available profiles: "
                f"{', '.join(config.profiles) or 'none'}"
            )
        return config.profiles[name]

    def add_profile(self, name: str, settings: ProxmoxSettings) -> None:
        """Add or replace a profile; the first profile becomes the default."""
        config = self.get() if self.exists() else Config()
        config.profiles[name] = settings
        if config.default_profile is None:
            config.default_profile = name
        self.save(config)

    def remove_profile(self, name: str) -> None:
        config = self.get()
        if name not in config.profiles:
            raise ConfigError(f"Profile '{name}' not found")
        del config.profiles[name]
        if config.default_profile == name:
            config.default_profile = next(iter(config.profiles), None)
        self.save(config)

    def set_default_profile(self, name: str) -> None:
        config = self.get()
        if name not in config.profiles:
            raise ConfigError(f"Profile '{name}' not found")
        config.default_profile = name
        self.save(config)

    def list_profiles(self) -> list[str]:
        return list(self.get().profiles)

    @staticmethod
    def _decrypt_tokens(config: Config) -> bool:
        """Decrypt tokens in place; return True if any was stored in plaintext."""
        needs_save = False
        for settings in config.profiles.values():
            if not settings.api_token:
                continue
            if is_encrypted(settings.api_token):
                settings.api_token = decrypt(settings.api_token)
            else:
                needs_save = True
        return needs_save
