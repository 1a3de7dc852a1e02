"""Configuration management."""

from .manager import Config, ConfigManager

__all__ = ["Config", "ConfigManager"]
