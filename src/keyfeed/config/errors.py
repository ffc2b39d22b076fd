"""Configuration error definitions."""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Raised when a configuration value cannot be parsed or is out of range."""


class MissingConfigurationError(ConfigurationError):
    """Raised when required configuration values are absent or blank."""
