"""Application configuration helpers."""

from __future__ import annotations

from .env import env_float, env_int, optional_env
from .errors import ConfigurationError, MissingConfigurationError
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy
from .logging import configure_logging
from .signaling import ServerConfig, SignalingConfig, get_server_config, get_signaling_config
from .storage import DatabaseConfig, StorageConfig, get_database_config, get_storage_config
from .sync import (
    PublishConfig,
    ResolverConfig,
    WatchConfig,
    get_publish_config,
    get_resolver_config,
    get_watch_config,
)

__all__ = [
    "ConfigurationError",
    "DatabaseConfig",
    "MissingConfigurationError",
    "PublishConfig",
    "RateLimit",
    "ResilienceConfig",
    "ResolverConfig",
    "RetryPolicy",
    "ServerConfig",
    "SignalingConfig",
    "StorageConfig",
    "WatchConfig",
    "configure_logging",
    "env_float",
    "env_int",
    "get_database_config",
    "get_publish_config",
    "get_resolver_config",
    "get_server_config",
    "get_signaling_config",
    "get_storage_config",
    "get_watch_config",
    "optional_env",
]
