"""Signaling service configuration values."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_float, env_int, optional_env
from .http_resilience import RateLimit, ResilienceConfig

DEFAULT_SERVER_URL = "http://localhost:3000"
DEFAULT_SERVER_TIMEOUT_SECONDS = 10.0
DEFAULT_SERVER_PORT = 3000


@dataclass(frozen=True)
class SignalingConfig:
    """Where the signaling service lives and how hard to try reaching it."""

    base_url: str
    resilience: ResilienceConfig


@dataclass(frozen=True)
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = DEFAULT_SERVER_PORT


def get_signaling_config(*, resilience: ResilienceConfig | None = None) -> SignalingConfig:
    base_url = optional_env("KEYFEED_SERVER_URL", "SERVER_URL") or DEFAULT_SERVER_URL
    timeout = env_float("KEYFEED_SERVER_TIMEOUT", DEFAULT_SERVER_TIMEOUT_SECONDS)
    return SignalingConfig(
        base_url=base_url.rstrip("/"),
        resilience=resilience
        or ResilienceConfig(
            name="signaling",
            base_url=base_url.rstrip("/"),
            timeout_seconds=timeout,
            ratelimit=RateLimit(max_calls=10, per_seconds=1.0),
        ),
    )


def get_server_config() -> ServerConfig:
    return ServerConfig(
        host=optional_env("KEYFEED_HOST") or "127.0.0.1",
        port=env_int("PORT", DEFAULT_SERVER_PORT, minimum=1),
    )
