"""Timing defaults for resolution, publishing and watching."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_float, env_int

DEFAULT_DHT_TIMEOUT_SECONDS = 30.0
DEFAULT_DHT_RETRIES = 3
DEFAULT_RETRY_INTERVAL_SECONDS = 5.0
DEFAULT_SETTLE_WINDOW_SECONDS = 3.0
DEFAULT_SERVER_LOOKUP_TIMEOUT_SECONDS = 10.0

DEFAULT_PUT_RETRIES = 3
DEFAULT_PUT_RETRY_INTERVAL_SECONDS = 5.0
DEFAULT_REANNOUNCE_INTERVAL_SECONDS = 60.0
DEFAULT_SEED_TIMEOUT_SECONDS = 30.0
DEFAULT_FETCH_TIMEOUT_SECONDS = 60.0

DEFAULT_WATCH_INTERVAL_SECONDS = 30.0


@dataclass(frozen=True, slots=True)
class ResolverConfig:
    dht_timeout: float = DEFAULT_DHT_TIMEOUT_SECONDS
    dht_retries: int = DEFAULT_DHT_RETRIES
    retry_interval: float = DEFAULT_RETRY_INTERVAL_SECONDS
    settle_window: float = DEFAULT_SETTLE_WINDOW_SECONDS
    server_timeout: float = DEFAULT_SERVER_LOOKUP_TIMEOUT_SECONDS


@dataclass(frozen=True, slots=True)
class PublishConfig:
    put_retries: int = DEFAULT_PUT_RETRIES
    put_retry_interval: float = DEFAULT_PUT_RETRY_INTERVAL_SECONDS
    reannounce_interval: float = DEFAULT_REANNOUNCE_INTERVAL_SECONDS
    seed_timeout: float = DEFAULT_SEED_TIMEOUT_SECONDS
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS


@dataclass(frozen=True, slots=True)
class WatchConfig:
    interval: float = DEFAULT_WATCH_INTERVAL_SECONDS
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS


def get_resolver_config() -> ResolverConfig:
    return ResolverConfig(
        dht_timeout=env_float("KEYFEED_DHT_TIMEOUT", DEFAULT_DHT_TIMEOUT_SECONDS),
        dht_retries=env_int("KEYFEED_DHT_RETRIES", DEFAULT_DHT_RETRIES),
        retry_interval=env_float("KEYFEED_DHT_RETRY_INTERVAL", DEFAULT_RETRY_INTERVAL_SECONDS),
        settle_window=env_float("KEYFEED_SETTLE_WINDOW", DEFAULT_SETTLE_WINDOW_SECONDS),
        server_timeout=env_float("KEYFEED_SERVER_TIMEOUT", DEFAULT_SERVER_LOOKUP_TIMEOUT_SECONDS),
    )


def get_publish_config() -> PublishConfig:
    return PublishConfig(
        put_retries=env_int("KEYFEED_PUT_RETRIES", DEFAULT_PUT_RETRIES),
        reannounce_interval=env_float(
            "KEYFEED_REANNOUNCE_INTERVAL", DEFAULT_REANNOUNCE_INTERVAL_SECONDS, minimum=1.0
        ),
    )


def get_watch_config() -> WatchConfig:
    return WatchConfig(
        interval=env_float("KEYFEED_WATCH_INTERVAL", DEFAULT_WATCH_INTERVAL_SECONDS, minimum=0.1)
    )
