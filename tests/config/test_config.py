from __future__ import annotations

import logging
from pathlib import Path

import pytest

from keyfeed.config import (
    ConfigurationError,
    configure_logging,
    env_float,
    env_int,
    get_database_config,
    get_publish_config,
    get_resolver_config,
    get_server_config,
    get_signaling_config,
    get_storage_config,
    get_watch_config,
    optional_env,
)
from keyfeed.config.sync import DEFAULT_DHT_RETRIES, DEFAULT_WATCH_INTERVAL_SECONDS


def test_optional_env_takes_first_non_blank(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("KF_SECOND", " value ")
    monkeypatch.setenv("KF_FIRST", "")

    assert optional_env("KF_FIRST", "KF_SECOND") == "value"
    assert optional_env("KF_MISSING") is None


def test_numeric_env_parsing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("KF_FLOAT", "2.5")
    monkeypatch.setenv("KF_INT", "7")
    monkeypatch.setenv("KF_BAD", "seven")
    monkeypatch.setenv("KF_NEG", "-1")

    assert env_float("KF_FLOAT", 1.0) == 2.5
    assert env_int("KF_INT", 1) == 7
    assert env_int("KF_UNSET", 4) == 4
    with pytest.raises(ConfigurationError):
        env_int("KF_BAD", 1)
    with pytest.raises(ConfigurationError):
        env_float("KF_NEG", 1.0)


def test_storage_paths_follow_data_dir(isolated_env: Path) -> None:
    storage = get_storage_config()

    assert storage.resolve_data_dir() == isolated_env.resolve()
    assert storage.keys_path(ensure=False).name == "keys.json"
    assert storage.content_dir().is_dir()
    assert storage.messages_dir().is_dir()
    database = get_database_config(storage=storage)
    assert database.cache_uri.endswith("cache.db")
    assert database.record_store_uri.endswith("records.db")


def test_database_uris_can_be_overridden(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URI", "sqlite+pysqlite:///:memory:")

    assert get_database_config().cache_uri == "sqlite+pysqlite:///:memory:"


def test_default_data_dir_uses_xdg(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv("KEYFEED_DATA_DIR")
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
    monkeypatch.setattr("os.name", "posix")

    assert get_storage_config().data_dir == (tmp_path / "keyfeed").resolve()


def test_signaling_config(monkeypatch: pytest.MonkeyPatch) -> None:
    assert get_signaling_config().base_url == "http://localhost:3000"

    monkeypatch.setenv("SERVER_URL", "http://legacy:1/")
    assert get_signaling_config().base_url == "http://legacy:1"

    monkeypatch.setenv("KEYFEED_SERVER_URL", "http://primary:2")
    monkeypatch.setenv("KEYFEED_SERVER_TIMEOUT", "4")
    config = get_signaling_config()
    assert config.base_url == "http://primary:2"
    assert config.resilience.base_url == "http://primary:2"
    assert config.resilience.timeout_seconds == 4
    assert "POST" not in config.resilience.retry.allowed_methods


def test_server_config(monkeypatch: pytest.MonkeyPatch) -> None:
    assert get_server_config().port == 3000
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("KEYFEED_HOST", "0.0.0.0")  # noqa: S104

    config = get_server_config()
    assert (config.host, config.port) == ("0.0.0.0", 8080)  # noqa: S104


def test_timing_config(monkeypatch: pytest.MonkeyPatch) -> None:
    assert get_resolver_config().dht_retries == DEFAULT_DHT_RETRIES
    assert get_watch_config().interval == DEFAULT_WATCH_INTERVAL_SECONDS

    monkeypatch.setenv("KEYFEED_DHT_TIMEOUT", "2")
    monkeypatch.setenv("KEYFEED_SETTLE_WINDOW", "0.5")
    monkeypatch.setenv("KEYFEED_PUT_RETRIES", "0")
    monkeypatch.setenv("KEYFEED_WATCH_INTERVAL", "1.5")

    assert get_resolver_config().dht_timeout == 2
    assert get_resolver_config().settle_window == 0.5
    assert get_publish_config().put_retries == 0
    assert get_watch_config().interval == 1.5


def test_watch_interval_has_a_floor(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("KEYFEED_WATCH_INTERVAL", "0")

    with pytest.raises(ConfigurationError):
        get_watch_config()


def test_configure_logging_quiets_httpx() -> None:
    configure_logging(level=logging.INFO, force=True)
    assert logging.getLogger("httpx").level == logging.WARNING
