"""Data storage configuration helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from .env import optional_env

APP_DIR_NAME: Final[str] = "keyfeed"
CACHE_DB_FILENAME: Final[str] = "cache.db"
RECORD_STORE_DB_FILENAME: Final[str] = "records.db"
CONTENT_DIRNAME: Final[str] = "content"
MESSAGES_DIRNAME: Final[str] = "messages"
KEYS_FILENAME: Final[str] = "keys.json"


@dataclass(frozen=True, slots=True)
class StorageConfig:
    data_dir: Path
    cache_db_filename: str = CACHE_DB_FILENAME
    record_store_db_filename: str = RECORD_STORE_DB_FILENAME

    def resolve_data_dir(self) -> Path:
        return self.data_dir.expanduser().resolve()

    def ensure_data_dir(self) -> Path:
        data_dir = self.resolve_data_dir()
        data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir

    def _child(self, name: str, *, ensure: bool) -> Path:
        base = self.ensure_data_dir() if ensure else self.resolve_data_dir()
        return base / name

    def cache_db_path(self, *, ensure: bool = True) -> Path:
        return self._child(self.cache_db_filename, ensure=ensure)

    def record_store_db_path(self, *, ensure: bool = True) -> Path:
        return self._child(self.record_store_db_filename, ensure=ensure)

    def content_dir(self, *, ensure: bool = True) -> Path:
        path = self._child(CONTENT_DIRNAME, ensure=ensure)
        if ensure:
            path.mkdir(exist_ok=True)
        return path

    def messages_dir(self, *, ensure: bool = True) -> Path:
        path = self._child(MESSAGES_DIRNAME, ensure=ensure)
        if ensure:
            path.mkdir(exist_ok=True)
        return path

    def keys_path(self, *, ensure: bool = True) -> Path:
        return self._child(KEYS_FILENAME, ensure=ensure)


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    cache_uri: str
    record_store_uri: str


def _default_data_dir() -> Path:
    if os.name == "nt":
        base = os.getenv("LOCALAPPDATA")
        base_path = Path(base) if base else (Path.home() / "AppData" / "Local")
    else:
        base = os.getenv("XDG_DATA_HOME")
        base_path = Path(base) if base else (Path.home() / ".local" / "share")
    return (base_path / APP_DIR_NAME).expanduser().resolve()


def get_storage_config() -> StorageConfig:
    env_dir = optional_env("KEYFEED_DATA_DIR")
    data_dir = Path(env_dir) if env_dir else _default_data_dir()
    return StorageConfig(data_dir=data_dir)


def get_database_config(*, storage: StorageConfig | None = None) -> DatabaseConfig:
    storage_config = storage or get_storage_config()
    cache_uri = optional_env("DATABASE_URI")
    record_store_uri = optional_env("KEYFEED_RECORD_STORE_URI")
    return DatabaseConfig(
        cache_uri=cache_uri or f"sqlite+pysqlite:///{storage_config.cache_db_path()}",
        record_store_uri=record_store_uri
        or f"sqlite+pysqlite:///{storage_config.record_store_db_path()}",
    )
