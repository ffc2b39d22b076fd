from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from keyfeed.adapters.sqlalchemy import (
    SqlAlchemyDatabase,
    SqlAlchemyPointerCache,
    SqlAlchemyRecordStore,
    mutable_record_table,
    pointer_cache_table,
)
from keyfeed.domain.model import Identity
from tests.helpers.clock import VirtualClock
from tests.helpers.fakes import (
    FakeRecordStore,
    FakeSignalingService,
    InMemoryArtifactCache,
    InMemoryPointerCache,
    InMemoryTransport,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from sqlalchemy.engine import Engine

_ENV_VARS = (
    "SERVER_URL",
    "KEYFEED_SERVER_URL",
    "KEYFEED_SERVER_TIMEOUT",
    "KEYFEED_HOST",
    "PORT",
    "DATABASE_URI",
    "KEYFEED_RECORD_STORE_URI",
    "KEYFEED_DHT_TIMEOUT",
    "KEYFEED_DHT_RETRIES",
    "KEYFEED_DHT_RETRY_INTERVAL",
    "KEYFEED_SETTLE_WINDOW",
    "KEYFEED_PUT_RETRIES",
    "KEYFEED_REANNOUNCE_INTERVAL",
    "KEYFEED_WATCH_INTERVAL",
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    data_dir = tmp_path / "data"
    monkeypatch.setenv("KEYFEED_DATA_DIR", str(data_dir))
    return data_dir


@pytest.fixture
def identity() -> Identity:
    return Identity.generate()


@pytest.fixture
def other_identity() -> Identity:
    return Identity.generate()


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


@pytest.fixture
def pointer_cache() -> InMemoryPointerCache:
    return InMemoryPointerCache()


@pytest.fixture
def artifacts() -> InMemoryArtifactCache:
    return InMemoryArtifactCache()


@pytest.fixture
def transport(clock: VirtualClock) -> InMemoryTransport:
    return InMemoryTransport(clock)


@pytest.fixture
def record_store(clock: VirtualClock) -> FakeRecordStore:
    return FakeRecordStore(clock)


@pytest.fixture
def signaling(clock: VirtualClock) -> FakeSignalingService:
    return FakeSignalingService(clock)


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def cache_database(sqlite_engine: Engine) -> Iterator[SqlAlchemyDatabase]:
    database = SqlAlchemyDatabase("test-cache").startup(pointer_cache_table, engine=sqlite_engine)
    try:
        yield database
    finally:
        database.shutdown()


@pytest.fixture
def sql_pointer_cache(cache_database: SqlAlchemyDatabase) -> SqlAlchemyPointerCache:
    return SqlAlchemyPointerCache(cache_database)


@pytest.fixture
def sql_record_store(sqlite_engine: Engine) -> Iterator[SqlAlchemyRecordStore]:
    database = SqlAlchemyDatabase("test-records").startup(
        mutable_record_table, engine=sqlite_engine
    )
    try:
        yield SqlAlchemyRecordStore(database)
    finally:
        database.shutdown()
