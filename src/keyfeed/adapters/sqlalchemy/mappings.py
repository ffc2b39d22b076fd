"""SQLAlchemy table metadata for local keyfeed state."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    Column,
    DateTime,
    Dialect,
    Integer,
    LargeBinary,
    String,
    Table,
    TypeDecorator,
    orm,
)

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "pk": "pk_%(table_name)s",
}

# one row per owner, upsert only
pointer_cache_table = Table(
    "pointer_cache",
    mapper_registry.metadata,
    Column("owner_key", String(64), primary_key=True),
    Column("pointer", String(40), nullable=False),
    Column("seq", Integer, nullable=False),
    Column("updated_at", UTCDateTime(), nullable=False),
)

mutable_record_table = Table(
    "mutable_record",
    mapper_registry.metadata,
    Column("owner_key", String(64), primary_key=True),
    Column("seq", Integer, nullable=False),
    Column("value", LargeBinary, nullable=False),
    Column("signature", LargeBinary(64), nullable=False),
    Column("stored_at", UTCDateTime(), nullable=False),
)


def create_tables(engine: Engine, *tables: Table) -> None:
    """Create ``tables`` (all known tables when none are given) if missing."""

    selected = tables or tuple(mapper_registry.metadata.sorted_tables)
    log.info("Creating tables: %s", ", ".join(table.name for table in selected))
    for table in selected:
        table.create(engine, checkfirst=True)
