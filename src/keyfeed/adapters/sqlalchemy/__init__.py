"""SQLAlchemy adapter package for keyfeed."""

from __future__ import annotations

from .database import SqlAlchemyDatabase, StartupError
from .mappings import (
    create_tables,
    mapper_registry,
    mutable_record_table,
    pointer_cache_table,
)
from .repositories import SqlAlchemyPointerCache, SqlAlchemyRecordStore

__all__ = [
    "SqlAlchemyDatabase",
    "SqlAlchemyPointerCache",
    "SqlAlchemyRecordStore",
    "StartupError",
    "create_tables",
    "mapper_registry",
    "mutable_record_table",
    "pointer_cache_table",
]
