"""Local stores backed by SQLAlchemy sessions."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from sqlalchemy import insert, select, update
from sqlalchemy.exc import SQLAlchemyError

from keyfeed.adapters.sqlalchemy.mappings import mutable_record_table, pointer_cache_table
from keyfeed.domain.errors import (
    SequenceConflict,
    UnavailableError,
    ValidationError,
    VerificationFailure,
)
from keyfeed.domain.model import (
    MutableRecord,
    PointerRecord,
    PointerSource,
    require_content_id,
    require_owner_key,
)
from keyfeed.domain.signing import verify_record

if TYPE_CHECKING:
    from collections.abc import Callable

    from keyfeed.adapters.sqlalchemy.database import SqlAlchemyDatabase
    from keyfeed.domain.model import ContentId, OwnerKey
    from keyfeed.domain.ports import PointerCache, RecordStore

log = getLogger(__name__)

# BEP44 caps a mutable item's value at 1000 bytes
DEFAULT_MAX_VALUE_BYTES = 1000


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SqlAlchemyPointerCache:
    """Durable last-known pointer per owner.

    Writes only ever move an owner's ``seq`` forward; rewriting the stored
    ``(pointer, seq)`` is a no-op.
    """

    def __init__(self, database: SqlAlchemyDatabase, *, now: Callable[[], datetime] = _utcnow):
        self.database = database
        self.now = now

    def read(self, owner_key: OwnerKey) -> PointerRecord | None:
        owner_key = require_owner_key(owner_key)
        stmt = select(pointer_cache_table).where(pointer_cache_table.c.owner_key == owner_key)
        try:
            with self.database.session_factory() as session:
                row = session.execute(stmt).one_or_none()
        except SQLAlchemyError as exc:
            raise UnavailableError(f"Pointer cache unreadable: {exc}") from exc
        if row is None:
            return None
        return PointerRecord(
            owner_key=owner_key,
            pointer=row.pointer,
            seq=row.seq,
            source=PointerSource.CACHE,
            observed_at=self.now(),
            updated_at=row.updated_at,
        )

    def write(self, owner_key: OwnerKey, pointer: ContentId, seq: int) -> None:
        owner_key = require_owner_key(owner_key)
        pointer = require_content_id(pointer)
        if seq < 1:
            raise ValidationError(f"Sequence numbers start at 1, got {seq}")
        table = pointer_cache_table
        try:
            with self.database.session_factory.begin() as session:
                existing = session.execute(
                    select(table.c.pointer, table.c.seq).where(table.c.owner_key == owner_key)
                ).one_or_none()
                if existing is None:
                    session.execute(
                        insert(table).values(
                            owner_key=owner_key, pointer=pointer, seq=seq, updated_at=self.now()
                        )
                    )
                elif seq > existing.seq:
                    session.execute(
                        update(table)
                        .where(table.c.owner_key == owner_key)
                        .values(pointer=pointer, seq=seq, updated_at=self.now())
                    )
                elif seq == existing.seq and pointer == existing.pointer:
                    return
                else:
                    raise SequenceConflict(
                        f"Cache holds seq {existing.seq} for {owner_key[:16]}..., "
                        f"refusing to store seq {seq}",
                        current_seq=existing.seq,
                    )
        except SQLAlchemyError as exc:
            raise UnavailableError(f"Pointer cache not writable: {exc}") from exc
        log.debug("Pointer cache now holds seq %d for %s...", seq, owner_key[:16])


class SqlAlchemyRecordStore:
    """Single-host mutable-record store enforcing the network's rules.

    A record is accepted only if its BEP44 signature verifies for the owner
    key, its value fits ``max_value_bytes`` and its ``seq`` is higher than
    the stored one. Re-putting the identical record refreshes it.
    Queries run on a worker thread via :func:`asyncio.to_thread`.
    """

    def __init__(
        self,
        database: SqlAlchemyDatabase,
        *,
        max_value_bytes: int = DEFAULT_MAX_VALUE_BYTES,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.database = database
        self.max_value_bytes = max_value_bytes
        self.now = now

    async def get(self, owner_key: OwnerKey, *, timeout: float) -> MutableRecord | None:
        _ = timeout
        return await asyncio.to_thread(self._read, require_owner_key(owner_key))

    def _read(self, owner_key: OwnerKey) -> MutableRecord | None:
        table = mutable_record_table
        try:
            with self.database.session_factory() as session:
                row = session.execute(
                    select(table.c.seq, table.c.value, table.c.signature).where(
                        table.c.owner_key == owner_key
                    )
                ).one_or_none()
        except SQLAlchemyError as exc:
            raise UnavailableError(f"Record store unreadable: {exc}") from exc
        if row is None:
            return None
        return MutableRecord(seq=row.seq, value=bytes(row.value), signature=bytes(row.signature))

    async def put(self, owner_key: OwnerKey, record: MutableRecord) -> None:
        owner_key = require_owner_key(owner_key)
        if len(record.value) > self.max_value_bytes:
            raise ValidationError(
                f"Value is {len(record.value)} bytes, the store accepts at most "
                f"{self.max_value_bytes}"
            )
        if not verify_record(owner_key, record):
            raise VerificationFailure(f"Record signature does not verify for {owner_key[:16]}...")
        await asyncio.to_thread(self._write, owner_key, record)
        log.debug("Stored record seq %d for %s...", record.seq, owner_key[:16])

    def _write(self, owner_key: OwnerKey, record: MutableRecord) -> None:
        table = mutable_record_table
        try:
            with self.database.session_factory.begin() as session:
                existing = session.execute(
                    select(table.c.seq, table.c.value, table.c.signature).where(
                        table.c.owner_key == owner_key
                    )
                ).one_or_none()
                if existing is None:
                    session.execute(
                        insert(table).values(
                            owner_key=owner_key,
                            seq=record.seq,
                            value=record.value,
                            signature=record.signature,
                            stored_at=self.now(),
                        )
                    )
                elif record.seq > existing.seq or (
                    record.seq == existing.seq
                    and bytes(existing.value) == record.value
                    and bytes(existing.signature) == record.signature
                ):
                    session.execute(
                        update(table)
                        .where(table.c.owner_key == owner_key)
                        .values(
                            seq=record.seq,
                            value=record.value,
                            signature=record.signature,
                            stored_at=self.now(),
                        )
                    )
                else:
                    raise SequenceConflict(
                        f"Store holds seq {existing.seq} for {owner_key[:16]}..., "
                        f"refusing seq {record.seq}",
                        current_seq=existing.seq,
                    )
        except SQLAlchemyError as exc:
            raise UnavailableError(f"Record store not writable: {exc}") from exc

    async def aclose(self) -> None:
        self.database.shutdown()


if TYPE_CHECKING:
    from keyfeed.adapters.sqlalchemy.database import SqlAlchemyDatabase as _Database

    _cache_check: PointerCache = SqlAlchemyPointerCache(_Database("cache"))
    _store_check: RecordStore = SqlAlchemyRecordStore(_Database("records"))
