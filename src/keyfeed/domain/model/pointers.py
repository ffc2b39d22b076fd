"""Versioned pointers to a publisher's current manifest."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from keyfeed.domain.model.enums import SOURCE_PRECEDENCE, PointerSource

if TYPE_CHECKING:
    from datetime import datetime

    from keyfeed.domain.model.primitives import ContentId, OwnerKey


@dataclass(frozen=True, slots=True)
class PointerRecord:
    """A ``(pointer, seq)`` pair observed for one owner.

    ``updated_at`` is only known for records read back from the local cache or
    the signaling service.
    """

    owner_key: OwnerKey
    pointer: ContentId
    seq: int
    source: PointerSource
    observed_at: datetime
    updated_at: datetime | None = None

    def outranks(self, other: PointerRecord | None) -> bool:
        """Higher seq wins; equal seq is broken by source precedence."""

        if other is None:
            return True
        if self.seq != other.seq:
            return self.seq > other.seq
        return SOURCE_PRECEDENCE[self.source] > SOURCE_PRECEDENCE[other.source]


@dataclass(frozen=True, slots=True)
class MutableRecord:
    """Signed ``(seq, value)`` payload as held by the mutable-record store."""

    seq: int
    value: bytes
    signature: bytes

    @property
    def pointer(self) -> str:
        return self.value.decode("utf-8")


@dataclass(frozen=True, slots=True)
class Announcement:
    """A pointer announcement as exchanged with the signaling service."""

    owner_key: OwnerKey
    pointer: ContentId
    seq: int
    signature: str | None = None
    updated_at: datetime | None = None


__all__ = ["Announcement", "MutableRecord", "PointerRecord"]
