"""In-memory announcement registry behind the signaling service."""

from __future__ import annotations

import time
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from keyfeed.domain.errors import SequenceConflict, ValidationError, VerificationFailure
from keyfeed.domain.model import Announcement, require_content_id, require_owner_key
from keyfeed.domain.signing import verify_announcement

if TYPE_CHECKING:
    from collections.abc import Callable

    from keyfeed.domain.model import OwnerKey

log = getLogger(__name__)


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


@dataclass(frozen=True, slots=True)
class RegisteredPointer:
    """Latest accepted announcement for one owner.

    ``public_key`` keeps the spelling the publisher signed, so that the stored
    signature still verifies when handed back to subscribers.
    """

    public_key: str
    manifest_infohash: str
    seq: int
    signature: str
    updated_at: int


class AnnouncementRegistry:
    """Latest verified pointer per owner, replaced only by a strictly higher seq.

    Nothing is persisted: publishers re-announce and the record store keeps
    the authoritative copy.
    """

    def __init__(self, *, now_ms: Callable[[], int] = _now_ms) -> None:
        self._entries: dict[OwnerKey, RegisteredPointer] = {}
        self._now_ms = now_ms

    def __len__(self) -> int:
        return len(self._entries)

    def register(self, announcement: Announcement) -> RegisteredPointer:
        owner_key = require_owner_key(announcement.owner_key)
        require_content_id(announcement.pointer)
        if announcement.seq < 1:
            raise ValidationError("Sequence number must be at least 1")
        if announcement.signature is None:
            raise ValidationError("Missing signature")
        if not verify_announcement(announcement):
            raise VerificationFailure("Invalid signature")

        existing = self._entries.get(owner_key)
        if existing is not None and existing.seq >= announcement.seq:
            raise SequenceConflict(
                "Sequence number must be higher than current", current_seq=existing.seq
            )

        entry = RegisteredPointer(
            public_key=announcement.owner_key,
            manifest_infohash=announcement.pointer,
            seq=announcement.seq,
            signature=announcement.signature,
            updated_at=self._now_ms(),
        )
        self._entries[owner_key] = entry
        log.info(
            "Announce: %s... -> %s (seq: %d)", owner_key[:16], entry.manifest_infohash, entry.seq
        )
        return entry

    def lookup(self, owner_key: OwnerKey) -> RegisteredPointer | None:
        entry = self._entries.get(require_owner_key(owner_key))
        if entry is not None:
            log.info("Lookup: %s... -> %s", owner_key[:16], entry.manifest_infohash)
        return entry
