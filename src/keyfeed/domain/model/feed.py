"""Signed messages and the manifest that lists them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from keyfeed.domain.model.primitives import ContentId, OwnerKey, TimestampMs


@dataclass(frozen=True, slots=True)
class SignedMessage:
    content: str
    timestamp: TimestampMs
    public_key: OwnerKey
    signature: str


@dataclass(frozen=True, slots=True)
class ManifestEntry:
    """Pointer to one signed message plus the timestamp used to find it locally."""

    content_id: ContentId
    timestamp: TimestampMs


@dataclass(frozen=True, slots=True)
class Manifest:
    """Append-only, publish-ordered list of message pointers for one owner.

    An unsigned manifest carries ``signature=None``; only signed manifests are
    ever distributed.
    """

    public_key: OwnerKey
    messages: tuple[ManifestEntry, ...] = field(default_factory=tuple)
    signature: str | None = None

    @classmethod
    def empty(cls, public_key: OwnerKey) -> Manifest:
        return cls(public_key=public_key)

    def append(self, entry: ManifestEntry) -> Manifest:
        """Return an unsigned copy with ``entry`` appended after every existing entry."""

        return Manifest(public_key=self.public_key, messages=(*self.messages, entry))

    def extends(self, other: Manifest) -> bool:
        """Return whether this manifest keeps ``other``'s entries as an unchanged prefix."""

        return (
            self.public_key == other.public_key
            and self.messages[: len(other.messages)] == other.messages
        )

    def __len__(self) -> int:
        return len(self.messages)
