"""Ports for local, durable state."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from keyfeed.domain.model import ContentId, OwnerKey, PointerRecord


@runtime_checkable
class PointerCache(Protocol):
    """Last-known ``(pointer, seq)`` per owner, one row each, upsert only."""

    def read(self, owner_key: OwnerKey) -> PointerRecord | None: ...

    def write(self, owner_key: OwnerKey, pointer: ContentId, seq: int) -> None: ...


@runtime_checkable
class ArtifactCache(Protocol):
    """Raw manifest and message artifacts kept on local disk."""

    def store_manifest(self, owner_key: OwnerKey, seq: int, data: bytes) -> None: ...

    def load_manifest(self, owner_key: OwnerKey, seq: int) -> bytes | None: ...

    def latest_manifest(self, owner_key: OwnerKey) -> tuple[int, bytes] | None: ...

    def store_message(self, owner_key: OwnerKey, timestamp: int, data: bytes) -> None: ...

    def find_message(self, owner_key: OwnerKey, timestamp: int) -> bytes | None: ...
