"""Port for the optional signaling/lookup service."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from keyfeed.domain.model import Announcement, OwnerKey


@runtime_checkable
class SignalingService(Protocol):
    async def announce(self, announcement: Announcement) -> int:
        """Register ``announcement`` and return the sequence number the service accepted."""
        ...

    async def lookup(self, owner_key: OwnerKey, *, timeout: float) -> Announcement | None:
        """Return the latest announcement for ``owner_key`` or ``None`` when unknown."""
        ...

    async def aclose(self) -> None: ...
