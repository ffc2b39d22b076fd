"""Port for the distributed mutable-record store."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from keyfeed.domain.model import MutableRecord, OwnerKey


@runtime_checkable
class RecordStore(Protocol):
    """DHT-like key/value network holding one signed record per owner key.

    Replace-by-higher-sequence is enforced by the store: ``put`` raises
    :class:`~keyfeed.domain.errors.SequenceConflict` for a stale ``seq`` and
    :class:`~keyfeed.domain.errors.NoPeersError` while it cannot reach anyone.
    """

    max_value_bytes: int

    async def get(self, owner_key: OwnerKey, *, timeout: float) -> MutableRecord | None: ...

    async def put(self, owner_key: OwnerKey, record: MutableRecord) -> None: ...

    async def aclose(self) -> None: ...
