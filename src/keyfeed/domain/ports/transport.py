"""Port for the content distribution transport."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class ContentTransport(Protocol):
    """Swarm-style transport: immutable bytes addressed by a content-derived id.

    ``seed`` makes ``data`` fetchable by every peer and returns its content id;
    ``name`` is a human-readable file name for the seeded artifact. ``fetch``
    raises :class:`~keyfeed.domain.errors.UnavailableError` when the content
    cannot be obtained within ``timeout`` seconds.
    """

    async def seed(self, data: bytes, *, name: str) -> str: ...

    async def fetch(self, content_id: str, *, timeout: float) -> bytes: ...

    async def aclose(self) -> None: ...
