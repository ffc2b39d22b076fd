"""Content-addressed directory standing in for the swarm transport."""

from __future__ import annotations

import hashlib
from logging import getLogger
from typing import TYPE_CHECKING

from keyfeed.domain.errors import UnavailableError
from keyfeed.domain.model import require_content_id
from keyfeed.domain.ports import ContentTransport
from keyfeed.domain.scheduling import SystemClock

from .files import read_if_exists, write_atomic

if TYPE_CHECKING:
    from pathlib import Path

    from keyfeed.domain.model import ContentId
    from keyfeed.domain.ports import Clock

log = getLogger(__name__)


def content_id_for(data: bytes) -> ContentId:
    """SHA-1 hex of ``data``, the same shape as a BitTorrent infohash."""

    return hashlib.sha1(data, usedforsecurity=False).hexdigest()


class FileContentTransport:
    """Share immutable bytes through a directory every peer on the host can read.

    ``fetch`` polls for content that has not arrived yet until ``timeout``
    expires, the way a swarm client waits for peers.
    """

    def __init__(
        self,
        directory: Path,
        *,
        clock: Clock | None = None,
        poll_interval: float = 0.5,
    ) -> None:
        self.directory = directory
        self.clock = clock or SystemClock()
        self.poll_interval = poll_interval

    def path_for(self, content_id: ContentId) -> Path:
        return self.directory / content_id

    async def seed(self, data: bytes, *, name: str) -> ContentId:
        content_id = content_id_for(data)
        path = self.path_for(content_id)
        if not path.exists():
            write_atomic(path, data)
        log.debug("Seeding %s as %s (%d bytes)", name, content_id, len(data))
        return content_id

    async def fetch(self, content_id: ContentId, *, timeout: float) -> bytes:
        content_id = require_content_id(content_id)
        path = self.path_for(content_id)
        deadline = self.clock.monotonic() + timeout
        while True:
            data = read_if_exists(path)
            if data is not None:
                if content_id_for(data) == content_id:
                    return data
                log.warning("Content %s is corrupt on disk, ignoring it", content_id)
            remaining = deadline - self.clock.monotonic()
            if remaining <= 0:
                raise UnavailableError(f"Content {content_id} not available after {timeout:g}s")
            await self.clock.sleep(min(self.poll_interval, remaining))

    async def aclose(self) -> None:
        return None


if TYPE_CHECKING:
    from pathlib import Path as _Path

    _transport_check: ContentTransport = FileContentTransport(_Path())
