"""Manifest and message files kept next to the local pointer cache."""

from __future__ import annotations

import re
from logging import getLogger
from typing import TYPE_CHECKING

from keyfeed.domain.codec import decode_manifest, manifest_artifact_name, message_artifact_name
from keyfeed.domain.errors import ValidationError
from keyfeed.domain.model import owner_key_prefix, require_owner_key
from keyfeed.domain.ports import ArtifactCache

from .files import read_if_exists, write_atomic

if TYPE_CHECKING:
    from pathlib import Path

    from keyfeed.domain.model import OwnerKey

log = getLogger(__name__)

_MANIFEST_SEQ_RE = re.compile(r"^manifest-[0-9a-fA-F]{8}-(\d+)\.json$")


class FileArtifactCache:
    """Raw artifacts in one directory, named after the owner key they belong to.

    Manifest file names only carry an 8-character key prefix, so
    :meth:`latest_manifest` confirms the owner inside the file before
    returning it.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def store_manifest(self, owner_key: OwnerKey, seq: int, data: bytes) -> None:
        name = manifest_artifact_name(require_owner_key(owner_key), seq)
        write_atomic(self.directory / name, data)

    def load_manifest(self, owner_key: OwnerKey, seq: int) -> bytes | None:
        return read_if_exists(
            self.directory / manifest_artifact_name(require_owner_key(owner_key), seq)
        )

    def manifest_seqs(self, owner_key: OwnerKey) -> list[int]:
        """Sequence numbers of locally stored manifests for ``owner_key``'s prefix, newest first."""

        prefix = owner_key_prefix(require_owner_key(owner_key))
        seqs: list[int] = []
        if not self.directory.is_dir():
            return seqs
        for path in self.directory.glob(f"manifest-{prefix}-*.json"):
            match = _MANIFEST_SEQ_RE.match(path.name)
            if match is not None:
                seqs.append(int(match.group(1)))
        return sorted(seqs, reverse=True)

    def latest_manifest(self, owner_key: OwnerKey) -> tuple[int, bytes] | None:
        owner_key = require_owner_key(owner_key)
        for seq in self.manifest_seqs(owner_key):
            data = self.load_manifest(owner_key, seq)
            if data is None:
                continue
            try:
                manifest = decode_manifest(data)
            except ValidationError as exc:
                log.debug("Skipping unreadable local manifest seq %d: %s", seq, exc)
                continue
            if manifest.public_key.lower() == owner_key:
                return seq, data
        return None

    def store_message(self, owner_key: OwnerKey, timestamp: int, data: bytes) -> None:
        write_atomic(
            self.directory / message_artifact_name(require_owner_key(owner_key), timestamp), data
        )

    def find_message(self, owner_key: OwnerKey, timestamp: int) -> bytes | None:
        return read_if_exists(
            self.directory / message_artifact_name(require_owner_key(owner_key), timestamp)
        )


if TYPE_CHECKING:
    from pathlib import Path as _Path

    _artifacts_check: ArtifactCache = FileArtifactCache(_Path())
