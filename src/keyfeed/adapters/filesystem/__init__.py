"""Local-disk adapters: content transport, artifact cache and key file."""

from __future__ import annotations

from .artifacts import FileArtifactCache
from .keyfile import KeyFile, KeyFileExistsError
from .transport import FileContentTransport, content_id_for

__all__ = [
    "FileArtifactCache",
    "FileContentTransport",
    "KeyFile",
    "KeyFileExistsError",
    "content_id_for",
]
