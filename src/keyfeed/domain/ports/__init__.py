"""Domain port definitions for adapters."""

from __future__ import annotations

from .cache import ArtifactCache, PointerCache
from .clock import Clock
from .records import RecordStore
from .signaling import SignalingService
from .transport import ContentTransport

__all__ = [
    "ArtifactCache",
    "Clock",
    "ContentTransport",
    "PointerCache",
    "RecordStore",
    "SignalingService",
]
