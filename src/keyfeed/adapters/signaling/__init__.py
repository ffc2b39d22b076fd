"""Public interface for the signaling service adapter."""

from __future__ import annotations

from .client import HttpSignalingService
from .schema import AnnounceRequest, ConflictResponse, LookupResponse

__all__ = [
    "AnnounceRequest",
    "ConflictResponse",
    "HttpSignalingService",
    "LookupResponse",
]
