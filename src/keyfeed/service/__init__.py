"""Signaling service: announce and look up manifest pointers over HTTP."""

from __future__ import annotations

from .api import create_app
from .registry import AnnouncementRegistry, RegisteredPointer

__all__ = ["AnnouncementRegistry", "RegisteredPointer", "create_app"]
