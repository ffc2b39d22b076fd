"""Domain enumerations."""

from __future__ import annotations

from enum import StrEnum


class PointerSource(StrEnum):
    """Where a pointer record was observed."""

    CACHE = "cache"
    SERVICE = "service"
    STORE = "store"


# tie-break order for equal sequence numbers; higher wins
SOURCE_PRECEDENCE: dict[PointerSource, int] = {
    PointerSource.CACHE: 0,
    PointerSource.SERVICE: 1,
    PointerSource.STORE: 2,
}


class DeliveryStatus(StrEnum):
    NOT_FOUND = "not_found"
    UNCHANGED = "unchanged"
    UNAVAILABLE = "unavailable"
    REJECTED = "rejected"
    DELIVERED = "delivered"
