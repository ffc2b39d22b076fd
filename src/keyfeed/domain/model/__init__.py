"""Public domain model surface."""

from __future__ import annotations

from keyfeed.domain.model.enums import DeliveryStatus, PointerSource
from keyfeed.domain.model.feed import Manifest, ManifestEntry, SignedMessage
from keyfeed.domain.model.identity import Identity
from keyfeed.domain.model.pointers import Announcement, MutableRecord, PointerRecord
from keyfeed.domain.model.primitives import (
    PUBLIC_KEY_BYTES,
    SIGNATURE_BYTES,
    ContentId,
    OwnerKey,
    TimestampMs,
    is_content_id,
    is_owner_key,
    owner_key_prefix,
    require_content_id,
    require_owner_key,
)

__all__ = [
    "PUBLIC_KEY_BYTES",
    "SIGNATURE_BYTES",
    "Announcement",
    "ContentId",
    "DeliveryStatus",
    "Identity",
    "Manifest",
    "ManifestEntry",
    "MutableRecord",
    "OwnerKey",
    "PointerRecord",
    "PointerSource",
    "SignedMessage",
    "TimestampMs",
    "is_content_id",
    "is_owner_key",
    "owner_key_prefix",
    "require_content_id",
    "require_owner_key",
]
