"""Domain primitives: scalar aliases and their format checks."""

from __future__ import annotations

import re
from typing import Final

from keyfeed.domain.errors import ValidationError

type OwnerKey = str
type ContentId = str
type TimestampMs = int

PUBLIC_KEY_BYTES: Final[int] = 32
SEED_BYTES: Final[int] = 32
SIGNATURE_BYTES: Final[int] = 64

_OWNER_KEY_RE: Final = re.compile(r"^[0-9a-fA-F]{64}$")
_CONTENT_ID_RE: Final = re.compile(r"^[0-9a-fA-F]{40}$")


def is_owner_key(value: object) -> bool:
    return isinstance(value, str) and _OWNER_KEY_RE.fullmatch(value) is not None


def is_content_id(value: object) -> bool:
    return isinstance(value, str) and _CONTENT_ID_RE.fullmatch(value) is not None


def require_owner_key(value: object) -> OwnerKey:
    """Return ``value`` lower-cased, or raise if it is not a 64-char hex key."""

    if not is_owner_key(value):
        raise ValidationError(
            f"Invalid public key format: expected 64 hex characters, got {value!r}"
        )
    return str(value).lower()


def require_content_id(value: object) -> ContentId:
    if not is_content_id(value):
        raise ValidationError(f"Invalid content id: expected 40 hex characters, got {value!r}")
    return str(value).lower()


def owner_key_prefix(owner_key: OwnerKey) -> str:
    return owner_key[:8]
