"""Canonical serialisation and Ed25519 signatures for every signed artifact.

Canonical bytes are the single source of truth for what gets signed. Messages,
manifests and announcements use compact JSON with keys in a fixed order and no
ASCII escaping, which is byte-for-byte what ``JSON.stringify`` produces for the
same objects, so signatures interoperate with other implementations of the
feed format. Records for the mutable-record store use the BEP44 signing buffer.

Every ``verify*`` function returns ``False`` for malformed input instead of
raising.
"""

from __future__ import annotations

import json
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING, cast

from nacl.exceptions import BadSignatureError, CryptoError
from nacl.signing import VerifyKey

from keyfeed.domain.errors import SigningError, ValidationError
from keyfeed.domain.model import (
    PUBLIC_KEY_BYTES,
    SIGNATURE_BYTES,
    Manifest,
    ManifestEntry,
    MutableRecord,
    SignedMessage,
    is_content_id,
    is_owner_key,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from keyfeed.domain.model import Announcement, Identity


def canonical_json(payload: Mapping[str, object]) -> bytes:
    """Compact UTF-8 JSON; raises :class:`ValidationError` for text UTF-8 cannot encode."""

    text = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    try:
        return text.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise ValidationError(f"Payload is not encodable as UTF-8: {exc.reason}") from exc


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def message_signing_bytes(content: str, timestamp: int, public_key: str) -> bytes:
    return canonical_json({"content": content, "timestamp": timestamp, "publicKey": public_key})


def manifest_signing_bytes(public_key: str, messages: Iterable[ManifestEntry]) -> bytes:
    entries = [{"infohash": entry.content_id, "timestamp": entry.timestamp} for entry in messages]
    return canonical_json({"publicKey": public_key, "messages": entries})


def announcement_signing_bytes(owner_key: str, pointer: str, seq: int) -> bytes:
    return canonical_json({"publicKey": owner_key, "manifestInfohash": pointer, "seq": seq})


def record_signing_bytes(seq: int, value: bytes) -> bytes:
    """BEP44 signing buffer for a mutable item without salt."""

    return b"3:seqi%de1:v%d:" % (seq, len(value)) + value


def sign(data: bytes, identity: Identity) -> bytes:
    """Sign ``data`` with the identity's private key, returning the 64-byte signature."""

    try:
        return identity.signing_key.sign(data).signature
    except (CryptoError, TypeError, ValueError) as exc:
        raise SigningError(f"Could not sign with key {identity.public_key[:16]}...") from exc


def _as_bytes(value: bytes | str, expected_length: int) -> bytes | None:
    if isinstance(value, str):
        try:
            value = bytes.fromhex(value)
        except ValueError:
            return None
    if not isinstance(value, bytes | bytearray) or len(value) != expected_length:
        return None
    return bytes(value)


def verify(data: bytes, signature: bytes | str, public_key: bytes | str) -> bool:
    """Return whether ``signature`` over ``data`` verifies for ``public_key``."""

    raw_signature = _as_bytes(signature, SIGNATURE_BYTES)
    raw_key = _as_bytes(public_key, PUBLIC_KEY_BYTES)
    if raw_signature is None or raw_key is None or not isinstance(data, bytes | bytearray):
        return False
    try:
        VerifyKey(raw_key).verify(bytes(data), raw_signature)
    except (BadSignatureError, CryptoError, TypeError, ValueError):
        return False
    return True


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def sign_message(
    content: str, identity: Identity, *, timestamp: int | None = None
) -> SignedMessage:
    """Create a signed message; ``timestamp`` defaults to the wall clock in milliseconds.

    Raises :class:`ValidationError` when ``content`` cannot be encoded as UTF-8.
    """

    stamp = _now_ms() if timestamp is None else timestamp
    signature = sign(message_signing_bytes(content, stamp, identity.public_key), identity)
    return SignedMessage(
        content=content,
        timestamp=stamp,
        public_key=identity.public_key,
        signature=signature.hex(),
    )


def verify_message(message: SignedMessage | Mapping[str, object]) -> bool:
    if isinstance(message, Mapping):
        content = message.get("content")
        timestamp = message.get("timestamp")
        public_key = message.get("publicKey")
        signature = message.get("signature")
    elif isinstance(message, SignedMessage):
        content = message.content
        timestamp = message.timestamp
        public_key = message.public_key
        signature = message.signature
    else:
        return False

    if not isinstance(content, str) or not _is_int(timestamp):
        return False
    if not is_owner_key(public_key) or not isinstance(signature, str):
        return False
    try:
        payload = message_signing_bytes(content, cast("int", timestamp), cast("str", public_key))
    except ValidationError:
        return False
    return verify(payload, signature, cast("str", public_key))


def sign_manifest(manifest: Manifest, identity: Identity) -> Manifest:
    """Return ``manifest`` signed by its owner.

    Only the owner can sign a manifest: a manifest naming another public key
    would never verify, so this is refused up front.
    """

    if manifest.public_key != identity.public_key:
        raise SigningError(
            f"Manifest belongs to {manifest.public_key[:16]}..., "
            f"cannot sign with {identity.public_key[:16]}..."
        )
    signature = sign(manifest_signing_bytes(manifest.public_key, manifest.messages), identity)
    return Manifest(
        public_key=manifest.public_key,
        messages=manifest.messages,
        signature=signature.hex(),
    )


def _entries_well_formed(entries: object) -> bool:
    if not isinstance(entries, tuple | list):
        return False
    return all(
        isinstance(entry, ManifestEntry)
        and is_content_id(entry.content_id)
        and _is_int(entry.timestamp)
        for entry in entries
    )


def verify_manifest(manifest: Manifest) -> bool:
    if not isinstance(manifest, Manifest):
        return False
    if not is_owner_key(manifest.public_key) or not isinstance(manifest.signature, str):
        return False
    if not _entries_well_formed(manifest.messages):
        return False
    try:
        payload = manifest_signing_bytes(manifest.public_key, manifest.messages)
    except ValidationError:
        return False
    return verify(payload, manifest.signature, manifest.public_key)


def sign_announcement(owner_key: str, pointer: str, seq: int, identity: Identity) -> str:
    if owner_key != identity.public_key:
        raise SigningError("Announcements can only be signed by their owner")
    return sign(announcement_signing_bytes(owner_key, pointer, seq), identity).hex()


def verify_announcement(announcement: Announcement) -> bool:
    if not is_owner_key(announcement.owner_key) or not _is_int(announcement.seq):
        return False
    if not isinstance(announcement.pointer, str) or announcement.signature is None:
        return False
    try:
        payload = announcement_signing_bytes(
            announcement.owner_key, announcement.pointer, announcement.seq
        )
    except ValidationError:
        return False
    return verify(payload, announcement.signature, announcement.owner_key)


def sign_record(value: bytes, seq: int, identity: Identity) -> MutableRecord:
    signature = sign(record_signing_bytes(seq, value), identity)
    return MutableRecord(seq=seq, value=value, signature=signature)


def verify_record(owner_key: str, record: MutableRecord) -> bool:
    if not _is_int(record.seq) or not isinstance(record.value, bytes | bytearray):
        return False
    payload = record_signing_bytes(record.seq, bytes(record.value))
    return verify(payload, record.signature, owner_key)
