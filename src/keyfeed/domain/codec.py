"""JSON wire format for messages and manifests.

Artifacts are written as indented JSON (two spaces), the layout every copy of a
given artifact shares, so that identical artifacts hash to the same content id.
"""

from __future__ import annotations

import hashlib
import json

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr
from pydantic import ValidationError as PydanticValidationError

from keyfeed.domain.errors import ValidationError
from keyfeed.domain.model import Manifest, ManifestEntry, SignedMessage, owner_key_prefix


class WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)


class SignedMessagePayload(WireModel):
    content: StrictStr
    timestamp: StrictInt
    public_key: StrictStr = Field(alias="publicKey")
    signature: StrictStr


class ManifestEntryPayload(WireModel):
    infohash: StrictStr
    timestamp: StrictInt


class ManifestPayload(WireModel):
    public_key: StrictStr = Field(alias="publicKey")
    messages: list[ManifestEntryPayload]
    signature: StrictStr | None = None


def _dump(payload: dict[str, object]) -> bytes:
    return json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8")


def _load(data: bytes, what: str) -> object:
    try:
        return json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError(f"Invalid JSON in {what}: {exc}") from exc


def encode_message(message: SignedMessage) -> bytes:
    return _dump(
        {
            "content": message.content,
            "timestamp": message.timestamp,
            "publicKey": message.public_key,
            "signature": message.signature,
        }
    )


def decode_message(data: bytes) -> SignedMessage:
    try:
        payload = SignedMessagePayload.model_validate(_load(data, "message"))
    except PydanticValidationError as exc:
        raise ValidationError(f"Malformed message: {exc.error_count()} invalid field(s)") from exc
    return SignedMessage(
        content=payload.content,
        timestamp=payload.timestamp,
        public_key=payload.public_key,
        signature=payload.signature,
    )


def encode_manifest(manifest: Manifest) -> bytes:
    if manifest.signature is None:
        raise ValidationError("Refusing to encode an unsigned manifest")
    return _dump(
        {
            "publicKey": manifest.public_key,
            "messages": [
                {"infohash": entry.content_id, "timestamp": entry.timestamp}
                for entry in manifest.messages
            ],
            "signature": manifest.signature,
        }
    )


def decode_manifest(data: bytes) -> Manifest:
    try:
        payload = ManifestPayload.model_validate(_load(data, "manifest"))
    except PydanticValidationError as exc:
        raise ValidationError(f"Malformed manifest: {exc.error_count()} invalid field(s)") from exc
    return Manifest(
        public_key=payload.public_key,
        messages=tuple(
            ManifestEntry(content_id=entry.infohash, timestamp=entry.timestamp)
            for entry in payload.messages
        ),
        signature=payload.signature,
    )


def message_artifact_name(owner_key: str, timestamp: int) -> str:
    digest = hashlib.sha256(f"{owner_key}-{timestamp}".encode()).hexdigest()[:8]
    return f"msg-{digest}.json"


def manifest_artifact_name(owner_key: str, seq: int) -> str:
    return f"manifest-{owner_key_prefix(owner_key)}-{seq}.json"
