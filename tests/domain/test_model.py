from __future__ import annotations

from datetime import UTC, datetime

import pytest

from keyfeed.domain.errors import ValidationError
from keyfeed.domain.model import (
    Identity,
    Manifest,
    ManifestEntry,
    MutableRecord,
    PointerRecord,
    PointerSource,
    is_content_id,
    require_content_id,
    require_owner_key,
)

NOW = datetime(2024, 1, 1, tzinfo=UTC)


def _record(seq: int, source: PointerSource) -> PointerRecord:
    return PointerRecord("ab" * 32, "c" * 40, seq, source, NOW)


def test_owner_key_is_normalised() -> None:
    assert require_owner_key("AB" * 32) == "ab" * 32
    with pytest.raises(ValidationError):
        require_owner_key("ab" * 31)
    with pytest.raises(ValidationError):
        require_owner_key(None)


def test_content_id_format() -> None:
    assert is_content_id("F" * 40)
    assert not is_content_id("f" * 39)
    assert require_content_id("F" * 40) == "f" * 40


def test_identity_round_trips_through_seed(identity: Identity) -> None:
    restored = Identity.from_seed_hex(identity.seed_hex, public_key=identity.public_key)

    assert restored.public_key == identity.public_key
    assert identity.seed_hex not in repr(identity)


def test_identity_rejects_mismatched_halves(identity: Identity, other_identity: Identity) -> None:
    with pytest.raises(ValidationError):
        Identity.from_seed_hex(identity.seed_hex, public_key=other_identity.public_key)
    with pytest.raises(ValidationError):
        Identity.from_seed_hex("zz")
    with pytest.raises(ValidationError):
        Identity.from_seed_hex("00" * 16)


def test_manifest_append_keeps_prefix() -> None:
    owner = "ab" * 32
    first = Manifest.empty(owner).append(ManifestEntry("1" * 40, 1))
    second = first.append(ManifestEntry("2" * 40, 2))

    assert len(second) == 2
    assert second.extends(first)
    assert not first.extends(second)
    assert second.signature is None
    assert first.messages == (ManifestEntry("1" * 40, 1),)


def test_pointer_precedence() -> None:
    assert _record(5, PointerSource.CACHE).outranks(_record(4, PointerSource.STORE))
    assert _record(5, PointerSource.STORE).outranks(_record(5, PointerSource.SERVICE))
    assert _record(5, PointerSource.SERVICE).outranks(_record(5, PointerSource.CACHE))
    assert not _record(5, PointerSource.CACHE).outranks(_record(5, PointerSource.CACHE))
    assert _record(1, PointerSource.CACHE).outranks(None)


def test_mutable_record_pointer_decodes_value() -> None:
    assert MutableRecord(seq=1, value=b"c" * 40, signature=b"").pointer == "c" * 40
