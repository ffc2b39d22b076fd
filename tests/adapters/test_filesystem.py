from __future__ import annotations

import asyncio
import json
import stat
from pathlib import Path  # noqa: TC003

import pytest

from keyfeed.adapters.filesystem import (
    FileArtifactCache,
    FileContentTransport,
    KeyFile,
    KeyFileExistsError,
    content_id_for,
)
from keyfeed.config import MissingConfigurationError
from keyfeed.domain.codec import encode_manifest
from keyfeed.domain.errors import UnavailableError, ValidationError
from keyfeed.domain.model import Identity, Manifest
from keyfeed.domain.signing import sign_manifest
from tests.helpers.clock import VirtualClock, run_virtual


def _manifest_bytes(identity: Identity) -> bytes:
    return encode_manifest(sign_manifest(Manifest.empty(identity.public_key), identity))


def test_seed_then_fetch(tmp_path: Path) -> None:
    transport = FileContentTransport(tmp_path / "content")

    async def scenario() -> tuple[str, bytes]:
        content_id = await transport.seed(b"payload", name="x.json")
        return content_id, await transport.fetch(content_id, timeout=1)

    content_id, data = asyncio.run(scenario())

    assert content_id == content_id_for(b"payload")
    assert len(content_id) == 40
    assert data == b"payload"
    assert transport.path_for(content_id).read_bytes() == b"payload"


def test_fetch_waits_for_late_content(tmp_path: Path) -> None:
    clock = VirtualClock()
    transport = FileContentTransport(tmp_path, clock=clock, poll_interval=1)
    content_id = content_id_for(b"late")

    async def scenario() -> bytes:
        async def arrive() -> None:
            await clock.sleep(2.5)
            await transport.seed(b"late", name="late")

        task = asyncio.ensure_future(arrive())
        data = await transport.fetch(content_id, timeout=10)
        await task
        return data

    assert run_virtual(clock, scenario()) == b"late"
    assert clock.monotonic() == 3


def test_fetch_times_out(tmp_path: Path) -> None:
    clock = VirtualClock()
    transport = FileContentTransport(tmp_path, clock=clock, poll_interval=1)

    with pytest.raises(UnavailableError):
        run_virtual(clock, transport.fetch("0" * 40, timeout=2.5))
    assert clock.monotonic() == 2.5


def test_fetch_ignores_corrupt_content(tmp_path: Path) -> None:
    clock = VirtualClock()
    transport = FileContentTransport(tmp_path, clock=clock)
    content_id = content_id_for(b"real")
    transport.path_for(content_id).write_bytes(b"corrupt")

    with pytest.raises(UnavailableError):
        run_virtual(clock, transport.fetch(content_id, timeout=1))


def test_artifact_cache_round_trip(tmp_path: Path, identity: Identity) -> None:
    cache = FileArtifactCache(tmp_path / "messages")
    owner = identity.public_key
    data = _manifest_bytes(identity)

    assert cache.latest_manifest(owner) is None
    cache.store_manifest(owner, 2, data)
    cache.store_message(owner, 10, b"message")

    assert cache.load_manifest(owner, 2) == data
    assert cache.load_manifest(owner, 3) is None
    assert cache.find_message(owner, 10) == b"message"
    assert cache.find_message(owner, 11) is None


def test_latest_manifest_prefers_highest_seq(tmp_path: Path, identity: Identity) -> None:
    cache = FileArtifactCache(tmp_path)
    owner = identity.public_key
    data = _manifest_bytes(identity)
    for seq in (2, 10, 9):
        cache.store_manifest(owner, seq, data)

    assert cache.manifest_seqs(owner) == [10, 9, 2]
    assert cache.latest_manifest(owner) == (10, data)


def test_latest_manifest_skips_unreadable_and_foreign_files(
    tmp_path: Path, identity: Identity, other_identity: Identity
) -> None:
    cache = FileArtifactCache(tmp_path)
    owner = identity.public_key
    cache.store_manifest(owner, 1, _manifest_bytes(identity))
    cache.store_manifest(owner, 2, b"{broken")
    # same file name prefix, different owner inside
    foreign = encode_manifest(
        sign_manifest(Manifest.empty(other_identity.public_key), other_identity)
    )
    (tmp_path / f"manifest-{owner[:8]}-3.json").write_bytes(foreign)

    latest = cache.latest_manifest(owner)

    assert latest is not None
    assert latest[0] == 1


def test_keyfile_create_and_load(tmp_path: Path) -> None:
    keyfile = KeyFile(tmp_path / "keys.json")

    identity = keyfile.create()
    payload = json.loads(keyfile.path.read_text())

    assert set(payload) == {"publicKey", "privateKey", "createdAt"}
    assert payload["createdAt"].endswith("Z")
    assert stat.S_IMODE(keyfile.path.stat().st_mode) == 0o600
    assert keyfile.load().public_key == identity.public_key
    assert keyfile.public_key() == identity.public_key


def test_keyfile_refuses_overwrite_without_force(tmp_path: Path) -> None:
    keyfile = KeyFile(tmp_path / "keys.json")
    original = keyfile.create()

    with pytest.raises(KeyFileExistsError):
        keyfile.create()

    replaced = keyfile.create(force=True)
    assert replaced.public_key != original.public_key
    assert keyfile.public_key() == replaced.public_key


def test_keyfile_missing(tmp_path: Path) -> None:
    with pytest.raises(MissingConfigurationError):
        KeyFile(tmp_path / "keys.json").load()


@pytest.mark.parametrize(
    "content",
    [
        "not json",
        json.dumps({"publicKey": "ab" * 32}),
        json.dumps({"publicKey": "ab" * 32, "privateKey": "00" * 32}),
    ],
)
def test_keyfile_malformed(tmp_path: Path, content: str) -> None:
    path = tmp_path / "keys.json"
    path.write_text(content)

    with pytest.raises(ValidationError):
        KeyFile(path).load()
