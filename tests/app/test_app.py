from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from keyfeed import app
from keyfeed.adapters.filesystem import KeyFileExistsError
from keyfeed.config import MissingConfigurationError
from keyfeed.domain.discovery import DeliveryResult
from keyfeed.domain.model import DeliveryStatus

if TYPE_CHECKING:
    from pathlib import Path

    from keyfeed.domain.discovery import Delivery


@pytest.fixture
def fast_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # nothing listens on the discard port, so the signaling service is unreachable
    monkeypatch.setenv("KEYFEED_SERVER_URL", "http://127.0.0.1:9")
    monkeypatch.setenv("KEYFEED_SERVER_TIMEOUT", "1")
    monkeypatch.setenv("KEYFEED_DHT_TIMEOUT", "0.2")
    monkeypatch.setenv("KEYFEED_DHT_RETRIES", "0")
    monkeypatch.setenv("KEYFEED_SETTLE_WINDOW", "0")


def test_generate_keys_refuses_to_overwrite(isolated_env: Path) -> None:
    identity = app.generate_keys()

    assert (isolated_env / "keys.json").is_file()
    assert app.load_identity().public_key == identity.public_key
    with pytest.raises(KeyFileExistsError):
        app.generate_keys()
    assert app.generate_keys(force=True).public_key != identity.public_key


def test_publish_requires_keys(fast_env: None) -> None:
    with pytest.raises(MissingConfigurationError):
        app.publish_message("hello")


@pytest.mark.usefixtures("fast_env")
def test_publish_and_find_through_local_stores() -> None:
    identity = app.generate_keys()

    first = app.publish_message("hello")
    second = app.publish_message("world")

    assert (first.seq, second.seq) == (1, 2)
    assert not second.announce.ok
    assert second.record_store.ok
    assert second.pointer_published

    seen: list[str] = []

    def on_delivery(delivery: Delivery) -> None:
        seen.append(delivery.message.content)

    result = app.find_messages(identity.public_key, on_delivery=on_delivery, allow_server=False)

    assert isinstance(result, DeliveryResult)
    assert result.status is DeliveryStatus.DELIVERED
    assert seen == ["hello", "world"]
    assert result.pointer is not None
    assert result.pointer.seq == 2


@pytest.mark.usefixtures("fast_env")
def test_find_unknown_owner() -> None:
    result = app.find_messages("cd" * 32, allow_server=False)

    assert isinstance(result, DeliveryResult)
    assert result.status is DeliveryStatus.NOT_FOUND


@pytest.mark.usefixtures("fast_env")
def test_find_from_cache_only() -> None:
    identity = app.generate_keys()
    app.publish_message("cached")

    result = app.find_messages(identity.public_key, allow_server=False, allow_dht=False)

    assert isinstance(result, DeliveryResult)
    assert result.contents == ["cached"]


@pytest.mark.usefixtures("fast_env")
def test_runtime_without_remote_sources() -> None:
    identity = app.generate_keys()

    async def scenario() -> tuple[int, list[str]]:
        runtime = app.open_runtime(allow_server=False)
        try:
            published = await app.publish_message_async(identity, "offline", runtime=runtime)
            found = await app.find_messages_async(
                identity.public_key,
                runtime=runtime,
                resolve=app.resolve_options(allow_server=False),
            )
        finally:
            await runtime.aclose()
        assert isinstance(found, DeliveryResult)
        return published.seq, found.contents

    assert asyncio.run(scenario()) == (1, ["offline"])


def test_open_runtime_skips_disabled_sources() -> None:
    runtime = app.open_runtime(allow_server=False, allow_dht=False)
    try:
        assert runtime.signaling is None
        assert runtime.records is None
    finally:
        asyncio.run(runtime.aclose())


def test_resolve_options_follow_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("KEYFEED_DHT_RETRIES", "1")

    options = app.resolve_options(allow_dht=False)

    assert options.dht_retries == 1
    assert options.allow_dht is False
    assert options.update_cache is True
