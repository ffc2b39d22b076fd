from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from keyfeed.domain.codec import decode_manifest, decode_message
from keyfeed.domain.model import Announcement
from keyfeed.domain.publishing import PublishOptions, SinkOutcome
from keyfeed.domain.resolution import ResolveOptions
from keyfeed.domain.signing import sign_announcement, verify_manifest, verify_message
from tests.helpers.network import Network

if TYPE_CHECKING:
    from keyfeed.domain.model import Identity


@pytest.fixture
def network() -> Network:
    return Network()


def test_publish_builds_append_only_feed(network: Network, identity: Identity) -> None:
    first, second = network.publish(identity, "hello", "world")
    owner = identity.public_key

    assert (first.seq, second.seq) == (1, 2)
    assert second.previous_seq == 1
    assert second.manifest.extends(first.manifest)
    assert [entry.content_id for entry in second.manifest.messages] == [
        first.entry.content_id,
        second.entry.content_id,
    ]
    assert verify_manifest(second.manifest)
    assert second.pointer_published
    assert second.cached

    stored = decode_manifest(network.transport.blobs[second.pointer])
    assert stored == second.manifest
    contents = [
        decode_message(network.transport.blobs[entry.content_id]).content
        for entry in stored.messages
    ]
    assert contents == ["hello", "world"]

    assert network.signaling.registry.lookup(owner).seq == 2  # type: ignore[union-attr]
    assert network.records.records[owner].seq == 2
    assert network.records.records[owner].pointer == second.pointer
    assert network.publisher.cache.rows[owner] == (second.pointer, 2)
    assert network.publisher.artifacts.load_manifest(owner, 2) is not None


def test_message_is_signed_and_kept_locally(network: Network, identity: Identity) -> None:
    (result,) = network.publish(identity, "hi")

    assert verify_message(result.message)
    assert result.message.timestamp == network.clock.wall_time_ms()
    local = network.publisher.artifacts.find_message(identity.public_key, result.message.timestamp)
    assert local is not None
    assert decode_message(local) == result.message
    assert network.transport.names[result.entry.content_id].startswith("msg-")
    assert network.transport.names[result.pointer].startswith("manifest-")


def test_timestamps_stay_unique_within_a_feed(network: Network, identity: Identity) -> None:
    options = PublishOptions(resolve=ResolveOptions(allow_dht=False))
    reconciler = network.reconciler(options, with_records=False)

    async def publish_twice() -> tuple[int, int]:
        first = await reconciler.publish(identity, "a")
        second = await reconciler.publish(identity, "b")
        return first.message.timestamp, second.message.timestamp

    first, second = network.run(publish_twice())

    assert second == first + 1


def test_continues_from_record_store_when_service_forgot(
    network: Network, identity: Identity
) -> None:
    original, _ = network.run(network.publish_by_hand(identity, ["a", "b", "c"], seq=7))
    network.signaling.registry._entries.clear()

    (result,) = network.publish(identity, "d")

    assert result.previous_seq == 7
    assert result.seq == 8
    assert result.announce.ok
    assert result.record_store.ok
    assert len(result.manifest) == 4
    assert result.manifest.extends(original)


def test_fresh_machine_continues_from_transport(network: Network, identity: Identity) -> None:
    network.publish(identity, "one", "two")
    network.publisher.artifacts.manifests.clear()

    (result,) = network.publish(identity, "three")

    assert result.seq == 3
    assert len(result.manifest) == 3
    assert network.publisher.artifacts.load_manifest(identity.public_key, 2) is not None


def test_unreachable_manifest_falls_back_to_local_files(
    network: Network, identity: Identity
) -> None:
    first, _ = network.publish(identity, "one", "two")
    owner = identity.public_key
    # only seq 1 survives locally and the seq 2 manifest is gone from the swarm
    del network.publisher.artifacts.manifests[(owner, 2)]
    network.transport.offline.add(network.records.records[owner].pointer)

    (result,) = network.publish(identity, "three")

    assert result.seq == 3
    assert [entry.content_id for entry in result.manifest.messages] == [
        first.entry.content_id,
        result.entry.content_id,
    ]


def test_nothing_recoverable_starts_empty_but_keeps_seq_increasing(
    network: Network, identity: Identity, caplog: pytest.LogCaptureFixture
) -> None:
    network.publish(identity, "one")
    owner = identity.public_key
    network.publisher.artifacts.manifests.clear()
    network.transport.offline.add(network.records.records[owner].pointer)

    (result,) = network.publish(identity, "two")

    assert result.seq == 2
    assert len(result.manifest) == 1
    assert result.announce.ok
    assert "continuing from an empty manifest" in caplog.text


def test_record_store_put_waits_for_peers(network: Network, identity: Identity) -> None:
    network.records.put_no_peers = 2
    options = PublishOptions(resolve=ResolveOptions(allow_dht=False))
    reconciler = network.reconciler(options)

    result = network.run(reconciler.publish(identity, "hi"))

    assert result.record_store.ok
    assert network.clock.sleeps.count(5.0) >= 2
    assert network.records.records[identity.public_key].seq == 1


def test_record_store_gives_up_after_retries(network: Network, identity: Identity) -> None:
    network.records.put_no_peers = 10
    options = PublishOptions(put_retries=2, resolve=ResolveOptions(allow_dht=False))

    result = network.run(network.reconciler(options).publish(identity, "hi"))

    assert not result.record_store.ok
    assert result.announce.ok
    assert result.cached
    assert network.records.put_no_peers == 7


def test_no_sink_accepts_the_pointer(
    network: Network, identity: Identity, caplog: pytest.LogCaptureFixture
) -> None:
    network.signaling.unreachable = True
    network.records.no_peers = True
    options = PublishOptions(put_retries=0, resolve=ResolveOptions(dht_timeout=10))

    result = network.run(network.reconciler(options).publish(identity, "hi"))

    assert not result.pointer_published
    assert not result.cached
    assert network.publisher.cache.rows == {}
    assert result.pointer in network.transport.blobs
    assert "keep this publisher running" in caplog.text


def test_announce_conflict_is_reported_not_raised(network: Network, identity: Identity) -> None:
    owner = identity.public_key
    pointer = "f" * 40
    signature = sign_announcement(owner, pointer, 3, identity)
    network.signaling.registry.register(Announcement(owner, pointer, 3, signature))
    options = PublishOptions(resolve=ResolveOptions(allow_server=False, dht_timeout=1))

    result = network.run(network.reconciler(options).publish(identity, "hi"))

    assert result.seq == 1
    assert not result.announce.ok
    assert result.announce.error is not None
    assert result.record_store.ok


def test_oversized_pointer_is_refused(network: Network, identity: Identity) -> None:
    network.records.max_value_bytes = 10
    reconciler = network.reconciler()

    outcome = network.run(reconciler.put_record(identity, "a" * 40, 1))

    assert not outcome.ok
    assert "at most 10" in (outcome.error or "")
    assert network.records.puts == []


def test_sinks_not_configured(network: Network, identity: Identity) -> None:
    reconciler = network.reconciler(with_records=False)
    reconciler.signaling = None

    announce = network.run(reconciler.announce(identity, "a" * 40, 1))
    put = network.run(reconciler.put_record(identity, "a" * 40, 1))

    assert announce == SinkOutcome.not_configured("signaling")
    assert put.skipped


def test_keep_alive_reannounces_periodically(network: Network, identity: Identity) -> None:
    (result,) = network.publish(identity, "hi")
    reconciler = network.reconciler()
    started = network.clock.monotonic()
    puts_before = len(network.records.puts)

    cycles = network.run(reconciler.keep_alive(identity, result, interval=60, max_cycles=2))

    assert cycles == 2
    assert network.clock.monotonic() == started + 120
    assert len(network.records.puts) == puts_before + 2
    assert network.records.records[identity.public_key].seq == result.seq
