"""Publisher-side read-modify-write of the signed manifest."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from keyfeed.domain.codec import (
    decode_manifest,
    encode_manifest,
    encode_message,
    manifest_artifact_name,
    message_artifact_name,
)
from keyfeed.domain.errors import (
    NoPeersError,
    SequenceConflict,
    UnavailableError,
    ValidationError,
    VerificationFailure,
)
from keyfeed.domain.model import Announcement, Manifest, ManifestEntry
from keyfeed.domain.resolution import ResolveOptions
from keyfeed.domain.scheduling import PollScheduler, race_with_deadline
from keyfeed.domain.signing import (
    sign_announcement,
    sign_manifest,
    sign_message,
    sign_record,
    verify_manifest,
)

if TYPE_CHECKING:
    from keyfeed.domain.model import ContentId, Identity, OwnerKey, PointerRecord, SignedMessage
    from keyfeed.domain.ports import (
        ArtifactCache,
        Clock,
        ContentTransport,
        PointerCache,
        RecordStore,
        SignalingService,
    )
    from keyfeed.domain.resolution import PointerResolver

log = getLogger(__name__)

_SINK_ERRORS = (UnavailableError, SequenceConflict, VerificationFailure, ValidationError)


@dataclass(frozen=True, slots=True)
class PublishOptions:
    put_retries: int = 3
    put_retry_interval: float = 5.0
    seed_timeout: float = 30.0
    fetch_timeout: float = 60.0
    resolve: ResolveOptions | None = None


@dataclass(frozen=True, slots=True)
class SinkOutcome:
    """Result of pushing the new pointer to one sink."""

    sink: str
    ok: bool
    skipped: bool = False
    error: str | None = None

    @classmethod
    def succeeded(cls, sink: str) -> SinkOutcome:
        return cls(sink=sink, ok=True)

    @classmethod
    def failed(cls, sink: str, error: Exception | str) -> SinkOutcome:
        return cls(sink=sink, ok=False, error=str(error))

    @classmethod
    def not_configured(cls, sink: str) -> SinkOutcome:
        return cls(sink=sink, ok=False, skipped=True, error="not configured")


@dataclass(frozen=True, slots=True)
class PublishResult:
    manifest: Manifest
    entry: ManifestEntry
    message: SignedMessage
    pointer: ContentId
    seq: int
    previous_seq: int
    announce: SinkOutcome
    record_store: SinkOutcome
    cached: bool

    @property
    def pointer_published(self) -> bool:
        """Whether at least one sink now points subscribers at the new manifest."""

        return self.announce.ok or self.record_store.ok


@dataclass(frozen=True, slots=True)
class _Basis:
    manifest: Manifest
    seq: int
    origin: str


class ManifestReconciler:
    """Append a message to an owner's manifest and propagate the new pointer.

    Only one reconciler may publish for a given identity at a time; sequence
    numbers are bumped from the best pointer this process can see.
    """

    def __init__(
        self,
        *,
        resolver: PointerResolver,
        transport: ContentTransport,
        artifacts: ArtifactCache,
        cache: PointerCache,
        clock: Clock,
        signaling: SignalingService | None = None,
        records: RecordStore | None = None,
        options: PublishOptions | None = None,
    ) -> None:
        self.resolver = resolver
        self.transport = transport
        self.artifacts = artifacts
        self.cache = cache
        self.clock = clock
        self.signaling = signaling
        self.records = records
        self.options = options or PublishOptions()

    async def publish(self, identity: Identity, content: str) -> PublishResult:
        owner_key = identity.public_key
        current = await self.resolver.resolve(owner_key, self.options.resolve)
        basis = await self._load_basis(owner_key, current)
        previous_seq = max(current.seq if current is not None else 0, basis.seq)
        next_seq = previous_seq + 1
        log.info(
            "Publishing seq %d on top of %d existing message(s) from %s",
            next_seq,
            len(basis.manifest),
            basis.origin,
        )

        message = sign_message(content, identity, timestamp=self._next_timestamp(basis.manifest))
        message_bytes = encode_message(message)
        self.artifacts.store_message(owner_key, message.timestamp, message_bytes)
        message_id = await self._seed(
            message_bytes, name=message_artifact_name(owner_key, message.timestamp)
        )
        log.info("Message content id: %s", message_id)

        entry = ManifestEntry(content_id=message_id, timestamp=message.timestamp)
        manifest = sign_manifest(basis.manifest.append(entry), identity)
        manifest_bytes = encode_manifest(manifest)
        self.artifacts.store_manifest(owner_key, next_seq, manifest_bytes)
        pointer = await self._seed(manifest_bytes, name=manifest_artifact_name(owner_key, next_seq))
        log.info("Manifest content id: %s (seq %d)", pointer, next_seq)

        announce, record_store = await asyncio.gather(
            self.announce(identity, pointer, next_seq),
            self.put_record(identity, pointer, next_seq),
        )

        cached = False
        if announce.ok or record_store.ok:
            self.cache.write(owner_key, pointer, next_seq)
            cached = True
        else:
            log.warning(
                "Neither the signaling service (%s) nor the record store (%s) accepted seq %d. "
                "The manifest stays retrievable by content id %s: keep this publisher running "
                "to seed it and share the id out of band, then publish again once a sink is "
                "reachable.",
                announce.error,
                record_store.error,
                next_seq,
                pointer,
            )

        return PublishResult(
            manifest=manifest,
            entry=entry,
            message=message,
            pointer=pointer,
            seq=next_seq,
            previous_seq=previous_seq,
            announce=announce,
            record_store=record_store,
            cached=cached,
        )

    def _next_timestamp(self, basis: Manifest) -> int:
        # timestamps identify messages locally, so they stay unique per manifest
        now = self.clock.wall_time_ms()
        if basis.messages:
            now = max(now, max(entry.timestamp for entry in basis.messages) + 1)
        return now

    async def _seed(self, data: bytes, *, name: str) -> ContentId:
        return await race_with_deadline(
            self.clock,
            self.transport.seed(data, name=name),
            self.options.seed_timeout,
            what=f"Seeding {name}",
        )

    def _usable_basis(self, owner_key: OwnerKey, data: bytes, origin: str) -> Manifest | None:
        try:
            manifest = decode_manifest(data)
        except ValidationError as exc:
            log.warning("Ignoring manifest from %s: %s", origin, exc)
            return None
        if manifest.public_key.lower() != owner_key or not verify_manifest(manifest):
            log.warning("Ignoring manifest from %s: signature does not verify for this key", origin)
            return None
        return manifest

    async def _load_basis(self, owner_key: OwnerKey, current: PointerRecord | None) -> _Basis:
        """Find the manifest to append to.

        Tried in order: the local artifact at the resolved seq, the transport,
        then the newest local artifact of any seq. Only when all of them fail
        does publishing continue from an empty manifest.
        """

        if current is not None:
            local = self.artifacts.load_manifest(owner_key, current.seq)
            if local is not None:
                manifest = self._usable_basis(owner_key, local, "local files")
                if manifest is not None:
                    return _Basis(manifest, current.seq, "local files")
            try:
                fetched = await race_with_deadline(
                    self.clock,
                    self.transport.fetch(current.pointer, timeout=self.options.fetch_timeout),
                    self.options.fetch_timeout,
                    what=f"Fetching manifest {current.pointer}",
                )
            except UnavailableError as exc:
                log.warning("Could not download existing manifest, checking local files: %s", exc)
            else:
                manifest = self._usable_basis(owner_key, fetched, "transport")
                if manifest is not None:
                    self.artifacts.store_manifest(owner_key, current.seq, fetched)
                    return _Basis(manifest, current.seq, "transport")

        latest = self.artifacts.latest_manifest(owner_key)
        if latest is not None:
            seq, data = latest
            manifest = self._usable_basis(owner_key, data, f"local manifest seq {seq}")
            if manifest is not None:
                return _Basis(manifest, seq, f"local manifest seq {seq}")

        if current is not None:
            log.warning(
                "No copy of manifest seq %d could be obtained; continuing from an empty manifest",
                current.seq,
            )
        return _Basis(Manifest.empty(owner_key), 0, "a new manifest")

    async def announce(self, identity: Identity, pointer: ContentId, seq: int) -> SinkOutcome:
        if self.signaling is None:
            return SinkOutcome.not_configured("signaling")
        announcement = Announcement(
            owner_key=identity.public_key,
            pointer=pointer,
            seq=seq,
            signature=sign_announcement(identity.public_key, pointer, seq, identity),
        )
        try:
            accepted = await self.signaling.announce(announcement)
        except _SINK_ERRORS as exc:
            log.warning("Signaling announce of seq %d failed: %s", seq, exc)
            return SinkOutcome.failed("signaling", exc)
        log.info("Signaling service accepted seq %d", accepted)
        return SinkOutcome.succeeded("signaling")

    async def put_record(self, identity: Identity, pointer: ContentId, seq: int) -> SinkOutcome:
        """Write ``pointer`` at ``seq`` to the record store, waiting out a peerless store."""

        records = self.records
        if records is None:
            return SinkOutcome.not_configured("record-store")
        value = pointer.encode("utf-8")
        if len(value) > records.max_value_bytes:
            error = ValidationError(
                f"Pointer is {len(value)} bytes, record store accepts at most "
                f"{records.max_value_bytes}"
            )
            log.warning("%s", error)
            return SinkOutcome.failed("record-store", error)

        record = sign_record(value, seq, identity)
        retries_left = self.options.put_retries
        while True:
            try:
                await records.put(identity.public_key, record)
            except NoPeersError as exc:
                if retries_left <= 0:
                    log.warning("Record store put of seq %d gave up: %s", seq, exc)
                    return SinkOutcome.failed("record-store", exc)
                log.info("Waiting for record-store peers... (%d retries left)", retries_left)
                retries_left -= 1
                await self.clock.sleep(self.options.put_retry_interval)
            except _SINK_ERRORS as exc:
                log.warning("Record store put of seq %d failed: %s", seq, exc)
                return SinkOutcome.failed("record-store", exc)
            else:
                log.info("Record store accepted seq %d", seq)
                return SinkOutcome.succeeded("record-store")

    async def reannounce(self, identity: Identity, pointer: ContentId, seq: int) -> SinkOutcome:
        """Refresh the record-store entry so that it does not expire from the network."""

        log.info("Re-announcing seq %d to the record store", seq)
        return await self.put_record(identity, pointer, seq)

    async def keep_alive(
        self,
        identity: Identity,
        result: PublishResult,
        *,
        interval: float,
        scheduler: PollScheduler | None = None,
        max_cycles: int | None = None,
    ) -> int:
        """Re-announce ``result`` every ``interval`` seconds until stopped."""

        poller = scheduler or PollScheduler(self.clock, name="re-announce")

        async def cycle() -> None:
            await self.clock.sleep(interval)
            await self.reannounce(identity, result.pointer, result.seq)

        return await poller.run(cycle, 0.0, max_cycles=max_cycles)
