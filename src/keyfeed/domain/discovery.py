"""Subscriber side: resolve, verify and deliver an owner's feed incrementally."""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from keyfeed.domain.codec import decode_manifest, decode_message, encode_message
from keyfeed.domain.errors import SequenceConflict, UnavailableError, ValidationError
from keyfeed.domain.model import DeliveryStatus, PointerSource, require_owner_key
from keyfeed.domain.scheduling import DeliveryFanout, PollScheduler, race_with_deadline
from keyfeed.domain.signing import verify_manifest, verify_message

if TYPE_CHECKING:
    from keyfeed.domain.model import (
        ContentId,
        Manifest,
        ManifestEntry,
        OwnerKey,
        PointerRecord,
        SignedMessage,
    )
    from keyfeed.domain.ports import ArtifactCache, Clock, ContentTransport, PointerCache
    from keyfeed.domain.resolution import PointerResolver, ResolveOptions
    from keyfeed.domain.scheduling import Handler

log = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DiscoverOptions:
    require_valid_manifest: bool = False
    fetch_timeout: float = 60.0
    resolve: ResolveOptions | None = None


@dataclass(frozen=True, slots=True)
class Delivery:
    """One verified message, handed to subscribers in manifest order."""

    owner_key: OwnerKey
    seq: int
    position: int
    content_id: ContentId
    message: SignedMessage


@dataclass(frozen=True, slots=True)
class EntryFailure:
    content_id: ContentId
    reason: str


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    status: DeliveryStatus
    owner_key: OwnerKey
    pointer: PointerRecord | None = None
    manifest: Manifest | None = None
    manifest_valid: bool | None = None
    degraded: bool = False
    delivered: tuple[Delivery, ...] = ()
    rejected: tuple[ContentId, ...] = ()
    failures: tuple[EntryFailure, ...] = ()

    @property
    def contents(self) -> list[str]:
        return [delivery.message.content for delivery in self.delivered]


@dataclass(slots=True)
class _Progress:
    last_seq: int = 0
    handled: set[ContentId] = field(default_factory=set)
    manifest: Manifest | None = None


@dataclass(frozen=True, slots=True)
class _LoadedManifest:
    manifest: Manifest
    origin: str
    degraded: bool = False


class DiscoveryLoop:
    """Deliver each verified message of an owner's feed exactly once.

    Progress is kept per owner for the lifetime of the loop: the last fully
    processed ``seq`` and the content ids already handled. A pass that could
    not fetch every entry leaves ``seq`` where it was, so the missing entries
    are retried on the next pass without re-delivering the others.
    """

    def __init__(
        self,
        *,
        resolver: PointerResolver,
        transport: ContentTransport,
        artifacts: ArtifactCache,
        cache: PointerCache,
        clock: Clock,
        fanout: DeliveryFanout[Delivery] | None = None,
        options: DiscoverOptions | None = None,
    ) -> None:
        self.resolver = resolver
        self.transport = transport
        self.artifacts = artifacts
        self.cache = cache
        self.clock = clock
        self.fanout: DeliveryFanout[Delivery] = fanout or DeliveryFanout()
        self.options = options or DiscoverOptions()
        self._progress: dict[OwnerKey, _Progress] = {}

    def last_seq(self, owner_key: OwnerKey) -> int:
        progress = self._progress.get(require_owner_key(owner_key))
        return progress.last_seq if progress is not None else 0

    async def discover_once(
        self,
        owner_key: OwnerKey,
        *,
        on_delivery: Handler[Delivery] | None = None,
    ) -> DeliveryResult:
        owner_key = require_owner_key(owner_key)
        progress = self._progress.setdefault(owner_key, _Progress())
        resolve_options = (self.options.resolve or self.resolver.options).read_only()

        pointer = await self.resolver.resolve(owner_key, resolve_options)
        if pointer is None:
            log.info("No feed found for %s...", owner_key[:16])
            return DeliveryResult(DeliveryStatus.NOT_FOUND, owner_key)
        if pointer.seq <= progress.last_seq:
            log.debug("Seq %d already processed for %s...", pointer.seq, owner_key[:16])
            return DeliveryResult(DeliveryStatus.UNCHANGED, owner_key, pointer=pointer)

        loaded = await self._load_manifest(owner_key, pointer)
        if loaded is None:
            return DeliveryResult(DeliveryStatus.UNAVAILABLE, owner_key, pointer=pointer)
        manifest = loaded.manifest
        log.info("Loaded manifest seq %d from %s", pointer.seq, loaded.origin)

        if manifest.public_key.lower() != owner_key:
            log.warning(
                "Manifest %s names owner %s..., not %s...; rejecting",
                pointer.pointer,
                manifest.public_key[:16],
                owner_key[:16],
            )
            return DeliveryResult(
                DeliveryStatus.REJECTED, owner_key, pointer=pointer, manifest_valid=False
            )

        manifest_valid = verify_manifest(manifest)
        if manifest_valid:
            log.info("Manifest signature valid (%d entries)", len(manifest))
            if not loaded.degraded:
                self._remember(owner_key, pointer)
        elif self.options.require_valid_manifest:
            log.warning("Manifest signature INVALID for seq %d; rejecting", pointer.seq)
            return DeliveryResult(
                DeliveryStatus.REJECTED,
                owner_key,
                pointer=pointer,
                manifest=manifest,
                manifest_valid=False,
            )
        else:
            log.warning(
                "Manifest signature INVALID for seq %d; continuing with per-message checks",
                pointer.seq,
            )

        if progress.manifest is not None and not manifest.extends(progress.manifest):
            log.warning(
                "Manifest seq %d does not extend the one processed at seq %d; "
                "the owner's history was rewritten",
                pointer.seq,
                progress.last_seq,
            )

        delivered: list[Delivery] = []
        rejected: list[ContentId] = []
        failures: list[EntryFailure] = []
        for position, entry in enumerate(manifest.messages):
            if entry.content_id in progress.handled:
                continue
            try:
                message = await self._load_message(owner_key, entry)
            except UnavailableError as exc:
                log.warning("Could not fetch message %s: %s", entry.content_id, exc)
                failures.append(EntryFailure(entry.content_id, str(exc)))
                continue
            progress.handled.add(entry.content_id)
            if message is None:
                rejected.append(entry.content_id)
                continue
            delivered.append(
                Delivery(
                    owner_key=owner_key,
                    seq=pointer.seq,
                    position=position,
                    content_id=entry.content_id,
                    message=message,
                )
            )

        if not failures and not loaded.degraded:
            progress.last_seq = pointer.seq
            progress.manifest = manifest

        fanout = self.fanout if on_delivery is None else self.fanout.extended(on_delivery)
        for delivery in delivered:
            await fanout.dispatch(delivery)

        if delivered:
            status = DeliveryStatus.DELIVERED
        elif failures:
            status = DeliveryStatus.UNAVAILABLE
        elif rejected:
            status = DeliveryStatus.REJECTED
        else:
            status = DeliveryStatus.UNCHANGED
        log.info(
            "Seq %d: %d delivered, %d rejected, %d unavailable",
            pointer.seq,
            len(delivered),
            len(rejected),
            len(failures),
        )
        return DeliveryResult(
            status,
            owner_key,
            pointer=pointer,
            manifest=manifest,
            manifest_valid=manifest_valid,
            degraded=loaded.degraded,
            delivered=tuple(delivered),
            rejected=tuple(rejected),
            failures=tuple(failures),
        )

    async def watch(
        self,
        owner_key: OwnerKey,
        interval: float,
        on_delivery: Handler[Delivery] | None = None,
        *,
        scheduler: PollScheduler | None = None,
        max_cycles: int | None = None,
    ) -> int:
        """Poll ``owner_key`` every ``interval`` seconds, delivering only new messages.

        Runs until the scheduler is stopped, ``max_cycles`` is reached or the
        task is cancelled. Returns the number of cycles that ran.
        """

        poller = scheduler or PollScheduler(self.clock, name="watch")

        async def cycle() -> None:
            await self.discover_once(owner_key, on_delivery=on_delivery)

        return await poller.run(cycle, interval, max_cycles=max_cycles)

    def _remember(self, owner_key: OwnerKey, pointer: PointerRecord) -> None:
        if pointer.source is PointerSource.CACHE:
            return
        try:
            cached = self.cache.read(owner_key)
            if cached is None or pointer.seq > cached.seq:
                self.cache.write(owner_key, pointer.pointer, pointer.seq)
                log.debug("Cached verified seq %d for %s...", pointer.seq, owner_key[:16])
        except (SequenceConflict, UnavailableError) as exc:
            log.warning("Could not update local cache: %s", exc)

    async def _load_manifest(
        self, owner_key: OwnerKey, pointer: PointerRecord
    ) -> _LoadedManifest | None:
        local = self.artifacts.load_manifest(owner_key, pointer.seq)
        if local is not None:
            try:
                cached = decode_manifest(local)
            except ValidationError as exc:
                log.warning("Local manifest for seq %d is unreadable: %s", pointer.seq, exc)
            else:
                if cached.public_key.lower() == owner_key:
                    return _LoadedManifest(cached, "local files")
                log.warning(
                    "Local manifest for seq %d belongs to %s..., fetching instead",
                    pointer.seq,
                    cached.public_key[:16],
                )

        try:
            data = await race_with_deadline(
                self.clock,
                self.transport.fetch(pointer.pointer, timeout=self.options.fetch_timeout),
                self.options.fetch_timeout,
                what=f"Fetching manifest {pointer.pointer}",
            )
            manifest = decode_manifest(data)
        except (UnavailableError, ValidationError) as exc:
            log.warning("Could not load manifest %s: %s", pointer.pointer, exc)
        else:
            if verify_manifest(manifest) and manifest.public_key.lower() == owner_key:
                self.artifacts.store_manifest(owner_key, pointer.seq, data)
            return _LoadedManifest(manifest, "transport")

        latest = self.artifacts.latest_manifest(owner_key)
        if latest is None:
            log.warning("No copy of manifest %s is available", pointer.pointer)
            return None
        seq, data = latest
        try:
            manifest = decode_manifest(data)
        except ValidationError as exc:
            log.warning("Newest local manifest (seq %d) is unreadable: %s", seq, exc)
            return None
        log.warning(
            "Using local manifest seq %d while seq %d is unreachable; results may be stale",
            seq,
            pointer.seq,
        )
        return _LoadedManifest(manifest, f"local manifest seq {seq}", degraded=True)

    async def _load_message(
        self, owner_key: OwnerKey, entry: ManifestEntry
    ) -> SignedMessage | None:
        """Return the verified message for ``entry``, or ``None`` when it must be rejected.

        Raises :class:`UnavailableError` when the message could not be obtained.
        """

        local = self.artifacts.find_message(owner_key, entry.timestamp)
        if local is not None:
            message = self._accept(owner_key, entry, local, origin="local files")
            if message is not None:
                return message

        data = await race_with_deadline(
            self.clock,
            self.transport.fetch(entry.content_id, timeout=self.options.fetch_timeout),
            self.options.fetch_timeout,
            what=f"Fetching message {entry.content_id}",
        )
        message = self._accept(owner_key, entry, data, origin="transport")
        if message is not None:
            self.artifacts.store_message(owner_key, entry.timestamp, encode_message(message))
        return message

    def _accept(
        self,
        owner_key: OwnerKey,
        entry: ManifestEntry,
        data: bytes,
        *,
        origin: str,
    ) -> SignedMessage | None:
        try:
            message = decode_message(data)
        except ValidationError as exc:
            log.warning("Message %s from %s is malformed: %s", entry.content_id, origin, exc)
            return None
        if message.public_key.lower() != owner_key or message.timestamp != entry.timestamp:
            log.warning(
                "Message %s from %s does not match its manifest entry", entry.content_id, origin
            )
            return None
        if not verify_message(message):
            log.warning("Message %s from %s has an INVALID signature", entry.content_id, origin)
            return None
        return message
