"""Resolve an owner's current manifest pointer across unreliable sources.

Three sources are consulted: the local pointer cache (fast, possibly stale),
the signaling service (one bounded round trip) and the mutable-record store
(eventually consistent, queried with retries and a settle window). The answer
is the highest verified sequence number seen anywhere; ties go to the record
store, then the service, then the cache.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from keyfeed.domain.errors import SequenceConflict, UnavailableError, ValidationError
from keyfeed.domain.model import PointerRecord, PointerSource, is_content_id, require_owner_key
from keyfeed.domain.scheduling import cancel_all, race_with_deadline
from keyfeed.domain.signing import verify_announcement, verify_record

if TYPE_CHECKING:
    from keyfeed.domain.model import MutableRecord, OwnerKey
    from keyfeed.domain.ports import Clock, PointerCache, RecordStore, SignalingService

log = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ResolveOptions:
    allow_server: bool = True
    allow_dht: bool = True
    dht_timeout: float = 30.0
    dht_retries: int = 3
    server_timeout: float = 10.0
    retry_interval: float = 5.0
    settle_window: float = 3.0
    update_cache: bool = True

    def read_only(self) -> ResolveOptions:
        return replace(self, update_cache=False)


def _pick(current: PointerRecord | None, candidate: PointerRecord | None) -> PointerRecord | None:
    if candidate is None:
        return current
    return candidate if candidate.outranks(current) else current


class PointerResolver:
    """Produce the best-known ``(pointer, seq)`` for an owner.

    The resolver only ever writes to the cache, and only a verified record
    whose ``seq`` strictly exceeds what the cache held before the call.
    """

    def __init__(
        self,
        *,
        cache: PointerCache,
        clock: Clock,
        signaling: SignalingService | None = None,
        records: RecordStore | None = None,
        options: ResolveOptions | None = None,
    ) -> None:
        self.cache = cache
        self.clock = clock
        self.signaling = signaling
        self.records = records
        self.options = options or ResolveOptions()

    async def resolve(
        self,
        owner_key: OwnerKey,
        options: ResolveOptions | None = None,
    ) -> PointerRecord | None:
        """Return the highest verified pointer record, or ``None`` when unknown.

        ``None`` means nothing is known about the owner anywhere, which is not
        the same as an owner with an empty feed.
        """

        owner_key = require_owner_key(owner_key)
        opts = options or self.options

        cached = self._read_cache(owner_key)
        if cached is not None:
            log.info("Local cache has seq %d for %s...", cached.seq, owner_key[:16])

        lookups: list[asyncio.Task[PointerRecord | None]] = []
        if opts.allow_server and self.signaling is not None:
            lookups.append(
                asyncio.ensure_future(self._query_service(self.signaling, owner_key, opts))
            )
        if opts.allow_dht and self.records is not None:
            lookups.append(asyncio.ensure_future(self.query_record_store(owner_key, opts)))
        try:
            remote = await asyncio.gather(*lookups)
        finally:
            await cancel_all(lookups)

        best = cached
        for candidate in remote:
            best = _pick(best, candidate)

        if best is None:
            log.info("No pointer found for %s... in any source", owner_key[:16])
            return None

        log.info("Resolved %s... to seq %d via %s", owner_key[:16], best.seq, best.source)
        floor = cached.seq if cached is not None else 0
        if opts.update_cache and best.source is not PointerSource.CACHE and best.seq > floor:
            try:
                self.cache.write(owner_key, best.pointer, best.seq)
            except SequenceConflict as exc:
                log.warning("Cache moved on during resolution, not overwriting: %s", exc)
            else:
                log.debug("Cached seq %d (previous floor %d)", best.seq, floor)
        return best

    def _read_cache(self, owner_key: OwnerKey) -> PointerRecord | None:
        try:
            return self.cache.read(owner_key)
        except UnavailableError as exc:
            log.warning("Local cache unreadable, continuing without it: %s", exc)
            return None

    def _observed_at(self) -> datetime:
        return datetime.fromtimestamp(self.clock.wall_time_ms() / 1000, UTC)

    async def _query_service(
        self,
        signaling: SignalingService,
        owner_key: OwnerKey,
        opts: ResolveOptions,
    ) -> PointerRecord | None:
        try:
            announcement = await race_with_deadline(
                self.clock,
                signaling.lookup(owner_key, timeout=opts.server_timeout),
                opts.server_timeout,
                what="Signaling lookup",
            )
        except (UnavailableError, ValidationError) as exc:
            log.warning("Could not query signaling service: %s", exc)
            return None

        if announcement is None:
            log.info("Signaling service has no entry for %s...", owner_key[:16])
            return None
        if not is_content_id(announcement.pointer):
            log.warning(
                "Discarding signaling entry with malformed pointer %r", announcement.pointer
            )
            return None
        if announcement.owner_key.lower() != owner_key or not verify_announcement(announcement):
            log.warning(
                "Discarding signaling entry seq %s for %s...: signature does not verify",
                announcement.seq,
                owner_key[:16],
            )
            return None

        log.info("Signaling service reports seq %d", announcement.seq)
        return PointerRecord(
            owner_key=owner_key,
            pointer=announcement.pointer.lower(),
            seq=announcement.seq,
            source=PointerSource.SERVICE,
            observed_at=self._observed_at(),
            updated_at=announcement.updated_at,
        )

    def _accept_record(self, owner_key: OwnerKey, record: MutableRecord) -> PointerRecord | None:
        if not verify_record(owner_key, record):
            log.warning(
                "Discarding record-store entry seq %s: signature does not verify", record.seq
            )
            return None
        try:
            pointer = record.pointer
        except UnicodeDecodeError:
            pointer = ""
        if not is_content_id(pointer):
            log.warning(
                "Discarding record-store entry seq %d: value is not a content id", record.seq
            )
            return None
        return PointerRecord(
            owner_key=owner_key,
            pointer=pointer.lower(),
            seq=record.seq,
            source=PointerSource.STORE,
            observed_at=self._observed_at(),
        )

    async def query_record_store(
        self,
        owner_key: OwnerKey,
        options: ResolveOptions | None = None,
    ) -> PointerRecord | None:
        """Query the record store with scheduled retries and a settle window.

        The first attempt is issued immediately; attempt ``i`` fires at
        ``i * retry_interval`` only while nothing has been found. The call ends
        ``settle_window`` after the first hit, so that a slower, higher response
        can still win, or at ``dht_timeout``, whichever comes first.
        """

        records = self.records
        if records is None:
            return None
        opts = options or self.options
        total_attempts = opts.dht_retries + 1
        best: PointerRecord | None = None
        found = asyncio.Event()

        async def attempt(number: int) -> None:
            nonlocal best
            log.info("Record store lookup attempt %d/%d...", number, total_attempts)
            try:
                record = await records.get(owner_key, timeout=opts.dht_timeout)
            except (UnavailableError, ValidationError) as exc:
                log.info("Record store lookup attempt %d failed: %s", number, exc)
                return
            if record is None:
                return
            candidate = self._accept_record(owner_key, record)
            if candidate is not None and (best is None or candidate.seq > best.seq):
                best = candidate
                log.info("Record store returned seq %d", candidate.seq)
                found.set()

        async def scheduled(number: int) -> None:
            await self.clock.sleep((number - 1) * opts.retry_interval)
            if best is None:
                await attempt(number)

        async def settle() -> None:
            await found.wait()
            await self.clock.sleep(opts.settle_window)

        attempts = [asyncio.ensure_future(attempt(1))]
        attempts.extend(
            asyncio.ensure_future(scheduled(number)) for number in range(2, total_attempts + 1)
        )
        waiters = [
            asyncio.ensure_future(settle()),
            asyncio.ensure_future(self.clock.sleep(opts.dht_timeout)),
        ]
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            await cancel_all([*attempts, *waiters])

        if best is None:
            log.info("Record store lookup timed out with no results")
        return best
