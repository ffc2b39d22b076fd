"""Application orchestration entry points."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from keyfeed.adapters.filesystem import FileArtifactCache, FileContentTransport, KeyFile
from keyfeed.adapters.signaling import HttpSignalingService
from keyfeed.adapters.sqlalchemy import (
    SqlAlchemyDatabase,
    SqlAlchemyPointerCache,
    SqlAlchemyRecordStore,
    mutable_record_table,
    pointer_cache_table,
)
from keyfeed.config import (
    get_database_config,
    get_publish_config,
    get_resolver_config,
    get_server_config,
    get_signaling_config,
    get_storage_config,
    get_watch_config,
)
from keyfeed.domain.discovery import DiscoverOptions, DiscoveryLoop
from keyfeed.domain.publishing import ManifestReconciler, PublishOptions
from keyfeed.domain.resolution import PointerResolver, ResolveOptions
from keyfeed.domain.scheduling import SystemClock

if TYPE_CHECKING:
    from keyfeed.config import (
        DatabaseConfig,
        PublishConfig,
        ResolverConfig,
        SignalingConfig,
        StorageConfig,
    )
    from keyfeed.domain.discovery import Delivery, DeliveryResult
    from keyfeed.domain.model import Identity, OwnerKey
    from keyfeed.domain.ports import Clock
    from keyfeed.domain.publishing import PublishResult
    from keyfeed.domain.scheduling import Handler

log = getLogger(__name__)


@dataclass(slots=True)
class Runtime:
    """Every adapter a command needs, opened together and closed together."""

    clock: Clock
    cache_db: SqlAlchemyDatabase
    cache: SqlAlchemyPointerCache
    artifacts: FileArtifactCache
    transport: FileContentTransport
    records: SqlAlchemyRecordStore | None
    signaling: HttpSignalingService | None

    async def aclose(self) -> None:
        """Release every external handle, even when one of them fails to close."""

        closers = [self.transport.aclose()]
        if self.signaling is not None:
            closers.append(self.signaling.aclose())
        if self.records is not None:
            closers.append(self.records.aclose())
        results = await asyncio.gather(*closers, return_exceptions=True)
        self.cache_db.shutdown()
        for result in results:
            if isinstance(result, Exception):
                log.warning("Error while closing resources: %s", result)


def open_runtime(
    *,
    storage: StorageConfig | None = None,
    database: DatabaseConfig | None = None,
    signaling_config: SignalingConfig | None = None,
    clock: Clock | None = None,
    allow_server: bool = True,
    allow_dht: bool = True,
) -> Runtime:
    storage_config = storage or get_storage_config()
    database_config = database or get_database_config(storage=storage_config)
    effective_clock = clock or SystemClock()

    cache_db = SqlAlchemyDatabase("pointer-cache").startup(
        pointer_cache_table, database_uri=database_config.cache_uri
    )
    records: SqlAlchemyRecordStore | None = None
    if allow_dht:
        records_db = SqlAlchemyDatabase("record-store").startup(
            mutable_record_table, database_uri=database_config.record_store_uri
        )
        records = SqlAlchemyRecordStore(records_db)
    signaling = (
        HttpSignalingService(config=signaling_config or get_signaling_config())
        if allow_server
        else None
    )
    return Runtime(
        clock=effective_clock,
        cache_db=cache_db,
        cache=SqlAlchemyPointerCache(cache_db),
        artifacts=FileArtifactCache(storage_config.messages_dir()),
        transport=FileContentTransport(storage_config.content_dir(), clock=effective_clock),
        records=records,
        signaling=signaling,
    )


def resolve_options(
    config: ResolverConfig | None = None,
    *,
    allow_server: bool = True,
    allow_dht: bool = True,
) -> ResolveOptions:
    resolver_config = config or get_resolver_config()
    return ResolveOptions(
        allow_server=allow_server,
        allow_dht=allow_dht,
        dht_timeout=resolver_config.dht_timeout,
        dht_retries=resolver_config.dht_retries,
        server_timeout=resolver_config.server_timeout,
        retry_interval=resolver_config.retry_interval,
        settle_window=resolver_config.settle_window,
    )


def build_resolver(runtime: Runtime, options: ResolveOptions | None = None) -> PointerResolver:
    return PointerResolver(
        cache=runtime.cache,
        clock=runtime.clock,
        signaling=runtime.signaling,
        records=runtime.records,
        options=options or resolve_options(),
    )


def build_reconciler(
    runtime: Runtime,
    *,
    config: PublishConfig | None = None,
    resolve: ResolveOptions | None = None,
) -> ManifestReconciler:
    publish_config = config or get_publish_config()
    return ManifestReconciler(
        resolver=build_resolver(runtime, resolve),
        transport=runtime.transport,
        artifacts=runtime.artifacts,
        cache=runtime.cache,
        clock=runtime.clock,
        signaling=runtime.signaling,
        records=runtime.records,
        options=PublishOptions(
            put_retries=publish_config.put_retries,
            put_retry_interval=publish_config.put_retry_interval,
            seed_timeout=publish_config.seed_timeout,
            fetch_timeout=publish_config.fetch_timeout,
        ),
    )


def build_discovery(
    runtime: Runtime,
    *,
    resolve: ResolveOptions | None = None,
    require_valid_manifest: bool = False,
) -> DiscoveryLoop:
    return DiscoveryLoop(
        resolver=build_resolver(runtime, resolve),
        transport=runtime.transport,
        artifacts=runtime.artifacts,
        cache=runtime.cache,
        clock=runtime.clock,
        options=DiscoverOptions(
            require_valid_manifest=require_valid_manifest,
            fetch_timeout=get_watch_config().fetch_timeout,
        ),
    )


def generate_keys(*, force: bool = False, storage: StorageConfig | None = None) -> Identity:
    """Create the publisher identity in the data directory."""

    storage_config = storage or get_storage_config()
    identity = KeyFile(storage_config.keys_path()).create(force=force)
    log.info("Public key (share this): %s", identity.public_key)
    return identity


def load_identity(*, storage: StorageConfig | None = None) -> Identity:
    storage_config = storage or get_storage_config()
    return KeyFile(storage_config.keys_path(ensure=False)).load()


async def publish_message_async(
    identity: Identity,
    content: str,
    *,
    runtime: Runtime,
    stay: bool = False,
    config: PublishConfig | None = None,
) -> PublishResult:
    publish_config = config or get_publish_config()
    reconciler = build_reconciler(runtime, config=publish_config)
    result = await reconciler.publish(identity, content)
    log.info(
        "Published seq %d: manifest %s with %d message(s)",
        result.seq,
        result.pointer,
        len(result.manifest),
    )
    if stay:
        log.info(
            "Keeping content available; re-announcing every %gs. Press Ctrl+C to stop.",
            publish_config.reannounce_interval,
        )
        await reconciler.keep_alive(
            identity, result, interval=publish_config.reannounce_interval
        )
    return result


def publish_message(
    content: str,
    *,
    stay: bool = False,
    storage: StorageConfig | None = None,
) -> PublishResult:
    """Sign ``content``, append it to this publisher's feed and announce the new pointer."""

    identity = load_identity(storage=storage)

    async def run() -> PublishResult:
        runtime = open_runtime(storage=storage)
        try:
            return await publish_message_async(identity, content, runtime=runtime, stay=stay)
        finally:
            await runtime.aclose()

    return asyncio.run(run())


async def find_messages_async(
    owner_key: OwnerKey,
    *,
    runtime: Runtime,
    resolve: ResolveOptions,
    on_delivery: Handler[Delivery] | None = None,
    watch: bool = False,
    interval: float | None = None,
    require_valid_manifest: bool = False,
) -> DeliveryResult | int:
    discovery = build_discovery(
        runtime, resolve=resolve, require_valid_manifest=require_valid_manifest
    )
    if not watch:
        return await discovery.discover_once(owner_key, on_delivery=on_delivery)
    poll_interval = interval if interval is not None else get_watch_config().interval
    log.info("Watching %s... every %gs. Press Ctrl+C to stop.", owner_key[:16], poll_interval)
    return await discovery.watch(owner_key, poll_interval, on_delivery)


def find_messages(
    owner_key: OwnerKey,
    *,
    on_delivery: Handler[Delivery] | None = None,
    watch: bool = False,
    interval: float | None = None,
    allow_server: bool = True,
    allow_dht: bool = True,
    require_valid_manifest: bool = False,
    storage: StorageConfig | None = None,
) -> DeliveryResult | int:
    """Discover ``owner_key``'s feed once, or keep watching it for new messages."""

    options = resolve_options(allow_server=allow_server, allow_dht=allow_dht)

    async def run() -> DeliveryResult | int:
        runtime = open_runtime(storage=storage, allow_server=allow_server, allow_dht=allow_dht)
        try:
            return await find_messages_async(
                owner_key,
                runtime=runtime,
                resolve=options,
                on_delivery=on_delivery,
                watch=watch,
                interval=interval,
                require_valid_manifest=require_valid_manifest,
            )
        finally:
            await runtime.aclose()

    return asyncio.run(run())


def serve(*, host: str | None = None, port: int | None = None) -> None:
    """Run the signaling service until interrupted."""

    import uvicorn  # noqa: PLC0415

    from keyfeed.service import create_app  # noqa: PLC0415

    server_config = get_server_config()
    effective_host = host or server_config.host
    effective_port = port or server_config.port
    log.info("Signaling server running on http://%s:%d", effective_host, effective_port)
    uvicorn.run(create_app(), host=effective_host, port=effective_port, log_config=None)
