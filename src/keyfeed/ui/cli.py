from __future__ import annotations

import argparse
import logging
import sys
from datetime import UTC, datetime
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from keyfeed.app import find_messages, generate_keys, publish_message, serve
from keyfeed.config import configure_logging
from keyfeed.domain.model import DeliveryStatus, require_owner_key

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from keyfeed.domain.discovery import Delivery, DeliveryResult
    from keyfeed.domain.publishing import PublishResult

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="keyfeed", description="Publish and follow signed message feeds by public key"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    keygen = subparsers.add_parser("keygen", help="Generate the publisher keypair")
    keygen.add_argument(
        "--force",
        action="store_true",
        help="Replace an existing key file (the old identity is lost)",
    )

    publish = subparsers.add_parser("publish", help="Sign and publish a message")
    publish.add_argument("message", type=str, help="Message content")
    publish.add_argument(
        "--stay",
        action="store_true",
        help="Keep running to serve content and re-announce the pointer periodically",
    )

    find = subparsers.add_parser("find", help="Find and verify messages for a public key")
    find.add_argument("public_key", type=str, help="Publisher public key (64 hex characters)")
    find.add_argument("--watch", action="store_true", help="Keep polling for new messages")
    find.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Poll interval in seconds for --watch (defaults to config)",
    )
    find.add_argument("--no-server", action="store_true", help="Skip the signaling service")
    find.add_argument("--no-dht", action="store_true", help="Skip the mutable-record store")
    find.add_argument(
        "--strict",
        action="store_true",
        help="Reject a manifest whose signature does not verify instead of checking messages",
    )

    serve_parser = subparsers.add_parser("serve", help="Run the signaling service")
    serve_parser.add_argument("--host", type=str, default=None, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Listen port")

    return parser.parse_args(list(argv))


def _validate(args: argparse.Namespace) -> None:
    if args.command == "find":
        args.public_key = require_owner_key(args.public_key.strip())
        if args.interval is not None and args.interval <= 0:
            raise ValueError("Interval must be positive")
        if args.no_server and args.no_dht:
            log.warning("Both remote sources disabled; only the local cache will be consulted")
    if args.command == "publish" and not args.message.strip():
        raise ValueError("Message must not be empty")
    if args.command == "serve" and args.port is not None and not 0 < args.port < 65536:
        raise ValueError(f"Invalid port: {args.port}")


def _print_delivery(delivery: Delivery) -> None:
    stamp = datetime.fromtimestamp(delivery.message.timestamp / 1000, UTC).isoformat()
    print("-" * 60)  # noqa: T201
    print(f"[{stamp}] ({delivery.content_id})")  # noqa: T201
    print(f"  {delivery.message.content}")  # noqa: T201


def _report_publish(result: PublishResult) -> None:
    log.info("Message content id:  %s", result.entry.content_id)
    log.info("Manifest content id: %s (seq %d)", result.pointer, result.seq)
    for outcome in (result.announce, result.record_store):
        if outcome.ok:
            log.info("%s: ok", outcome.sink)
        elif outcome.skipped:
            log.info("%s: skipped (%s)", outcome.sink, outcome.error)
        else:
            log.warning("%s: failed (%s)", outcome.sink, outcome.error)
    if not result.pointer_published:
        log.warning(
            "Subscribers cannot discover seq %d yet. Keep this publisher running with --stay "
            "and retry once the signaling service or record store is reachable.",
            result.seq,
        )


def _report_find(result: DeliveryResult) -> None:
    match result.status:
        case DeliveryStatus.NOT_FOUND:
            log.info(
                "No messages found for this public key. Make sure the publisher has published "
                "and that the signaling service or record store is reachable."
            )
        case DeliveryStatus.UNAVAILABLE if not result.delivered:
            log.warning(
                "Feed found (seq %s) but content is not available. The publisher must keep "
                "running to keep content available.",
                result.pointer.seq if result.pointer else "?",
            )
        case DeliveryStatus.REJECTED:
            log.warning("Feed rejected: signatures did not verify")
        case _:
            log.info(
                "Found %d message(s), %d new",
                len(result.manifest) if result.manifest else 0,
                len(result.delivered),
            )


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args = _parse_args(args_list)
    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)
    try:
        _validate(parsed_args)
    except ValueError:
        log.exception("CLI validation error")
        sys.exit(2)

    try:
        if parsed_args.command == "keygen":
            generate_keys(force=parsed_args.force)
        elif parsed_args.command == "publish":
            _report_publish(publish_message(parsed_args.message, stay=parsed_args.stay))
        elif parsed_args.command == "find":
            outcome = find_messages(
                parsed_args.public_key,
                on_delivery=_print_delivery,
                watch=parsed_args.watch,
                interval=parsed_args.interval,
                allow_server=not parsed_args.no_server,
                allow_dht=not parsed_args.no_dht,
                require_valid_manifest=parsed_args.strict,
            )
            if not isinstance(outcome, int):
                _report_find(outcome)
        elif parsed_args.command == "serve":
            serve(host=parsed_args.host, port=parsed_args.port)
        else:
            raise ValueError(f"Unsupported command: {parsed_args.command}")  # noqa: TRY301

    except Exception:
        log.exception("Fatal error")
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
