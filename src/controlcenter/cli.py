"""Command-line interface for controlcenter.

Provides the main entry point for watching a relay session from the
terminal or serving the HTTP control API.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="controlcenter",
        description="Remote camera control client",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/controlcenter.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    monitor_parser = subparsers.add_parser("monitor", help="Connect and print session events")
    monitor_parser.add_argument("--host", type=str, default=None, help="Relay server host")
    monitor_parser.add_argument("--port", type=int, default=None, help="Relay server port")
    monitor_parser.add_argument(
        "--take-photo", type=int, default=None, metavar="CAMERA_ID",
        help="Request a snapshot from this camera once the peer connects",
    )
    monitor_parser.add_argument(
        "--save-dir", type=Path, default=None,
        help="Directory to save decoded snapshots into",
    )
    monitor_parser.add_argument(
        "--once", action="store_true",
        help="Exit after the first snapshot transfer completes",
    )

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP control API")
    serve_parser.add_argument("--host", type=str, default=None, help="API bind host")
    serve_parser.add_argument("--port", type=int, default=None, help="API bind port")

    return parser.parse_args(argv)


def describe_event(event) -> str:
    """One-line human-readable description of a session event."""
    from controlcenter.api.state import CONNECTION_STATUS_TEXT, LIMIT_REACHED_TEXT, PEER_STATUS_TEXT

    kind = event.kind
    if kind == "connection_status":
        return f"Connection: {CONNECTION_STATUS_TEXT[event.state]}"
    if kind == "peer_status":
        return f"Peer: {PEER_STATUS_TEXT[event.presence]}"
    if kind == "limit_reached":
        return f"Connection: {LIMIT_REACHED_TEXT}"
    if kind == "message":
        return f"Message: {event.text}"
    if kind == "camera_list":
        cams = ", ".join(f"{c.camera_id}={c.description}" for c in event.cameras) or "(none)"
        return f"Cameras: {cams}"
    if kind == "transfer_started":
        return f"Snapshot incoming, size {event.size_text}"
    if kind == "transfer_progress":
        return f"Snapshot {event.percent}%"
    if kind == "image_decoded":
        return f"Snapshot decoded: {event.width}x{event.height} ({len(event.data)} bytes)"
    if kind == "transfer_failed":
        return f"Snapshot failed: {event.message}"
    if kind == "transfer_complete":
        return "Snapshot transfer finished"
    return kind


async def _monitor(settings, args) -> None:
    """Connect to the relay and print events until interrupted."""
    from controlcenter.domain.models import (
        ImageDecoded,
        PeerPresence,
        PeerStatusChanged,
        TransferComplete,
    )
    from controlcenter.imaging.codec import save_snapshot
    from controlcenter.session.controller import SessionController

    conn = settings.connection
    host = args.host or conn.host
    port = args.port or conn.port
    save_dir = args.save_dir or settings.snapshot.save_dir
    photo_requested = False

    async with SessionController(config=conn) as session:
        session.connect(host, port)
        async for event in session.stream():
            print(describe_event(event))

            if (
                isinstance(event, PeerStatusChanged)
                and event.presence is PeerPresence.CONNECTED
                and args.take_photo is not None
                and not photo_requested
            ):
                photo_requested = session.take_photo(args.take_photo)
                if photo_requested:
                    print(f"Requested snapshot from camera {args.take_photo}")

            if isinstance(event, ImageDecoded) and save_dir:
                stem = f"snapshot_{event.timestamp:%Y%m%d_%H%M%S}"
                path = save_snapshot(event.image, save_dir, ext=settings.snapshot.extension, stem=stem)
                print(f"Saved snapshot to {path}")

            if isinstance(event, TransferComplete) and args.once:
                break


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the controlcenter CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return

    from controlcenter.config.settings import load_settings
    from controlcenter.utils.logging import setup_logging

    settings = load_settings(args.config)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)

    if args.command == "monitor":
        logger.info("Starting session monitor")
        try:
            asyncio.run(_monitor(settings, args))
        except KeyboardInterrupt:
            logger.info("Interrupted, session closed")

    elif args.command == "serve":
        logger.info("Starting control API")
        from controlcenter.api.server import main as serve_main
        serve_main(
            host=args.host or settings.api.host,
            port=args.port or settings.api.port,
            connection=settings.connection,
        )


if __name__ == "__main__":
    main()
