"""Command line entry point: ``python -m wardsync serve|watch``."""

from __future__ import annotations

import argparse
import asyncio
import logging

from wardsync.client import ClientEvent, SyncClient
from wardsync.config import SyncConfig
from wardsync.models import UpdateMode
from wardsync.server import run_server

_logger = logging.getLogger("wardsync")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wardsync", description="ICU ward state synchronization demo")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the WebSocket server")
    serve.add_argument("--host", help="Interface to bind (default: WARDSYNC_HOST or 127.0.0.1)")
    serve.add_argument("--port", type=int, help="Port to bind (default: WARDSYNC_PORT or 8080)")
    serve.add_argument("--tick", type=float, dest="tick_interval", help="Seconds between updates")
    serve.add_argument("--patients", type=int, dest="patient_count", help="Number of generated patients")
    serve.add_argument("--seed", type=int, help="Seed for reproducible content")

    watch = sub.add_parser("watch", help="Connect a client and log its metrics")
    watch.add_argument("--url", help="Server URL (default: WARDSYNC_URL or ws://localhost:8080)")
    watch.add_argument("--mode", choices=[m.value for m in UpdateMode], default=UpdateMode.DELTA.value)
    watch.add_argument("--every", type=float, default=10.0, help="Seconds between metric reports")
    watch.add_argument("--duration", type=float, help="Stop after this many seconds")
    return parser


def _overrides(args: argparse.Namespace, names: tuple[str, ...]) -> dict[str, object]:
    return {name: getattr(args, name) for name in names if getattr(args, name, None) is not None}


async def watch(config: SyncConfig, mode: UpdateMode, every: float, duration: float | None) -> None:
    client = SyncClient(config)
    client.on(ClientEvent.DISCONNECTED, lambda info: _logger.warning("Disconnected: %s", info))
    client.on(ClientEvent.MAX_RECONNECT_REACHED, lambda exc: _logger.error("%s", exc))
    async with client:
        await client.set_update_mode(mode)
        client.resume()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration if duration is not None else None
        while True:
            wait = every
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                wait = min(every, remaining)
            await asyncio.sleep(wait)
            report = client.metrics()
            _logger.info(
                "mode=%s messages=%d bytes=%d avg=%.0fB freq=%.2f/s rate=%.0fB/s runtime=%.1fs",
                report.current_mode,
                report.messages_received,
                report.data_received,
                report.average_message_size,
                report.update_frequency,
                report.average_data_per_second,
                report.runtime / 1000,
            )


def main(argv: list[str] | None = None) -> None:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == "serve":
            config = SyncConfig.from_env(**_overrides(args, ("host", "port", "tick_interval", "patient_count", "seed")))
            asyncio.run(run_server(config))
        else:
            config = SyncConfig.from_env(**_overrides(args, ("url",)))
            asyncio.run(watch(config, UpdateMode(args.mode), args.every, args.duration))
    except KeyboardInterrupt:
        _logger.info("Interrupted")


if __name__ == "__main__":
    main()
