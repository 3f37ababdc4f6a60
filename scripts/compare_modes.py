#!/usr/bin/env python3
"""Side-by-side comparison of the three synchronization modes.

Starts an in-process server on an ephemeral port, connects one client per
mode, lets them run for a fixed duration and prints what each one cost.
All clients share one store, so they observe the same mutations.

Usage:
    python scripts/compare_modes.py --duration 30 --tick 1
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

_src = Path(__file__).resolve().parent.parent / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from wardsync import ClientMetricsReport, SyncClient, SyncConfig, SyncServer, UpdateMode  # noqa: E402


def _table(reports: dict[UpdateMode, ClientMetricsReport]) -> str:
    baseline = reports[UpdateMode.FULL].data_received or 1
    header = f"{'mode':<8}{'messages':>10}{'bytes':>12}{'avg size':>11}{'B/s':>10}{'vs full':>9}"
    lines = [header, "-" * len(header)]
    for mode, report in reports.items():
        lines.append(
            f"{mode.value:<8}{report.messages_received:>10}{report.data_received:>12}"
            f"{report.average_message_size:>11.0f}{report.average_data_per_second:>10.0f}"
            f"{report.data_received / baseline:>8.0%} "
        )
    return "\n".join(lines)


async def run(duration: float, tick: float, patients: int, seed: int | None) -> None:
    config = SyncConfig(host="127.0.0.1", port=0, tick_interval=tick, patient_count=patients, seed=seed)
    async with SyncServer(config) as server:
        clients = {mode: SyncClient(SyncConfig(url=server.url)) for mode in UpdateMode}
        for mode, client in clients.items():
            await client.connect()
            await client.set_update_mode(mode)
        # let the mode acknowledgements land before the measurement window opens
        await asyncio.sleep(0.2)
        for client in clients.values():
            client.resume()

        print(f"Measuring {len(clients)} clients for {duration:.0f}s ({tick:g}s tick, {patients} patients)...")
        await asyncio.sleep(duration)

        reports = {mode: client.metrics() for mode, client in clients.items()}
        for client in clients.values():
            await client.disconnect()
    print(_table(reports))


def main() -> None:
    parser = argparse.ArgumentParser(description="Compare full/delta/hybrid synchronization cost")
    parser.add_argument("--duration", type=float, default=30.0, help="Measurement window in seconds")
    parser.add_argument("--tick", type=float, default=1.0, help="Seconds between updates")
    parser.add_argument("--patients", type=int, default=30, help="Number of generated patients")
    parser.add_argument("--seed", type=int, help="Seed for reproducible content")
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(run(args.duration, args.tick, args.patients, args.seed))
    except KeyboardInterrupt:
        print("\nInterrupted.")


if __name__ == "__main__":
    main()
