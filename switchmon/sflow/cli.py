"""CLI entry point for the sFlow collector (standalone-capable)."""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

from loguru import logger

from switchmon._util import configure_cli_logging
from switchmon.config import MonitorConfig, SFlowSettings, load_config
from switchmon.exceptions import ConfigError
from switchmon.formatters import snapshot_table, stats_table
from switchmon.history.store import HistoryStore
from switchmon.sflow.collector import SFlowCollector


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Build argparse parser for the sFlow collector."""
    parser = argparse.ArgumentParser(
        description="Receive sFlow v5 counter samples and print per-interface traffic rates.",
    )
    parser.add_argument(
        "-c",
        "--config",
        help="JSON configuration file; sFlow settings and agent names are read from it",
    )
    parser.add_argument(
        "-p",
        "--port",
        type=int,
        help="UDP port (default: from config, else 6343)",
    )
    parser.add_argument(
        "-b",
        "--bind",
        help="Local address to bind (default: from config, else 0.0.0.0)",
    )
    parser.add_argument(
        "-i",
        "--interval",
        type=float,
        default=10.0,
        help="Seconds between table refreshes (default: 10)",
    )
    parser.add_argument(
        "--dump-first",
        type=int,
        metavar="N",
        help="Write the first N raw datagrams to sflow-dump-<n>.bin",
    )
    parser.add_argument(
        "--history",
        action="store_true",
        help="Append rates to the history directory from the config",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Verbose logging, including a hex preview of every datagram",
    )
    return parser.parse_args(args)


def _settings(parsed: argparse.Namespace, config: MonitorConfig) -> SFlowSettings:
    updates: dict[str, object] = {}
    if parsed.port is not None:
        updates["port"] = parsed.port
    if parsed.bind:
        updates["bind_address"] = parsed.bind
    if parsed.dump_first is not None:
        updates["dump_first_n"] = parsed.dump_first
    if parsed.verbose:
        updates["debug"] = True
    return config.sflow.model_copy(update=updates)


async def _run(collector: SFlowCollector, interval: float, history: HistoryStore | None) -> None:
    await collector.start()
    written: dict[tuple[str, int], datetime] = {}
    try:
        while True:
            await asyncio.sleep(interval)
            snapshots = collector.snapshots()
            print(stats_table(collector.stats()))
            print()
            if snapshots:
                print(snapshot_table(snapshots))
                print()
            if history is not None:
                for snapshot in snapshots:
                    key = (snapshot.switch_ip, snapshot.if_index)
                    if written.get(key) == snapshot.timestamp:
                        continue
                    if history.append_snapshot(snapshot):
                        written[key] = snapshot.timestamp
    finally:
        await collector.stop()


def main(args: list[str] | None = None) -> None:
    """Main entry point for sFlow collector CLI."""
    parsed = parse_args(args)
    configure_cli_logging(parsed.verbose)

    config = MonitorConfig()
    if parsed.config:
        try:
            config = load_config(Path(parsed.config))
        except ConfigError as e:
            logger.error(str(e))
            sys.exit(1)

    collector = SFlowCollector(_settings(parsed, config), agent_names=config.agent_names)
    history = HistoryStore(config.history_dir, config.retention_days) if parsed.history else None

    try:
        asyncio.run(_run(collector, max(parsed.interval, 0.5), history))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except OSError as e:
        logger.error(f"Cannot listen on {collector.settings.bind_address}:{collector.settings.port}: {e}")
        sys.exit(1)
