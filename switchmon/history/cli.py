"""CLI entry point for reading and pruning rate history (standalone-capable)."""

from __future__ import annotations

import argparse
import sys
from datetime import timedelta
from pathlib import Path

from loguru import logger

from switchmon._util import configure_cli_logging
from switchmon.config import MonitorConfig, load_config
from switchmon.exceptions import ConfigError
from switchmon.formatters import history_table
from switchmon.history.store import HistoryStore
from switchmon.models import utcnow


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Build argparse parser for the history reader."""
    parser = argparse.ArgumentParser(
        description="Show stored traffic history of one interface, or delete day files past retention.",
    )
    parser.add_argument("ip", nargs="?", help="Switch or sFlow agent IP address")
    parser.add_argument("if_index", nargs="?", type=int, help="Interface index")
    parser.add_argument(
        "-c",
        "--config",
        help="JSON configuration file; history directory and retention are read from it",
    )
    parser.add_argument(
        "-d",
        "--dir",
        help="History directory (overrides the config)",
    )
    parser.add_argument(
        "--hours",
        type=float,
        default=24.0,
        help="Show records of the last N hours (default: 24)",
    )
    parser.add_argument(
        "--cleanup",
        action="store_true",
        help="Delete day files older than the retention window and exit",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Verbose logging",
    )
    return parser.parse_args(args)


def main(args: list[str] | None = None) -> None:
    """Main entry point for history CLI."""
    parsed = parse_args(args)
    configure_cli_logging(parsed.verbose)

    config = MonitorConfig()
    if parsed.config:
        try:
            config = load_config(parsed.config)
        except ConfigError as e:
            logger.error(str(e))
            sys.exit(1)

    store = HistoryStore(Path(parsed.dir) if parsed.dir else config.history_dir, config.retention_days)

    if parsed.cleanup:
        removed = store.cleanup_old()
        print(f"Removed {removed} day file(s) from {store.base_dir}")
        return

    if parsed.ip is None or parsed.if_index is None:
        logger.error("ip and if_index are required unless --cleanup is given")
        sys.exit(2)

    since = utcnow() - timedelta(hours=parsed.hours)
    records = list(store.read_range(parsed.ip, parsed.if_index, since))
    if not records:
        print(f"No history for {parsed.ip} if{parsed.if_index} since {since:%Y-%m-%d %H:%M:%S} UTC")
        return
    print(history_table(records))
