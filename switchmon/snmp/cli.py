"""CLI entry point for SNMP polling (standalone-capable)."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

from loguru import logger

from switchmon._util import configure_cli_logging
from switchmon.config import MonitorConfig, load_config
from switchmon.exceptions import ConfigError
from switchmon.formatters import diagnostic_table, snapshot_table
from switchmon.history.store import HistoryStore
from switchmon.models import RateSnapshot
from switchmon.snmp.client import PysnmpGetClient
from switchmon.snmp.poller import PollRunner, SnmpPollEngine


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Build argparse parser for SNMP polling."""
    parser = argparse.ArgumentParser(
        description="Poll switch interface counters via SNMP and print per-interface traffic rates.",
    )
    parser.add_argument(
        "-c",
        "--config",
        default=os.environ.get("SWITCHMON_CONFIG", "switchmon.json"),
        help="JSON configuration file (default: $SWITCHMON_CONFIG or switchmon.json)",
    )
    parser.add_argument(
        "-n",
        "--rounds",
        type=int,
        default=0,
        help="Stop after this many poll rounds; the first round only seeds the counters (default: run forever)",
    )
    parser.add_argument(
        "--diagnose",
        metavar="SWITCH",
        help="Query sysDescr, sysName, ifNumber and ifDescr.1 on one switch (name or IP) and exit",
    )
    parser.add_argument(
        "--no-history",
        action="store_true",
        help="Do not write rate history",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Verbose logging",
    )
    return parser.parse_args(args)


async def _diagnose(engine: SnmpPollEngine, config: MonitorConfig, switch: str) -> int:
    target = next((t for t in config.switches if switch in (t.name, t.ip_address)), None)
    if target is None:
        logger.error(f"No configured switch named {switch!r}")
        return 1
    print(diagnostic_table(await engine.diagnose(target)))
    return 0


async def _run(parsed: argparse.Namespace, config: MonitorConfig) -> int:
    history = None if parsed.no_history else HistoryStore(config.history_dir, config.retention_days)
    async with PysnmpGetClient(
        timeout_ms=config.snmp_timeout_ms,
        retries=config.snmp_retries,
        retry_backoff_ms=config.snmp_retry_backoff_ms,
    ) as client:
        engine = SnmpPollEngine(config, client, history=history)
        if parsed.diagnose:
            return await _diagnose(engine, config, parsed.diagnose)

        runner = PollRunner(engine)
        stop = asyncio.Event()

        def on_round(snapshots: list[RateSnapshot]) -> None:
            print(snapshot_table(snapshots, show_detail=config.show_error_details))
            print()
            if parsed.rounds and runner.rounds >= parsed.rounds:
                stop.set()

        await runner.run_forever(stop, on_round)
    return 0


def main(args: list[str] | None = None) -> None:
    """Main entry point for SNMP polling CLI."""
    parsed = parse_args(args)
    configure_cli_logging(parsed.verbose)

    try:
        config = load_config(parsed.config)
    except ConfigError as e:
        logger.error(str(e))
        sys.exit(1)

    if not config.switches:
        logger.error(f"No switches configured in {parsed.config}")
        sys.exit(1)

    try:
        sys.exit(asyncio.run(_run(parsed, config)))
    except KeyboardInterrupt:
        logger.info("Interrupted")
