"""Orchestrator CLI: dispatches to sub-CLIs.

Sub-commands:
  poll     Poll switches via SNMP and print per-interface traffic rates
  sflow    Receive sFlow v5 counter samples and print per-interface rates
  history  Show or prune the stored per-interface rate history

Examples:
  switchmon poll -c switchmon.json

  switchmon poll -c switchmon.json --diagnose core-sw1

  switchmon sflow --port 6343 --interval 5

  switchmon history 192.168.1.2 3 --hours 6
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from tabulate import tabulate

from switchmon import __version__, configure_logging
from switchmon import glogger

COMMANDS = {
    "poll": ("switchmon.snmp.cli", "SNMP interface polling"),
    "sflow": ("switchmon.sflow.cli", "sFlow v5 counter collector"),
    "history": ("switchmon.history.cli", "Stored rate history"),
}


def _print_usage() -> None:
    print("usage: switchmon <command> [options]\n")
    print("Available commands:")
    for cmd, (_, desc) in COMMANDS.items():
        print(f"  {cmd:10s}  {desc}")
    print("\nRun 'switchmon <command> --help' for command-specific options.")


def _config_path(command: str, argv: list[str]) -> str | None:
    """The configuration file the sub-CLI will read; only ``poll`` has a default."""
    for i, arg in enumerate(argv):
        if arg in ("-c", "--config") and i + 1 < len(argv):
            return argv[i + 1]
        if arg.startswith("--config="):
            return arg.split("=", 1)[1]
    if command == "poll":
        return os.environ.get("SWITCHMON_CONFIG", "switchmon.json")
    return None


def startup_rows(argv: list[str]) -> list[list[str]]:
    """Banner rows: version, selected command and the configuration it will use."""
    command = argv[0] if argv and argv[0] in COMMANDS else "-"
    config_path = _config_path(command, argv[1:])
    if config_path is None:
        config = "-"
    elif Path(config_path).is_file():
        config = config_path
    else:
        config = f"{config_path} (missing)"
    rows = [
        ["version", __version__],
        ["command", command],
        ["config", config],
        ["log level", os.environ.get("LOGURU_LEVEL", "INFO")],
    ]
    return rows


def _print_startup_banner(argv: list[str]) -> None:
    table_str = tabulate(startup_rows(argv), tablefmt="mixed_grid")
    lines = table_str.split("\n")
    table_width = len(lines[0])
    title = "switchmon starting up"
    title_border = "┍" + "━" * (table_width - 2) + "┑"
    title_row = "│ " + title.center(table_width - 4) + " │"
    separator = lines[0].replace("┍", "┝").replace("┑", "┥").replace("┯", "┿")

    glogger.opt(raw=True).info(
        "\n{}\n", title_border + "\n" + title_row + "\n" + separator + "\n" + "\n".join(lines[1:])
    )


def main() -> None:
    """Main entry point: dispatch to a sub-CLI."""
    configure_logging()
    _print_startup_banner(sys.argv[1:])

    if len(sys.argv) < 2 or sys.argv[1] in ("-h", "--help"):
        _print_usage()
        sys.exit(0 if len(sys.argv) >= 2 else 1)

    command = sys.argv[1]
    if command not in COMMANDS:
        print(f"switchmon: unknown command '{command}'\n", file=sys.stderr)
        _print_usage()
        sys.exit(1)

    module_path, _ = COMMANDS[command]

    from importlib import import_module

    module = import_module(module_path)
    module.main(sys.argv[2:])


if __name__ == "__main__":
    main()
