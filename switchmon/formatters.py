"""Terminal tables for snapshots, sFlow statistics, diagnostics and history."""

from __future__ import annotations

from typing import Iterable

from tabulate import tabulate

from switchmon._util import format_bits, format_speed, truncate
from switchmon.history.store import HistoryRange
from switchmon.models import HistoryRecord, RateSnapshot
from switchmon.sflow.collector import DatagramStats
from switchmon.snmp.poller import DiagnosticProbe

TABLE_FORMAT = "simple"


def _rate(value: float, has_rate: bool) -> str:
    return format_bits(value) if has_rate else "-"


def _util(value: float, has_rate: bool) -> str:
    return f"{value:.1f}%" if has_rate else "-"


def snapshot_table(snapshots: Iterable[RateSnapshot], show_detail: bool = False) -> str:
    """Render snapshots as one row per interface; switch-level errors show the switch only."""
    headers = ["Switch", "IP", "Port", "If", "Name", "Status", "Speed", "In", "Out", "In %", "Out %", "Time (UTC)"]
    if show_detail:
        headers.append("Detail")

    rows: list[list[str]] = []
    for s in snapshots:
        row = [
            s.switch_name,
            s.switch_ip,
            str(s.port) if s.port else "-",
            "-" if s.is_switch_error else str(s.if_index),
            truncate(s.if_name, 24),
            s.status,
            format_speed(s.speed_label),
            _rate(s.in_bps, s.has_rate),
            _rate(s.out_bps, s.has_rate),
            _util(s.util_in, s.has_rate),
            _util(s.util_out, s.has_rate),
            s.timestamp.strftime("%H:%M:%S"),
        ]
        if show_detail:
            row.append(truncate(s.detail, 60))
        rows.append(row)
    return tabulate(rows, headers=headers, tablefmt=TABLE_FORMAT)


def stats_table(stats: DatagramStats) -> str:
    """Render datagram counters followed by one row per agent."""
    summary = tabulate(
        [
            ["raw datagrams", stats.raw_datagrams],
            ["accepted (v5)", stats.total],
            ["invalid version", stats.invalid_version],
            ["parse errors", stats.parse_errors],
            ["flow-only agents", ", ".join(sorted(stats.flow_only_agents)) or "-"],
        ],
        tablefmt=TABLE_FORMAT,
    )
    agents = [
        [
            agent,
            count,
            stats.last_seen[agent].strftime("%Y-%m-%d %H:%M:%S") if agent in stats.last_seen else "-",
            "yes" if agent in stats.flow_only_agents else "",
        ]
        for agent, count in sorted(stats.by_agent.items())
    ]
    if not agents:
        return summary
    return summary + "\n\n" + tabulate(agents, headers=["Agent", "Datagrams", "Last seen (UTC)", "Flow only"])


def diagnostic_table(probes: Iterable[DiagnosticProbe]) -> str:
    rows = [
        [
            p.label,
            p.oid,
            p.endpoint,
            "OK" if p.ok else (p.failure.status.value if p.failure else "ERR"),
            truncate(p.value if p.ok and p.value is not None else p.detail, 60),
        ]
        for p in probes
    ]
    return tabulate(rows, headers=["Object", "OID", "Endpoint", "Result", "Value / detail"], tablefmt=TABLE_FORMAT)


def history_table(records: Iterable[HistoryRecord] | HistoryRange) -> str:
    rows = [
        [
            r.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            format_bits(r.in_bps),
            format_bits(r.out_bps),
            f"{r.util_in:.1f}%",
            f"{r.util_out:.1f}%",
            format_speed(r.speed_label),
        ]
        for r in records
    ]
    return tabulate(rows, headers=["Time (UTC)", "In", "Out", "In %", "Out %", "Speed"], tablefmt=TABLE_FORMAT)
