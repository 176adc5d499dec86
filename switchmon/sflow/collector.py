"""sFlow collector: UDP receive loop and per-agent interface rate state."""

from __future__ import annotations

import asyncio
import contextlib
import socket
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable

from loguru import logger

from switchmon.config import SFlowSettings
from switchmon.counters import CounterTable, InterfaceRate
from switchmon.exceptions import SFlowDecodeError, SFlowVersionError
from switchmon.models import RateSnapshot, RawCounterSample, Status, utcnow
from switchmon.sflow.decoder import InterfaceCounters, SFlowDatagram, decode_datagram

SOCKET_ERROR_PAUSE_SECONDS = 0.5
MAX_DATAGRAM_SIZE = 65535
DEBUG_HEX_BYTES = 32

AgentKey = tuple[str, int]


@dataclass(frozen=True)
class DatagramStats:
    """Point-in-time copy of the collector's datagram counters."""

    raw_datagrams: int = 0
    invalid_version: int = 0
    parse_errors: int = 0
    by_agent: dict[str, int] = field(default_factory=dict)
    last_seen: dict[str, datetime] = field(default_factory=dict)
    flow_only_agents: frozenset[str] = frozenset()

    @property
    def total(self) -> int:
        """Datagrams that passed the version check."""
        return sum(self.by_agent.values())

    @property
    def last_any(self) -> datetime | None:
        return max(self.last_seen.values()) if self.last_seen else None


class AgentCounterTable:
    """Per-agent interface counters and datagram statistics behind one lock.

    Counter state is keyed by ``(agent ip, ifIndex)``. sFlow counters are
    monotonic, so every decrease is treated as a wraparound.
    """

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.counters: CounterTable[AgentKey] = CounterTable(detect_reset=False)
        self.rates: dict[AgentKey, InterfaceRate] = {}
        self.interfaces: dict[AgentKey, InterfaceCounters] = {}
        self.raw_datagrams = 0
        self.invalid_version = 0
        self.parse_errors = 0
        self.by_agent: dict[str, int] = {}
        self.last_seen: dict[str, datetime] = {}
        self.flow_agents: set[str] = set()
        self.counter_agents: set[str] = set()

    @property
    def flow_only_agents(self) -> set[str]:
        return self.flow_agents - self.counter_agents

    def observe(self, agent: str, counters: InterfaceCounters, timestamp: datetime) -> InterfaceRate | None:
        """Feed one decoded counter record; caller holds ``lock``."""
        key = (agent, counters.if_index)
        sample = RawCounterSample(
            if_index=counters.if_index,
            name=f"if{counters.if_index}",
            in_octets=counters.in_octets,
            out_octets=counters.out_octets,
            timestamp=timestamp,
            high_capacity=True,
        )
        speed_label = str(counters.speed) if counters.speed else None
        rate = self.counters.observe(key, sample, speed_label)
        self.interfaces[key] = counters
        if rate is not None:
            self.rates[key] = rate
        return rate

    def stats(self) -> DatagramStats:
        with self.lock:
            return DatagramStats(
                raw_datagrams=self.raw_datagrams,
                invalid_version=self.invalid_version,
                parse_errors=self.parse_errors,
                by_agent=dict(self.by_agent),
                last_seen=dict(self.last_seen),
                flow_only_agents=frozenset(self.flow_only_agents),
            )


class SFlowCollector:
    """Receives sFlow v5 datagrams and keeps live per-interface rates.

    ``handle_datagram`` is the synchronous decode-and-update step and can be
    driven directly; ``start``/``stop`` run it from an asyncio UDP loop.
    """

    def __init__(
        self,
        settings: SFlowSettings | None = None,
        table: AgentCounterTable | None = None,
        clock: Callable[[], datetime] | None = None,
        agent_names: dict[str, str] | None = None,
    ) -> None:
        self.settings = settings or SFlowSettings()
        self.table = table if table is not None else AgentCounterTable()
        self.agent_names = dict(agent_names or {})
        self._clock = clock or utcnow
        self._dumped = 0
        self._sock: socket.socket | None = None
        self._task: asyncio.Task[None] | None = None
        self._stop = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def bound_port(self) -> int | None:
        """The local UDP port actually bound (useful with port 0)."""
        if self._sock is None:
            return None
        return self._sock.getsockname()[1]

    # ── datagram handling ──────────────────────────────────────────────

    def handle_datagram(self, data: bytes, agent: str) -> SFlowDatagram | None:
        """Decode one datagram from ``agent`` and update the table.

        Never raises on malformed input: version mismatches and decode
        errors are counted and the datagram is discarded.
        """
        table = self.table
        with table.lock:
            table.raw_datagrams += 1

        if self.settings.debug:
            logger.debug(f"sFlow datagram from {agent} len={len(data)} first={data[:DEBUG_HEX_BYTES].hex('-')}")
        self._maybe_dump(data)

        try:
            datagram = decode_datagram(data)
        except SFlowVersionError as e:
            with table.lock:
                table.invalid_version += 1
            if self.settings.debug:
                logger.debug(f"sFlow datagram from {agent} discarded: {e}")
            return None
        except SFlowDecodeError as e:
            now = self._clock()
            with table.lock:
                table.parse_errors += 1
                table.by_agent[agent] = table.by_agent.get(agent, 0) + 1
                table.last_seen[agent] = now
            if self.settings.debug:
                logger.warning(f"sFlow parse error from {agent}: {e}")
            return None

        now = self._clock()
        with table.lock:
            table.by_agent[agent] = table.by_agent.get(agent, 0) + 1
            table.last_seen[agent] = now
            if datagram.has_flow_samples:
                table.flow_agents.add(agent)
            if datagram.has_counter_samples:
                table.counter_agents.add(agent)
            for counters in datagram.counters:
                table.observe(agent, counters, now)
        return datagram

    def _maybe_dump(self, data: bytes) -> None:
        if self._dumped >= self.settings.dump_first_n:
            return
        path = Path(self.settings.dump_dir) / f"sflow-dump-{self._dumped + 1}.bin"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            self._dumped += 1
        except OSError as e:
            logger.warning(f"Could not write sFlow dump {path}: {e}")

    def inject_test_sample(
        self,
        agent: str,
        if_index: int,
        in_octets: int,
        out_octets: int,
        timestamp: datetime | None = None,
        speed: int = 0,
    ) -> InterfaceRate | None:
        """Feed a synthetic counter observation as if it came from ``agent``."""
        counters = InterfaceCounters(
            if_index=if_index, in_octets=in_octets, out_octets=out_octets, speed=speed, oper_up=True
        )
        now = timestamp or self._clock()
        with self.table.lock:
            self.table.counter_agents.add(agent)
            self.table.last_seen[agent] = now
            return self.table.observe(agent, counters, now)

    # ── diagnostics ────────────────────────────────────────────────────

    def stats(self) -> DatagramStats:
        return self.table.stats()

    def snapshots(self) -> list[RateSnapshot]:
        """Current rate state as snapshots, one per (agent, ifIndex)."""
        table = self.table
        result: list[RateSnapshot] = []
        with table.lock:
            for (agent, if_index), sample in sorted(table.counters.items()):
                rate = table.rates.get((agent, if_index))
                counters = table.interfaces.get((agent, if_index))
                status = Status.UP.value
                speed_label = "-"
                if counters is not None:
                    if counters.oper_up is False:
                        status = Status.DOWN.value
                    if counters.speed:
                        speed_label = str(counters.speed)
                result.append(
                    RateSnapshot(
                        switch_name=self.agent_names.get(agent, agent),
                        switch_ip=agent,
                        if_index=if_index,
                        if_name=sample.name or f"if{if_index}",
                        status=status,
                        in_bps=rate.in_bps if rate else 0.0,
                        out_bps=rate.out_bps if rate else 0.0,
                        util_in=rate.util_in if rate else 0.0,
                        util_out=rate.util_out if rate else 0.0,
                        speed_label=speed_label,
                        timestamp=sample.timestamp,
                        port=self.settings.port,
                        has_rate=rate is not None,
                    )
                )
        return result

    # ── receive loop ───────────────────────────────────────────────────

    async def start(self) -> None:
        """Bind the UDP socket and start the receive task."""
        if self.running:
            return
        bind = self.settings.bind_address
        family = socket.AF_INET6 if ":" in bind else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((bind, self.settings.port))
        except OSError:
            sock.close()
            raise
        sock.setblocking(False)
        self._sock = sock
        self._stop.clear()
        self._task = asyncio.create_task(self._run(), name="sflow-receive")
        logger.info(f"sFlow collector listening on {bind}:{self.bound_port}")

    async def stop(self) -> None:
        """Cancel the receive task and release the socket."""
        self._stop.set()
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._sock is not None:
            self._sock.close()
            self._sock = None
            logger.info("sFlow collector stopped")

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        sock = self._sock
        if sock is None:
            return
        while not self._stop.is_set():
            try:
                data, addr = await loop.sock_recvfrom(sock, MAX_DATAGRAM_SIZE)
            except OSError as e:
                logger.warning(f"sFlow receive error: {e}")
                await asyncio.sleep(SOCKET_ERROR_PAUSE_SECONDS)
                continue
            try:
                self.handle_datagram(data, addr[0])
            except Exception as e:
                logger.opt(exception=e).error(f"sFlow datagram from {addr[0]} could not be handled")
                with self.table.lock:
                    self.table.parse_errors += 1
