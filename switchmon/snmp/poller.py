"""SNMP poll engine: one round over all configured switches.

Per switch: resolve the endpoint, verify it with a sysUpTime GET (one
re-probe on failure), read ifNumber, then per interface read ifDescr,
ifOperStatus, ifSpeed and the octet counters and turn them into a
:class:`RateSnapshot`. A round never raises; failures become snapshots.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from loguru import logger

from switchmon.config import MonitorConfig, SnmpV3User, SwitchTarget
from switchmon.counters import CounterTable, InterfaceRate
from switchmon.history.store import HistoryStore
from switchmon.models import FailureClass, RateSnapshot, RawCounterSample, Status, utcnow
from switchmon.snmp.client import (
    OID_IF_DESCR,
    OID_IF_HC_IN_OCTETS,
    OID_IF_HC_OUT_OCTETS,
    OID_IF_IN_OCTETS,
    OID_IF_NUMBER,
    OID_IF_OPER_STATUS,
    OID_IF_OUT_OCTETS,
    OID_IF_SPEED,
    OID_SYS_DESCR,
    OID_SYS_NAME,
    OID_SYS_UPTIME,
    GetResult,
    SnmpEndpoint,
    SnmpGetter,
    indexed,
)
from switchmon.snmp.resolver import PortResolver, ResolverState

NO_DATA_NAME = "(no data)"

InterfaceKey = tuple[str, int]


@dataclass
class PollState:
    """Everything a poll engine remembers between rounds."""

    counters: CounterTable[InterfaceKey] = field(default_factory=CounterTable)
    # True: answers ifHC*; False: legacy 32-bit only; absent: not probed yet
    high_capacity: dict[InterfaceKey, bool] = field(default_factory=dict)
    resolver: ResolverState = field(default_factory=ResolverState)


@dataclass(frozen=True)
class DiagnosticProbe:
    """One GET made by :meth:`SnmpPollEngine.diagnose`."""

    label: str
    oid: str
    endpoint: str
    value: str | None = None
    failure: FailureClass | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.failure is None


def oper_status_label(result: GetResult) -> str:
    """1 -> UP, 2 -> DOWN, anything else as its raw value."""
    code = result.as_int()
    if code == 1:
        return Status.UP.value
    if code == 2:
        return Status.DOWN.value
    return str(code) if code is not None else (result.value or "").strip()


class SnmpPollEngine:
    """Polls the configured switches; state is private to the instance."""

    def __init__(
        self,
        config: MonitorConfig,
        getter: SnmpGetter,
        history: HistoryStore | None = None,
        clock: Callable[[], datetime] | None = None,
        state: PollState | None = None,
    ) -> None:
        self.config = config
        self.getter = getter
        self.history = history
        self._clock = clock or utcnow
        self.state = state if state is not None else PollState()
        self.resolver = PortResolver(getter, config.probe_ports, config.default_snmp_port, self.state.resolver)

    # ── configuration ──────────────────────────────────────────────────

    def update_configuration(self, config: MonitorConfig) -> None:
        """Swap in a new configuration and drop state of switches that went away."""
        old_targets = {t.ip_address: t for t in self.config.switches}
        self.config = config
        self.resolver.probe_ports = list(config.probe_ports)
        self.resolver.default_port = config.default_snmp_port

        ips = {t.ip_address for t in config.switches}
        dropped = self.state.counters.discard(lambda key: key[0] not in ips)
        for key in [k for k in self.state.high_capacity if k[0] not in ips]:
            del self.state.high_capacity[key]
        self.resolver.forget_missing(ips)

        for target in config.switches:
            previous = old_targets.get(target.ip_address)
            if previous is not None and previous != target:
                self.resolver.invalidate(target.ip_address)

        logger.info(f"Configuration updated: {len(config.switches)} switch(es), {dropped} counter baseline(s) dropped")

    # ── round ──────────────────────────────────────────────────────────

    async def poll_once(self) -> list[RateSnapshot]:
        """Poll every configured switch sequentially and return all snapshots."""
        snapshots: list[RateSnapshot] = []
        for target in list(self.config.switches):
            try:
                snapshots.extend(await self._poll_switch(target))
            except Exception as e:
                logger.opt(exception=e).error(f"Polling {target.name} ({target.ip_address}) failed")
                snapshots.append(self._switch_error(target, Status.ERR, f"{type(e).__name__}: {e}"))

        if self.history is not None:
            for snapshot in snapshots:
                self.history.append_snapshot(snapshot)
        return snapshots

    async def _get(
        self, endpoint: SnmpEndpoint, target: SwitchTarget, oid: str, v3_user: SnmpV3User | None
    ) -> GetResult:
        return await self.getter.get(
            endpoint, target.community, oid, v3_user=v3_user, timeout_ms=self.config.snmp_timeout_ms
        )

    def _detail(self, detail: str) -> str:
        return detail if self.config.show_error_details else ""

    def _switch_error(self, target: SwitchTarget, status: Status | str, detail: str = "", port: int = 0) -> RateSnapshot:
        return RateSnapshot(
            switch_name=target.name,
            switch_ip=target.ip_address,
            if_index=0,
            if_name=NO_DATA_NAME,
            status=status.value if isinstance(status, Status) else status,
            timestamp=self._clock(),
            port=port,
            detail=self._detail(detail),
        )

    async def _live_endpoint(
        self, target: SwitchTarget, v3_user: SnmpV3User | None
    ) -> tuple[SnmpEndpoint | None, RateSnapshot | None]:
        """Resolve and verify the endpoint, re-probing exactly once if verification fails."""
        ip = target.ip_address
        resolved = await self.resolver.resolve(target, v3_user)
        for attempt in range(2):
            if resolved.endpoint is None:
                self.resolver.invalidate(ip)
                detail = resolved.summary or resolved.detail
                return None, self._switch_error(target, resolved.status or Status.ERR, detail)

            live = await self._get(resolved.endpoint, target, OID_SYS_UPTIME, v3_user)
            if live.ok:
                return resolved.endpoint, None

            self.resolver.invalidate(ip)
            if attempt == 0:
                logger.info(f"Liveness check for {target.name} ({ip}) failed ({live.failure}), re-probing")
                resolved = await self.resolver.resolve(target, v3_user)
                continue

            failure = live.failure or FailureClass.ERROR
            return None, self._switch_error(target, failure.status, live.detail, resolved.endpoint.port)
        return None, self._switch_error(target, Status.ERR, "unreachable")

    def _indices(self, target: SwitchTarget, if_count: int | None) -> list[int]:
        if target.include_if_indices:
            return sorted({i for i in target.include_if_indices if i > 0})
        if if_count is None or if_count <= 0:
            return []
        return list(range(1, min(if_count, self.config.max_interfaces) + 1))

    async def _poll_switch(self, target: SwitchTarget) -> list[RateSnapshot]:
        v3_user: SnmpV3User | None = None
        if target.snmpv3_user:
            v3_user = self.config.v3_user(target.snmpv3_user)
            if v3_user is None:
                return [self._switch_error(target, Status.ERR, f"unknown SNMPv3 user {target.snmpv3_user!r}")]

        endpoint, error = await self._live_endpoint(target, v3_user)
        if endpoint is None:
            return [error] if error is not None else []

        count = await self._get(endpoint, target, OID_IF_NUMBER, v3_user)
        indices = self._indices(target, count.as_int())
        if not indices and not count.ok:
            failure = count.failure or FailureClass.ERROR
            return [self._switch_error(target, failure.status, count.detail, endpoint.port)]

        snapshots: list[RateSnapshot] = []
        for if_index in indices:
            snapshot = await self._poll_interface(target, endpoint, if_index, v3_user)
            if snapshot is not None:
                snapshots.append(snapshot)

        if not snapshots:
            return [self._switch_error(target, Status.ERR, "no interface data", endpoint.port)]
        return snapshots

    async def _poll_interface(
        self, target: SwitchTarget, endpoint: SnmpEndpoint, if_index: int, v3_user: SnmpV3User | None
    ) -> RateSnapshot | None:
        def failed(name: str, result: GetResult, speed_label: str = "-") -> RateSnapshot:
            failure = result.failure or FailureClass.ERROR
            return RateSnapshot(
                switch_name=target.name,
                switch_ip=target.ip_address,
                if_index=if_index,
                if_name=name,
                status=failure.status.value,
                speed_label=speed_label,
                timestamp=self._clock(),
                port=endpoint.port,
                detail=self._detail(result.detail),
            )

        descr = await self._get(endpoint, target, indexed(OID_IF_DESCR, if_index), v3_user)
        if descr.failure is FailureClass.NOSUCH:
            return None
        if not descr.ok:
            return failed(f"if{if_index}", descr)
        name = (descr.value or "").strip() or f"if{if_index}"

        oper = await self._get(endpoint, target, indexed(OID_IF_OPER_STATUS, if_index), v3_user)
        if not oper.ok:
            return failed(name, oper)

        speed = await self._get(endpoint, target, indexed(OID_IF_SPEED, if_index), v3_user)
        speed_label = (speed.value or "").strip() if speed.ok else ""
        speed_label = speed_label or "-"

        sample, counter_error = await self._read_counters(target, endpoint, if_index, name, v3_user)
        if sample is None:
            return failed(name, counter_error or GetResult.fail(FailureClass.ERROR), speed_label)

        rate: InterfaceRate | None = None
        if counter_error is None:
            rate = self.state.counters.observe((target.ip_address, if_index), sample, speed_label)
        return RateSnapshot(
            switch_name=target.name,
            switch_ip=target.ip_address,
            if_index=if_index,
            if_name=name,
            status=oper_status_label(oper),
            in_bps=rate.in_bps if rate else 0.0,
            out_bps=rate.out_bps if rate else 0.0,
            util_in=rate.util_in if rate else 0.0,
            util_out=rate.util_out if rate else 0.0,
            speed_label=speed_label,
            timestamp=sample.timestamp,
            port=endpoint.port,
            has_rate=rate is not None,
            detail=self._detail(counter_error.detail) if counter_error else "",
        )

    async def _read_counters(
        self, target: SwitchTarget, endpoint: SnmpEndpoint, if_index: int, name: str, v3_user: SnmpV3User | None
    ) -> tuple[RawCounterSample | None, GetResult | None]:
        """Read both octet counters, preferring the 64-bit objects.

        The first 64-bit read decides once per interface whether it is
        high-capacity. Afterwards a failed 64-bit read still returns a sample
        (the failed direction reads 0) together with the failed result; such
        a sample must not become the rate baseline.
        """
        key = (target.ip_address, if_index)
        mode = self.state.high_capacity.get(key)

        if self.config.use_high_capacity and mode is not False:
            hc_in = await self._get(endpoint, target, indexed(OID_IF_HC_IN_OCTETS, if_index), v3_user)
            if mode is None:
                mode = hc_in.as_int() is not None
                self.state.high_capacity[key] = mode
                logger.debug(
                    f"{target.name} if{if_index}: {'64-bit' if mode else 'legacy 32-bit'} octet counters"
                )
            if mode:
                hc_out = await self._get(endpoint, target, indexed(OID_IF_HC_OUT_OCTETS, if_index), v3_user)
                failed_read: GetResult | None = None
                for direction, result in (("in", hc_in), ("out", hc_out)):
                    if result.as_int() is None:
                        logger.debug(f"{target.name} if{if_index}: 64-bit {direction} read failed, no rate this cycle")
                        failed_read = failed_read or result
                sample = RawCounterSample(
                    if_index=if_index,
                    name=name,
                    in_octets=hc_in.as_int() or 0,
                    out_octets=hc_out.as_int() or 0,
                    timestamp=self._clock(),
                    high_capacity=True,
                )
                return sample, failed_read

        in32 = await self._get(endpoint, target, indexed(OID_IF_IN_OCTETS, if_index), v3_user)
        if in32.as_int() is None:
            return None, in32 if not in32.ok else GetResult.fail(FailureClass.ERROR, f"ifInOctets {in32.value!r}")
        out32 = await self._get(endpoint, target, indexed(OID_IF_OUT_OCTETS, if_index), v3_user)
        if out32.as_int() is None:
            return None, out32 if not out32.ok else GetResult.fail(FailureClass.ERROR, f"ifOutOctets {out32.value!r}")

        sample = RawCounterSample(
            if_index=if_index,
            name=name,
            in_octets=in32.as_int() or 0,
            out_octets=out32.as_int() or 0,
            timestamp=self._clock(),
            high_capacity=False,
        )
        return sample, None

    # ── diagnostics ────────────────────────────────────────────────────

    async def diagnose(self, target: SwitchTarget) -> list[DiagnosticProbe]:
        """GET sysDescr, sysName, ifNumber and ifDescr.1 and report each outcome."""
        v3_user = self.config.v3_user(target.snmpv3_user) if target.snmpv3_user else None
        resolved = await self.resolver.resolve(target, v3_user)
        endpoint = resolved.endpoint or SnmpEndpoint(
            target.ip_address, target.snmp_port or self.config.default_snmp_port
        )

        probes: list[DiagnosticProbe] = []
        for label, oid in (
            ("sysDescr", OID_SYS_DESCR),
            ("sysName", OID_SYS_NAME),
            ("ifNumber", OID_IF_NUMBER),
            ("ifDescr.1", indexed(OID_IF_DESCR, 1)),
        ):
            result = await self._get(endpoint, target, oid, v3_user)
            probes.append(
                DiagnosticProbe(
                    label=label,
                    oid=oid,
                    endpoint=str(endpoint),
                    value=result.value,
                    failure=result.failure,
                    detail=result.detail,
                )
            )
        return probes


class PollRunner:
    """Triggers poll rounds without ever overlapping them."""

    def __init__(self, engine: SnmpPollEngine) -> None:
        self.engine = engine
        self.rounds = 0
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    async def trigger(self) -> list[RateSnapshot] | None:
        """Run one round; returns None without polling if a round is already in flight."""
        if self._busy:
            logger.debug("Poll round already in flight, trigger ignored")
            return None
        self._busy = True
        try:
            snapshots = await self.engine.poll_once()
        finally:
            self._busy = False
        self.rounds += 1
        return snapshots

    async def run_forever(
        self,
        stop_event: asyncio.Event,
        on_round: Callable[[list[RateSnapshot]], None] | None = None,
    ) -> None:
        """Poll every ``poll_interval_seconds`` until ``stop_event`` is set."""
        if self.engine.history is not None:
            self.engine.history.cleanup_old()

        while not stop_event.is_set():
            snapshots = await self.trigger()
            if snapshots is not None and on_round is not None:
                on_round(snapshots)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.engine.config.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass
