"""Shared fixtures for the switchmon test suite."""

from __future__ import annotations

import struct
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from loguru import logger

from switchmon.config import MonitorConfig, SwitchTarget
from switchmon.models import FailureClass
from switchmon.snmp.client import GetResult, SnmpEndpoint


@pytest.fixture(autouse=True)
def _reset_loguru():
    """Drop sinks CLI tests add on the captured stderr and re-disable package logging."""
    yield
    logger.remove()
    logger.disable("switchmon")


# ── clock ─────────────────────────────────────────────────────────────


class FakeClock:
    """Callable returning a controllable aware-UTC ``now``."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture()
def clock():
    """FakeClock starting at 2024-06-01 12:00:00 UTC."""
    return FakeClock(datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc))


# ── SNMP getter fake ──────────────────────────────────────────────────


class FakeSnmpGetter:
    """In-memory SnmpGetter.

    ``values`` maps an OID to a value, a FailureClass, or a list of those
    consumed one per GET (the last entry repeats). OIDs not in ``values``
    answer ``nosuch``. When ``answering_ports`` is set, other ports fail
    with ``port_failures.get(port, timeout)``.
    """

    def __init__(self, values=None, answering_ports=None, port_failures=None):
        self.values = dict(values or {})
        self.answering_ports = set(answering_ports) if answering_ports is not None else None
        self.port_failures = dict(port_failures or {})
        self.calls: list[tuple[SnmpEndpoint, str, str]] = []

    async def get(self, endpoint, community, oid, *, v3_user=None, timeout_ms=None):
        self.calls.append((endpoint, community, oid))
        if v3_user is not None:
            return GetResult.fail(FailureClass.UNSUPPORTED, "SNMPv3 is not supported")
        if self.answering_ports is not None and endpoint.port not in self.answering_ports:
            failure = self.port_failures.get(endpoint.port, FailureClass.TIMEOUT)
            return GetResult.fail(failure, f"{endpoint.host}:{endpoint.port} {failure.value}")

        value = self.values.get(oid)
        if isinstance(value, list):
            value = value.pop(0) if len(value) > 1 else value[0]
        if value is None:
            return GetResult.fail(FailureClass.NOSUCH, f"{oid} not present")
        if isinstance(value, FailureClass):
            return GetResult.fail(value, f"{oid} {value.value}")
        return GetResult.success(str(value), endpoint.version)

    def ports_tried(self) -> list[int]:
        return [endpoint.port for endpoint, _, _ in self.calls]

    def oids_requested(self) -> list[str]:
        return [oid for _, _, oid in self.calls]


@pytest.fixture()
def fake_getter():
    """Factory fixture returning a FakeSnmpGetter."""

    def _make(values=None, **kwargs):
        return FakeSnmpGetter(values, **kwargs)

    return _make


# ── configuration ─────────────────────────────────────────────────────


@pytest.fixture()
def make_switch():
    """Factory fixture returning a SwitchTarget with customizable fields."""

    def _make(**kwargs):
        defaults = {
            "name": "core-sw1",
            "ip_address": "192.168.1.2",
            "community": "public",
        }
        defaults.update(kwargs)
        return SwitchTarget(**defaults)

    return _make


@pytest.fixture()
def make_config(make_switch):
    """Factory fixture returning a MonitorConfig with one switch by default."""

    def _make(switches=None, **kwargs):
        defaults = {
            "switches": switches if switches is not None else [make_switch()],
            "max_interfaces": 1,
        }
        defaults.update(kwargs)
        return MonitorConfig(**defaults)

    return _make


# ── sFlow datagram builders ───────────────────────────────────────────


def generic_if_record(if_index, in_octets, out_octets, speed=1_000_000_000, status=3):
    """Counter record tag+length+body for a format 1 generic interface counters record."""
    body = struct.pack("!IIQII", if_index, 6, speed, 1, status)
    body += struct.pack("!Q", in_octets) + b"\x00" * 24
    body += struct.pack("!Q", out_octets) + b"\x00" * 24
    assert len(body) == 88
    return struct.pack("!II", 1, len(body)) + body


def expanded_if_record(if_index, in_octets, out_octets, length=48):
    """Format 1001 record: ifIndex first, in/out octets in the last 16 bytes."""
    body = struct.pack("!I", if_index) + b"\x00" * (length - 20) + struct.pack("!QQ", in_octets, out_octets)
    return struct.pack("!II", 1001, len(body)) + body


def counter_sample(records, expanded=False, seq=1):
    """Sample tag+length+body for a standard (2) or expanded (4) counter sample."""
    if expanded:
        body = struct.pack("!IIII", seq, 0, 1, len(records))
    else:
        body = struct.pack("!III", seq, 1, len(records))
    body += b"".join(records)
    return struct.pack("!II", 4 if expanded else 2, len(body)) + body


def flow_sample(seq=1):
    """Minimal flow sample (format 1) with no records."""
    body = struct.pack("!IIIIIIII", seq, 1, 256, 1000, 0, 1, 2, 0)
    return struct.pack("!II", 1, len(body)) + body


def datagram(samples, version=5, agent=b"\x0a\x00\x00\x01", addr_type=1, seq=1):
    """Full sFlow datagram around ``samples``."""
    header = struct.pack("!II", version, addr_type) + agent
    header += struct.pack("!IIII", 0, seq, 1000, len(samples))
    return header + b"".join(samples)


@pytest.fixture()
def sflow():
    """Namespace of sFlow datagram builders."""
    return SimpleNamespace(
        generic_if_record=generic_if_record,
        expanded_if_record=expanded_if_record,
        counter_sample=counter_sample,
        flow_sample=flow_sample,
        datagram=datagram,
    )
