"""sFlow v5 datagram decoder: counter samples only.

Datagram header:
  version, agent_address_type, agent_address (4 or 16 bytes),
  sub_agent_id, sequence_number, uptime, num_samples

Each sample is ``tag(4) length(4) data``; the tag carries the enterprise in
the top 20 bits and the format in the low 12. Counter samples (enterprise
0, format 2 standard / 4 expanded) are decoded record by record; any other
sample only marks the datagram as carrying flow data.

All fields are big-endian.
"""

from __future__ import annotations

import ipaddress
import struct
from dataclasses import dataclass, field

from switchmon.exceptions import SFlowDecodeError, SFlowVersionError

SFLOW_VERSION = 5

ADDRESS_IPV4 = 1
ADDRESS_IPV6 = 2

SAMPLE_COUNTERS = 2
SAMPLE_COUNTERS_EXPANDED = 4

RECORD_GENERIC_INTERFACE = 1
RECORD_EXPANDED_INTERFACE = 1001

GENERIC_INTERFACE_LENGTH = 88
EXPANDED_INTERFACE_MIN_LENGTH = 40

# ifStatus bit 0 = admin up, bit 1 = oper up
_IF_STATUS_OPER_UP = 0x2


@dataclass(frozen=True)
class InterfaceCounters:
    """Octet counters of one interface taken from a counter record."""

    if_index: int
    in_octets: int
    out_octets: int
    speed: int = 0
    oper_up: bool | None = None
    record_format: int = RECORD_GENERIC_INTERFACE


@dataclass
class SFlowDatagram:
    agent_address: str
    sub_agent_id: int
    sequence: int
    uptime_ms: int
    sample_count: int
    version: int = SFLOW_VERSION
    counters: list[InterfaceCounters] = field(default_factory=list)
    counter_samples: int = 0
    flow_samples: int = 0

    @property
    def has_flow_samples(self) -> bool:
        return self.flow_samples > 0

    @property
    def has_counter_samples(self) -> bool:
        return self.counter_samples > 0


def _need(data: bytes, off: int, size: int, what: str) -> None:
    if off + size > len(data):
        raise SFlowDecodeError(f"truncated {what}: need {size} bytes at offset {off}, have {len(data) - off}")


def _u32(data: bytes, off: int, what: str) -> int:
    _need(data, off, 4, what)
    return struct.unpack_from("!I", data, off)[0]


def split_tag(tag: int) -> tuple[int, int]:
    """Split an sFlow data-format tag into (enterprise, format)."""
    return tag >> 12, tag & 0xFFF


def decode_generic_interface(record: bytes) -> InterfaceCounters | None:
    """Decode a generic interface counters record (format 1, 88 bytes).

    Layout: ifIndex(4) ifType(4) ifSpeed(8) ifDirection(4) ifStatus(4)
    ifInOctets(8) 6 x in counters(4) ifOutOctets(8) ...
    """
    if len(record) < GENERIC_INTERFACE_LENGTH:
        return None
    if_index, _if_type, speed, _direction, status, in_octets = struct.unpack_from("!IIQIIQ", record, 0)
    out_octets = struct.unpack_from("!Q", record, 56)[0]
    return InterfaceCounters(
        if_index=if_index,
        in_octets=in_octets,
        out_octets=out_octets,
        speed=speed,
        oper_up=bool(status & _IF_STATUS_OPER_UP),
        record_format=RECORD_GENERIC_INTERFACE,
    )


def decode_expanded_interface(record: bytes) -> InterfaceCounters | None:
    """Approximate decode of a format 1001 record.

    The interface index is read from the first 4 bytes and the in/out octet
    counters from the last 16 bytes. This layout is an unverified
    approximation; records shorter than 40 bytes are ignored.
    """
    if len(record) < EXPANDED_INTERFACE_MIN_LENGTH:
        return None
    if_index = struct.unpack_from("!I", record, 0)[0]
    in_octets, out_octets = struct.unpack_from("!QQ", record, len(record) - 16)
    return InterfaceCounters(
        if_index=if_index,
        in_octets=in_octets,
        out_octets=out_octets,
        record_format=RECORD_EXPANDED_INTERFACE,
    )


def _decode_counter_records(sample: bytes, off: int) -> list[InterfaceCounters]:
    counters: list[InterfaceCounters] = []
    num_records = _u32(sample, off, "counter record count")
    off += 4
    for _ in range(num_records):
        tag = _u32(sample, off, "counter record tag")
        length = _u32(sample, off + 4, "counter record length")
        off += 8
        _need(sample, off, length, "counter record")
        record = sample[off : off + length]
        off += length

        enterprise, fmt = split_tag(tag)
        if enterprise != 0:
            continue
        decoded: InterfaceCounters | None = None
        if fmt == RECORD_GENERIC_INTERFACE:
            decoded = decode_generic_interface(record)
        elif fmt == RECORD_EXPANDED_INTERFACE:
            decoded = decode_expanded_interface(record)
        if decoded is not None:
            counters.append(decoded)
    return counters


def decode_counter_sample(sample: bytes, expanded: bool) -> list[InterfaceCounters]:
    """Decode a counter sample body.

    counters_sample:          seq(4) source_id(4) num_records(4) records...
    expanded counters_sample: seq(4) source_id_type(4) source_id_index(4) num_records(4) records...
    """
    header = 12 if expanded else 8
    _need(sample, 0, header, "counter sample header")
    return _decode_counter_records(sample, header)


def decode_datagram(data: bytes) -> SFlowDatagram:
    """Decode one sFlow v5 datagram.

    Raises:
        SFlowVersionError: The version field is not 5.
        SFlowDecodeError: The datagram is truncated or carries an unknown
            agent address type.
    """
    version = _u32(data, 0, "version")
    if version != SFLOW_VERSION:
        raise SFlowVersionError(f"unsupported sFlow version {version}", version=version)
    off = 4

    addr_type = _u32(data, off, "agent address type")
    off += 4
    if addr_type == ADDRESS_IPV4:
        _need(data, off, 4, "IPv4 agent address")
        agent_address = str(ipaddress.IPv4Address(data[off : off + 4]))
        off += 4
    elif addr_type == ADDRESS_IPV6:
        _need(data, off, 16, "IPv6 agent address")
        agent_address = str(ipaddress.IPv6Address(data[off : off + 16]))
        off += 16
    else:
        raise SFlowDecodeError(f"unknown agent address type {addr_type}")

    _need(data, off, 16, "datagram header")
    sub_agent_id, sequence, uptime_ms, num_samples = struct.unpack_from("!IIII", data, off)
    off += 16

    datagram = SFlowDatagram(
        agent_address=agent_address,
        sub_agent_id=sub_agent_id,
        sequence=sequence,
        uptime_ms=uptime_ms,
        sample_count=num_samples,
    )

    for _ in range(num_samples):
        tag = _u32(data, off, "sample tag")
        length = _u32(data, off + 4, "sample length")
        off += 8
        _need(data, off, length, "sample")
        sample = data[off : off + length]
        off += length

        enterprise, fmt = split_tag(tag)
        if enterprise == 0 and fmt in (SAMPLE_COUNTERS, SAMPLE_COUNTERS_EXPANDED):
            datagram.counters.extend(decode_counter_sample(sample, expanded=fmt == SAMPLE_COUNTERS_EXPANDED))
            datagram.counter_samples += 1
        else:
            datagram.flow_samples += 1

    return datagram
