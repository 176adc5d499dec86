"""sFlow v5 counter-sample collector."""

from switchmon.sflow.collector import AgentCounterTable, DatagramStats, SFlowCollector
from switchmon.sflow.decoder import InterfaceCounters, SFlowDatagram, decode_datagram

__all__ = [
    "AgentCounterTable",
    "DatagramStats",
    "SFlowCollector",
    "InterfaceCounters",
    "SFlowDatagram",
    "decode_datagram",
]
