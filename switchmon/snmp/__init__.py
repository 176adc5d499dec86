"""SNMP polling: GET collaborator, port/protocol resolver and poll engine."""

from switchmon.snmp.client import GetResult, PysnmpGetClient, SnmpEndpoint, SnmpGetter, SnmpVersion
from switchmon.snmp.poller import DiagnosticProbe, PollRunner, PollState, SnmpPollEngine
from switchmon.snmp.resolver import PortResolver, ResolveResult, ResolverState

__all__ = [
    "GetResult",
    "PysnmpGetClient",
    "SnmpEndpoint",
    "SnmpGetter",
    "SnmpVersion",
    "DiagnosticProbe",
    "PollRunner",
    "PollState",
    "SnmpPollEngine",
    "PortResolver",
    "ResolveResult",
    "ResolverState",
]
