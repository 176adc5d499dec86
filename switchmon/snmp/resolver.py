"""Port/protocol discovery for SNMP agents.

Finds the UDP port and protocol version on which a switch answers a GET of
sysName, and caches the result per switch IP until a failed liveness check
invalidates it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from loguru import logger

from switchmon.config import SnmpV3User, SwitchTarget
from switchmon.models import FailureClass, Status
from switchmon.snmp.client import OID_SYS_NAME, GetResult, SnmpEndpoint, SnmpGetter, SnmpVersion


@dataclass
class ResolverState:
    """Per-engine resolver cache: resolved endpoints and last failure summaries."""

    endpoints: dict[str, SnmpEndpoint] = field(default_factory=dict)
    summaries: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ResolveResult:
    """Outcome of resolving one switch.

    On failure ``status`` is the common failure class of all candidates
    when they agree, otherwise ``ERR``; ``summary`` lists ``port:class``
    pairs in probe order.
    """

    endpoint: SnmpEndpoint | None = None
    status: Status | None = None
    summary: str = ""
    detail: str = ""
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return self.endpoint is not None


def candidate_ports(explicit_port: int | None, probe_ports: Iterable[int], default_port: int) -> list[int]:
    """Explicit port first, then probe ports, deduplicated; the default port is always included."""
    ports: list[int] = []
    for port in ([explicit_port] if explicit_port else []) + list(probe_ports) + [default_port]:
        if port and 0 < port < 65536 and port not in ports:
            ports.append(port)
    return ports


def _summarize(failures: list[tuple[int, GetResult]]) -> tuple[Status, str]:
    classes = {r.failure for _, r in failures}
    summary = ", ".join(f"{port}:{(r.failure or FailureClass.ERROR).value}" for port, r in failures)
    if len(classes) == 1:
        only = next(iter(classes))
        return (only or FailureClass.ERROR).status, summary
    return Status.ERR, summary


class PortResolver:
    """Resolve and cache a working (port, version) pair per switch IP."""

    def __init__(
        self,
        getter: SnmpGetter,
        probe_ports: Iterable[int],
        default_port: int = 161,
        state: ResolverState | None = None,
    ) -> None:
        self.getter = getter
        self.probe_ports = list(probe_ports)
        self.default_port = default_port
        self.state = state if state is not None else ResolverState()

    def cached(self, ip: str) -> SnmpEndpoint | None:
        return self.state.endpoints.get(ip)

    def last_summary(self, ip: str) -> str:
        return self.state.summaries.get(ip, "")

    def invalidate(self, ip: str) -> None:
        if self.state.endpoints.pop(ip, None) is not None:
            logger.debug(f"Invalidated cached SNMP endpoint for {ip}")

    def forget_missing(self, ips: Iterable[str]) -> None:
        """Drop cache entries for every switch IP not in ``ips``."""
        keep = set(ips)
        for ip in [ip for ip in self.state.endpoints if ip not in keep]:
            del self.state.endpoints[ip]
        for ip in [ip for ip in self.state.summaries if ip not in keep]:
            del self.state.summaries[ip]

    async def resolve(self, target: SwitchTarget, v3_user: SnmpV3User | None = None) -> ResolveResult:
        """Return the cached endpoint or probe the candidate ports in order.

        The first candidate answering with a non-empty sysName wins and the
        remaining candidates are not tried.
        """
        ip = target.ip_address
        cached = self.state.endpoints.get(ip)
        if cached is not None:
            return ResolveResult(endpoint=cached, from_cache=True)

        failures: list[tuple[int, GetResult]] = []
        for port in candidate_ports(target.snmp_port, self.probe_ports, self.default_port):
            result = await self.getter.get(
                SnmpEndpoint(ip, port, SnmpVersion.V2C), target.community, OID_SYS_NAME, v3_user=v3_user
            )
            if result.ok and (result.value or "").strip():
                endpoint = SnmpEndpoint(ip, port, result.version or SnmpVersion.V2C)
                self.state.endpoints[ip] = endpoint
                self.state.summaries.pop(ip, None)
                logger.info(f"Resolved SNMP endpoint for {target.name} ({ip}): port {port}, {endpoint.version.value}")
                return ResolveResult(endpoint=endpoint)

            if result.ok:
                result = GetResult.fail(FailureClass.ERROR, f"{ip}:{port} empty sysName", result.version)
            failures.append((port, result))
            if result.failure is FailureClass.UNSUPPORTED:
                break

        status, summary = _summarize(failures)
        self.state.summaries[ip] = summary
        logger.warning(f"Could not resolve SNMP endpoint for {target.name} ({ip}): {summary}")
        detail = failures[-1][1].detail if failures else "no candidate ports"
        return ResolveResult(status=status, summary=summary, detail=detail)
