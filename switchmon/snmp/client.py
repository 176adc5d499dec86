"""OID constants and the single-value SNMP GET collaborator.

A GET never raises: it returns a :class:`GetResult` carrying either the
value rendered as a string or a :class:`FailureClass`. ``PysnmpGetClient``
retries with linear backoff and falls back from SNMPv2c to SNMPv1.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from loguru import logger
from pysnmp.hlapi.asyncio import (
    CommunityData,
    ContextData,
    ObjectIdentity,
    ObjectType,
    SnmpEngine,
    UdpTransportTarget,
    get_cmd,
)
from pysnmp.proto.rfc1905 import EndOfMibView, NoSuchInstance, NoSuchObject

from switchmon.config import SnmpV3User
from switchmon.models import FailureClass

# ── OID constants ──────────────────────────────────────────────────────
OID_SYS_DESCR = "1.3.6.1.2.1.1.1.0"
OID_SYS_UPTIME = "1.3.6.1.2.1.1.3.0"
OID_SYS_NAME = "1.3.6.1.2.1.1.5.0"
OID_IF_NUMBER = "1.3.6.1.2.1.2.1.0"  # IF-MIB::ifNumber
OID_IF_DESCR = "1.3.6.1.2.1.2.2.1.2"  # IF-MIB::ifDescr
OID_IF_SPEED = "1.3.6.1.2.1.2.2.1.5"  # IF-MIB::ifSpeed
OID_IF_OPER_STATUS = "1.3.6.1.2.1.2.2.1.8"  # IF-MIB::ifOperStatus
OID_IF_IN_OCTETS = "1.3.6.1.2.1.2.2.1.10"  # IF-MIB::ifInOctets (Counter32)
OID_IF_OUT_OCTETS = "1.3.6.1.2.1.2.2.1.16"  # IF-MIB::ifOutOctets (Counter32)
OID_IF_HC_IN_OCTETS = "1.3.6.1.2.1.31.1.1.1.6"  # IF-MIB::ifHCInOctets (Counter64)
OID_IF_HC_OUT_OCTETS = "1.3.6.1.2.1.31.1.1.1.10"  # IF-MIB::ifHCOutOctets (Counter64)


def indexed(oid: str, index: int) -> str:
    """Append an instance index to a column OID."""
    return f"{oid}.{index}"


class SnmpVersion(str, Enum):
    V1 = "v1"
    V2C = "v2c"

    @property
    def mp_model(self) -> int:
        return 0 if self is SnmpVersion.V1 else 1


@dataclass(frozen=True)
class SnmpEndpoint:
    """Where and how to talk to one agent."""

    host: str
    port: int = 161
    version: SnmpVersion = SnmpVersion.V2C

    def __str__(self) -> str:
        return f"{self.host}:{self.port}/{self.version.value}"


@dataclass(frozen=True)
class GetResult:
    """Outcome of one GET: a value or a classified failure."""

    value: str | None = None
    failure: FailureClass | None = None
    detail: str = ""
    version: SnmpVersion | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: str, version: SnmpVersion | None = None) -> GetResult:
        return cls(value=value, version=version)

    @classmethod
    def fail(cls, failure: FailureClass, detail: str = "", version: SnmpVersion | None = None) -> GetResult:
        return cls(failure=failure, detail=detail, version=version)

    def as_int(self) -> int | None:
        """Parse the value as an integer; None on failure or non-numeric value."""
        if self.value is None:
            return None
        try:
            return int(self.value.strip())
        except ValueError:
            return None


class SnmpGetter(Protocol):
    """One GET per call; never raises."""

    async def get(
        self,
        endpoint: SnmpEndpoint,
        community: str,
        oid: str,
        *,
        v3_user: SnmpV3User | None = None,
        timeout_ms: int | None = None,
    ) -> GetResult: ...


# ── failure classification ─────────────────────────────────────────────
_INDICATION_CLASSES: tuple[tuple[tuple[str, ...], FailureClass], ...] = (
    (("timedout", "timeout", "no snmp response"), FailureClass.TIMEOUT),
    (("community", "authentication", "authorization", "wrongdigest", "unknownusername"), FailureClass.AUTH),
    (("refused",), FailureClass.REFUSED),
    (("socket", "transport", "unreachable"), FailureClass.SOCKET),
)

# RFC 3416 error-status codes
_ERROR_STATUS_CLASSES: dict[int, FailureClass] = {
    2: FailureClass.NOSUCH,  # noSuchName (SNMPv1)
    6: FailureClass.AUTH,  # noAccess
    16: FailureClass.AUTH,  # authorizationError
}


def classify_error_indication(error_indication: Any) -> FailureClass:
    """Map a pysnmp error indication (object or text) to a failure class."""
    text = f"{type(error_indication).__name__} {error_indication}".lower()
    for needles, failure in _INDICATION_CLASSES:
        if any(needle in text for needle in needles):
            return failure
    return FailureClass.ERROR


def classify_error_status(error_status: Any) -> FailureClass:
    """Map a PDU error-status to a failure class."""
    try:
        code = int(error_status)
    except (TypeError, ValueError):
        return FailureClass.ERROR
    return _ERROR_STATUS_CLASSES.get(code, FailureClass.ERROR)


def classify_exception(exc: BaseException) -> FailureClass:
    """Map an exception raised by the transport layer to a failure class."""
    if isinstance(exc, ConnectionRefusedError):
        return FailureClass.REFUSED
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return FailureClass.TIMEOUT
    if isinstance(exc, OSError):
        return FailureClass.SOCKET
    return classify_error_indication(exc)


def is_missing_value(value: Any) -> bool:
    """True for the SNMPv2 exception values noSuchObject/noSuchInstance/endOfMibView."""
    return isinstance(value, (NoSuchObject, NoSuchInstance, EndOfMibView))


# Failures worth another attempt with the same protocol version
_RETRYABLE = frozenset({FailureClass.TIMEOUT, FailureClass.SOCKET, FailureClass.ERROR})
# Failures worth trying again with the older protocol version
_FALLBACK = frozenset({FailureClass.TIMEOUT, FailureClass.AUTH, FailureClass.ERROR})


class PysnmpGetClient:
    """SNMP GET collaborator backed by the pysnmp asyncio API.

    Args:
        timeout_ms: Default per-request timeout.
        retries: Extra attempts per protocol version after the first.
        retry_backoff_ms: Linear backoff unit; attempt ``n`` waits ``n * backoff``.
        allow_v1_fallback: Retry with SNMPv1 when SNMPv2c fails.
    """

    def __init__(
        self,
        timeout_ms: int = 1500,
        retries: int = 1,
        retry_backoff_ms: int = 200,
        allow_v1_fallback: bool = True,
    ) -> None:
        self.timeout_ms = timeout_ms
        self.retries = max(0, retries)
        self.retry_backoff_ms = max(0, retry_backoff_ms)
        self.allow_v1_fallback = allow_v1_fallback
        self._engine: Any = None
        self._targets: dict[tuple[str, int, int], Any] = {}

    async def __aenter__(self) -> PysnmpGetClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._engine is not None:
            self._engine.close_dispatcher()
            self._engine = None
        self._targets.clear()

    def _versions_for(self, endpoint: SnmpEndpoint) -> list[SnmpVersion]:
        if endpoint.version is SnmpVersion.V1 or not self.allow_v1_fallback:
            return [endpoint.version]
        return [SnmpVersion.V2C, SnmpVersion.V1]

    async def get(
        self,
        endpoint: SnmpEndpoint,
        community: str,
        oid: str,
        *,
        v3_user: SnmpV3User | None = None,
        timeout_ms: int | None = None,
    ) -> GetResult:
        if v3_user is not None:
            return GetResult.fail(FailureClass.UNSUPPORTED, f"SNMPv3 is not supported (user {v3_user.name})")

        result = GetResult.fail(FailureClass.ERROR, "no attempt made")
        for version in self._versions_for(endpoint):
            result = await self._get_with_retries(endpoint, community, oid, version, timeout_ms or self.timeout_ms)
            if result.ok or result.failure not in _FALLBACK:
                return result
            logger.debug(f"SNMP {version.value} GET {oid} on {endpoint.host}:{endpoint.port} failed: {result.detail}")
        return result

    async def _get_with_retries(
        self, endpoint: SnmpEndpoint, community: str, oid: str, version: SnmpVersion, timeout_ms: int
    ) -> GetResult:
        result = GetResult.fail(FailureClass.ERROR, "no attempt made", version)
        for attempt in range(self.retries + 1):
            if attempt and self.retry_backoff_ms:
                await asyncio.sleep(attempt * self.retry_backoff_ms / 1000)
            result = await self._get_once(endpoint, community, oid, version, timeout_ms)
            if result.ok or result.failure not in _RETRYABLE:
                return result
        return result

    async def _target(self, host: str, port: int, timeout_ms: int) -> Any:
        key = (host, port, timeout_ms)
        target = self._targets.get(key)
        if target is None:
            target = await UdpTransportTarget.create((host, port), timeout=timeout_ms / 1000, retries=0)
            self._targets[key] = target
        return target

    async def _get_once(
        self, endpoint: SnmpEndpoint, community: str, oid: str, version: SnmpVersion, timeout_ms: int
    ) -> GetResult:
        tag = f"{endpoint.host}:{endpoint.port}"
        try:
            if self._engine is None:
                self._engine = SnmpEngine()
            target = await self._target(endpoint.host, endpoint.port, timeout_ms)
            error_indication, error_status, _, var_binds = await get_cmd(
                self._engine,
                CommunityData(community, mpModel=version.mp_model),
                target,
                ContextData(),
                ObjectType(ObjectIdentity(oid)),
            )
        except Exception as e:
            failure = classify_exception(e)
            return GetResult.fail(failure, f"{tag} {type(e).__name__}: {e}", version)

        if error_indication:
            return GetResult.fail(classify_error_indication(error_indication), f"{tag} {error_indication}", version)
        if error_status:
            return GetResult.fail(classify_error_status(error_status), f"{tag} {error_status.prettyPrint()}", version)
        if not var_binds:
            return GetResult.fail(FailureClass.ERROR, f"{tag} empty response", version)

        _, value = var_binds[0]
        if is_missing_value(value):
            return GetResult.fail(FailureClass.NOSUCH, f"{tag} {oid}: {value.prettyPrint()}", version)
        return GetResult.success(value.prettyPrint(), version)
