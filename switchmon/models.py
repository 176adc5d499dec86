"""Shared value types: raw counter samples, rate snapshots and history records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, ValidatorFunctionWrapHandler, field_validator

from switchmon._util import fallback_to_default


class Status(str, Enum):
    """Machine-stable status tokens surfaced in a RateSnapshot."""

    UP = "UP"
    DOWN = "DOWN"
    ERR = "ERR"
    TIMEOUT = "TIMEOUT"
    AUTH = "AUTH"
    SOCKET = "SOCKET"
    NOSUCH = "NOSUCH"
    REFUSED = "REFUSED"
    UNSUPPORTED = "UNSUPPORTED"


class FailureClass(str, Enum):
    """Classification of a failed SNMP GET."""

    TIMEOUT = "timeout"
    SOCKET = "socket"
    NOSUCH = "nosuch"
    AUTH = "auth"
    REFUSED = "refused"
    ERROR = "error"
    UNSUPPORTED = "unsupported"

    @property
    def status(self) -> Status:
        return _FAILURE_STATUS[self]


_FAILURE_STATUS = {
    FailureClass.TIMEOUT: Status.TIMEOUT,
    FailureClass.SOCKET: Status.SOCKET,
    FailureClass.NOSUCH: Status.NOSUCH,
    FailureClass.AUTH: Status.AUTH,
    FailureClass.REFUSED: Status.REFUSED,
    FailureClass.ERROR: Status.ERR,
    FailureClass.UNSUPPORTED: Status.UNSUPPORTED,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class RawCounterSample:
    """Last observed octet counters for one (switch or agent, ifIndex) key.

    Mutated in place every time a new observation becomes the baseline.
    """

    if_index: int
    in_octets: int
    out_octets: int
    timestamp: datetime
    name: str = ""
    high_capacity: bool = False


class RateSnapshot(BaseModel):
    """Normalized per-interface rate observation.

    ``if_index <= 0`` marks a switch-level error rather than an interface.
    ``has_rate`` is False when no delta baseline existed yet or the cycle
    was suppressed by a counter reset; the bps/utilization fields are 0 then.
    """

    model_config = ConfigDict(frozen=True)

    switch_name: str
    switch_ip: str
    if_index: int
    if_name: str = ""
    status: str = Status.UP.value
    in_bps: float = 0.0
    out_bps: float = 0.0
    util_in: float = 0.0
    util_out: float = 0.0
    speed_label: str = "-"
    timestamp: datetime = Field(default_factory=utcnow)
    port: int = 0
    has_rate: bool = False
    detail: str = ""

    @property
    def is_switch_error(self) -> bool:
        return self.if_index <= 0

    @property
    def key(self) -> str:
        return f"{self.switch_name}-{self.if_index}"


class HistoryRecord(BaseModel):
    """One persisted history line.

    Serialized with the short JSON keys ``ts``, ``i``, ``o``, ``ui``, ``uo``
    and ``sp``. Missing or ill-typed numeric fields read back as 0 and a
    missing speed label as an empty string; a line without a parseable
    ``ts`` is rejected.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    timestamp: datetime = Field(alias="ts")
    in_bps: float = Field(default=0.0, alias="i")
    out_bps: float = Field(default=0.0, alias="o")
    util_in: float = Field(default=0.0, alias="ui")
    util_out: float = Field(default=0.0, alias="uo")
    speed_label: str = Field(default="", alias="sp")

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @field_validator("in_bps", "out_bps", "util_in", "util_out", "speed_label", mode="wrap")
    @classmethod
    def _default_on_error(cls, value: Any, handler: ValidatorFunctionWrapHandler, info: ValidationInfo) -> Any:
        return fallback_to_default(cls, info.field_name or "", value, handler)

    def to_line(self) -> str:
        return self.model_dump_json(by_alias=True)
