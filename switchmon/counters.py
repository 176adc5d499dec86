"""Counter/rate engine.

Turns two time-ordered octet counter observations into a bits-per-second
rate. A decrease is either a wraparound (the previous value sat in the top
10% of the counter range) or a device-side reset; a reset suppresses the
rate for that cycle and the new value silently becomes the baseline.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, Hashable, TypeVar

from switchmon.models import RawCounterSample

COUNTER32_MAX = 2**32 - 1
COUNTER64_MAX = 2**64 - 1

K = TypeVar("K", bound=Hashable)


class DeltaKind(str, Enum):
    NORMAL = "normal"
    WRAP = "wrap"
    RESET = "reset"


@dataclass(frozen=True)
class CounterDelta:
    kind: DeltaKind
    delta: int


@dataclass(frozen=True)
class InterfaceRate:
    """Rate derived from two observations of the same interface."""

    in_bps: float
    out_bps: float
    util_in: float
    util_out: float
    elapsed_seconds: float


def counter_max(high_capacity: bool) -> int:
    return COUNTER64_MAX if high_capacity else COUNTER32_MAX


def near_top_of_range(value: int, max_value: int) -> bool:
    """True if ``value`` lies in the top 10% of ``0..max_value``."""
    return value >= max_value - max_value // 10


def counter_delta(previous: int, current: int, high_capacity: bool = False, detect_reset: bool = True) -> CounterDelta:
    """Classify the step from ``previous`` to ``current`` and compute the octet delta.

    With ``detect_reset=False`` every decrease is treated as a wraparound
    (sFlow counters are defined as monotonic).
    """
    if current >= previous:
        return CounterDelta(DeltaKind.NORMAL, current - previous)

    max_value = counter_max(high_capacity)
    if not detect_reset or near_top_of_range(previous, max_value):
        return CounterDelta(DeltaKind.WRAP, (max_value - previous) + 1 + current)
    return CounterDelta(DeltaKind.RESET, 0)


def parse_speed(speed_label: str | None) -> float:
    """Parse a raw ifSpeed label in bits per second; 0 when unknown."""
    if not speed_label:
        return 0.0
    try:
        speed = float(speed_label)
    except ValueError:
        return 0.0
    return speed if speed > 0 else 0.0


def utilization(bps: float, speed: float) -> float:
    return bps / speed * 100 if speed > 0 else 0.0


def compute_rate(
    previous: RawCounterSample,
    current: RawCounterSample,
    speed_label: str | None = None,
    detect_reset: bool = True,
) -> InterfaceRate | None:
    """Compute the rate between two observations.

    Returns None when the observations are not usable for a rate: no time
    elapsed between them, or a counter reset in either direction.
    Pure function of its inputs.
    """
    elapsed = (current.timestamp - previous.timestamp).total_seconds()
    if elapsed <= 0:
        return None

    high_capacity = current.high_capacity
    d_in = counter_delta(previous.in_octets, current.in_octets, high_capacity, detect_reset)
    d_out = counter_delta(previous.out_octets, current.out_octets, high_capacity, detect_reset)
    if DeltaKind.RESET in (d_in.kind, d_out.kind):
        return None

    in_bps = d_in.delta * 8 / elapsed
    out_bps = d_out.delta * 8 / elapsed
    speed = parse_speed(speed_label)
    return InterfaceRate(
        in_bps=in_bps,
        out_bps=out_bps,
        util_in=utilization(in_bps, speed),
        util_out=utilization(out_bps, speed),
        elapsed_seconds=elapsed,
    )


class CounterTable(Generic[K]):
    """Baseline store mapping a key to its last RawCounterSample.

    Not thread-safe; callers that share a table across tasks hold their own
    lock.
    """

    def __init__(self, detect_reset: bool = True) -> None:
        self.detect_reset = detect_reset
        self._samples: dict[K, RawCounterSample] = {}

    def __len__(self) -> int:
        return len(self._samples)

    def __contains__(self, key: object) -> bool:
        return key in self._samples

    def get(self, key: K) -> RawCounterSample | None:
        return self._samples.get(key)

    def items(self) -> list[tuple[K, RawCounterSample]]:
        return list(self._samples.items())

    def observe(self, key: K, sample: RawCounterSample, speed_label: str | None = None) -> InterfaceRate | None:
        """Feed a new observation and return the rate against the stored baseline.

        The first observation for a key only seeds the baseline. An
        observation no later than the baseline is discarded. A reset
        replaces the baseline without producing a rate.
        """
        previous = self._samples.get(key)
        if previous is None:
            self._samples[key] = sample
            return None

        if (sample.timestamp - previous.timestamp).total_seconds() <= 0:
            return None

        rate = compute_rate(previous, sample, speed_label, self.detect_reset)
        previous.if_index = sample.if_index
        previous.name = sample.name or previous.name
        previous.in_octets = sample.in_octets
        previous.out_octets = sample.out_octets
        previous.timestamp = sample.timestamp
        previous.high_capacity = sample.high_capacity
        return rate

    def discard(self, predicate: Callable[[K], bool]) -> int:
        """Remove every key for which ``predicate(key)`` is true; return the count."""
        doomed = [key for key in self._samples if predicate(key)]
        for key in doomed:
            del self._samples[key]
        return len(doomed)
