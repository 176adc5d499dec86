"""Tests for switchmon.counters delta classification and rate computation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from switchmon.counters import (
    COUNTER32_MAX,
    COUNTER64_MAX,
    CounterTable,
    DeltaKind,
    compute_rate,
    counter_delta,
    near_top_of_range,
    parse_speed,
    utilization,
)
from switchmon.models import RawCounterSample

T0 = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def _sample(in_octets, out_octets=0, seconds=0.0, high_capacity=False, if_index=1):
    return RawCounterSample(
        if_index=if_index,
        in_octets=in_octets,
        out_octets=out_octets,
        timestamp=T0 + timedelta(seconds=seconds),
        high_capacity=high_capacity,
    )


class TestCounterDelta:
    """Test counter_delta classification."""

    @pytest.mark.parametrize(
        "previous,current,high_capacity",
        [
            (0, 0, False),
            (100, 250, False),
            (1_000_000, 2_000_000, False),
            (COUNTER32_MAX - 5, COUNTER32_MAX, False),
            (2**40, 2**40 + 123, True),
        ],
    )
    def test_increase_is_exact_difference(self, previous, current, high_capacity):
        """Non-decreasing counters give current - previous regardless of width."""
        result = counter_delta(previous, current, high_capacity)
        assert result.kind == DeltaKind.NORMAL
        assert result.delta == current - previous

    def test_wrap_32bit(self):
        """Previous in the top 10% of 2^32-1 and current smaller is a wrap."""
        result = counter_delta(4_294_000_000, 50_000)
        assert result.kind == DeltaKind.WRAP
        assert result.delta == (COUNTER32_MAX - 4_294_000_000) + 1 + 50_000
        assert result.delta == 1_017_296

    def test_wrap_64bit(self):
        """64-bit counters wrap against 2^64-1."""
        previous = COUNTER64_MAX - 10
        result = counter_delta(previous, 5, high_capacity=True)
        assert result.kind == DeltaKind.WRAP
        assert result.delta == 16

    def test_reset_when_not_near_top(self):
        """A decrease from low in the range is a device reset with delta 0."""
        result = counter_delta(500_000, 100)
        assert result.kind == DeltaKind.RESET
        assert result.delta == 0

    def test_64bit_width_changes_classification(self):
        """A value near the top of 32-bit range is not near the top of 64-bit range."""
        assert counter_delta(4_294_000_000, 50_000, high_capacity=False).kind == DeltaKind.WRAP
        assert counter_delta(4_294_000_000, 50_000, high_capacity=True).kind == DeltaKind.RESET

    def test_detect_reset_disabled_always_wraps(self):
        """With reset detection off every decrease is a wraparound."""
        result = counter_delta(500_000, 100, detect_reset=False)
        assert result.kind == DeltaKind.WRAP
        assert result.delta == (COUNTER32_MAX - 500_000) + 1 + 100

    def test_near_top_boundary(self):
        """The top-10% threshold is max - max // 10."""
        threshold = COUNTER32_MAX - COUNTER32_MAX // 10
        assert near_top_of_range(threshold, COUNTER32_MAX)
        assert not near_top_of_range(threshold - 1, COUNTER32_MAX)


class TestSpeedAndUtilization:
    """Test parse_speed and utilization helpers."""

    @pytest.mark.parametrize("label,expected", [("1000000000", 1e9), ("100000000", 1e8), ("0", 0.0)])
    def test_parse_speed(self, label, expected):
        assert parse_speed(label) == expected

    @pytest.mark.parametrize("label", [None, "", "-", "fast", "-5"])
    def test_unparsable_speed_is_zero(self, label):
        assert parse_speed(label) == 0.0

    def test_utilization_zero_speed(self):
        """Unknown link speed gives 0% utilization."""
        assert utilization(800_000, 0.0) == 0.0

    def test_utilization_percent(self):
        assert utilization(100_000_000, 1e9) == pytest.approx(10.0)


class TestComputeRate:
    """Test compute_rate on two observations."""

    def test_scenario_normal_800kbps(self):
        """1,000,000 -> 2,000,000 octets over 10 s is 800,000 bps."""
        rate = compute_rate(_sample(1_000_000, seconds=0), _sample(2_000_000, seconds=10))
        assert rate is not None
        assert rate.in_bps == pytest.approx(800_000)
        assert rate.elapsed_seconds == 10

    def test_scenario_wrap(self):
        """4,294,000,000 -> 50,000 over 5 s is about 1,627,674 bps."""
        rate = compute_rate(_sample(4_294_000_000, seconds=0), _sample(50_000, seconds=5))
        assert rate is not None
        assert rate.in_bps == pytest.approx(1_017_296 * 8 / 5)
        assert round(rate.in_bps) == 1_627_674

    def test_reset_gives_no_rate(self):
        """A reset in either direction suppresses the rate."""
        assert compute_rate(_sample(500_000, 10, seconds=0), _sample(100, 20, seconds=10)) is None
        assert compute_rate(_sample(10, 500_000, seconds=0), _sample(20, 100, seconds=10)) is None

    @pytest.mark.parametrize("seconds", [0, -5])
    def test_non_positive_elapsed_gives_no_rate(self, seconds):
        assert compute_rate(_sample(0, seconds=10), _sample(1000, seconds=10 + seconds)) is None

    def test_utilization_uses_speed_label(self):
        rate = compute_rate(_sample(0), _sample(12_500_000, seconds=1), speed_label="1000000000")
        assert rate is not None
        assert rate.in_bps == pytest.approx(100_000_000)
        assert rate.util_in == pytest.approx(10.0)
        assert rate.util_out == 0.0

    def test_pure_function(self):
        """Replaying the same two observations yields the same rate."""
        previous, current = _sample(1_000, 2_000, seconds=0), _sample(9_000, 4_000, seconds=4)
        assert compute_rate(previous, current, "1000000") == compute_rate(previous, current, "1000000")


class TestCounterTable:
    """Test CounterTable baseline handling."""

    def test_first_observation_seeds_baseline(self):
        table: CounterTable[str] = CounterTable()
        assert table.observe("k", _sample(1_000_000)) is None
        assert "k" in table
        assert table.get("k").in_octets == 1_000_000

    def test_second_observation_gives_rate(self):
        table: CounterTable[str] = CounterTable()
        table.observe("k", _sample(1_000_000, seconds=0))
        rate = table.observe("k", _sample(2_000_000, seconds=10))
        assert rate is not None
        assert rate.in_bps == pytest.approx(800_000)

    def test_reset_rebaselines_silently(self):
        """500,000 -> 100 is a reset; the next cycle computes from 100."""
        table: CounterTable[str] = CounterTable()
        table.observe("k", _sample(500_000, seconds=0))
        assert table.observe("k", _sample(100, seconds=10)) is None
        assert table.get("k").in_octets == 100

        rate = table.observe("k", _sample(1_100, seconds=20))
        assert rate is not None
        assert rate.in_bps == pytest.approx(800)

    def test_stale_observation_discarded(self):
        """An observation not later than the baseline leaves the baseline untouched."""
        table: CounterTable[str] = CounterTable()
        table.observe("k", _sample(1_000, seconds=10))
        assert table.observe("k", _sample(5_000, seconds=10)) is None
        assert table.get("k").in_octets == 1_000

    def test_baseline_mutated_in_place(self):
        table: CounterTable[str] = CounterTable()
        table.observe("k", _sample(1_000, seconds=0))
        baseline = table.get("k")
        table.observe("k", _sample(2_000, seconds=1))
        assert table.get("k") is baseline
        assert baseline.in_octets == 2_000

    def test_wrap_only_table(self):
        """A table without reset detection reports a rate across any decrease."""
        table: CounterTable[str] = CounterTable(detect_reset=False)
        table.observe("k", _sample(500_000, seconds=0))
        assert table.observe("k", _sample(100, seconds=10)) is not None

    def test_keys_are_independent(self):
        table: CounterTable[tuple[str, int]] = CounterTable()
        table.observe(("a", 1), _sample(0, seconds=0))
        assert table.observe(("b", 1), _sample(1_000, seconds=10)) is None
        assert len(table) == 2

    def test_discard(self):
        table: CounterTable[tuple[str, int]] = CounterTable()
        for key in (("a", 1), ("a", 2), ("b", 1)):
            table.observe(key, _sample(0))
        assert table.discard(lambda key: key[0] == "a") == 2
        assert [k for k, _ in table.items()] == [("b", 1)]
