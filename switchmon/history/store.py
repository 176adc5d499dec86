"""Append-only per-interface, per-day JSONL history with retention."""

from __future__ import annotations

import threading
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Callable, Iterable, Iterator

from loguru import logger
from pydantic import ValidationError

from switchmon._util import sanitize_path_segment
from switchmon.models import HistoryRecord, RateSnapshot, as_utc, utcnow

HISTORY_SUFFIX = ".jsonl"


def _parse_day(path: Path) -> date | None:
    try:
        return date.fromisoformat(path.stem)
    except ValueError:
        return None


class HistoryRange:
    """Lazy, restartable view of the records of one interface since ``from_utc``.

    Each iteration rescans the day files, so iterating twice sees records
    appended in between.
    """

    def __init__(self, store: HistoryStore, switch_ip: str, if_index: int, from_utc: datetime) -> None:
        self._store = store
        self.switch_ip = switch_ip
        self.if_index = if_index
        self.from_utc = as_utc(from_utc)

    def __iter__(self) -> Iterator[HistoryRecord]:
        return self._store._iter_records(self.switch_ip, self.if_index, self.from_utc)


class HistoryStore:
    """Layout: ``<base_dir>/<sanitized switch ip>/if<ifIndex>/<YYYY-MM-DD>.jsonl``.

    Day files are only ever appended to or deleted as a whole by
    :meth:`cleanup_old`. All write-side failures are swallowed: history is
    best effort and must never fail a poll round.
    """

    def __init__(
        self,
        base_dir: str | Path,
        retention_days: int = 30,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.base_dir = Path(base_dir)
        self.retention_days = max(1, int(retention_days))
        self._clock = clock
        self._locks: dict[tuple[str, int], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def interface_dir(self, switch_ip: str, if_index: int) -> Path:
        return self.base_dir / sanitize_path_segment(switch_ip) / f"if{if_index}"

    def file_for(self, switch_ip: str, if_index: int, ts_utc: datetime) -> Path:
        day = as_utc(ts_utc).date()
        return self.interface_dir(switch_ip, if_index) / f"{day.isoformat()}{HISTORY_SUFFIX}"

    def _lock_for(self, switch_ip: str, if_index: int) -> threading.Lock:
        key = (switch_ip, if_index)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def append(
        self,
        switch_ip: str,
        if_index: int,
        ts_utc: datetime,
        in_bps: float,
        out_bps: float,
        util_in: float,
        util_out: float,
        speed_label: str,
    ) -> bool:
        """Append one record as a single line.

        Returns False if the write failed. Callers are free to ignore the
        result; history never fails the operation that produced the data.
        """
        record = HistoryRecord(
            timestamp=as_utc(ts_utc),
            in_bps=in_bps,
            out_bps=out_bps,
            util_in=util_in,
            util_out=util_out,
            speed_label=speed_label or "",
        )
        path = self.file_for(switch_ip, if_index, record.timestamp)
        line = record.to_line() + "\n"
        try:
            with self._lock_for(switch_ip, if_index):
                path.parent.mkdir(parents=True, exist_ok=True)
                with path.open("a", encoding="utf-8") as f:
                    f.write(line)
        except OSError as e:
            logger.debug(f"History append failed for {switch_ip} if{if_index}: {e}")
            return False
        return True

    def append_snapshot(self, snapshot: RateSnapshot) -> bool:
        """Persist a snapshot if it is an interface-level observation with a rate."""
        if snapshot.is_switch_error or not snapshot.has_rate:
            return False
        return self.append(
            snapshot.switch_ip,
            snapshot.if_index,
            snapshot.timestamp,
            snapshot.in_bps,
            snapshot.out_bps,
            snapshot.util_in,
            snapshot.util_out,
            snapshot.speed_label,
        )

    def read_range(self, switch_ip: str, if_index: int, from_utc: datetime) -> HistoryRange:
        """Records of one interface with ``timestamp >= from_utc``, oldest day first."""
        return HistoryRange(self, switch_ip, if_index, from_utc)

    def _retention_cutoff(self, today: date) -> date:
        return today - timedelta(days=self.retention_days)

    def _iter_records(self, switch_ip: str, if_index: int, from_utc: datetime) -> Iterator[HistoryRecord]:
        directory = self.interface_dir(switch_ip, if_index)
        if not directory.is_dir():
            return

        today = self._clock().date()
        earliest = max(self._retention_cutoff(today), from_utc.date())
        latest = today + timedelta(days=1)

        day_files: list[tuple[date, Path]] = []
        for path in directory.glob(f"*{HISTORY_SUFFIX}"):
            day = _parse_day(path)
            if day is None or day < earliest or day > latest:
                continue
            day_files.append((day, path))

        for _, path in sorted(day_files):
            try:
                with path.open("rb") as f:
                    for raw in f:
                        try:
                            line = raw.decode("utf-8").strip()
                            if not line:
                                continue
                            record = HistoryRecord.model_validate_json(line)
                        except (UnicodeDecodeError, ValidationError):
                            continue
                        if record.timestamp >= from_utc:
                            yield record
            except OSError as e:
                logger.debug(f"History read failed for {path}: {e}")

    def cleanup_old(self) -> int:
        """Delete day files older than the retention window; return how many were removed."""
        cutoff = self._retention_cutoff(self._clock().date())
        removed = 0
        try:
            switch_dirs = [d for d in self.base_dir.iterdir() if d.is_dir()]
        except OSError as e:
            logger.debug(f"History cleanup skipped, cannot list {self.base_dir}: {e}")
            return 0

        for switch_dir in switch_dirs:
            try:
                if_dirs = [d for d in switch_dir.iterdir() if d.is_dir()]
            except OSError:
                continue
            for if_dir in if_dirs:
                for path in if_dir.glob(f"*{HISTORY_SUFFIX}"):
                    day = _parse_day(path)
                    if day is None or day >= cutoff:
                        continue
                    try:
                        path.unlink()
                        removed += 1
                    except OSError as e:
                        logger.debug(f"History cleanup could not delete {path}: {e}")
        if removed:
            logger.info(f"History cleanup removed {removed} day file(s) older than {cutoff}")
        return removed


def merge_history(recent: Iterable[HistoryRecord], stored: Iterable[HistoryRecord]) -> list[HistoryRecord]:
    """Union in-memory and on-disk records, drop exact-timestamp duplicates, sort ascending.

    The first occurrence of a timestamp wins, so ``recent`` takes precedence.
    """
    seen: set[datetime] = set()
    merged: list[HistoryRecord] = []
    for record in (*recent, *stored):
        if record.timestamp in seen:
            continue
        seen.add(record.timestamp)
        merged.append(record)
    merged.sort(key=lambda r: r.timestamp)
    return merged
