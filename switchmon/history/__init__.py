"""Per-interface, per-day JSONL traffic history."""

from switchmon.history.store import HistoryRange, HistoryStore, merge_history

__all__ = [
    "HistoryRange",
    "HistoryStore",
    "merge_history",
]
