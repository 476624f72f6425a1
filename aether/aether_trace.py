"""
Structured trace records emitted by the TRACE family of built-ins.

Records are kept in a fixed-capacity ring buffer per engine; once the buffer
is full the oldest record is dropped for each new one.
"""

import time
from collections import Counter, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, List, Optional


DEFAULT_TRACE_CAPACITY = 1000


class TraceLevel(Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


@dataclass(frozen=True)
class TraceRecord:
    level: TraceLevel
    category: str
    timestamp: int  # ms since the epoch
    values: List[str] = field(default_factory=list)
    label: Optional[str] = None

    def render(self) -> str:
        text = f"[{self.level.value}] {self.category}:"
        if self.values:
            text += " " + " ".join(self.values)
        return text

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "level": self.level.value,
            "category": self.category,
            "timestamp": self.timestamp,
            "values": list(self.values),
        }
        if self.label is not None:
            out["label"] = self.label
        return out


@dataclass(frozen=True)
class TraceStats:
    total_entries: int
    by_level: Dict[str, int]
    by_category: Dict[str, int]
    buffer_size: int
    buffer_full: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_entries": self.total_entries,
            "by_level": dict(self.by_level),
            "by_category": dict(self.by_category),
            "buffer_size": self.buffer_size,
            "buffer_full": self.buffer_full,
        }


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class TraceBuffer:
    """Ring buffer of TraceRecords with insertion-ordered reads."""

    def __init__(self, capacity: int = DEFAULT_TRACE_CAPACITY, clock=_now_ms):
        if capacity < 1:
            raise ValueError("trace capacity must be at least 1")
        self.capacity = capacity
        self.clock = clock
        self._records: Deque[TraceRecord] = deque(maxlen=capacity)
        self._full = False
        self._last_ts = 0
        self.appended = 0

    def append(self, level: TraceLevel, category: str, values: List[str], label: Optional[str] = None) -> TraceRecord:
        # Timestamps never go backwards within one buffer, even if the wall clock does
        ts = max(self.clock(), self._last_ts)
        self._last_ts = ts
        record = TraceRecord(level, category, ts, list(values), label)
        self._records.append(record)
        self.appended += 1
        if len(self._records) == self.capacity:
            self._full = True
        return record

    def records(self) -> List[TraceRecord]:
        return list(self._records)

    def render(self) -> List[str]:
        return [r.render() for r in self._records]

    def stats(self) -> TraceStats:
        return TraceStats(
            total_entries=len(self._records),
            by_level=dict(Counter(r.level.value for r in self._records)),
            by_category=dict(Counter(r.category for r in self._records)),
            buffer_size=self.capacity,
            buffer_full=self._full,
        )

    def clear(self) -> None:
        self._records.clear()
        self._full = False

    def __len__(self) -> int:
        return len(self._records)
