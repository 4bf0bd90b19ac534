"""Capped global event feed shown next to the task list."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from dub_batch.orchestrator.models import utc_now

logger = logging.getLogger("dub_batch.events")

DEFAULT_LOG_CAPACITY = 50
COMPLETION_MARKER = "Completed:"


class LogSeverity(str, Enum):
    """Display class derived from lexical markers."""

    SYSTEM = "system"
    CRITICAL = "critical"
    ERROR = "error"
    SUCCESS = "success"
    INFO = "info"


_LOGGING_LEVELS = {
    LogSeverity.SYSTEM: logging.INFO,
    LogSeverity.CRITICAL: logging.ERROR,
    LogSeverity.ERROR: logging.WARNING,
    LogSeverity.SUCCESS: logging.INFO,
    LogSeverity.INFO: logging.INFO,
}


def classify_severity(message: str) -> LogSeverity:
    if "[CRITICAL]" in message:
        return LogSeverity.CRITICAL
    if "[ERROR]" in message:
        return LogSeverity.ERROR
    if "[SYSTEM]" in message:
        return LogSeverity.SYSTEM
    if COMPLETION_MARKER in message:
        return LogSeverity.SUCCESS
    return LogSeverity.INFO


@dataclass(frozen=True, slots=True)
class EventLogEntry:
    """One timestamped global log line."""

    timestamp: datetime
    message: str

    @property
    def severity(self) -> LogSeverity:
        return classify_severity(self.message)

    def render(self) -> str:
        return f"[{self.timestamp.strftime('%H:%M:%S')}] {self.message}"


class EventLog:
    """Newest-first ring buffer; the oldest entry is evicted on overflow."""

    def __init__(self, capacity: int = DEFAULT_LOG_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError(f"Event log capacity must be > 0, got {capacity!r}")
        self._capacity = capacity
        self._entries: deque[EventLogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, message: str) -> EventLogEntry:
        entry = EventLogEntry(timestamp=utc_now(), message=message)
        with self._lock:
            # appendleft on a bounded deque drops from the right, i.e. the oldest entry
            self._entries.appendleft(entry)
        logger.log(_LOGGING_LEVELS[entry.severity], "%s", message)
        return entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def snapshot(self) -> tuple[EventLogEntry, ...]:
        with self._lock:
            return tuple(self._entries)

    def lines(self) -> list[str]:
        return [entry.render() for entry in self.snapshot()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
