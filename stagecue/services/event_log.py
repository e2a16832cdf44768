"""
stagecue.services.event_log — Recent Event Ring Buffer
=======================================================

Keeps the last N stream events the runtime received, with how many
tasks each one matched, for the diagnostics API.  No persistence;
the buffer is lost on restart.
"""

from __future__ import annotations

import threading
from collections import deque
from datetime import UTC, datetime
from typing import Any

from stagecue.constants import DEFAULT_EVENT_LOG_SIZE
from stagecue.engine.events import Event, event_to_payload


class EventLogEntry:
    """One received event."""
    __slots__ = ("timestamp", "event", "matched_tasks")

    def __init__(self, timestamp: str, event: Event, matched_tasks: int):
        self.timestamp = timestamp
        self.event = event
        self.matched_tasks = matched_tasks

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "matched_tasks": self.matched_tasks,
            "event": event_to_payload(self.event),
        }


class EventLog:
    """Thread-safe ring buffer backed by :class:`collections.deque`."""

    def __init__(self, capacity: int = DEFAULT_EVENT_LOG_SIZE) -> None:
        self._entries: deque[EventLogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def record(self, event: Event, matched_tasks: int) -> EventLogEntry:
        entry = EventLogEntry(
            timestamp=datetime.now(tz=UTC).isoformat(),
            event=event,
            matched_tasks=matched_tasks,
        )
        with self._lock:
            self._entries.append(entry)
        return entry

    def get_entries(self, tail: int = 50, event_type: str | None = None) -> list[dict[str, Any]]:
        """Return the most recent *tail* entries, newest last."""
        with self._lock:
            snapshot = list(self._entries)

        if event_type:
            snapshot = [e for e in snapshot if e.event.type == event_type]
        if tail and len(snapshot) > tail:
            snapshot = snapshot[-tail:]
        return [e.to_dict() for e in snapshot]

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._entries)
