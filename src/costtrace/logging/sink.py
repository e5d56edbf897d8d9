"""Event sinks: in-memory buffer and NDJSON file appender.

``NdjsonSink`` appends one JSON line per event, written with
``json.dumps(sort_keys=True)`` for deterministic output.  Each append
acquires an exclusive ``fcntl.flock`` on the target file; on platforms
without ``fcntl`` locking is skipped.
"""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Any

from costtrace.logging.events import EngineEvent

try:
    import fcntl

    _HAS_FCNTL = True
except ImportError:
    _HAS_FCNTL = False


class MemorySink:
    """Thread-safe in-process event buffer, newest last."""

    def __init__(self, max_events: int | None = None) -> None:
        self._events: list[EngineEvent] = []
        self._max_events = max_events
        self._lock = threading.Lock()

    def write(self, event: EngineEvent) -> None:
        with self._lock:
            self._events.append(event)
            if self._max_events is not None and len(self._events) > self._max_events:
                del self._events[: len(self._events) - self._max_events]

    @property
    def events(self) -> list[EngineEvent]:
        with self._lock:
            return list(self._events)

    def of_type(self, event_type: str) -> list[EngineEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class NdjsonSink:
    """Append-only NDJSON log writer with file locking."""

    def __init__(self, path: Path, *, fsync: bool = False) -> None:
        self.path = Path(path)
        self._fsync = fsync
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def write(self, event: EngineEvent) -> None:
        line = json.dumps(event.model_dump(mode="json"), sort_keys=True, default=str) + "\n"
        with open(self.path, "a", encoding="utf-8") as f:
            if _HAS_FCNTL:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            try:
                f.write(line)
                f.flush()
                if self._fsync:
                    os.fsync(f.fileno())
            finally:
                if _HAS_FCNTL:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)

    def read(self, *, event_type: str | None = None, limit: int = 200) -> list[dict[str, Any]]:
        """Read events most-recent-first, optionally filtered by type."""
        if not self.path.exists():
            return []
        events: list[dict[str, Any]] = []
        with open(self.path, encoding="utf-8") as f:
            if _HAS_FCNTL:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
            try:
                lines = f.readlines()
            finally:
                if _HAS_FCNTL:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        for line in reversed(lines):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                continue
            if event_type and record.get("event_type") != event_type:
                continue
            events.append(record)
            if len(events) >= limit:
                break
        return events
