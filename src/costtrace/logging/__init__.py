"""Structured event logging for costtrace.

Provides a unified event schema, in-memory and NDJSON sinks, and safe
emit helpers that never raise uncaught exceptions.
"""

from costtrace.logging.events import (
    EngineEvent,
    EventLevel,
    EventType,
    emit,
    emit_error,
    emit_info,
    emit_warning,
    get_event_sink,
    make_run_event,
    set_event_sink,
)
from costtrace.logging.sink import MemorySink, NdjsonSink

__all__ = [
    "EngineEvent",
    "EventLevel",
    "EventType",
    "MemorySink",
    "NdjsonSink",
    "emit",
    "emit_error",
    "emit_info",
    "emit_warning",
    "get_event_sink",
    "make_run_event",
    "set_event_sink",
]
