"""Unified event schema and module-level emit helpers.

All timestamps use UTC ISO-8601 with ``Z`` suffix.  The ``emit()``
family of functions is safe to call from any context -- failures are
swallowed and printed to stderr.  Until ``set_event_sink()`` is called
events are discarded, so the engine performs no I/O by default.
"""

from __future__ import annotations

import sys
import time
import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class EventLevel(str, Enum):
    info = "info"
    warning = "warning"
    error = "error"


class EventType(str, Enum):
    # Run lifecycle
    run_started = "run_started"
    run_completed = "run_completed"

    # Step diagnostics
    step_error = "step_error"
    step_non_finite = "step_non_finite"
    name_collision = "name_collision"

    # Snapshot cache
    cache_refreshed = "cache_refreshed"
    cache_invalidated = "cache_invalidated"

    # What-if comparison
    whatif_completed = "whatif_completed"


# ---------------------------------------------------------------------------
# Event model
# ---------------------------------------------------------------------------


def _utc_now() -> str:
    """Return current UTC timestamp in ISO-8601 with Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class EngineEvent(BaseModel):
    """A single structured log event."""

    schema_version: int = 1
    ts: str = Field(default_factory=_utc_now)
    level: EventLevel
    event_type: EventType
    context: dict[str, Any] = Field(default_factory=dict)
    message: str = ""
    error_code: str | None = None


def make_run_event(
    event_type: EventType,
    level: EventLevel,
    message: str,
    *,
    run_id: str | None = None,
    mode: str | None = None,
    formula_key: str | None = None,
    error_code: str | None = None,
    extra: dict[str, Any] | None = None,
) -> EngineEvent:
    """Build an event with run attribution context."""
    ctx: dict[str, Any] = {}
    if run_id is not None:
        ctx["run_id"] = run_id
    if mode is not None:
        ctx["mode"] = mode
    if formula_key is not None:
        ctx["formula_key"] = formula_key
    if extra:
        ctx.update(extra)
    return EngineEvent(
        level=level,
        event_type=event_type,
        message=message,
        context=ctx,
        error_code=error_code,
    )


# ---------------------------------------------------------------------------
# Module-level sink reference
# ---------------------------------------------------------------------------


class Sink(Protocol):
    def write(self, event: EngineEvent) -> None: ...


_sink: Sink | None = None


def set_event_sink(sink: Sink | None) -> Sink | None:
    """Install *sink* as the destination for emitted events.

    Returns the previously installed sink so callers can restore it.
    Pass ``None`` to discard events again.
    """
    global _sink
    previous = _sink
    _sink = sink
    return previous


def get_event_sink() -> Sink | None:
    return _sink


# ---------------------------------------------------------------------------
# Rate-limited stderr warnings
# ---------------------------------------------------------------------------

_last_stderr_ts: float = 0.0
_STDERR_INTERVAL_SECS = 60.0


def _stderr_warning(msg: str) -> None:
    """Print a warning to stderr, rate-limited to one per 60 seconds."""
    global _last_stderr_ts
    now = time.monotonic()
    if now - _last_stderr_ts < _STDERR_INTERVAL_SECS:
        return
    _last_stderr_ts = now
    try:
        print(f"[costtrace] {msg}", file=sys.stderr)
    except Exception:
        pass


# ---------------------------------------------------------------------------
# Safe emit helpers
# ---------------------------------------------------------------------------


def emit(event: EngineEvent) -> None:
    """Write an event to the installed sink.

    **Never raises.**  On failure, prints a rate-limited warning to stderr.
    """
    try:
        sink = _sink
        if sink is None:
            return
        sink.write(event)
    except Exception:
        _stderr_warning(f"logging failed: {traceback.format_exc()}")


def emit_info(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
) -> None:
    """Convenience: emit an info-level event."""
    emit(
        EngineEvent(
            level=EventLevel.info,
            event_type=event_type,
            message=message,
            context=context or {},
        )
    )


def emit_warning(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    error_code: str | None = None,
) -> None:
    """Convenience: emit a warning-level event."""
    emit(
        EngineEvent(
            level=EventLevel.warning,
            event_type=event_type,
            message=message,
            context=context or {},
            error_code=error_code,
        )
    )


def emit_error(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    error_code: str | None = None,
) -> None:
    """Convenience: emit an error-level event."""
    emit(
        EngineEvent(
            level=EventLevel.error,
            event_type=event_type,
            message=message,
            context=context or {},
            error_code=error_code,
        )
    )
