"""Tests for the costtrace structured event logging system."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from costtrace.logging import (
    EngineEvent,
    EventLevel,
    EventType,
    MemorySink,
    NdjsonSink,
    emit,
    emit_error,
    emit_info,
    emit_warning,
    get_event_sink,
    make_run_event,
    set_event_sink,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def memory():
    sink = MemorySink()
    previous = set_event_sink(sink)
    yield sink
    set_event_sink(previous)


@pytest.fixture
def ndjson(tmp_path: Path):
    sink = NdjsonSink(tmp_path / "logs" / "events.ndjson")
    previous = set_event_sink(sink)
    yield sink
    set_event_sink(previous)


# ---------------------------------------------------------------------------
# A) Event schema
# ---------------------------------------------------------------------------


class TestEngineEvent:
    def test_event_defaults(self):
        evt = EngineEvent(
            level=EventLevel.info,
            event_type=EventType.run_started,
            message="hello",
        )
        assert evt.schema_version == 1
        assert evt.ts.endswith("Z")
        assert evt.level == "info"
        assert evt.event_type == "run_started"
        assert evt.context == {}
        assert evt.error_code is None

    def test_run_event_context(self):
        evt = make_run_event(
            EventType.step_error,
            EventLevel.warning,
            "bad",
            run_id="abc",
            mode="targeted",
            formula_key="llm_cost",
            error_code="syntax_error",
            extra={"position": 3},
        )
        assert evt.context == {
            "run_id": "abc",
            "mode": "targeted",
            "formula_key": "llm_cost",
            "position": 3,
        }
        assert evt.error_code == "syntax_error"

    def test_all_event_types_exist(self):
        expected = {
            "run_started", "run_completed",
            "step_error", "step_non_finite", "name_collision",
            "cache_refreshed", "cache_invalidated",
            "whatif_completed",
        }
        assert {e.value for e in EventType} == expected


# ---------------------------------------------------------------------------
# B) Sinks
# ---------------------------------------------------------------------------


class TestMemorySink:
    def test_collects_in_order(self, memory):
        emit_info(EventType.run_started, "one")
        emit_warning(EventType.step_error, "two", error_code="syntax_error")
        emit_error(EventType.run_completed, "three")
        assert [e.message for e in memory.events] == ["one", "two", "three"]
        assert memory.events[1].error_code == "syntax_error"
        assert memory.events[2].level == "error"

    def test_bounded(self):
        sink = MemorySink(max_events=2)
        for i in range(5):
            sink.write(EngineEvent(level=EventLevel.info, event_type=EventType.run_started, message=str(i)))
        assert [e.message for e in sink.events] == ["3", "4"]

    def test_of_type_and_clear(self, memory):
        emit_info(EventType.cache_refreshed, "r")
        emit_info(EventType.cache_invalidated, "i")
        assert len(memory.of_type(EventType.cache_refreshed)) == 1
        memory.clear()
        assert memory.events == []


class TestNdjsonSink:
    def test_writes_sorted_json_lines(self, ndjson):
        emit_info(EventType.run_started, "started", {"run_id": "r1"})
        lines = ndjson.path.read_text().splitlines()
        assert len(lines) == 1
        record = json.loads(lines[0])
        assert record["event_type"] == "run_started"
        assert record["context"] == {"run_id": "r1"}
        assert list(record) == sorted(record)

    def test_read_newest_first(self, ndjson):
        emit_info(EventType.run_started, "a")
        emit_warning(EventType.step_error, "b")
        emit_info(EventType.run_completed, "c")
        assert [r["message"] for r in ndjson.read()] == ["c", "b", "a"]
        assert [r["message"] for r in ndjson.read(limit=1)] == ["c"]
        assert [r["message"] for r in ndjson.read(event_type="step_error")] == ["b"]

    def test_read_missing_file(self, tmp_path: Path):
        assert NdjsonSink(tmp_path / "none.ndjson").read() == []


# ---------------------------------------------------------------------------
# C) Emit safety
# ---------------------------------------------------------------------------


class _BrokenSink:
    def write(self, event):
        raise OSError("disk full")


class TestEmit:
    def test_no_sink_discards(self):
        previous = set_event_sink(None)
        try:
            emit_info(EventType.run_started, "nowhere")
            assert get_event_sink() is None
        finally:
            set_event_sink(previous)

    def test_never_raises(self):
        previous = set_event_sink(_BrokenSink())
        try:
            emit(EngineEvent(level=EventLevel.info, event_type=EventType.run_started))
        finally:
            set_event_sink(previous)

    def test_set_returns_previous(self, memory):
        other = MemorySink()
        assert set_event_sink(other) is memory
        assert set_event_sink(memory) is other
