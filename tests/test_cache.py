"""Tests for the snapshot cache and its use by the pipeline."""

from __future__ import annotations

import pytest

from costtrace.cache import SnapshotCache
from costtrace.logging import EventType, MemorySink, set_event_sink
from costtrace.pipeline import CalculationPipeline


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class FakeStore:
    """In-memory persistence rows in the stored record shape."""

    def __init__(self) -> None:
        self.variables = [
            {"variable_key": "base_credits", "variable_value": 40, "category": "setup"},
            {"variable_key": "multiplier", "variable_value": 2, "category": "setup"},
        ]
        self.formulas = [
            {
                "formula_key": "per_txn",
                "formula_name": "Per Transaction",
                "formula_expression": "base_credits * multiplier",
                "variables_used": ["base_credits", "multiplier"],
                "category": "setup",
                "is_active": True,
            }
        ]

    def load_variables(self):
        return list(self.variables)

    def load_formulas(self):
        return list(self.formulas)


@pytest.fixture
def sink():
    memory = MemorySink()
    previous = set_event_sink(memory)
    yield memory
    set_event_sink(previous)


class TestSnapshotCache:
    def test_lazy_load(self) -> None:
        cache = SnapshotCache(FakeStore())
        assert cache.loads == 0
        snapshot, registry = cache.get()
        assert cache.loads == 1
        assert snapshot["base_credits"] == 40.0
        assert "per_txn" in registry

    def test_fresh_entry_reused(self) -> None:
        clock = FakeClock()
        cache = SnapshotCache(FakeStore(), ttl_seconds=30, clock=clock)
        first = cache.get()
        clock.now += 29
        assert cache.get()[0] is first[0]
        assert cache.loads == 1

    def test_stale_entry_reloaded(self) -> None:
        clock = FakeClock()
        store = FakeStore()
        cache = SnapshotCache(store, ttl_seconds=30, clock=clock)
        old_snapshot, _ = cache.get()
        store.variables[0] = {"variable_key": "base_credits", "variable_value": 50}
        clock.now += 30
        new_snapshot, _ = cache.get()
        assert cache.loads == 2
        assert new_snapshot["base_credits"] == 50.0
        assert old_snapshot["base_credits"] == 40.0

    def test_invalidate(self, sink) -> None:
        cache = SnapshotCache(FakeStore(), ttl_seconds=None)
        cache.get()
        cache.get()
        assert cache.loads == 1
        cache.invalidate()
        cache.get()
        assert cache.loads == 2
        assert len(sink.of_type(EventType.cache_invalidated)) == 1
        assert len(sink.of_type(EventType.cache_refreshed)) == 2

    def test_zero_ttl_always_reloads(self) -> None:
        cache = SnapshotCache(FakeStore(), ttl_seconds=0)
        cache.get()
        cache.get()
        assert cache.loads == 2

    def test_parse_errors_reported_on_refresh(self, sink) -> None:
        store = FakeStore()
        store.formulas.append({"formula_key": "bad", "formula_expression": "1 +"})
        SnapshotCache(store).get()
        event = sink.of_type(EventType.cache_refreshed)[0]
        assert event.context["parse_errors"] == ["bad"]
        assert event.context["formulas"] == 2


class TestPipelineWithCache:
    def test_targeted_run_reads_cache(self) -> None:
        pipeline = CalculationPipeline(SnapshotCache(FakeStore()))
        trace = pipeline.run(formula_keys=["per_txn"])
        assert trace.final_results["credits_per_transaction"] == pytest.approx(80.0)

    def test_write_then_invalidate(self) -> None:
        store = FakeStore()
        cache = SnapshotCache(store, ttl_seconds=None)
        pipeline = CalculationPipeline(cache)
        pipeline.run(formula_keys=["per_txn"])
        store.variables[1] = {"variable_key": "multiplier", "variable_value": 3}
        assert pipeline.run(formula_keys=["per_txn"]).final_results[
            "credits_per_transaction"
        ] == pytest.approx(80.0)
        cache.invalidate()
        assert pipeline.run(formula_keys=["per_txn"]).final_results[
            "credits_per_transaction"
        ] == pytest.approx(120.0)

    def test_from_config(self) -> None:
        from costtrace.config import resolve_config

        cache = SnapshotCache.from_config(FakeStore(), resolve_config({"cache_ttl_seconds": 0}))
        cache.get()
        cache.get()
        assert cache.loads == 2
