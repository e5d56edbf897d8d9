"""Tests for Variable/Formula records, snapshots, registries and contexts."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from costtrace.context import EvaluationContext
from costtrace.formulas import DuplicateBindingError, FormulaParseError
from costtrace.models import Formula, Variable
from costtrace.registry import FormulaRegistry
from costtrace.snapshot import VariableSnapshot


# ────────────────────────────────────────────────────────────────
# Records
# ────────────────────────────────────────────────────────────────


class TestRecords:
    def test_formula_derives_references(self) -> None:
        f = Formula(key="total", expression="a + b * a")
        assert f.references == ("a", "b")

    def test_formula_keeps_declared_references(self) -> None:
        f = Formula(key="total", expression="a + b", references=["b", "a"])
        assert f.references == ("b", "a")

    def test_formula_with_bad_syntax_has_no_references(self) -> None:
        f = Formula(key="broken", expression="a +")
        assert f.references == ()

    def test_formula_is_frozen(self) -> None:
        f = Formula(key="total", expression="a")
        with pytest.raises(ValidationError):
            f.expression = "b"

    def test_invalid_key_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Variable(key="not valid", value=1)

    def test_copy_with_new_expression_recomputes_references(self) -> None:
        f = Formula(key="total", expression="a + b")
        changed = f.model_copy(update={"expression": "c * d"})
        assert changed.references == ("c", "d")
        assert changed.key == "total"
        assert f.references == ("a", "b")

    def test_copy_keeps_explicit_references(self) -> None:
        f = Formula(key="total", expression="a + b")
        changed = f.model_copy(update={"expression": "c", "references": ["z"]})
        assert changed.references == ("z",)

    def test_copy_without_expression_keeps_references(self) -> None:
        f = Formula(key="total", expression="a + b")
        assert f.model_copy(update={"name": "Total"}).references == ("a", "b")
        assert f.model_copy() == f

    def test_copy_validates_update(self) -> None:
        f = Formula(key="total", expression="a")
        with pytest.raises(ValidationError):
            f.model_copy(update={"key": "not valid"})

    def test_formula_from_stored_record(self) -> None:
        record = {
            "id": "7f1c",
            "formula_key": "llm_cost",
            "formula_name": "LLM Cost",
            "formula_expression": "tokens * price",
            "variables_used": ["tokens", "price", "return"],
            "category": "llm",
            "is_active": False,
            "description": None,
        }
        f = Formula.from_record(record)
        assert f.key == "llm_cost"
        assert f.display_name == "LLM Cost"
        assert f.references == ("tokens", "price")
        assert f.active is False

    def test_variable_from_stored_record(self) -> None:
        v = Variable.from_record(
            {"variable_key": "cost_per_email", "variable_value": 0.015, "category": "channel"}
        )
        assert v.key == "cost_per_email"
        assert v.value == pytest.approx(0.015)
        assert v.active is True


# ────────────────────────────────────────────────────────────────
# Snapshot
# ────────────────────────────────────────────────────────────────


class TestVariableSnapshot:
    def test_inactive_variables_skipped(self) -> None:
        snap = VariableSnapshot.from_variables(
            [Variable(key="a", value=1), Variable(key="b", value=2, active=False)]
        )
        assert dict(snap) == {"a": 1.0}

    def test_duplicate_keys_rejected(self) -> None:
        with pytest.raises(ValueError, match="Duplicate variable"):
            VariableSnapshot.from_variables(
                [Variable(key="a", value=1), Variable(key="a", value=2)]
            )

    def test_overrides_return_new_snapshot(self) -> None:
        snap = VariableSnapshot({"a": 1, "b": 2})
        derived = snap.with_overrides({"a": 10, "c": 3})
        assert dict(derived) == {"a": 10.0, "b": 2.0, "c": 3.0}
        assert dict(snap) == {"a": 1.0, "b": 2.0}

    def test_defaults_fill_missing_only(self) -> None:
        snap = VariableSnapshot({"a": 1})
        assert dict(snap.with_defaults({"a": 5, "b": 6})) == {"a": 1.0, "b": 6.0}

    def test_categories(self) -> None:
        snap = VariableSnapshot.from_records(
            [
                {"key": "a", "value": 1, "category": "volume"},
                {"key": "b", "value": 2, "category": "pricing"},
            ]
        ).with_overrides({"slider": 4})
        assert snap.categories() == {"volume": ["a"], "pricing": ["b"], "input": ["slider"]}

    def test_snapshot_is_read_only(self) -> None:
        snap = VariableSnapshot({"a": 1})
        with pytest.raises(TypeError):
            snap["a"] = 2  # type: ignore[index]


# ────────────────────────────────────────────────────────────────
# Registry
# ────────────────────────────────────────────────────────────────


class TestFormulaRegistry:
    def test_lookup_and_refs(self) -> None:
        reg = FormulaRegistry([Formula(key="t", expression="x * y + x")])
        assert "t" in reg
        assert reg.refs("t") == ["x", "y"]
        assert len(reg) == 1

    def test_duplicate_keys_rejected(self) -> None:
        with pytest.raises(ValueError, match="Duplicate formula"):
            FormulaRegistry(
                [Formula(key="t", expression="1"), Formula(key="t", expression="2")]
            )

    def test_parse_error_deferred_and_tagged(self) -> None:
        reg = FormulaRegistry(
            [Formula(key="ok", expression="1"), Formula(key="bad", expression="(1 +")]
        )
        assert reg.tree("ok") is not None
        with pytest.raises(FormulaParseError) as exc_info:
            reg.tree("bad")
        assert exc_info.value.formula_key == "bad"
        assert set(reg.parse_errors()) == {"bad"}

    def test_active_keys(self) -> None:
        reg = FormulaRegistry(
            [Formula(key="on", expression="1"), Formula(key="off", expression="2", active=False)]
        )
        assert reg.active_keys() == ["on"]
        assert reg.is_active("off") is False
        assert reg.is_active("missing") is False

    def test_with_fallbacks(self) -> None:
        reg = FormulaRegistry(
            [
                Formula(key="a", expression="1"),
                Formula(key="b", expression="2", active=False),
            ]
        )
        merged = reg.with_fallbacks(
            [
                Formula(key="a", expression="10"),
                Formula(key="b", expression="20"),
                Formula(key="c", expression="30"),
            ]
        )
        assert merged.get("a").expression == "1"
        assert merged.get("b").expression == "20"
        assert merged.get("c").expression == "30"
        assert "c" not in reg

    def test_by_category(self) -> None:
        reg = FormulaRegistry(
            [
                Formula(key="a", expression="1", category="setup"),
                Formula(key="b", expression="2", category="llm"),
                Formula(key="c", expression="3", category="setup"),
            ]
        )
        grouped = reg.by_category()
        assert [f.key for f in grouped["setup"]] == ["a", "c"]


# ────────────────────────────────────────────────────────────────
# Evaluation context
# ────────────────────────────────────────────────────────────────


class TestEvaluationContext:
    def test_seeded_keys_are_not_computed(self) -> None:
        ctx = EvaluationContext({"a": 1.0})
        assert ctx["a"] == 1.0
        assert not ctx.is_computed("a")

    def test_bind_and_restrict(self) -> None:
        ctx = EvaluationContext({"a": 1.0, "b": 2.0})
        ctx.bind("c", 3.0)
        assert ctx.computed_keys() == ["c"]
        assert ctx.restrict(["c", "a", "missing"]) == {"c": 3.0, "a": 1.0}

    def test_rebinding_forbidden(self) -> None:
        ctx = EvaluationContext({"a": 1.0})
        ctx.bind("c", 3.0)
        with pytest.raises(DuplicateBindingError):
            ctx.bind("c", 4.0)
        with pytest.raises(DuplicateBindingError):
            ctx.bind("a", 1.0)
        assert ctx["c"] == 3.0

    def test_degraded_flag(self) -> None:
        ctx = EvaluationContext()
        ctx.bind("x", 0.0, degraded=True)
        assert ctx.is_degraded("x")

    def test_failed_flag(self) -> None:
        ctx = EvaluationContext()
        ctx.bind("x", 0.0, failed=True)
        ctx.bind("y", 0.0, degraded=True)
        assert ctx.is_failed("x")
        assert ctx.is_degraded("x")
        assert ctx.is_computed("x")
        assert not ctx.is_failed("y")
