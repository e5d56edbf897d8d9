"""Step-by-step audit trail of one pipeline run."""

from __future__ import annotations

import math
import time
from typing import Any, Callable, Mapping
from uuid import uuid4

from lark import Tree
from pydantic import BaseModel, ConfigDict, Field

from costtrace.formulas.errors import FormulaError
from costtrace.formulas.explain import (
    format_expression,
    format_number,
    synthesize_explanation,
)
from costtrace.models import Formula

# Headline metrics expressed in currency (rounded to cents when serialized).
CURRENCY_METRICS = frozenset({"monthly_cost", "annual_cost"})

HEADLINE_METRICS = (
    "credits_per_transaction",
    "monthly_credits",
    "monthly_cost",
    "annual_cost",
)


class StepError(BaseModel):
    """A typed error attached to a calculation step."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    formula_key: str | None = None
    position: int | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: FormulaError) -> StepError:
        return cls(**exc.to_dict())


class CalculationStep(BaseModel):
    """One evaluated formula, with the inputs it used and an explanation."""

    model_config = ConfigDict(frozen=True)

    step_index: int
    formula_key: str
    name: str
    kind: str = "formula"
    expression: str
    substituted_expression: str = ""
    inputs_used: dict[str, float] = Field(default_factory=dict)
    result: float
    explanation: str
    error: StepError | None = None
    degraded: bool = False


class Trace(BaseModel):
    """Ordered steps plus headline results of one run."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    mode: str
    steps: list[CalculationStep]
    final_results: dict[str, float]
    execution_duration_ms: float
    degraded: bool = False

    def step_for(self, formula_key: str, kind: str = "formula") -> CalculationStep | None:
        for step in self.steps:
            if step.formula_key == formula_key and step.kind == kind:
                return step
        return None

    def errors(self) -> list[StepError]:
        return [s.error for s in self.steps if s.error is not None]

    def to_dict(
        self, *, intermediate_decimals: int = 4, currency_decimals: int = 2
    ) -> dict[str, Any]:
        """Plain structure for the UI with stable rounding.

        Intermediate values are rounded to *intermediate_decimals*, currency
        headline metrics to *currency_decimals*; non-finite numbers become
        ``None``.
        """

        def rnd(value: float, places: int = intermediate_decimals) -> float | None:
            if not math.isfinite(value):
                return None
            return round(value, places)

        steps = []
        for step in self.steps:
            steps.append(
                {
                    "step_index": step.step_index,
                    "formula_key": step.formula_key,
                    "name": step.name,
                    "kind": step.kind,
                    "expression": step.expression,
                    "substituted_expression": step.substituted_expression,
                    "inputs_used": {k: rnd(v) for k, v in step.inputs_used.items()},
                    "result": rnd(step.result),
                    "explanation": step.explanation,
                    "error": step.error.model_dump() if step.error else None,
                    "degraded": step.degraded,
                }
            )
        final = {
            k: rnd(v, currency_decimals if k in CURRENCY_METRICS else intermediate_decimals)
            for k, v in self.final_results.items()
        }
        return {
            "run_id": self.run_id,
            "mode": self.mode,
            "steps": steps,
            "final_results": final,
            "execution_duration_ms": round(self.execution_duration_ms, 3),
            "degraded": self.degraded,
        }


class TraceRecorder:
    """Collects calculation steps in evaluation order for one run.

    Usage::

        recorder = TraceRecorder(mode="targeted")
        recorder.record_formula(formula, tree, inputs, result)
        trace = recorder.finalize({"monthly_cost": 1013.76})
    """

    def __init__(
        self,
        run_id: str | None = None,
        mode: str = "targeted",
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.run_id = run_id or uuid4().hex
        self.mode = mode
        self._clock = clock
        self._started = clock()
        self._steps: list[CalculationStep] = []
        self._finalized = False

    @property
    def steps(self) -> list[CalculationStep]:
        return list(self._steps)

    def next_index(self) -> int:
        return len(self._steps) + 1

    def record(self, step: CalculationStep) -> None:
        """Append *step*; its index must be the next in sequence."""
        if self._finalized:
            raise RuntimeError("Trace already finalized")
        if step.step_index != self.next_index():
            raise ValueError(
                f"Step index {step.step_index} out of order; expected {self.next_index()}"
            )
        self._steps.append(step)

    def record_formula(
        self,
        formula: Formula,
        tree: Tree,
        inputs: Mapping[str, float],
        result: float,
        *,
        error: FormulaError | None = None,
        degraded: bool = False,
        kind: str = "formula",
    ) -> CalculationStep:
        """Record a formula that was evaluated (possibly to a non-finite value)."""
        if formula.description:
            explanation = formula.description
        elif math.isfinite(result):
            explanation = synthesize_explanation(tree, inputs, result)
        else:
            explanation = (
                f"Evaluating {format_expression(tree, inputs)} gave {format_number(result)}."
            )
        if error is not None:
            explanation += " The result is not a finite number, so 0 was used in its place."
        elif degraded:
            explanation += " At least one input was substituted after an earlier failure."

        step = CalculationStep(
            step_index=self.next_index(),
            formula_key=formula.key,
            name=formula.display_name,
            kind=kind,
            expression=formula.expression,
            substituted_expression=format_expression(tree, inputs),
            inputs_used=dict(inputs),
            result=result,
            explanation=explanation,
            error=StepError.from_exception(error) if error is not None else None,
            degraded=degraded,
        )
        self.record(step)
        return step

    def record_failure(
        self,
        formula_key: str,
        error: FormulaError,
        *,
        formula: Formula | None = None,
        kind: str = "formula",
    ) -> CalculationStep:
        """Record a formula that could not be evaluated; zero stands in for it."""
        step = CalculationStep(
            step_index=self.next_index(),
            formula_key=formula_key,
            name=formula.display_name if formula else formula_key,
            kind=kind,
            expression=formula.expression if formula else "",
            result=0.0,
            explanation=f"Could not evaluate {formula_key}: {error}. 0 was used in its place.",
            error=StepError.from_exception(error),
            degraded=True,
        )
        self.record(step)
        return step

    def record_variable(
        self,
        key: str,
        value: float,
        *,
        formula: Formula | None = None,
        kind: str = "formula",
    ) -> CalculationStep:
        """Record a supplied variable used in place of formula *key*."""
        shown = format_number(value)
        step = CalculationStep(
            step_index=self.next_index(),
            formula_key=key,
            name=formula.display_name if formula else key,
            kind=kind,
            expression=key,
            substituted_expression=shown,
            inputs_used={key: value},
            result=value,
            explanation=f"Variable {key} was supplied as {shown}, so it is used in place of the formula.",
        )
        self.record(step)
        return step

    def finalize(self, final_results: Mapping[str, float]) -> Trace:
        """Freeze the recorded steps into a Trace."""
        if self._finalized:
            raise RuntimeError("Trace already finalized")
        self._finalized = True
        elapsed_ms = (self._clock() - self._started) * 1000.0
        return Trace(
            run_id=self.run_id,
            mode=self.mode,
            steps=list(self._steps),
            final_results=dict(final_results),
            execution_duration_ms=elapsed_ms,
            degraded=any(s.degraded for s in self._steps),
        )
