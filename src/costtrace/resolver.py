"""Dependency resolution and ordered evaluation of named formulas.

Starting from the requested formulas, every identifier is classified as a
snapshot variable (a leaf), an already-bound result (a leaf), or another
active formula (recursed into).  The traversal is depth-first and tracks
the active path, so a formula that reappears on its own path is reported
as a cycle with the full ordered key list.  Formulas are then evaluated
in post-order, each at most once per context.
"""

from __future__ import annotations

import math
from typing import Mapping, Sequence

from costtrace.config import COLLISION_POLICIES, DEFAULT_CONFIG
from costtrace.context import EvaluationContext
from costtrace.formulas.errors import (
    CircularReferenceError,
    DependencyDepthError,
    FormulaRefError,
    NameCollisionError,
    NonFiniteResultError,
    UnresolvedReferenceError,
)
from costtrace.formulas.evaluator import evaluate_tree
from costtrace.logging import EventLevel, EventType, emit, make_run_event
from costtrace.registry import FormulaRegistry
from costtrace.trace import TraceRecorder


class DependencyResolver:
    """Orders and evaluates formulas that reference each other's results.

    Parameters
    ----------
    registry : FormulaRegistry
        Formulas available to this run.
    snapshot : Mapping[str, float]
        Variable values; takes precedence over a formula of the same key
        unless ``collision_policy`` is ``"error"``.
    collision_policy : str
        ``"variable"`` (snapshot wins, a warning event is emitted) or
        ``"error"`` (raise ``NameCollisionError``).
    max_depth : int
        Deepest allowed chain of nested formula references.
    step_kind : str
        Recorded as ``CalculationStep.kind`` for every evaluated formula.
    """

    def __init__(
        self,
        registry: FormulaRegistry,
        snapshot: Mapping[str, float],
        *,
        collision_policy: str = DEFAULT_CONFIG["collision_policy"],
        max_depth: int = DEFAULT_CONFIG["max_dependency_depth"],
        run_id: str | None = None,
        step_kind: str = "formula",
    ) -> None:
        if collision_policy not in COLLISION_POLICIES:
            raise ValueError(f"Unknown collision policy: {collision_policy!r}")
        self._registry = registry
        self._snapshot = snapshot
        self._policy = collision_policy
        self._max_depth = max_depth
        self._run_id = run_id
        self._step_kind = step_kind
        self._reported_collisions: set[str] = set()

    @property
    def registry(self) -> FormulaRegistry:
        return self._registry

    def new_context(self) -> EvaluationContext:
        """A fresh context seeded from the variable snapshot."""
        return EvaluationContext(self._snapshot)

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def check_target(self, key: str) -> None:
        """Raise if *key* cannot be requested as a formula.

        Raises:
            NameCollisionError: If a snapshot variable shadows the formula.
            UnresolvedReferenceError: If there is no active formula *key*.
        """
        if key in self._snapshot and key in self._registry:
            raise NameCollisionError(key, formula_key=key)
        if key not in self._registry:
            raise UnresolvedReferenceError(key, None, "no formula with this key")
        if not self._registry.is_active(key):
            raise UnresolvedReferenceError(key, None, "formula is inactive")

    def plan(
        self,
        targets: str | Sequence[str],
        context: EvaluationContext | None = None,
    ) -> list[str]:
        """Return the formula keys to evaluate, dependencies first.

        Formulas already bound in *context* are treated as leaves and left
        out of the plan.  A key bound only as the substitute for a failed
        formula is not a leaf: it is planned again, so its dependents report
        the same error (a cycle through it is still a cycle).

        Raises:
            CircularReferenceError, DependencyDepthError, FormulaParseError,
            NameCollisionError, UnresolvedReferenceError.
        """
        if isinstance(targets, str):
            targets = [targets]
        order: list[str] = []
        done: set[str] = set()
        for target in targets:
            self.check_target(target)
            self._visit(target, [], order, done, context)
        return order

    def _visit(
        self,
        key: str,
        path: list[str],
        order: list[str],
        done: set[str],
        context: EvaluationContext | None,
    ) -> None:
        if key in done or _is_leaf(key, context):
            return
        if key in path:
            raise CircularReferenceError(path[path.index(key):])
        if len(path) >= self._max_depth:
            raise DependencyDepthError(path + [key], self._max_depth)

        refs = self._registry.refs(key)
        path.append(key)
        try:
            for ref in refs:
                if self._classify(ref, key, context) == "formula":
                    self._visit(ref, path, order, done, context)
        finally:
            path.pop()
        done.add(key)
        order.append(key)

    def _classify(
        self, ref: str, referrer: str, context: EvaluationContext | None
    ) -> str:
        is_formula = self._registry.is_active(ref)
        if ref in self._snapshot:
            if is_formula:
                self._on_collision(ref, referrer)
            return "variable"
        if context is not None and ref in context and not context.is_failed(ref):
            return "bound"
        if is_formula:
            return "formula"
        if ref in self._registry:
            raise UnresolvedReferenceError(ref, referrer, "formula is inactive")
        raise UnresolvedReferenceError(ref, referrer)

    def shadowing_value(self, key: str) -> float | None:
        """Snapshot value standing in for formula *key*, if one applies.

        Under the ``"variable"`` policy a variable sharing a formula's key
        wins, and the collision is reported once.  Returns ``None`` when
        there is no such variable or the policy is ``"error"``.
        """
        if key not in self._snapshot or key not in self._registry:
            return None
        if self._policy == "error":
            return None
        self._on_collision(key, key)
        return self._snapshot[key]

    def _on_collision(self, name: str, referrer: str) -> None:
        if self._policy == "error":
            raise NameCollisionError(name, formula_key=referrer)
        if name in self._reported_collisions:
            return
        self._reported_collisions.add(name)
        emit(
            make_run_event(
                EventType.name_collision,
                EventLevel.warning,
                f"Variable {name!r} shadows the formula of the same key",
                run_id=self._run_id,
                formula_key=referrer,
                extra={"name": name},
            )
        )

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def resolve(
        self,
        targets: str | Sequence[str],
        context: EvaluationContext | None = None,
        recorder: TraceRecorder | None = None,
    ) -> EvaluationContext:
        """Evaluate *targets* and everything they depend on.

        Args:
            targets: One formula key or an ordered list of keys.
            context: Context to extend; a fresh one is created if omitted.
            recorder: Receives one step per formula evaluated.

        Returns:
            The context, now binding every planned formula's result.
        """
        if context is None:
            context = self.new_context()
        for key in self.plan(targets, context):
            self.evaluate_formula(key, context, recorder)
        return context

    def inputs_for(self, key: str, context: Mapping[str, float]) -> dict[str, float]:
        """Bound values of the identifiers *key* declares or uses."""
        formula = self._registry.get(key)
        names = list(formula.references) if formula else []
        names.extend(r for r in self._registry.refs(key) if r not in names)
        return {n: context[n] for n in names if n in context}

    def evaluate_formula(
        self,
        key: str,
        context: EvaluationContext,
        recorder: TraceRecorder | None = None,
    ) -> float:
        """Evaluate one formula whose dependencies are already bound.

        A formula already computed in *context* is not evaluated again.
        A non-finite result is recorded as-is on the step but ``0.0`` is
        bound, flagged degraded.
        """
        if context.is_computed(key):
            return context[key]

        formula = self._registry.get(key)
        tree = self._registry.tree(key)
        inputs = self.inputs_for(key, context)
        try:
            result = evaluate_tree(tree, context)
        except FormulaRefError as exc:
            raise FormulaRefError(
                exc.ref_name, formula_key=key, position=exc.position
            ) from exc

        degraded = any(context.is_degraded(name) for name in inputs)
        error = None
        bound = result
        if not math.isfinite(result):
            error = NonFiniteResultError(result, formula_key=key)
            bound = 0.0
            degraded = True
            emit(
                make_run_event(
                    EventType.step_non_finite,
                    EventLevel.warning,
                    str(error),
                    run_id=self._run_id,
                    formula_key=key,
                    error_code=error.code,
                )
            )

        context.bind(key, bound, degraded=degraded)
        if recorder is not None:
            recorder.record_formula(
                formula,
                tree,
                inputs,
                result,
                error=error,
                degraded=degraded,
                kind=self._step_kind,
            )
        return bound


def _is_leaf(key: str, context: EvaluationContext | None) -> bool:
    """True if *key* holds a usable result computed earlier in the run."""
    return (
        context is not None
        and context.is_computed(key)
        and not context.is_failed(key)
    )
