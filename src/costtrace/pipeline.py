"""Calculation pipeline: targeted formula runs and the default cost sequence.

Targeted mode evaluates the formulas a user selected, in order, then
derives the headline metrics from the last selected result.  Default mode
runs a fixed sequence of named stages, using a registry formula of the
same key when one exists and a built-in expression otherwise.  A stage
whose key is also a supplied variable takes the variable's value unless
the collision policy is ``"error"``.

A failing formula never aborts the run: its error is attached to its
step and ``0.0`` stands in for its value.  Later targets that depend on
it report the same error.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from costtrace.cache import SnapshotCache
from costtrace.config import resolve_config
from costtrace.context import EvaluationContext
from costtrace.formulas.errors import DuplicateBindingError, FormulaError
from costtrace.logging import EventLevel, EventType, emit, make_run_event
from costtrace.models import Formula
from costtrace.registry import FormulaRegistry
from costtrace.resolver import DependencyResolver
from costtrace.snapshot import VariableSnapshot
from costtrace.trace import HEADLINE_METRICS, Trace, TraceRecorder

# Identifiers the headline formulas read; bound from the run's snapshot.
PER_TRANSACTION = "per_transaction"
VOLUME_PER_DAY = "volume_per_day"
WORKING_DAYS = "working_days_per_month"
UNIT_PRICE = "unit_price"
MONTHS_PER_YEAR = "months_per_year"

HEADLINE_FORMULAS = (
    Formula(
        key="monthly_credits",
        name="Monthly Credits",
        expression=f"{PER_TRANSACTION} * {VOLUME_PER_DAY} * {WORKING_DAYS}",
        category="headline",
    ),
    Formula(
        key="monthly_cost",
        name="Monthly Cost",
        expression=f"monthly_credits * {UNIT_PRICE}",
        category="headline",
        result_unit="USD",
    ),
    Formula(
        key="annual_cost",
        name="Annual Cost",
        expression=f"monthly_cost * {MONTHS_PER_YEAR}",
        category="headline",
        result_unit="USD",
    ),
)

STAGE_KEYS = (
    "complexity_adjusted_credits",
    "agent_adjusted_credits",
    "credits_per_transaction",
    "monthly_credits",
    "monthly_cost",
    "annual_cost",
)


def default_stages(config: Mapping[str, Any]) -> list[Formula]:
    """Built-in formulas for the default cost sequence."""
    volume = config["headline_volume_key"]
    days = config["headline_days_key"]
    price = config["headline_price_key"]
    months = config["months_per_year"]
    return [
        Formula(
            key="complexity_adjusted_credits",
            name="Apply Complexity Multiplier",
            expression="base_credits * complexityMultiplier",
            category="default",
        ),
        Formula(
            key="agent_adjusted_credits",
            name="Apply Agent Multiplier",
            expression="complexity_adjusted_credits * agentMultiplier",
            category="default",
        ),
        Formula(
            key="credits_per_transaction",
            name="Apply Scenario Multiplier",
            expression="agent_adjusted_credits * scenarioMultiplier",
            category="default",
        ),
        Formula(
            key="monthly_credits",
            name="Calculate Monthly Credits",
            expression=f"credits_per_transaction * {volume} * {days}",
            category="default",
        ),
        Formula(
            key="monthly_cost",
            name="Convert to Currency",
            expression=f"monthly_credits * {price}",
            category="default",
            result_unit="USD",
        ),
        Formula(
            key="annual_cost",
            name="Annualize",
            expression=f"monthly_cost * {months}",
            category="default",
            result_unit="USD",
        ),
    ]


class CalculationPipeline:
    """Runs formulas against a variable snapshot and returns a Trace.

    Parameters
    ----------
    cache : SnapshotCache | None
        Read-through source of the snapshot and registry.  Per-call
        ``registry``/``snapshot`` arguments take precedence.
    config : Mapping[str, Any] | None
        Overrides merged onto ``DEFAULT_CONFIG``.

    The pipeline keeps no per-run state, so one instance may serve
    concurrent runs.
    """

    def __init__(
        self,
        cache: SnapshotCache | None = None,
        *,
        config: Mapping[str, Any] | None = None,
    ) -> None:
        self._cache = cache
        self.config = resolve_config(config)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run(
        self,
        inputs: Mapping[str, float] | None = None,
        formula_keys: Sequence[str] | None = None,
        *,
        registry: FormulaRegistry | None = None,
        snapshot: VariableSnapshot | None = None,
    ) -> Trace:
        """Run in targeted mode if *formula_keys* is non-empty, else default mode.

        Args:
            inputs: UI-supplied values; they override stored variables.
            formula_keys: Ordered formula keys selected by the user.
            registry: Use this registry instead of the cached one.
            snapshot: Use this snapshot instead of the cached one.
        """
        if formula_keys:
            return self.run_targeted(
                formula_keys, inputs, registry=registry, snapshot=snapshot
            )
        return self.run_default(inputs, registry=registry, snapshot=snapshot)

    def serialize(self, trace: Trace) -> dict[str, Any]:
        """``trace.to_dict()`` with the configured rounding."""
        return trace.to_dict(
            intermediate_decimals=self.config["intermediate_decimals"],
            currency_decimals=self.config["currency_decimals"],
        )

    def run_targeted(
        self,
        formula_keys: Sequence[str],
        inputs: Mapping[str, float] | None = None,
        *,
        registry: FormulaRegistry | None = None,
        snapshot: VariableSnapshot | None = None,
    ) -> Trace:
        """Evaluate the selected formulas in order and derive headline metrics."""
        snapshot, registry = self._load(inputs, registry, snapshot)
        recorder = TraceRecorder(mode="targeted")
        self._emit_started(recorder, formula_keys=list(formula_keys))

        resolver = self._resolver(registry, snapshot, recorder.run_id)
        context = resolver.new_context()
        per_transaction, degraded = 0.0, True
        for key in formula_keys:
            per_transaction, degraded = self._evaluate_target(
                resolver, key, context, recorder
            )

        headline = self._headline(snapshot, per_transaction, degraded, recorder)
        final_results = {"credits_per_transaction": per_transaction, **headline}
        return self._finish(recorder, final_results)

    def run_default(
        self,
        inputs: Mapping[str, float] | None = None,
        *,
        registry: FormulaRegistry | None = None,
        snapshot: VariableSnapshot | None = None,
    ) -> Trace:
        """Run the fixed cost sequence, preferring registry formulas by key."""
        snapshot, registry = self._load(inputs, registry, snapshot)
        snapshot = snapshot.with_defaults(self.config["default_variables"])
        registry = registry.with_fallbacks(default_stages(self.config))
        recorder = TraceRecorder(mode="default")
        self._emit_started(recorder)

        resolver = self._resolver(registry, snapshot, recorder.run_id)
        context = resolver.new_context()
        values: dict[str, float] = {}
        for key in STAGE_KEYS:
            supplied = resolver.shadowing_value(key)
            if supplied is not None:
                recorder.record_variable(key, supplied, formula=registry.get(key))
                values[key] = supplied
                continue
            values[key], _ = self._evaluate_target(resolver, key, context, recorder)

        final_results = {metric: values[metric] for metric in HEADLINE_METRICS}
        return self._finish(recorder, final_results)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load(
        self,
        inputs: Mapping[str, float] | None,
        registry: FormulaRegistry | None,
        snapshot: VariableSnapshot | None,
    ) -> tuple[VariableSnapshot, FormulaRegistry]:
        if (registry is None or snapshot is None) and self._cache is not None:
            cached_snapshot, cached_registry = self._cache.get()
            registry = registry if registry is not None else cached_registry
            snapshot = snapshot if snapshot is not None else cached_snapshot
        if registry is None:
            registry = FormulaRegistry()
        if snapshot is None:
            snapshot = VariableSnapshot()
        if inputs:
            snapshot = snapshot.with_overrides(inputs)
        return snapshot, registry

    def _resolver(
        self,
        registry: FormulaRegistry,
        snapshot: VariableSnapshot,
        run_id: str,
        step_kind: str = "formula",
    ) -> DependencyResolver:
        return DependencyResolver(
            registry,
            snapshot,
            collision_policy=self.config["collision_policy"],
            max_depth=self.config["max_dependency_depth"],
            run_id=run_id,
            step_kind=step_kind,
        )

    def _evaluate_target(
        self,
        resolver: DependencyResolver,
        key: str,
        context: EvaluationContext,
        recorder: TraceRecorder,
    ) -> tuple[float, bool]:
        """Resolve one requested formula; returns (value, degraded)."""
        if context.is_computed(key):
            return context[key], context.is_degraded(key)
        try:
            resolver.resolve(key, context, recorder)
        except DuplicateBindingError:
            raise
        except FormulaError as exc:
            recorder.record_failure(key, exc, formula=resolver.registry.get(key))
            emit(
                make_run_event(
                    EventType.step_error,
                    EventLevel.warning,
                    str(exc),
                    run_id=recorder.run_id,
                    mode=recorder.mode,
                    formula_key=key,
                    error_code=exc.code,
                )
            )
            if key not in context:
                context.bind(key, 0.0, failed=True)
            return 0.0, True
        return context[key], context.is_degraded(key)

    def _headline(
        self,
        snapshot: VariableSnapshot,
        per_transaction: float,
        degraded: bool,
        recorder: TraceRecorder,
    ) -> dict[str, float]:
        """Derive monthly and annual figures from a per-transaction value."""
        defaults = self.config["default_variables"]

        def pick(key: str) -> float:
            if key in snapshot:
                return snapshot[key]
            return float(defaults.get(key, 0.0))

        headline_inputs = VariableSnapshot(
            {
                VOLUME_PER_DAY: pick(self.config["headline_volume_key"]),
                WORKING_DAYS: pick(self.config["headline_days_key"]),
                UNIT_PRICE: pick(self.config["headline_price_key"]),
                MONTHS_PER_YEAR: float(self.config["months_per_year"]),
            }
        )
        resolver = self._resolver(
            FormulaRegistry(HEADLINE_FORMULAS),
            headline_inputs,
            recorder.run_id,
            step_kind="headline",
        )
        context = resolver.new_context()
        context.bind(PER_TRANSACTION, per_transaction, degraded=degraded)

        results: dict[str, float] = {}
        for formula in HEADLINE_FORMULAS:
            try:
                results[formula.key] = resolver.evaluate_formula(
                    formula.key, context, recorder
                )
            except FormulaError as exc:
                recorder.record_failure(
                    formula.key, exc, formula=formula, kind="headline"
                )
                context.bind(formula.key, 0.0, failed=True)
                results[formula.key] = 0.0
        return results

    def _emit_started(self, recorder: TraceRecorder, **extra: Any) -> None:
        emit(
            make_run_event(
                EventType.run_started,
                EventLevel.info,
                f"{recorder.mode} run started",
                run_id=recorder.run_id,
                mode=recorder.mode,
                extra=extra or None,
            )
        )

    def _finish(self, recorder: TraceRecorder, final_results: dict[str, float]) -> Trace:
        trace = recorder.finalize(final_results)
        emit(
            make_run_event(
                EventType.run_completed,
                EventLevel.warning if trace.degraded else EventLevel.info,
                f"{trace.mode} run completed with {len(trace.steps)} steps",
                run_id=trace.run_id,
                mode=trace.mode,
                extra={
                    "steps": len(trace.steps),
                    "degraded": trace.degraded,
                    "execution_duration_ms": round(trace.execution_duration_ms, 3),
                },
            )
        )
        return trace
