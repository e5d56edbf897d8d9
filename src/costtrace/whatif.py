"""What-if comparison of headline metrics across variable overrides.

Runs the pipeline once for a baseline and once per named scenario (a set
of input overrides layered on the baseline inputs), then tabulates each
headline metric against the baseline.
"""

from __future__ import annotations

from typing import Mapping, Sequence

import polars as pl

from costtrace.logging import EventType, emit_info
from costtrace.pipeline import CalculationPipeline
from costtrace.registry import FormulaRegistry
from costtrace.snapshot import VariableSnapshot
from costtrace.trace import Trace

BASELINE = "baseline"

WHATIF_SCHEMA = {
    "scenario": pl.Utf8,
    "metric": pl.Utf8,
    "value": pl.Float64,
    "baseline": pl.Float64,
    "delta": pl.Float64,
    "delta_pct": pl.Float64,
    "degraded": pl.Boolean,
}


def run_whatif(
    pipeline: CalculationPipeline,
    scenarios: Mapping[str, Mapping[str, float]],
    *,
    base_inputs: Mapping[str, float] | None = None,
    formula_keys: Sequence[str] | None = None,
    registry: FormulaRegistry | None = None,
    snapshot: VariableSnapshot | None = None,
) -> pl.DataFrame:
    """Compare headline metrics of each scenario against the baseline.

    Args:
        pipeline: Pipeline used for every run.
        scenarios: Scenario name -> input overrides.
        base_inputs: Inputs shared by the baseline and every scenario.
        formula_keys: Selected formulas (targeted mode); default mode if empty.
        registry: Optional registry passed through to each run.
        snapshot: Optional snapshot passed through to each run.

    Returns:
        Long-format DataFrame with one row per (scenario, metric).  The
        baseline rows come first.  ``delta_pct`` is null when the baseline
        value is zero.

    Raises:
        ValueError: If a scenario is named ``"baseline"``.
    """
    if BASELINE in scenarios:
        raise ValueError(f"Scenario name {BASELINE!r} is reserved")

    base = dict(base_inputs or {})
    traces: dict[str, Trace] = {
        BASELINE: pipeline.run(base, formula_keys, registry=registry, snapshot=snapshot)
    }
    for name, overrides in scenarios.items():
        traces[name] = pipeline.run(
            {**base, **overrides}, formula_keys, registry=registry, snapshot=snapshot
        )

    baseline = traces[BASELINE].final_results
    rows: dict[str, list] = {name: [] for name in WHATIF_SCHEMA}
    for name, trace in traces.items():
        for metric, value in trace.final_results.items():
            ref = baseline.get(metric, 0.0)
            rows["scenario"].append(name)
            rows["metric"].append(metric)
            rows["value"].append(value)
            rows["baseline"].append(ref)
            rows["delta"].append(value - ref)
            rows["delta_pct"].append((value - ref) / ref * 100.0 if ref else None)
            rows["degraded"].append(trace.degraded)

    emit_info(
        EventType.whatif_completed,
        f"What-if comparison over {len(scenarios)} scenarios",
        {"scenarios": list(scenarios), "run_ids": [t.run_id for t in traces.values()]},
    )
    return pl.DataFrame(rows, schema=WHATIF_SCHEMA)
