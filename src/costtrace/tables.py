"""Tabular views of a trace as polars DataFrames."""

from __future__ import annotations

import polars as pl

from costtrace.formulas.explain import format_number
from costtrace.trace import CURRENCY_METRICS, Trace

STEP_SCHEMA = {
    "step_index": pl.Int64,
    "formula_key": pl.Utf8,
    "name": pl.Utf8,
    "kind": pl.Utf8,
    "expression": pl.Utf8,
    "substituted_expression": pl.Utf8,
    "inputs": pl.Utf8,
    "result": pl.Float64,
    "degraded": pl.Boolean,
    "error_code": pl.Utf8,
    "explanation": pl.Utf8,
}

RESULT_SCHEMA = {
    "metric": pl.Utf8,
    "value": pl.Float64,
    "is_currency": pl.Boolean,
}


def trace_to_frame(trace: Trace) -> pl.DataFrame:
    """One row per calculation step, in evaluation order."""
    columns: dict[str, list] = {name: [] for name in STEP_SCHEMA}
    for step in trace.steps:
        columns["step_index"].append(step.step_index)
        columns["formula_key"].append(step.formula_key)
        columns["name"].append(step.name)
        columns["kind"].append(step.kind)
        columns["expression"].append(step.expression)
        columns["substituted_expression"].append(step.substituted_expression)
        columns["inputs"].append(
            ", ".join(f"{k}={format_number(v)}" for k, v in step.inputs_used.items())
        )
        columns["result"].append(step.result)
        columns["degraded"].append(step.degraded)
        columns["error_code"].append(step.error.code if step.error else None)
        columns["explanation"].append(step.explanation)
    return pl.DataFrame(columns, schema=STEP_SCHEMA)


def final_results_frame(trace: Trace) -> pl.DataFrame:
    """One row per headline metric."""
    metrics = list(trace.final_results)
    return pl.DataFrame(
        {
            "metric": metrics,
            "value": [trace.final_results[m] for m in metrics],
            "is_currency": [m in CURRENCY_METRICS for m in metrics],
        },
        schema=RESULT_SCHEMA,
    )
