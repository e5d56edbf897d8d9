"""Arithmetic formula parsing and evaluation.

Public API::

    from costtrace.formulas import parse_expression, extract_refs, evaluate
"""

from costtrace.formulas.errors import (
    CircularReferenceError,
    DependencyDepthError,
    DuplicateBindingError,
    FormulaError,
    FormulaParseError,
    FormulaRefError,
    NameCollisionError,
    NonFiniteResultError,
    UnresolvedReferenceError,
)
from costtrace.formulas.evaluator import evaluate, evaluate_tree
from costtrace.formulas.explain import (
    format_expression,
    format_number,
    humanize,
    synthesize_explanation,
)
from costtrace.formulas.parser import (
    derive_references,
    extract_refs,
    parse_expression,
)

__all__ = [
    "CircularReferenceError",
    "DependencyDepthError",
    "DuplicateBindingError",
    "FormulaError",
    "FormulaParseError",
    "FormulaRefError",
    "NameCollisionError",
    "NonFiniteResultError",
    "UnresolvedReferenceError",
    "derive_references",
    "evaluate",
    "evaluate_tree",
    "extract_refs",
    "format_expression",
    "format_number",
    "humanize",
    "parse_expression",
    "synthesize_explanation",
]
