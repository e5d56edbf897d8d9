"""Tree-walking evaluator for parsed formula expressions.

Identifiers are resolved strictly against the supplied numeric context.
Division and remainder by zero follow IEEE-754 and never raise; callers
decide what to do with non-finite results.

The walk uses lark's non-recursive transformer, so the depth of an
expression is bounded by memory rather than by the interpreter's
recursion limit.
"""

from __future__ import annotations

import math
from typing import Mapping

from lark import Token, Transformer_NonRecursive, Tree
from lark.exceptions import VisitError

from costtrace.formulas.errors import FormulaError, FormulaRefError
from costtrace.formulas.parser import parse_expression


def evaluate(expression: str, context: Mapping[str, float]) -> float:
    """Parse and evaluate *expression* against *context*.

    Args:
        expression: Expression text, e.g. ``"base * mult"``.
        context: Mapping of identifiers to numeric values.

    Returns:
        The computed value as a float (possibly ``inf`` or ``nan``).

    Raises:
        FormulaParseError: If the expression has invalid syntax.
        FormulaRefError: If an identifier is not bound in *context*.
    """
    return evaluate_tree(parse_expression(expression), context)


def evaluate_tree(tree: Tree | Token, context: Mapping[str, float]) -> float:
    """Evaluate a parse tree (or any subtree of one) against *context*."""
    if isinstance(tree, Token):
        return float(tree)
    try:
        return _Evaluator(context).transform(tree)
    except VisitError as exc:
        if isinstance(exc.orig_exc, FormulaError):
            raise exc.orig_exc from None
        raise


class _Evaluator(Transformer_NonRecursive):
    """Bottom-up evaluation; each callback receives already-evaluated children."""

    def __init__(self, ctx: Mapping[str, float]) -> None:
        super().__init__()
        self._ctx = ctx

    def start(self, children: list) -> float:
        return children[0]

    def add(self, children: list) -> float:
        return children[0] + children[1]

    def sub(self, children: list) -> float:
        return children[0] - children[1]

    def mul(self, children: list) -> float:
        return children[0] * children[1]

    def div(self, children: list) -> float:
        return _divide(children[0], children[1])

    def mod(self, children: list) -> float:
        return _remainder(children[0], children[1])

    def neg(self, children: list) -> float:
        return -children[0]

    def pos(self, children: list) -> float:
        return children[0]

    def number(self, children: list) -> float:
        return float(children[0])

    def ref(self, children: list) -> float:
        token = children[0]
        name = str(token)
        if name in self._ctx:
            return float(self._ctx[name])
        raise FormulaRefError(
            name,
            available=sorted(self._ctx.keys()),
            position=getattr(token, "start_pos", None),
        )

    def __default__(self, data, children, meta):
        raise FormulaError(f"Unknown node type: {data}")


def _divide(left: float, right: float) -> float:
    if right == 0:
        if left == 0 or math.isnan(left):
            return math.nan
        # Sign of a signed zero divisor matters: 1 / -0.0 == -inf
        return math.copysign(math.inf, left) * math.copysign(1.0, right)
    return left / right


def _remainder(left: float, right: float) -> float:
    """Truncated remainder; the result takes the sign of *left*."""
    if right == 0 or math.isinf(left) or math.isnan(left) or math.isnan(right):
        return math.nan
    return math.fmod(left, right)
