"""Human-readable rendering of parsed expressions.

Used by the trace recorder to show the expression with concrete numbers
substituted and to synthesize a plain-English explanation of a step.
"""

from __future__ import annotations

import math
import re
from typing import Mapping

from lark import Token, Transformer_NonRecursive, Tree

from costtrace.formulas.evaluator import evaluate_tree
from costtrace.formulas.parser import BINARY_OPS

_SYMBOLS = {"add": "+", "sub": "-", "mul": "*", "div": "/", "mod": "%"}

_PRECEDENCE = {
    "add": 1,
    "sub": 1,
    "mul": 2,
    "div": 2,
    "mod": 2,
    "neg": 3,
    "pos": 3,
    "number": 4,
    "ref": 4,
}

_VERBS = {
    "add": "add",
    "sub": "subtract",
    "mul": "multiply by",
    "div": "divide by",
    "mod": "take the remainder after dividing by",
}

_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def format_number(value: float, decimals: int = 4) -> str:
    """Format *value* with thousands separators and at most *decimals* places.

    ``40.0`` -> ``"40"``, ``101376.0`` -> ``"101,376"``, ``1.2`` -> ``"1.2"``.
    """
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    text = f"{value:,.{decimals}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text in ("-0", ""):
        text = "0"
    return text


def humanize(name: str) -> str:
    """Turn an identifier into words: ``complexityMultiplier`` -> ``complexity multiplier``."""
    spaced = _CAMEL_RE.sub(" ", name).replace("_", " ")
    return " ".join(spaced.split()).lower()


def format_expression(
    node: Tree | Token, values: Mapping[str, float] | None = None
) -> str:
    """Render a parse tree back to canonical expression text.

    Args:
        node: A parse tree or subtree.
        values: If given, identifiers found in it are replaced by their values.

    Returns:
        Expression text with only the parentheses the tree requires.
    """
    if isinstance(node, Token):
        return str(node)
    text, _ = _Renderer(values).transform(node)
    return text


class _Renderer(Transformer_NonRecursive):
    """Bottom-up rendering to ``(text, rule)`` pairs.

    The rule of each rendered child decides whether its parent wraps it
    in parentheses.
    """

    def __init__(self, values: Mapping[str, float] | None) -> None:
        super().__init__()
        self._values = values

    def start(self, children: list) -> tuple[str, str]:
        return children[0]

    def number(self, children: list) -> tuple[str, str]:
        return str(children[0]), "number"

    def ref(self, children: list) -> tuple[str, str]:
        name = str(children[0])
        if self._values is not None and name in self._values:
            rendered = _plain_number(self._values[name])
            if rendered.startswith("-"):
                rendered = f"({rendered})"
            return rendered, "ref"
        return name, "ref"

    def neg(self, children: list) -> tuple[str, str]:
        return self._unary("neg", "-", children[0])

    def pos(self, children: list) -> tuple[str, str]:
        return self._unary("pos", "+", children[0])

    def _unary(self, rule: str, sign: str, child: tuple[str, str]) -> tuple[str, str]:
        inner, child_rule = child
        if _PRECEDENCE[child_rule] < _PRECEDENCE[rule]:
            inner = f"({inner})"
        return f"{sign}{inner}", rule

    def __default__(self, data, children, meta):
        (left, left_rule), (right, right_rule) = children
        prec = _PRECEDENCE[data]
        if _PRECEDENCE[left_rule] < prec:
            left = f"({left})"
        if _PRECEDENCE[right_rule] <= prec:
            right = f"({right})"
        return f"{left} {_SYMBOLS[data]} {right}", str(data)


def synthesize_explanation(
    tree: Tree, values: Mapping[str, float], result: float
) -> str:
    """Describe how *tree* turns *values* into *result* in plain English.

    A left-to-right chain such as ``base * mult`` reads as
    "Starting with base 40, multiply by mult 1.2 to get 48."
    """
    body = tree.children[0] if tree.data == "start" else tree
    chain = _left_chain(body)
    outcome = format_number(result)

    if len(chain) == 1:
        node = chain[0][1]
        if _rule(node) == "number":
            return f"Constant value {outcome}."
        if _rule(node) == "ref":
            return f"Take {_operand(node, values)} as the result, giving {outcome}."
        return f"Evaluate {format_expression(node, values)} to get {outcome}."

    parts = [f"Starting with {_operand(chain[0][1], values)}"]
    for op, node in chain[1:]:
        parts.append(f"{_VERBS[op]} {_operand(node, values)}")
    return ", ".join(parts) + f" to get {outcome}."


def _left_chain(node: Tree | Token) -> list[tuple[str | None, Tree | Token]]:
    chain: list[tuple[str | None, Tree | Token]] = []
    while isinstance(node, Tree) and node.data in BINARY_OPS:
        chain.append((node.data, node.children[1]))
        node = node.children[0]
    chain.append((None, node))
    chain.reverse()
    return chain


def _operand(node: Tree | Token, values: Mapping[str, float]) -> str:
    rule = _rule(node)
    if rule == "ref":
        name = str(node.children[0])
        if name in values:
            return f"{humanize(name)} {format_number(values[name])}"
        return humanize(name)
    if rule == "number":
        return format_number(float(node.children[0]))
    value = evaluate_tree(node, values)
    return f"({format_expression(node, values)}) = {format_number(value)}"


def _rule(node: Tree | Token) -> str:
    if isinstance(node, Token):
        return "number"
    return node.data


def _plain_number(value: float) -> str:
    if math.isfinite(value) and value == int(value) and abs(value) < 1e15:
        return str(int(value))
    return repr(value)
