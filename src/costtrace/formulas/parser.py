"""Lark-based parser for pricing formula expressions.

Supports:
- Identifiers bound in the evaluation context: ``base_credits``
- Decimal literals: ``40``, ``1.2``, ``.5``, ``1e3``
- Binary ``+ - * / %`` (``%`` is the remainder), unary ``-`` and ``+``
- Parentheses for grouping
"""

from __future__ import annotations

from lark import Lark, Token, Tree, UnexpectedCharacters, UnexpectedInput

from costtrace.formulas.errors import FormulaParseError

# LALR(1) grammar for arithmetic formulas.
# Operator precedence (lowest to highest):
#   1. Addition/subtraction: + -
#   2. Multiplication/division/remainder: * / %
#   3. Unary plus/minus: + -
#   4. Atoms: number, identifier, parenthesized expr
# All binary operators are left-associative.
GRAMMAR = r"""
start: expr

?expr: addition

?addition: multiplication
    | addition "+" multiplication  -> add
    | addition "-" multiplication  -> sub

?multiplication: unary
    | multiplication "*" unary  -> mul
    | multiplication "/" unary  -> div
    | multiplication "%" unary  -> mod

?unary: atom
    | "-" unary  -> neg
    | "+" unary  -> pos

?atom: NUMBER          -> number
    | NAME             -> ref
    | "(" expr ")"

NAME: /[A-Za-z_][A-Za-z0-9_]*/

%import common.NUMBER
%import common.WS
%ignore WS
"""

_parser = Lark(GRAMMAR, parser="lalr", start="start")

BINARY_OPS = ("add", "sub", "mul", "div", "mod")
UNARY_OPS = ("neg", "pos")


def parse_expression(text: str) -> Tree:
    """Parse a formula expression into a Lark Tree.

    Args:
        text: The expression text, e.g. ``"base_credits * complexityMultiplier"``.

    Returns:
        A Lark parse tree rooted at ``start``.

    Raises:
        FormulaParseError: If the expression has invalid syntax. The
            ``position`` attribute is the 0-based character offset.
    """
    if not text or not text.strip():
        raise FormulaParseError("Expression is empty", position=0)
    try:
        return _parser.parse(text)
    except UnexpectedInput as exc:
        position = _error_position(exc, text)
        raise FormulaParseError(_describe(exc, text, position), position=position) from exc


def _error_position(exc: UnexpectedInput, text: str) -> int:
    token = getattr(exc, "token", None)
    if isinstance(token, Token) and token.type == "$END":
        return len(text)
    pos = getattr(exc, "pos_in_stream", None)
    if pos is None or pos < 0:
        return len(text)
    return pos


def _describe(exc: UnexpectedInput, text: str, position: int) -> str:
    if isinstance(exc, UnexpectedCharacters):
        return f"Unexpected character {text[position]!r}"
    token = getattr(exc, "token", None)
    if token is None or position >= len(text) or (
        isinstance(token, Token) and token.type == "$END"
    ):
        return "Unexpected end of expression"
    return f"Unexpected token {str(token)!r}"


def extract_refs(tree: Tree) -> list[str]:
    """Extract identifier references from a parsed expression.

    Args:
        tree: A parse tree from ``parse_expression()``.

    Returns:
        Referenced identifiers in first-appearance order, without duplicates.
    """
    seen: dict[str, None] = {}
    for node in tree.iter_subtrees_topdown():
        if node.data == "ref":
            seen.setdefault(str(node.children[0]), None)
    return list(seen)


def derive_references(expression: str) -> list[str]:
    """Return the identifiers used by *expression*, or ``[]`` if it does not parse."""
    try:
        return extract_refs(parse_expression(expression))
    except FormulaParseError:
        return []
