"""Immutable collection of named formulas, parsed once per snapshot."""

from __future__ import annotations

from typing import Any, Iterable, Iterator, Mapping

from lark import Tree

from costtrace.formulas.errors import FormulaParseError
from costtrace.formulas.parser import extract_refs, parse_expression
from costtrace.models import Formula


class FormulaRegistry:
    """Formulas keyed by ``Formula.key``.

    Every expression is parsed at construction.  A formula that fails to
    parse stays in the registry; asking for its tree raises the parse error
    tagged with the formula key, so one bad formula does not hide the rest.
    """

    def __init__(self, formulas: Iterable[Formula] = ()) -> None:
        self._formulas: dict[str, Formula] = {}
        self._trees: dict[str, Tree] = {}
        self._refs: dict[str, list[str]] = {}
        self._parse_errors: dict[str, FormulaParseError] = {}

        for formula in formulas:
            if formula.key in self._formulas:
                raise ValueError(f"Duplicate formula key: {formula.key!r}")
            self._formulas[formula.key] = formula
            try:
                tree = parse_expression(formula.expression)
            except FormulaParseError as exc:
                self._parse_errors[formula.key] = exc
                continue
            self._trees[formula.key] = tree
            self._refs[formula.key] = extract_refs(tree)

    @classmethod
    def from_records(
        cls, records: Iterable[Formula | Mapping[str, Any]]
    ) -> FormulaRegistry:
        """Build a registry from persistence rows or Formula objects."""
        return cls(
            r if isinstance(r, Formula) else Formula.from_record(r) for r in records
        )

    def __contains__(self, key: object) -> bool:
        return key in self._formulas

    def __iter__(self) -> Iterator[Formula]:
        return iter(self._formulas.values())

    def __len__(self) -> int:
        return len(self._formulas)

    def keys(self) -> list[str]:
        return list(self._formulas)

    def get(self, key: str) -> Formula | None:
        return self._formulas.get(key)

    def is_active(self, key: str) -> bool:
        formula = self._formulas.get(key)
        return formula is not None and formula.active

    def active_keys(self) -> list[str]:
        return [k for k, f in self._formulas.items() if f.active]

    def tree(self, key: str) -> Tree:
        """Return the parse tree for *key*.

        Raises:
            KeyError: If no formula has that key.
            FormulaParseError: If the formula's expression does not parse.
        """
        if key in self._parse_errors:
            err = self._parse_errors[key]
            raise FormulaParseError(err.reason, err.position, formula_key=key)
        return self._trees[key]

    def refs(self, key: str) -> list[str]:
        """Identifiers the expression of *key* actually uses, in order."""
        self.tree(key)
        return list(self._refs[key])

    def parse_errors(self) -> dict[str, FormulaParseError]:
        return dict(self._parse_errors)

    def by_category(self) -> dict[str, list[Formula]]:
        grouped: dict[str, list[Formula]] = {}
        for formula in self._formulas.values():
            grouped.setdefault(formula.category, []).append(formula)
        return grouped

    def with_fallbacks(self, formulas: Iterable[Formula]) -> FormulaRegistry:
        """Return a new registry where *formulas* fill keys this one lacks.

        Active formulas already present win; an inactive one is replaced
        by the fallback of the same key.
        """
        merged = dict(self._formulas)
        for formula in formulas:
            existing = merged.get(formula.key)
            if existing is None or not existing.active:
                merged[formula.key] = formula
        return FormulaRegistry(merged.values())
