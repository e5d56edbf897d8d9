"""Error types for formula parsing, resolution and evaluation."""

from __future__ import annotations

from typing import Any


class FormulaError(Exception):
    """Base class for all formula-related errors.

    Attributes:
        code: Stable machine-readable error code.
        formula_key: Key of the formula being evaluated, if known.
        position: Character position of the failure, if known.
    """

    code = "formula_error"

    def __init__(
        self,
        message: str,
        *,
        formula_key: str | None = None,
        position: int | None = None,
    ) -> None:
        self.message = message
        self.formula_key = formula_key
        self.position = position
        super().__init__(self._render())

    def _render(self) -> str:
        msg = self.message
        if self.formula_key is not None:
            msg = f"{msg} [formula {self.formula_key!r}]"
        if self.position is not None:
            msg += f" (at position {self.position})"
        return msg

    def details(self) -> dict[str, Any]:
        """Extra structured fields shown alongside the message."""
        return {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": str(self),
            "formula_key": self.formula_key,
            "position": self.position,
            "details": self.details(),
        }


class FormulaParseError(FormulaError):
    """Syntax error in a formula expression.

    Attributes:
        reason: The bare description, without prefix or position.
    """

    code = "syntax_error"

    def __init__(
        self,
        message: str,
        position: int | None = None,
        *,
        formula_key: str | None = None,
    ) -> None:
        self.reason = message
        super().__init__(
            f"Formula parse error: {message}",
            formula_key=formula_key,
            position=position,
        )


class FormulaRefError(FormulaError):
    """Reference to an identifier that is not bound in the context.

    Attributes:
        ref_name: The unresolved reference.
        available: Names that were available.
    """

    code = "unknown_identifier"

    def __init__(
        self,
        ref_name: str,
        available: list[str] | None = None,
        *,
        formula_key: str | None = None,
        position: int | None = None,
        message: str | None = None,
    ) -> None:
        self.ref_name = ref_name
        self.available = available or []
        msg = message or f"Unknown identifier: {ref_name!r}"
        if self.available:
            msg += f". Available: {self.available}"
        super().__init__(msg, formula_key=formula_key, position=position)

    def details(self) -> dict[str, Any]:
        return {"ref_name": self.ref_name}


class UnresolvedReferenceError(FormulaRefError):
    """Identifier is neither a snapshot variable nor an active formula."""

    code = "unresolved_identifier"

    def __init__(
        self,
        ref_name: str,
        formula_key: str | None,
        reason: str = "not a variable or active formula",
    ) -> None:
        self.reason = reason
        super().__init__(
            ref_name,
            formula_key=formula_key,
            message=f"Unresolved identifier {ref_name!r}: {reason}",
        )


class CircularReferenceError(FormulaError):
    """Formula graph contains a cycle.

    Attributes:
        cycle: Ordered list of formula keys forming the cycle.  Each key
            appears once; the message closes the loop back to the first.
    """

    code = "cyclic_dependency"

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        loop = cycle + cycle[:1]
        super().__init__(
            f"Circular formula reference: {' -> '.join(loop)}",
            formula_key=cycle[0] if cycle else None,
        )

    def details(self) -> dict[str, Any]:
        return {"cycle": list(self.cycle)}


class DependencyDepthError(FormulaError):
    """Dependency chain nests deeper than the configured limit."""

    code = "dependency_too_deep"

    def __init__(self, path: list[str], limit: int) -> None:
        self.path = path
        self.limit = limit
        super().__init__(
            f"Dependency chain exceeds {limit} levels: {' -> '.join(path)}",
            formula_key=path[0] if path else None,
        )

    def details(self) -> dict[str, Any]:
        return {"path": list(self.path), "limit": self.limit}


class NameCollisionError(FormulaError):
    """A variable key and a formula key are the same identifier."""

    code = "name_collision"

    def __init__(self, name: str, formula_key: str | None = None) -> None:
        self.name = name
        super().__init__(
            f"Identifier {name!r} is both a variable and a formula key",
            formula_key=formula_key,
        )

    def details(self) -> dict[str, Any]:
        return {"name": self.name}


class NonFiniteResultError(FormulaError):
    """Evaluation produced NaN or an infinity.

    This is a soft failure: the raw value is kept on the step.
    """

    code = "non_finite_result"

    def __init__(self, value: float, formula_key: str | None = None) -> None:
        self.value = value
        super().__init__(
            f"Result is not a finite number ({value!r})",
            formula_key=formula_key,
        )


class DuplicateBindingError(FormulaError):
    """A context key was bound twice within one run."""

    code = "duplicate_binding"

    def __init__(self, key: str, existing: float, new: float) -> None:
        self.key = key
        self.existing = existing
        self.new = new
        super().__init__(
            f"Context key {key!r} already bound to {existing!r}; refusing to rebind to {new!r}",
            formula_key=key,
        )
