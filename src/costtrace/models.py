"""Immutable records for pricing variables and named formulas."""

from __future__ import annotations

import re
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from costtrace.formulas.parser import derive_references

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _check_identifier(value: str) -> str:
    if not IDENTIFIER_RE.match(value):
        raise ValueError(f"{value!r} is not a valid identifier")
    return value


class Variable(BaseModel):
    """A named numeric input."""

    model_config = ConfigDict(frozen=True)

    key: str
    value: float
    category: str = "general"
    active: bool = True
    name: str | None = None
    unit: str | None = None
    description: str | None = None

    @field_validator("key")
    @classmethod
    def check_key(cls, value: str) -> str:
        return _check_identifier(value)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> Variable:
        """Build a Variable from a persistence-layer row.

        Accepts both the engine's field names and the stored column names
        (``variable_key``, ``variable_value``, ``variable_name``, ``is_active``).
        """
        return cls(
            key=record.get("key", record.get("variable_key")),
            value=record.get("value", record.get("variable_value")),
            category=record.get("category") or "general",
            active=record.get("active", record.get("is_active", True)),
            name=record.get("name", record.get("variable_name")),
            unit=record.get("unit"),
            description=record.get("description"),
        )


class Formula(BaseModel):
    """A named arithmetic expression.

    ``references`` lists the identifiers the expression may use.  When it is
    not supplied it is derived from the expression by the tokenizer, so a
    formula built with a new expression always carries fresh references.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    name: str = ""
    expression: str
    references: tuple[str, ...] = ()
    category: str = "general"
    active: bool = True
    description: str | None = None
    result_unit: str | None = None

    @field_validator("key")
    @classmethod
    def check_key(cls, value: str) -> str:
        return _check_identifier(value)

    @model_validator(mode="before")
    @classmethod
    def fill_references(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("references") is None:
            data = dict(data)
            data["references"] = tuple(derive_references(data.get("expression") or ""))
        return data

    @property
    def display_name(self) -> str:
        return self.name or self.key

    def model_copy(
        self, *, update: Mapping[str, Any] | None = None, deep: bool = False
    ) -> Formula:
        """Copy, validating *update* like a new Formula.

        A new ``expression`` without explicit ``references`` re-derives them.
        """
        if not update:
            return super().model_copy(deep=deep)
        data = {**self.model_dump(), **update}
        if "expression" in update and "references" not in update:
            data["references"] = None
        return type(self).model_validate(data)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> Formula:
        """Build a Formula from a persistence-layer row.

        Stored reference lists (``variables_used``) are ignored and the
        references are recomputed from the expression text.
        """
        return cls(
            key=record.get("key", record.get("formula_key")),
            name=record.get("name", record.get("formula_name")) or "",
            expression=record.get("expression", record.get("formula_expression")),
            category=record.get("category") or "general",
            active=record.get("active", record.get("is_active", True)),
            description=record.get("description"),
            result_unit=record.get("result_unit"),
        )
