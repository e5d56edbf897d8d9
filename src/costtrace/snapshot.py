"""Immutable snapshot of variable values for one evaluation run."""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping

from costtrace.models import Variable


class VariableSnapshot(Mapping[str, float]):
    """Read-only mapping of variable key -> value.

    Derived snapshots (``with_overrides``, ``with_defaults``) are new
    objects; an existing snapshot never changes after construction, so it
    is safe to hand the same instance to concurrent runs.
    """

    def __init__(
        self,
        values: Mapping[str, float] | None = None,
        variables: Mapping[str, Variable] | None = None,
    ) -> None:
        self._values = MappingProxyType({k: float(v) for k, v in (values or {}).items()})
        self._variables = MappingProxyType(dict(variables or {}))

    @classmethod
    def from_variables(cls, variables: Iterable[Variable]) -> VariableSnapshot:
        """Build a snapshot from Variable records, skipping inactive ones.

        Raises:
            ValueError: If two active variables share a key.
        """
        by_key: dict[str, Variable] = {}
        for var in variables:
            if not var.active:
                continue
            if var.key in by_key:
                raise ValueError(f"Duplicate variable key: {var.key!r}")
            by_key[var.key] = var
        return cls({k: v.value for k, v in by_key.items()}, by_key)

    @classmethod
    def from_records(
        cls, records: Iterable[Variable | Mapping[str, Any]]
    ) -> VariableSnapshot:
        """Build a snapshot from persistence rows or Variable objects."""
        return cls.from_variables(
            r if isinstance(r, Variable) else Variable.from_record(r) for r in records
        )

    def __getitem__(self, key: str) -> float:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"VariableSnapshot({dict(self._values)!r})"

    def variable(self, key: str) -> Variable | None:
        """Return the full Variable record for *key*, if it came from one."""
        return self._variables.get(key)

    def categories(self) -> dict[str, list[str]]:
        """Group variable keys by category."""
        grouped: dict[str, list[str]] = {}
        for key in self._values:
            var = self._variables.get(key)
            grouped.setdefault(var.category if var else "input", []).append(key)
        return grouped

    def with_overrides(self, values: Mapping[str, float]) -> VariableSnapshot:
        """Return a new snapshot where *values* replace or extend this one."""
        merged = dict(self._values)
        merged.update(values)
        return VariableSnapshot(merged, self._variables)

    def with_defaults(self, values: Mapping[str, float]) -> VariableSnapshot:
        """Return a new snapshot that adds *values* only for missing keys."""
        merged = dict(values)
        merged.update(self._values)
        return VariableSnapshot(merged, self._variables)
