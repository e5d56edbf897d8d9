"""Append-only numeric environment for one pipeline run."""

from __future__ import annotations

from typing import Iterable, Iterator, Mapping

from costtrace.formulas.errors import DuplicateBindingError


class EvaluationContext(Mapping[str, float]):
    """Variables plus formula results computed so far in a run.

    Seeded from a variable snapshot.  Each key may be bound exactly once;
    a second ``bind`` for the same key raises ``DuplicateBindingError``
    instead of overwriting.  Keys bound with ``degraded=True`` hold a
    substitute value (zero) for a result that failed or was not finite.
    Keys bound with ``failed=True`` stand in for a formula that could not
    be evaluated at all; they are also degraded.
    """

    def __init__(self, seed: Mapping[str, float] | None = None) -> None:
        self._values: dict[str, float] = dict(seed or {})
        self._computed: dict[str, None] = {}
        self._degraded: set[str] = set()
        self._failed: set[str] = set()

    def __getitem__(self, key: str) -> float:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def bind(
        self, key: str, value: float, *, degraded: bool = False, failed: bool = False
    ) -> None:
        if key in self._values:
            raise DuplicateBindingError(key, self._values[key], value)
        self._values[key] = value
        self._computed[key] = None
        if degraded or failed:
            self._degraded.add(key)
        if failed:
            self._failed.add(key)

    def is_computed(self, key: str) -> bool:
        """True if *key* was bound during the run rather than seeded."""
        return key in self._computed

    def computed_keys(self) -> list[str]:
        """Keys bound during the run, in binding order."""
        return list(self._computed)

    def is_degraded(self, key: str) -> bool:
        return key in self._degraded

    def is_failed(self, key: str) -> bool:
        """True if *key* holds the substitute for a formula that failed."""
        return key in self._failed

    def restrict(self, keys: Iterable[str]) -> dict[str, float]:
        """Sub-mapping of the bound *keys*, in the order given."""
        return {k: self._values[k] for k in keys if k in self._values}
