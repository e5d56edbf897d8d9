"""Read-through cache of the variable snapshot and formula registry.

The cache holds one immutable ``(VariableSnapshot, FormulaRegistry)``
pair.  A reload builds a new pair and swaps the reference, so a pair
already handed to a running evaluation is never modified.  The
persistence layer calls ``invalidate()`` after every write.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Iterable, Mapping, NamedTuple, Protocol

from costtrace.config import DEFAULT_CONFIG
from costtrace.logging import EventType, emit_info
from costtrace.models import Formula, Variable
from costtrace.registry import FormulaRegistry
from costtrace.snapshot import VariableSnapshot


class SnapshotLoader(Protocol):
    """The persistence collaborator, read-only from the engine's side."""

    def load_variables(self) -> Iterable[Variable | Mapping[str, Any]]: ...

    def load_formulas(self) -> Iterable[Formula | Mapping[str, Any]]: ...


class _Entry(NamedTuple):
    snapshot: VariableSnapshot
    registry: FormulaRegistry
    loaded_at: float


class SnapshotCache:
    """Lazily loaded, TTL-bounded snapshot/registry pair.

    Args:
        loader: Object providing ``load_variables()`` and ``load_formulas()``.
        ttl_seconds: Seconds an entry stays fresh.  ``None`` keeps it until
            ``invalidate()``; ``0`` reloads on every ``get()``.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        loader: SnapshotLoader,
        *,
        ttl_seconds: float | None = DEFAULT_CONFIG["cache_ttl_seconds"],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._entry: _Entry | None = None
        self._lock = threading.Lock()
        self.loads = 0

    @classmethod
    def from_config(
        cls, loader: SnapshotLoader, config: Mapping[str, Any]
    ) -> SnapshotCache:
        """Build a cache using ``cache_ttl_seconds`` from *config*."""
        return cls(loader, ttl_seconds=config["cache_ttl_seconds"])

    def _fresh(self, entry: _Entry | None) -> bool:
        if entry is None:
            return False
        if self._ttl is None:
            return True
        return self._clock() - entry.loaded_at < self._ttl

    def get(self) -> tuple[VariableSnapshot, FormulaRegistry]:
        """Return the current pair, reloading it if stale or invalidated."""
        entry = self._entry
        if not self._fresh(entry):
            with self._lock:
                entry = self._entry
                if not self._fresh(entry):
                    entry = self._load()
                    self._entry = entry
        return entry.snapshot, entry.registry

    def invalidate(self) -> None:
        """Drop the cached pair; the next ``get()`` reloads."""
        with self._lock:
            self._entry = None
        emit_info(EventType.cache_invalidated, "Snapshot cache invalidated")

    def _load(self) -> _Entry:
        snapshot = VariableSnapshot.from_records(self._loader.load_variables())
        registry = FormulaRegistry.from_records(self._loader.load_formulas())
        self.loads += 1
        emit_info(
            EventType.cache_refreshed,
            "Snapshot cache refreshed",
            {
                "variables": len(snapshot),
                "formulas": len(registry),
                "parse_errors": sorted(registry.parse_errors()),
            },
        )
        return _Entry(snapshot, registry, self._clock())
