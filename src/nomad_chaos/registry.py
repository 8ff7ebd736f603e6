"""Capability registry — name to action/assertion lookup."""

from __future__ import annotations

import threading
from typing import Generic, Protocol, TypeVar

from nomad_chaos.errors import AlreadyRegisteredError, NotFoundError


class Named(Protocol):
    @property
    def name(self) -> str: ...


C = TypeVar("C", bound=Named)


class Registry(Generic[C]):
    """Thread-safe registry of capabilities keyed by their unique name.

    Entries are never removed; a registry lives as long as the runner or
    CLI invocation that built it.
    """

    def __init__(self, kind: str = "capability") -> None:
        self.kind = kind
        self._items: dict[str, C] = {}
        self._lock = threading.RLock()

    def register(self, capability: C) -> None:
        """Register a capability. Raises AlreadyRegisteredError on a name clash."""
        name = capability.name
        with self._lock:
            if name in self._items:
                raise AlreadyRegisteredError(self.kind, name)
            self._items[name] = capability

    def get(self, name: str) -> C:
        """Look up a capability. Raises NotFoundError when absent."""
        with self._lock:
            try:
                return self._items[name]
            except KeyError:
                raise NotFoundError(f"{self.kind} '{name}' not found") from None

    def list(self) -> list[str]:
        """All registered names in lexicographic order."""
        with self._lock:
            return sorted(self._items)

    def all(self) -> list[C]:
        with self._lock:
            return list(self._items.values())

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
