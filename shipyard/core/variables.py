"""Write-once run variables.

Stage outputs become named variables visible to every stage started
afterwards.  A name, once set, is immutable for the rest of the run, so a
later stage cannot silently override an earlier stage's recorded output.

Writes take a lock so parallel stages publishing outputs see a consistent
check-and-set, and ``update`` is all-or-nothing: if any name is already
set, none of the batch is written.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping

from shipyard.errors import VariableAlreadySetError


class RunVariables(Mapping[str, str]):
    """A run-scoped mapping where every key may be written exactly once."""

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._values: dict[str, str] = {}
        self._lock = threading.Lock()
        if initial:
            self.update(initial)

    def set(self, name: str, value: str) -> None:
        """Record *value* under *name*; raise if *name* is already set."""
        self.update({name: value})

    def update(self, values: Mapping[str, str]) -> None:
        with self._lock:
            for name in values:
                if name in self._values:
                    raise VariableAlreadySetError(
                        f"Variable {name!r} is already set to {self._values[name]!r}"
                    )
            for name, value in values.items():
                self._values[name] = str(value)

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self._values)

    def __getitem__(self, name: str) -> str:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"RunVariables({self.snapshot()!r})"
