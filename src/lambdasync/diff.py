"""Name-keyed comparison of declared and current resources."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Generic, Protocol, TypeVar


class Named(Protocol):
    @property
    def name(self) -> str | None: ...


D = TypeVar("D", bound=Named)
C = TypeVar("C", bound=Named)


@dataclass
class DiffResult(Generic[D, C]):
    """Three-way partition of a declared/current comparison.

    missing: declared entries with no current entry of the same name.
    surplus: current entries with no declared entry of the same name, plus
        every current entry sharing a name with an earlier current entry.
    existing: the first current entry for each declared name.
    """

    missing: list[D] = field(default_factory=list)
    surplus: list[C] = field(default_factory=list)
    existing: list[C] = field(default_factory=list)


def compare(declared: Sequence[D], current: Sequence[C]) -> DiffResult[D, C]:
    """Partition ``declared`` and ``current`` by name.

    Duplicates are resolved by index: of several current entries sharing a
    declared name, the one at the lowest index in ``current`` is existing
    and the rest are surplus. Order within each partition follows the input
    order. Pure; neither input is modified.
    """
    declared_names = {d.name for d in declared}
    first_index: dict[str | None, int] = {}
    for index, entry in enumerate(current):
        first_index.setdefault(entry.name, index)

    result: DiffResult[D, C] = DiffResult()
    result.missing = [d for d in declared if d.name not in first_index]

    existing_indexes = []
    duplicate_indexes = []
    for index, entry in enumerate(current):
        if entry.name not in declared_names:
            result.surplus.append(entry)
        elif first_index[entry.name] == index:
            existing_indexes.append(index)
        else:
            duplicate_indexes.append(index)

    # Duplicates follow the undeclared surplus entries
    result.surplus.extend(current[i] for i in duplicate_indexes)
    result.existing = [current[i] for i in existing_indexes]
    return result
