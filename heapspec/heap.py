"""Heap store: a total map from natural addresses to natural values.

Absent addresses read as zero. A Heap is an immutable value: update()
returns a new heap and leaves the receiver untouched, so every heap the
Driver has produced stays a valid snapshot.
"""

from __future__ import annotations

from typing import Dict, Iterable, Iterator, Mapping, Optional, Tuple


def _check_nat(what: str, n: int) -> int:
    if isinstance(n, bool) or not isinstance(n, int):
        raise ValueError(f"heap {what} must be a natural number, got {n!r}")
    if n < 0:
        raise ValueError(f"heap {what} must be a natural number, got {n}")
    return n


class Heap:
    """Finite-support mapping ℕ → ℕ with zero default.

    Equality is extensional: two heaps are equal when every address reads
    the same value, so a cell explicitly holding 0 is the same as an absent
    one.
    """

    __slots__ = ("_cells", "_hash")

    def __init__(self, cells: Optional[Mapping[int, int]] = None):
        store: Dict[int, int] = {}
        for addr, value in (cells or {}).items():
            _check_nat("address", addr)
            _check_nat("value", value)
            if value:
                store[addr] = value
        self._cells = store
        self._hash: Optional[int] = None

    @classmethod
    def from_list(cls, values: Iterable[int]) -> Heap:
        """Heap holding values[i] at address i."""
        return cls({i: v for i, v in enumerate(values)})

    def lookup(self, addr: int) -> int:
        return self._cells.get(_check_nat("address", addr), 0)

    def update(self, addr: int, value: int) -> Heap:
        _check_nat("address", addr)
        _check_nat("value", value)
        new = Heap.__new__(Heap)
        cells = dict(self._cells)
        if value:
            cells[addr] = value
        else:
            cells.pop(addr, None)
        new._cells = cells
        new._hash = None
        return new

    def __getitem__(self, addr: int) -> int:
        return self.lookup(addr)

    def items(self) -> Iterator[Tuple[int, int]]:
        """Non-zero cells in address order."""
        return iter(sorted(self._cells.items()))

    def to_list(self, length: int) -> list[int]:
        return [self.lookup(i) for i in range(length)]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Heap):
            return NotImplemented
        return self._cells == other._cells

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash(frozenset(self._cells.items()))
        return self._hash

    def __repr__(self) -> str:
        body = ", ".join(f"{a}: {v}" for a, v in self.items())
        return f"Heap({{{body}}})"


EMPTY = Heap()


def lookup(heap: Heap, addr: int) -> int:
    return heap.lookup(addr)


def update(heap: Heap, addr: int, value: int) -> Heap:
    return heap.update(addr, value)
