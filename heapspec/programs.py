"""Example programs over the command algebra.

array_max and increment_all are bounded: they recurse in Python while the
tree is being built, one level per Stepper demand. index_of uses Loop and
runs for as long as the needle has not been found.
"""

from __future__ import annotations

from heapspec.commands import (
    Command, Return, Bind, Read, Write, Loop, Again, Done, UNIT,
)


def array_max(i: int, acc: int) -> Command:
    """Largest of acc and the cells below address i, read in descending order."""
    if i == 0:
        return Return(acc)
    return Bind(Read(i - 1), lambda v: array_max(i - 1, max(v, acc)))


def increment_all(i: int) -> Command:
    """Add one to every cell below address i."""
    if i == 0:
        return Return(UNIT)
    return Bind(
        Read(i - 1),
        lambda v: Bind(Write(i - 1, v + 1), lambda _: increment_all(i - 1)),
    )


def index_of_body(needle: int):
    def probe(i: int) -> Command:
        return Bind(Read(i), lambda v: Return(Done(i) if v == needle else Again(i + 1)))
    return probe


def index_of(needle: int) -> Command:
    """Smallest address holding needle; does not terminate if there is none."""
    return Loop(0, index_of_body(needle))
