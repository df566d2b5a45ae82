"""HeapSpec command algebra.

A command describes a heap-manipulating computation without running it:

    Return(r)          finished, with result r
    Bind(c, k)         run c, feed its result to k for the next command
    Read(a)            result is the value stored at address a
    Write(a, v)        store v at a, result is UNIT
    Loop(init, body)   body(acc) yields Again(next_acc) or Done(result)

Commands are immutable trees. The continuation of a Bind and the body of a
Loop are plain callables that are only invoked when the Stepper reaches
them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from heapspec.errors import MalformedCommandError, loop_outcome_error


class _Unit:
    """The result of a Write."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNIT"

    def __reduce__(self):
        return (_Unit, ())


UNIT = _Unit()


# ---------------------------------------------------------------------------
# Loop outcomes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LoopOutcome:
    value: Any


@dataclass(frozen=True)
class Again(LoopOutcome):
    """Continue looping with a new accumulator."""

    def __repr__(self) -> str:
        return f"Again({self.value!r})"


@dataclass(frozen=True)
class Done(LoopOutcome):
    """Leave the loop; the payload is the loop's result."""

    def __repr__(self) -> str:
        return f"Done({self.value!r})"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Command:
    pass


@dataclass(frozen=True)
class Return(Command):
    value: Any = UNIT


@dataclass(frozen=True)
class Bind(Command):
    first: Command
    then: Callable[[Any], Command]


@dataclass(frozen=True)
class Read(Command):
    addr: int


@dataclass(frozen=True)
class Write(Command):
    addr: int
    value: int


@dataclass(frozen=True)
class Loop(Command):
    init: Any
    body: Callable[[Any], Command]


# ---------------------------------------------------------------------------
# Combinators
# ---------------------------------------------------------------------------

def bind(first: Command, then: Callable[[Any], Command]) -> Command:
    return Bind(first, then)


def seq(first: Command, second: Command) -> Command:
    """Run first, discard its result, then run second."""
    return Bind(first, lambda _: second)


def fmap(command: Command, fn: Callable[[Any], Any]) -> Command:
    """Apply fn to the result of command."""
    return Bind(command, lambda r: Return(fn(r)))


def loop_continuation(body: Callable[[Any], Command]) -> Callable[[LoopOutcome], Command]:
    """The continuation one loop unrolling binds after body(acc).

    Again(a) re-enters the loop with accumulator a, Done(r) returns r.
    """
    def after(outcome: LoopOutcome) -> Command:
        if isinstance(outcome, Again):
            return Loop(outcome.value, body)
        if isinstance(outcome, Done):
            return Return(outcome.value)
        raise MalformedCommandError(loop_outcome_error(outcome))
    return after


def describe(command: Command, depth: int = 3) -> str:
    """Short rendering of a command, continuations shown as '...'."""
    if isinstance(command, Return):
        return f"Return({command.value!r})"
    if isinstance(command, Read):
        return f"Read({command.addr})"
    if isinstance(command, Write):
        return f"Write({command.addr}, {command.value})"
    if isinstance(command, Loop):
        return f"Loop({command.init!r}, ...)"
    if isinstance(command, Bind):
        if depth <= 0:
            return "Bind(..., ...)"
        return f"Bind({describe(command.first, depth - 1)}, ...)"
    return repr(command)


def same_shape(a: Command, b: Command) -> bool:
    """Structural equality up to continuation closures.

    Two Binds match when their first components match; two Loops match when
    their accumulators are equal. Closures are not compared.
    """
    while isinstance(a, Bind) and isinstance(b, Bind):
        a, b = a.first, b.first
    if type(a) is not type(b):
        return False
    if isinstance(a, Return):
        return a.value == b.value
    if isinstance(a, Read):
        return a.addr == b.addr
    if isinstance(a, Write):
        return a.addr == b.addr and a.value == b.value
    if isinstance(a, Loop):
        return a.init == b.init
    return False
