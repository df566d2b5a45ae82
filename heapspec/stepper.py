"""HeapSpec Stepper — one unit of observable progress.

    step(Return(r), h)      = Answer(r, h)
    step(Read(a), h)        = Answer(h[a], h)
    step(Write(a, v), h)    = Suspended(h[a := v], Return(UNIT))
    step(Loop(i, body), h)  = Suspended(h, Bind(body(i), after))
                                where after(Again(a)) = Loop(a, body)
                                      after(Done(r))  = Return(r)
    step(Bind(c, k), h)     = Suspended(h', Bind(c', k))   if step(c, h) = Suspended(h', c')
                            = Suspended(h, k(r))           if step(c, h) = Answer(r, h)

Resolving a Bind whose first component has answered is itself a step: it
yields Suspended, never a further Answer. A Loop is unrolled exactly once per
step, so running a loop never grows the native call stack. Nested Binds are
walked with an explicit list of pending continuations for the same reason.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, List, Union

from heapspec.commands import (
    Command, Return, Bind, Read, Write, Loop, UNIT, loop_continuation,
)
from heapspec.errors import MalformedCommandError, command_error
from heapspec.heap import Heap


@dataclass(frozen=True)
class Answer:
    """The command finished with value in heap."""
    value: Any
    heap: Heap


@dataclass(frozen=True)
class Suspended:
    """More steps are needed: resume with next in heap."""
    heap: Heap
    next: Command


StepResult = Union[Answer, Suspended]


def _expect_command(value: Any) -> Command:
    if not isinstance(value, Command):
        raise MalformedCommandError(command_error(value))
    return value


def _step_leaf(command: Command, heap: Heap) -> StepResult:
    if isinstance(command, Return):
        return Answer(command.value, heap)
    if isinstance(command, Read):
        return Answer(heap.lookup(command.addr), heap)
    if isinstance(command, Write):
        return Suspended(heap.update(command.addr, command.value), Return(UNIT))
    if isinstance(command, Loop):
        body = _expect_command(command.body(command.init))
        return Suspended(heap, Bind(body, loop_continuation(command.body)))
    raise MalformedCommandError(command_error(command))


def step(command: Command, heap: Heap) -> StepResult:
    """Perform exactly one primitive action of command on heap."""
    pending: List[Callable[[Any], Command]] = []
    current = _expect_command(command)
    while isinstance(current, Bind):
        pending.append(current.then)
        current = _expect_command(current.first)

    result = _step_leaf(current, heap)
    if not pending:
        return result

    innermost = pending.pop()
    if isinstance(result, Answer):
        resumed = _expect_command(innermost(result.value))
    else:
        resumed = Bind(result.next, innermost)
    while pending:
        resumed = Bind(resumed, pending.pop())
    return Suspended(result.heap, resumed)
