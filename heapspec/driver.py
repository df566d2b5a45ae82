"""HeapSpec Driver — fuel-bounded iteration of the Stepper.

Every Stepper call costs one unit of fuel, including the administrative step
that hands a finished Bind component to its continuation. Running out of fuel
is not a failure: the last configuration comes back as Suspended and can be
resumed with more fuel.
"""

from __future__ import annotations

import logging
from typing import Iterator, Optional

from heapspec.commands import Command, describe
from heapspec.config import get_config
from heapspec.heap import Heap
from heapspec.stepper import Answer, Suspended, StepResult, step

logger = logging.getLogger(__name__)


def _check_fuel(fuel: int) -> int:
    if fuel < 0:
        raise ValueError(f"fuel must be non-negative, got {fuel}")
    return fuel


def trace(command: Command, heap: Heap, fuel: int) -> Iterator[StepResult]:
    """Yield the result of each Stepper call, at most fuel of them.

    The last item is an Answer if the command finished within fuel.
    """
    _check_fuel(fuel)
    while fuel > 0:
        result = step(command, heap)
        fuel -= 1
        yield result
        if isinstance(result, Answer):
            return
        heap, command = result.heap, result.next


def run(command: Command, heap: Heap, fuel: int) -> StepResult:
    """Step command from heap until it answers or fuel runs out."""
    _check_fuel(fuel)
    remaining = fuel
    while remaining > 0:
        result = step(command, heap)
        remaining -= 1
        if isinstance(result, Answer):
            return result
        heap, command = result.heap, result.next
    logger.debug("fuel %d exhausted at %s", fuel, describe(command))
    return Suspended(heap, command)


def drive(command: Command, heap: Heap, fuel: Optional[int] = None) -> StepResult:
    """run() with the configured default fuel."""
    if fuel is None:
        fuel = get_config().default_fuel
    return run(command, heap, fuel)


def resume(suspended: Suspended, fuel: int) -> StepResult:
    """Continue a suspended run with more fuel."""
    return run(suspended.next, suspended.heap, fuel)


def steps_to_answer(command: Command, heap: Heap, fuel: int) -> Optional[int]:
    """Number of Stepper calls before command answers, None if fuel runs out."""
    taken = 0
    for result in trace(command, heap, fuel):
        taken += 1
        if isinstance(result, Answer):
            return taken
    return None
