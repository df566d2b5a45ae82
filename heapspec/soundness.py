"""HeapSpec Soundness — derivations constrain what the Driver actually does.

Claim: if d ⊢ {P} c {Q} and P(h), then every configuration reachable by
iterating the Stepper from (c, h) is either not yet terminal, or is an
Answer(r, h') with Q(r, h').

The argument is a reachability invariant, not an induction on program size,
because a Loop may be unrolled any number of times:

    SAFE(c, h)  :=  there is a derivation d' ⊢ {P'} c {Q'}
                    with P'(h) and Q' ⇒ Q

SAFE(c, h) holds initially with d' = d. One Stepper application preserves
it; the derivation for the next command is found by inversion on d',
splitting on the same cases as the Stepper:

    consequence   invert the inner derivation, keep the outer postcondition
    return/read   the command answers; d'.post holds on the answer
    write         next is Return(UNIT); the heap before the write witnesses
                  the existential in the write postcondition
    bind          first answered r:   next is k(r) under the premise at r
                  first suspended:    rebuild the Bind around the new first
    loop          next is one unrolling, proved by the body premise and the
                  loop rule again; the invariant is the one carried between
                  iterations

Every postcondition produced by inversion is the original one (or entails
it by a recorded consequence), so at an Answer the chain ends in Q.

SoundnessMonitor runs this argument along an actual execution: it steps the
command with the real Stepper, inverts the derivation alongside, and checks
the invariant on each configuration it reaches. A failure means the
derivation was unsound (an instance obligation that does not hold); it is
never a runtime error of the Driver.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional, Set, Union

import z3

from heapspec.commands import (
    Command, Return, Bind, Read, Write, Loop, UNIT, describe, same_shape,
    loop_continuation,
)
from heapspec.config import get_config
from heapspec.errors import (
    RuleMismatchError, SoundnessViolation, mismatch_error, soundness_error,
)
from heapspec.heap import Heap
from heapspec.hoare import (
    Derivation, ReturnDerivation, ReadDerivation, WriteDerivation,
    BindDerivation, ConsequenceDerivation, LoopDerivation,
    return_rule, bind_rule, _admitted_consequence,
)
from heapspec.logic import Obligation, Post, conj, heap_term, holds_on, post_holds_on
from heapspec.stepper import Answer, step

logger = logging.getLogger(__name__)


@dataclass
class Configuration:
    """A reachable (command, heap) pair with the derivation that keeps it safe."""
    command: Command
    heap: Heap
    derivation: Derivation
    step: int = 0


@dataclass
class SoundnessReport:
    status: str                          # "proved" | "out_of_fuel" | "vacuous"
    steps: int
    value: Any = None
    heap: Optional[Heap] = None
    obligations: List[Obligation] = field(default_factory=list)
    rules: List[str] = field(default_factory=list)

    @property
    def answered(self) -> bool:
        return self.status == "proved"

    def summary(self) -> str:
        discharged = sum(1 for ob in self.obligations if ob.status == "proved")
        admitted = sum(1 for ob in self.obligations if ob.status == "lemma")
        return (f"{self.status} after {self.steps} steps: "
                f"{discharged} obligations discharged, {admitted} by lemma")


@dataclass
class _Answered:
    value: Any
    heap: Heap


@dataclass
class _Stepped:
    heap: Heap
    derivation: Derivation


class SoundnessMonitor:
    """Drives a command with the Stepper while carrying its derivation."""

    def __init__(
        self,
        derivation: Derivation,
        heap: Heap,
        goal: Optional[Post] = None,
        command: Optional[Command] = None,
    ):
        if command is None:
            command = derivation.command
        elif not same_shape(command, derivation.command):
            raise RuleMismatchError(mismatch_error(
                derivation.rule, describe(command), describe(derivation.command)))
        self.goal = goal if goal is not None else derivation.post
        self.current = Configuration(command, heap, derivation, 0)
        self.obligations: List[Obligation] = []
        self.rules: List[str] = []
        self._seen: Set[int] = set()
        self._collect(derivation)

    # -- bookkeeping ----------------------------------------------------------

    def _collect(self, derivation: Derivation) -> None:
        for ob in derivation.all_obligations():
            if id(ob) not in self._seen:
                self._seen.add(id(ob))
                self.obligations.append(ob)
        for name in derivation.rules():
            if name not in self.rules:
                self.rules.append(name)

    def _violation(self, message: str, rule: Optional[str] = None) -> SoundnessViolation:
        c = self.current
        return SoundnessViolation(soundness_error(message, c.step, describe(c.command), rule))

    # -- the invariant --------------------------------------------------------

    def precondition_holds(self) -> bool:
        return holds_on(self.current.derivation.pre, self.current.heap)

    def _check_post(self, post: Post, value: Any, heap: Heap, rule: str) -> None:
        if not post_holds_on(post, value, heap):
            raise self._violation(f"postcondition fails on answer {value!r}", rule)

    def _invert(self, d: Derivation, command: Command, heap: Heap) -> Union[_Answered, _Stepped]:
        if isinstance(d, ConsequenceDerivation):
            res = self._invert(d.inner, command, heap)
            if isinstance(res, _Answered):
                self._check_post(d.post, res.value, res.heap, d.rule)
                return res
            return _Stepped(res.heap, _admitted_consequence(res.derivation, d.post, "step"))

        if isinstance(d, ReturnDerivation):
            if not isinstance(command, Return):
                raise self._violation("return derivation on a non-Return command", d.rule)
            self._check_post(d.post, command.value, heap, d.rule)
            return _Answered(command.value, heap)

        if isinstance(d, ReadDerivation):
            if not isinstance(command, Read):
                raise self._violation("read derivation on a non-Read command", d.rule)
            value = heap.lookup(command.addr)
            self._check_post(d.post, value, heap, d.rule)
            return _Answered(value, heap)

        if isinstance(d, WriteDerivation):
            if not isinstance(command, Write):
                raise self._violation("write derivation on a non-Write command", d.rule)
            # the heap before the write is the witness for d.post's existential
            before = heap_term(heap)
            witnessed = lambda h: conj(d.pre(before),
                                       h == z3.Store(before, command.addr, command.value))
            after = _admitted_consequence(return_rule(witnessed, UNIT), d.post, "write-witness")
            return _Stepped(heap.update(command.addr, command.value), after)

        if isinstance(d, BindDerivation):
            if not isinstance(command, Bind):
                raise self._violation("bind derivation on a non-Bind command", d.rule)
            res = self._invert(d.first, command.first, heap)
            if isinstance(res, _Answered):
                cont = command.then(res.value)
                return _Stepped(res.heap, d.instantiate(res.value, cont))
            first = res.derivation
            rebuilt = bind_rule(first, d.then, d.post,
                                command=Bind(first.command, command.then), sort=d.sort)
            return _Stepped(res.heap, rebuilt)

        if isinstance(d, LoopDerivation):
            if not isinstance(command, Loop):
                raise self._violation("loop derivation on a non-Loop command", d.rule)
            unrolled = Bind(command.body(command.init), loop_continuation(command.body))
            return _Stepped(heap, d.unroll(unrolled))

        raise self._violation(f"unknown derivation {d!r}")

    # -- driving --------------------------------------------------------------

    def advance(self) -> Union[Configuration, Answer]:
        """One Stepper application with the invariant re-established."""
        c = self.current
        result = step(c.command, c.heap)
        inverted = self._invert(c.derivation, c.command, c.heap)

        if isinstance(result, Answer):
            if not isinstance(inverted, _Answered):
                raise self._violation("stepper answered but the derivation expects more steps")
            if inverted.value != result.value or inverted.heap != result.heap:
                raise self._violation(f"stepper answered {result.value!r}, "
                                      f"derivation predicts {inverted.value!r}")
            self._check_post(self.goal, result.value, result.heap, "goal")
            return result

        if not isinstance(inverted, _Stepped):
            raise self._violation("stepper suspended but the derivation expects an answer")
        nd = inverted.derivation
        if inverted.heap != result.heap:
            raise self._violation("derivation predicts a different heap")
        if not same_shape(result.next, nd.command):
            raise self._violation(f"derivation is about {describe(nd.command)}, "
                                  f"stepper reached {describe(result.next)}", nd.rule)
        self.current = Configuration(result.next, result.heap, nd, c.step + 1)
        if not holds_on(nd.pre, result.heap):
            raise self._violation("precondition of the next configuration does not hold", nd.rule)
        self._collect(nd)
        logger.debug("step %d: %s under %s", self.current.step,
                     describe(result.next), nd.rule)
        return self.current


def explore(
    derivation: Derivation,
    heap: Heap,
    fuel: int,
    command: Optional[Command] = None,
) -> Iterator[Union[Configuration, Answer]]:
    """Yield every configuration reached, the initial one first.

    Ends with the Answer if the command finishes within fuel.
    """
    if fuel < 0:
        raise ValueError(f"fuel must be non-negative, got {fuel}")
    monitor = SoundnessMonitor(derivation, heap, command=command)
    yield monitor.current
    for _ in range(fuel):
        reached = monitor.advance()
        yield reached
        if isinstance(reached, Answer):
            return


def check_soundness(
    derivation: Derivation,
    heap: Heap,
    fuel: Optional[int] = None,
    goal: Optional[Post] = None,
    command: Optional[Command] = None,
) -> SoundnessReport:
    """Run command from heap, checking SAFE at every step.

    command defaults to derivation.command; when given it must have the
    shape the derivation is about. goal defaults to the derivation's
    postcondition.

    If the precondition does not hold on heap the triple says nothing and
    the report is "vacuous". Raises SoundnessViolation if the invariant is
    lost, and ProofObligationError if an instance premise fails its
    entailment.
    """
    if fuel is None:
        fuel = get_config().default_fuel
    if fuel < 0:
        raise ValueError(f"fuel must be non-negative, got {fuel}")

    monitor = SoundnessMonitor(derivation, heap, goal, command)
    if not monitor.precondition_holds():
        return SoundnessReport("vacuous", 0, heap=heap,
                               obligations=monitor.obligations, rules=monitor.rules)

    for taken in range(1, fuel + 1):
        reached = monitor.advance()
        if isinstance(reached, Answer):
            report = SoundnessReport("proved", taken, reached.value, reached.heap,
                                     monitor.obligations, monitor.rules)
            logger.debug("%s", report.summary())
            return report

    return SoundnessReport("out_of_fuel", fuel, heap=monitor.current.heap,
                           obligations=monitor.obligations, rules=monitor.rules)
