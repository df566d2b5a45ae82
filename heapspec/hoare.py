"""HeapSpec Specification Logic — derivations of Hoare triples over commands.

A TRIPLE {P} c {Q} asserts: from any heap satisfying P, c either runs forever
or answers r in a heap h with Q(r, h). Triples are concluded by derivations,
built with one function per rule:

    return_rule(P, v)            {P} Return(v) {λr h. P(h) ∧ r = v}
    read_rule(P, a)              {P} Read(a) {λr h. P(h) ∧ r = h[a]}
    write_rule(P, a, v)          {P} Write(a, v) {λ_ h. ∃h'. P(h') ∧ h = h'[a := v]}
    bind_rule(d1, k, Q)          d1 ⊢ {P} c1 {R},  ∀r. k(r) ⊢ {R(r)} c2(r) {Q}
                                 ─────────────────────────────────────────────
                                 {P} Bind(c1, c2) {Q}
    consequence(d, P', Q')       P' ⇒ P,  d ⊢ {P} c {Q},  Q ⇒ Q'
                                 ─────────────────────────────────
                                 {P'} c {Q'}
    loop_rule(I, init, body, k)  ∀a. k(a) ⊢ {I(Again a)} body(a) {I}
                                 ─────────────────────────────────────────────
                                 {I(Again init)} Loop(init, body) {λr h. I(Done r, h)}

The premises of Bind and Loop quantify over every result and every
accumulator. They are Python functions from a value to a derivation and are
instantiated on demand: each instance is checked to be about the command the
continuation actually produces, and its pre/postconditions are related to
the rule's by z3 entailments. Consequence obligations are discharged with z3
when the derivation is built.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import z3

from heapspec.commands import (
    Command, Return, Bind, Read, Write, Loop, Again, Done, describe, same_shape,
    loop_continuation,
)
from heapspec.config import get_config
from heapspec.errors import (
    RuleMismatchError, MalformedCommandError, mismatch_error, loop_outcome_error,
)
from heapspec.logic import (
    Assertion, Post, LoopInvariant, Obligation, INT, OUTCOME,
    conj, equals, fresh_heap, sort_of, entails, entails_post, admit,
)

logger = logging.getLogger(__name__)


@dataclass
class Triple:
    pre: Assertion
    command: Command
    post: Post

    def __str__(self) -> str:
        return f"{{P}} {describe(self.command)} {{Q}}"


class Derivation:
    """A proof tree concluding a Triple.

    sort is the z3 sort of the command's result, used when a postcondition
    is quantified over results.
    """

    rule = "?"

    def __init__(
        self,
        triple: Triple,
        sort: z3.SortRef,
        premises: Optional[List[Derivation]] = None,
        obligations: Optional[List[Obligation]] = None,
    ):
        self.triple = triple
        self.sort = sort
        self.premises: List[Derivation] = premises or []
        self.obligations: List[Obligation] = obligations or []

    @property
    def pre(self) -> Assertion:
        return self.triple.pre

    @property
    def post(self) -> Post:
        return self.triple.post

    @property
    def command(self) -> Command:
        return self.triple.command

    def rules(self) -> List[str]:
        """Rule names of this derivation and its materialized premises."""
        names = [self.rule]
        for p in self.premises:
            names.extend(p.rules())
        return names

    def all_obligations(self) -> List[Obligation]:
        obs = list(self.obligations)
        for p in self.premises:
            obs.extend(p.all_obligations())
        return obs

    def __repr__(self) -> str:
        return f"<{self.rule} {self.triple}>"


class ReturnDerivation(Derivation):
    rule = "return"

    def __init__(self, triple: Triple, value: Any):
        super().__init__(triple, sort_of(value))
        self.value = value


class ReadDerivation(Derivation):
    rule = "read"

    def __init__(self, triple: Triple, addr: int):
        super().__init__(triple, INT)
        self.addr = addr


class WriteDerivation(Derivation):
    rule = "write"

    def __init__(self, triple: Triple, addr: int, value: int):
        super().__init__(triple, INT)
        self.addr = addr
        self.value = value


class ConsequenceDerivation(Derivation):
    rule = "consequence"

    def __init__(self, triple: Triple, inner: Derivation, obligations: List[Obligation]):
        super().__init__(triple, inner.sort, [inner], obligations)
        self.inner = inner


def _instance_key(value: Any) -> Any:
    try:
        hash(value)
    except TypeError:
        return None
    return (type(value), value)


def _expect_derivation(rule: str, value: Any) -> Derivation:
    if not isinstance(value, Derivation):
        raise RuleMismatchError(mismatch_error(rule, "a derivation", repr(value)))
    return value


class BindDerivation(Derivation):
    rule = "bind"

    def __init__(
        self,
        triple: Triple,
        first: Derivation,
        then: Callable[[Any], Derivation],
        sort: z3.SortRef,
    ):
        super().__init__(triple, sort, [first])
        self.first = first
        self.then = then
        self._instances: Dict[Any, Derivation] = {}

    def instantiate(self, value: Any, command: Optional[Command] = None) -> Derivation:
        """The continuation premise at result value.

        Checks that it is about the command the continuation yields and
        that {R(value)} ... {Q} is what it concludes.
        """
        key = _instance_key(value)
        if key is not None and key in self._instances:
            d = self._instances[key]
        else:
            d = _expect_derivation(self.rule, self.then(value))
            expected = self.command.then(value)
            if not same_shape(expected, d.command):
                raise RuleMismatchError(
                    mismatch_error(self.rule, describe(expected), describe(d.command)))
            if get_config().check_instances:
                self.obligations.append(entails(
                    lambda h: self.first.post(value, h), d.pre,
                    f"continuation-pre[{value!r}]", self.rule))
                self.obligations.append(entails_post(
                    d.post, self.post, self.sort,
                    f"continuation-post[{value!r}]", self.rule))
            self.premises.append(d)
            if key is not None:
                self._instances[key] = d

        if command is not None and not same_shape(command, d.command):
            raise RuleMismatchError(
                mismatch_error(self.rule, describe(command), describe(d.command)))
        return d


class LoopDerivation(Derivation):
    rule = "loop"

    def __init__(
        self,
        triple: Triple,
        invariant: LoopInvariant,
        init: Any,
        body: Callable[[Any], Command],
        body_proof: Callable[[Any], Derivation],
        sort: z3.SortRef,
    ):
        super().__init__(triple, sort)
        self.invariant = invariant
        self.init = init
        self.body = body
        self.body_proof = body_proof

    def body_instance(self, acc: Any) -> Derivation:
        """The body premise {I(Again acc)} body(acc) {I}."""
        d = _expect_derivation(self.rule, self.body_proof(acc))
        expected = self.body(acc)
        if not same_shape(expected, d.command):
            raise RuleMismatchError(
                mismatch_error(self.rule, describe(expected), describe(d.command)))
        if get_config().check_instances:
            self.obligations.append(entails(
                self.invariant.again(acc), d.pre, f"body-pre[{acc!r}]", self.rule))
            self.obligations.append(entails_post(
                d.post, self.invariant, OUTCOME, f"body-post[{acc!r}]", self.rule))
        self.premises.append(d)
        return d

    def unroll(self, command: Optional[Command] = None) -> BindDerivation:
        """Derivation for the command one Loop step produces.

        Loop(init, body) steps to Bind(body(init), after); the body premise
        proves the first half, and after(Again a) is proved by the loop rule
        again while after(Done r) is a Return whose precondition is I(Done r).
        """
        first = self.body_instance(self.init)
        invariant = self.invariant

        def rest(outcome: Any) -> Derivation:
            if isinstance(outcome, Again):
                return loop_rule(invariant, outcome.value, self.body, self.body_proof,
                                 sort=self.sort)
            if isinstance(outcome, Done):
                at_exit = lambda h: invariant(outcome, h)
                return _admitted_consequence(return_rule(at_exit, outcome.value),
                                            self.post, "loop-exit")
            raise MalformedCommandError(loop_outcome_error(outcome))

        if command is None:
            command = Bind(first.command, loop_continuation(self.body))
        return bind_rule(first, rest, self.post, command=command, sort=self.sort)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def _attach(rule: str, expected: Command, given: Optional[Command]) -> Command:
    if given is None:
        return expected
    if not same_shape(expected, given):
        raise RuleMismatchError(mismatch_error(rule, describe(expected), describe(given)))
    return given


def return_rule(pre: Assertion, value: Any, command: Optional[Command] = None) -> ReturnDerivation:
    command = _attach("return", Return(value), command)

    def post(r: Any, h: Any) -> Any:
        return conj(pre(h), equals(r, value))

    return ReturnDerivation(Triple(pre, command, post), value)


def read_rule(pre: Assertion, addr: int, command: Optional[Command] = None) -> ReadDerivation:
    command = _attach("read", Read(addr), command)

    def post(r: Any, h: Any) -> Any:
        return conj(pre(h), equals(r, h[addr]))

    return ReadDerivation(Triple(pre, command, post), addr)


def write_rule(
    pre: Assertion, addr: int, value: int, command: Optional[Command] = None,
) -> WriteDerivation:
    command = _attach("write", Write(addr, value), command)

    def post(r: Any, h: Any) -> Any:
        before = fresh_heap("before")
        return z3.Exists([before], conj(pre(before), h == z3.Store(before, addr, value)))

    return WriteDerivation(Triple(pre, command, post), addr, value)


def bind_rule(
    first: Derivation,
    then: Callable[[Any], Derivation],
    post: Post,
    command: Optional[Command] = None,
    sort: z3.SortRef = INT,
) -> BindDerivation:
    """Sequence first with the continuation family then.

    post is the postcondition every then(r) must conclude; sort is the sort
    of the Bind's result. Without an explicit command, the Bind is the one
    whose continuation is r ↦ then(r).command.
    """
    first = _expect_derivation("bind", first)
    if command is None:
        command = Bind(first.command, lambda r: then(r).command)
    elif not isinstance(command, Bind):
        raise RuleMismatchError(mismatch_error("bind", "Bind(...)", describe(command)))
    else:
        _attach("bind", first.command, command.first)
    return BindDerivation(Triple(first.pre, command, post), first, then, sort)


def consequence(
    derivation: Derivation,
    pre: Optional[Assertion] = None,
    post: Optional[Post] = None,
) -> ConsequenceDerivation:
    """Strengthen the precondition to pre and weaken the postcondition to post.

    pre ⇒ derivation.pre and derivation.post ⇒ post are discharged with z3;
    either failing raises ProofObligationError.
    """
    derivation = _expect_derivation("consequence", derivation)
    obligations: List[Obligation] = []
    label = describe(derivation.command, depth=1)
    if pre is not None:
        obligations.append(entails(pre, derivation.pre,
                                   f"strengthen-pre[{label}]", "consequence"))
    if post is not None:
        obligations.append(entails_post(derivation.post, post, derivation.sort,
                                        f"weaken-post[{label}]", "consequence"))
    return _weakened(derivation, post, obligations, pre)


def _weakened(
    derivation: Derivation,
    post: Optional[Post],
    obligations: List[Obligation],
    pre: Optional[Assertion] = None,
) -> ConsequenceDerivation:
    triple = Triple(
        pre if pre is not None else derivation.pre,
        derivation.command,
        post if post is not None else derivation.post,
    )
    return ConsequenceDerivation(triple, derivation, obligations)


def _admitted_consequence(derivation: Derivation, post: Post, lemma: str) -> ConsequenceDerivation:
    """Weaken the postcondition by a fact that holds by construction.

    Used internally where the entailment follows from how the derivation was
    obtained: the exit of a loop, the witness of a write, and the rewrapping
    of a stepped derivation. Not part of the public rule set.
    """
    return _weakened(derivation, post, [admit(f"{lemma}-post", "consequence")])


def loop_rule(
    invariant: LoopInvariant | Post,
    init: Any,
    body: Callable[[Any], Command],
    body_proof: Callable[[Any], Derivation],
    command: Optional[Command] = None,
    sort: z3.SortRef = INT,
) -> LoopDerivation:
    """Conclude {I(Again init)} Loop(init, body) {λr h. I(Done r, h)}.

    body_proof(a) must derive {I(Again a)} body(a) {I} for every a. The
    invariant is checked to be a predicate on each outcome shape first.
    """
    if not isinstance(invariant, LoopInvariant):
        invariant = LoopInvariant(invariant)
    invariant.validate(init)
    command = _attach("loop", Loop(init, body), command)
    triple = Triple(invariant.again(init), command, invariant.done)
    return LoopDerivation(triple, invariant, init, body, body_proof, sort)
