"""HeapSpec assertion language and obligation discharge.

Assertions are Python functions that build z3 terms:

    Assertion  : heap_term -> BoolRef
    Post       : (result, heap_term) -> BoolRef

The heap term is a z3 Array(Int, Int). On a concrete Heap it is the chain of
Stores over the constant-zero array, so the same assertion serves both for
checking a configuration the Driver reached and for symbolic reasoning over
every heap. Results are passed as Python values when they are known and as z3
constants when they are quantified over.

Value encoding:
    int          Int
    UNIT         Int 0
    Again(a)     Outcome.again(a)
    Done(r)      Outcome.done(r)

An entailment A ⇒ B is discharged by asking z3 whether A ∧ ¬B is
satisfiable: unsat means the obligation holds, sat yields a counterexample.
"""

from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

import z3

from heapspec.commands import UNIT, Again, Done, LoopOutcome
from heapspec.config import get_config
from heapspec.errors import (
    ProofObligationError, SolverUnknownError, MalformedInvariantError,
    obligation_error, unknown_error, invariant_error,
)
from heapspec.heap import Heap

logger = logging.getLogger(__name__)

Assertion = Callable[[Any], Any]
Post = Callable[[Any, Any], Any]


# ---------------------------------------------------------------------------
# Sorts and terms
# ---------------------------------------------------------------------------

INT = z3.IntSort()
HEAP = z3.ArraySort(z3.IntSort(), z3.IntSort())

_outcome = z3.Datatype("Outcome")
_outcome.declare("again", ("acc", z3.IntSort()))
_outcome.declare("done", ("result", z3.IntSort()))
Outcome = _outcome.create()
OUTCOME = Outcome

_fresh = itertools.count()


def fresh_heap(prefix: str = "h") -> z3.ArrayRef:
    return z3.Array(f"{prefix}!{next(_fresh)}", z3.IntSort(), z3.IntSort())


def fresh_value(sort: z3.SortRef, prefix: str = "r") -> z3.ExprRef:
    return z3.Const(f"{prefix}!{next(_fresh)}", sort)


def heap_term(heap: Heap) -> z3.ArrayRef:
    """The z3 array equal to heap at every address."""
    term = z3.K(z3.IntSort(), z3.IntVal(0))
    for addr, value in heap.items():
        term = z3.Store(term, addr, value)
    return term


def value_term(value: Any) -> z3.ExprRef:
    """Encode a command result as a z3 term."""
    if z3.is_expr(value):
        return value
    if value is UNIT:
        return z3.IntVal(0)
    if isinstance(value, bool):
        raise TypeError(f"no logical encoding for {value!r}")
    if isinstance(value, int):
        return z3.IntVal(value)
    if isinstance(value, Again):
        return Outcome.again(value_term(value.value))
    if isinstance(value, Done):
        return Outcome.done(value_term(value.value))
    raise TypeError(f"no logical encoding for {value!r}")


def sort_of(value: Any) -> z3.SortRef:
    if isinstance(value, LoopOutcome):
        return OUTCOME
    return value_term(value).sort()


# ---------------------------------------------------------------------------
# Connectives
#
# Python booleans are accepted anywhere a formula is, so assertions can mix
# decisions on concrete values with z3 terms.
# ---------------------------------------------------------------------------

def as_bool(term: Any) -> z3.BoolRef:
    if isinstance(term, bool):
        return z3.BoolVal(term)
    if z3.is_bool(term):
        return term
    raise TypeError(f"not a formula: {term!r}")


def conj(*parts: Any) -> z3.BoolRef:
    flat: List[z3.BoolRef] = []
    for p in parts:
        b = as_bool(p)
        if z3.is_true(b):
            continue
        if z3.is_false(b):
            return z3.BoolVal(False)
        flat.append(b)
    if not flat:
        return z3.BoolVal(True)
    if len(flat) == 1:
        return flat[0]
    return z3.And(*flat)


def disj(*parts: Any) -> z3.BoolRef:
    flat: List[z3.BoolRef] = []
    for p in parts:
        b = as_bool(p)
        if z3.is_false(b):
            continue
        if z3.is_true(b):
            return z3.BoolVal(True)
        flat.append(b)
    if not flat:
        return z3.BoolVal(False)
    if len(flat) == 1:
        return flat[0]
    return z3.Or(*flat)


def implies(lhs: Any, rhs: Any) -> z3.BoolRef:
    lhs, rhs = as_bool(lhs), as_bool(rhs)
    if z3.is_true(lhs):
        return rhs
    if z3.is_false(lhs) or z3.is_true(rhs):
        return z3.BoolVal(True)
    return z3.Implies(lhs, rhs)


def equals(a: Any, b: Any) -> z3.BoolRef:
    """a = b, decided in Python when neither side is symbolic."""
    if not z3.is_expr(a) and not z3.is_expr(b):
        return z3.BoolVal(a == b)
    return value_term(a) == value_term(b)


def all_in(lo: Any, hi: Any, pred: Callable[[Any], Any]) -> z3.BoolRef:
    """pred(j) for every lo <= j < hi.

    Unrolled into a conjunction when both bounds are Python ints, quantified
    otherwise.
    """
    if isinstance(lo, int) and isinstance(hi, int):
        return conj(*[pred(j) for j in range(lo, hi)])
    j = z3.Int(f"j!{next(_fresh)}")
    return z3.ForAll([j], implies(z3.And(lo <= j, j < hi), pred(j)))


def any_in(lo: Any, hi: Any, pred: Callable[[Any], Any]) -> z3.BoolRef:
    """pred(j) for some lo <= j < hi."""
    if isinstance(lo, int) and isinstance(hi, int):
        return disj(*[pred(j) for j in range(lo, hi)])
    j = z3.Int(f"j!{next(_fresh)}")
    return z3.Exists([j], conj(lo <= j, j < hi, pred(j)))


def all_below(n: Any, pred: Callable[[Any], Any]) -> z3.BoolRef:
    return all_in(0, n, pred)


def any_below(n: Any, pred: Callable[[Any], Any]) -> z3.BoolRef:
    return any_in(0, n, pred)


def TRUE(heap: Any) -> z3.BoolRef:
    return z3.BoolVal(True)


# ---------------------------------------------------------------------------
# Loop invariants
# ---------------------------------------------------------------------------

class LoopInvariant:
    """A predicate family indexed by loop outcome.

    I(Again(a), h) reads "still looping with accumulator a", I(Done(r), h)
    reads "the loop has just finished with result r". The same object is
    used as the postcondition of every loop body, so it is callable as a
    Post: invariant(outcome, heap_term).
    """

    def __init__(self, family: Post, name: str = "I"):
        self._family = family
        self.name = name
        # The loop postcondition λr h. I(Done r, h), one object per invariant
        self.done: Post = lambda result, heap: self(Done(result), heap)

    @classmethod
    def from_predicates(
        cls,
        running: Post,
        finished: Post,
        name: str = "I",
    ) -> LoopInvariant:
        """Build the family from separate running/finished predicates."""
        def family(outcome: Any, heap: Any) -> Any:
            if isinstance(outcome, Again):
                return running(outcome.value, heap)
            if isinstance(outcome, Done):
                return finished(outcome.value, heap)
            return z3.If(
                Outcome.is_again(outcome),
                as_bool(running(Outcome.acc(outcome), heap)),
                as_bool(finished(Outcome.result(outcome), heap)),
            )
        return cls(family, name)

    def __call__(self, outcome: Any, heap: Any) -> z3.BoolRef:
        try:
            return as_bool(self._family(outcome, heap))
        except Exception as exc:
            raise MalformedInvariantError(invariant_error(
                f"{self.name}({outcome!r}) is not a heap predicate: {exc}",
            )) from exc

    def again(self, acc: Any) -> Assertion:
        """The assertion I(Again(acc))."""
        return lambda heap: self(Again(acc), heap)

    def validate(self, init: Any) -> None:
        """Evaluate the family on Again(init) and on Done with a symbolic result.

        These are the only shapes the loop rule hands it. Raises
        MalformedInvariantError if either is not a formula.
        """
        h = fresh_heap()
        self(Again(init), h)
        self(Done(fresh_value(INT)), h)

    def __repr__(self) -> str:
        return f"LoopInvariant({self.name})"


# ---------------------------------------------------------------------------
# Obligations
# ---------------------------------------------------------------------------

@dataclass
class Obligation:
    """Record of one discharged (or admitted) entailment."""
    name: str
    rule: str
    status: str                 # "proved" | "refuted" | "unknown" | "lemma"
    duration_ms: float = 0.0
    counterexample: Dict[str, str] = field(default_factory=dict)
    reason: str = ""

    @property
    def proved(self) -> bool:
        return self.status in ("proved", "lemma")

    def __str__(self) -> str:
        return f"{self.rule}/{self.name}: {self.status} ({self.duration_ms:.2f}ms)"


def _model_dict(model: z3.ModelRef) -> Dict[str, str]:
    failing: Dict[str, str] = {}
    for decl in model.decls():
        failing[decl.name()] = str(model[decl])
    return failing


def _solver() -> z3.Solver:
    solver = z3.Solver()
    solver.set("timeout", get_config().solver_timeout_ms)
    return solver


def check_valid(formula: Any, name: str, rule: str) -> Obligation:
    """Decide validity of formula (free constants universally quantified)."""
    start = time.perf_counter()
    solver = _solver()
    solver.add(z3.Not(as_bool(formula)))
    result = solver.check()
    elapsed = (time.perf_counter() - start) * 1000.0

    if result == z3.unsat:
        return Obligation(name, rule, "proved", elapsed)
    if result == z3.sat:
        return Obligation(name, rule, "refuted", elapsed,
                          counterexample=_model_dict(solver.model()))
    return Obligation(name, rule, "unknown", elapsed, reason=solver.reason_unknown())


def discharge(formula: Any, name: str, rule: str) -> Obligation:
    """check_valid, raising on refutation (and on unknown if configured)."""
    ob = check_valid(formula, name, rule)
    logger.debug("obligation %s", ob)
    if ob.status == "refuted":
        raise ProofObligationError(obligation_error(name, ob.counterexample, rule))
    if ob.status == "unknown" and get_config().unknown_is_failure:
        raise SolverUnknownError(unknown_error(name, ob.reason, rule))
    return ob


def admit(name: str, rule: str) -> Obligation:
    """Record an obligation that holds by a structural lemma."""
    return Obligation(name, rule, "lemma")


def entails(stronger: Assertion, weaker: Assertion, name: str, rule: str) -> Obligation:
    """∀h. stronger(h) ⇒ weaker(h)."""
    if stronger is weaker:
        return admit(name, rule)
    h = fresh_heap()
    return discharge(implies(stronger(h), weaker(h)), name, rule)


def entails_post(
    stronger: Post,
    weaker: Post,
    sort: z3.SortRef,
    name: str,
    rule: str,
) -> Obligation:
    """∀r h. stronger(r, h) ⇒ weaker(r, h), r ranging over sort.

    Loop outcomes are split by constructor, so postconditions see
    Again(a)/Done(a) with a symbolic payload rather than an opaque term.
    """
    if stronger is weaker:
        return admit(name, rule)
    h = fresh_heap()
    if sort == OUTCOME:
        cases = []
        for tag in (Again, Done):
            r = tag(fresh_value(INT, "a"))
            cases.append(implies(stronger(r, h), weaker(r, h)))
        return discharge(conj(*cases), name, rule)
    r = fresh_value(sort)
    return discharge(implies(stronger(r, h), weaker(r, h)), name, rule)


def holds(formula: Any) -> bool:
    """Truth of a closed formula.

    A closed formula is true iff it is satisfiable iff its negation is not,
    so either polarity decides it. A top-level existential (as in the Write
    postcondition) is checked for a witness first; anything else by
    refuting its negation. The other polarity is the fallback on unknown.
    """
    formula = as_bool(formula)
    if z3.is_true(formula):
        return True
    if z3.is_false(formula):
        return False

    witness_first = z3.is_quantifier(formula) and formula.is_exists()
    reason = ""
    for positive in ((True, False) if witness_first else (False, True)):
        solver = _solver()
        solver.add(formula if positive else z3.Not(formula))
        result = solver.check()
        if result == z3.sat:
            return positive
        if result == z3.unsat:
            return not positive
        reason = solver.reason_unknown()
    raise SolverUnknownError(unknown_error(str(formula), reason))


def holds_on(assertion: Assertion, heap: Heap) -> bool:
    return holds(assertion(heap_term(heap)))


def post_holds_on(post: Post, value: Any, heap: Heap) -> bool:
    return holds(post(value, heap_term(heap)))
