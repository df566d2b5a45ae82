"""Derivations for the example programs.

    array_max(n, 0)      {cells below n are natural}
                         {r ≥ h[j] for all j < n, and r = h[j] for some j < n}
    increment_all(n)     {h = g}
                         {h = g with cells below n incremented}
    index_of(needle)     {true}
                         {h[r] = needle, and h[j] ≠ needle for all j < r}

array_max and increment_all are proved by recursion on the index, one Bind
per Read. index_of is proved with the loop rule and the invariant

    I(Again a) = h[j] ≠ needle for all j < a
    I(Done r)  = h[r] = needle ∧ I(Again r)
"""

from __future__ import annotations

from typing import Any, Tuple

import z3

from heapspec.commands import UNIT, Again, Done
from heapspec.hoare import (
    Derivation, bind_rule, consequence, loop_rule, read_rule, return_rule, write_rule,
)
from heapspec.logic import (
    Assertion, LoopInvariant, OUTCOME, Post, TRUE,
    all_below, all_in, any_below, any_in, conj, disj,
)
from heapspec.programs import array_max, increment_all, index_of


# ---------------------------------------------------------------------------
# array_max
# ---------------------------------------------------------------------------

def _natural_prefix(n: int, h: Any) -> Any:
    return all_below(n, lambda j: h[j] >= 0)


def array_max_spec(n: int) -> Tuple[Assertion, Post]:
    def pre(h: Any) -> Any:
        return _natural_prefix(n, h)

    def post(r: Any, h: Any) -> Any:
        return conj(all_below(n, lambda j: r >= h[j]),
                    n == 0 or any_below(n, lambda j: r == h[j]))

    return pre, post


def _array_max_pre(i: int, acc: int, n: int) -> Assertion:
    # cells [i, n) are already folded into acc
    def pre(h: Any) -> Any:
        return conj(_natural_prefix(n, h),
                    all_in(i, n, lambda j: acc >= h[j]),
                    disj(acc == 0, any_in(i, n, lambda j: acc == h[j])))
    return pre


def _array_max(i: int, acc: int, n: int, post: Post) -> Derivation:
    pre = _array_max_pre(i, acc, n)
    if i == 0:
        return consequence(return_rule(pre, acc), post=post)
    read = read_rule(pre, i - 1)

    def after(v: int) -> Derivation:
        return consequence(_array_max(i - 1, max(v, acc), n, post),
                           pre=lambda h: read.post(v, h))

    return bind_rule(read, after, post, command=array_max(i, acc))


def prove_array_max(n: int) -> Derivation:
    """Derivation of array_max_spec(n) for array_max(n, 0)."""
    pre, post = array_max_spec(n)
    return consequence(_array_max(n, 0, n, post), pre=pre)


# ---------------------------------------------------------------------------
# increment_all
# ---------------------------------------------------------------------------

def incremented(ghost: Any, lo: int, hi: int) -> Any:
    """ghost with every cell in [lo, hi) increased by one."""
    term = ghost
    for j in range(lo, hi):
        term = z3.Store(term, j, ghost[j] + 1)
    return term


def increment_all_spec(n: int, ghost: Any) -> Tuple[Assertion, Post]:
    def pre(h: Any) -> Any:
        return h == ghost

    def post(r: Any, h: Any) -> Any:
        return h == incremented(ghost, 0, n)

    return pre, post


def _increment_all_pre(i: int, n: int, ghost: Any) -> Assertion:
    return lambda h: h == incremented(ghost, i, n)


def _increment_all(i: int, n: int, ghost: Any, post: Post) -> Derivation:
    pre = _increment_all_pre(i, n, ghost)
    if i == 0:
        return consequence(return_rule(pre, UNIT), post=post)
    program = increment_all(i)
    read = read_rule(pre, i - 1)
    remaining = _increment_all_pre(i - 1, n, ghost)

    def after_read(v: int) -> Derivation:
        write = write_rule(lambda h: read.post(v, h), i - 1, v + 1)
        stored = consequence(write, post=lambda r, h: remaining(h))
        return bind_rule(stored, lambda _: _increment_all(i - 1, n, ghost, post), post,
                         command=program.then(v))

    return bind_rule(read, after_read, post, command=program)


def prove_increment_all(n: int, ghost: Any) -> Derivation:
    """Derivation of increment_all_spec(n, ghost) for increment_all(n).

    ghost is a z3 array term naming the initial heap: a concrete heap_term
    to check one run, or a free array constant for the general statement.
    """
    pre, post = increment_all_spec(n, ghost)
    return consequence(_increment_all(n, n, ghost, post), pre=pre)


# ---------------------------------------------------------------------------
# index_of
# ---------------------------------------------------------------------------

def index_of_invariant(needle: int) -> LoopInvariant:
    def running(a: Any, h: Any) -> Any:
        return all_below(a, lambda j: h[j] != needle)

    def finished(r: Any, h: Any) -> Any:
        return conj(h[r] == needle, running(r, h))

    return LoopInvariant.from_predicates(running, finished, name=f"index_of[{needle}]")


def index_of_spec(needle: int) -> Tuple[Assertion, Post]:
    return TRUE, index_of_invariant(needle).done


def prove_index_of(needle: int) -> Derivation:
    """Derivation of index_of_spec(needle) for index_of(needle)."""
    invariant = index_of_invariant(needle)
    program = index_of(needle)
    body = program.body

    def body_proof(a: int) -> Derivation:
        read = read_rule(invariant.again(a), a)

        def decide(v: int) -> Derivation:
            outcome = Done(a) if v == needle else Again(a + 1)
            here = lambda h: read.post(v, h)
            return consequence(return_rule(here, outcome), post=invariant)

        return bind_rule(read, decide, invariant, command=body(a), sort=OUTCOME)

    return loop_rule(invariant, 0, body, body_proof, command=program)
