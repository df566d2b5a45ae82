"""HeapSpec Rule Tests — RULE-001 through RULE-007."""

import pytest
import z3

from heapspec.commands import Return, Bind, Read, Write, Loop, Again, Done, UNIT, same_shape
from heapspec.config import HeapspecConfig, set_config
from heapspec.errors import (
    ProofObligationError, RuleMismatchError, MalformedInvariantError,
)
from heapspec.heap import Heap
from heapspec.hoare import (
    Triple, BindDerivation, ConsequenceDerivation, LoopDerivation,
    return_rule, read_rule, write_rule, bind_rule, consequence, loop_rule,
)
from heapspec.logic import TRUE, LoopInvariant, all_below, conj, holds_on, post_holds_on
from heapspec.programs import array_max, index_of
from heapspec.proofs import (
    prove_array_max, prove_increment_all, prove_index_of, index_of_invariant,
)

SCENARIO = Heap({0: 2, 1: 1, 2: 8, 3: 6})


@pytest.fixture
def fresh_config():
    yield
    set_config(None)


class TestLeafRules:
    """RULE-001: Return, Read and Write axioms."""

    def test_return(self):
        d = return_rule(TRUE, 3)
        assert d.command == Return(3)
        assert d.rule == "return"
        assert post_holds_on(d.post, 3, SCENARIO)
        assert not post_holds_on(d.post, 4, SCENARIO)

    def test_return_keeps_precondition(self):
        d = return_rule(lambda h: h[0] == 2, UNIT)
        assert post_holds_on(d.post, UNIT, SCENARIO)
        assert not post_holds_on(d.post, UNIT, Heap())

    def test_read(self):
        d = read_rule(TRUE, 2)
        assert d.command == Read(2)
        assert post_holds_on(d.post, 8, SCENARIO)
        assert not post_holds_on(d.post, 7, SCENARIO)

    def test_write(self):
        d = write_rule(lambda h: h[0] == 2, 0, 5)
        assert d.command == Write(0, 5)
        assert post_holds_on(d.post, UNIT, SCENARIO.update(0, 5))
        assert not post_holds_on(d.post, UNIT, SCENARIO.update(0, 4))

    def test_triple_str(self):
        assert str(Triple(TRUE, Read(1), lambda r, h: True)) == "{P} Read(1) {Q}"


class TestAttachment:
    """RULE-002: Derivations must be about the command they are attached to."""

    def test_matching_command(self):
        assert return_rule(TRUE, 3, command=Return(3)).command == Return(3)

    def test_mismatched_leaf(self):
        with pytest.raises(RuleMismatchError) as info:
            read_rule(TRUE, 2, command=Read(3))
        assert info.value.error.rule == "read"

    def test_bind_on_non_bind(self):
        with pytest.raises(RuleMismatchError):
            bind_rule(read_rule(TRUE, 0), lambda v: return_rule(TRUE, v),
                      lambda r, h: True, command=Read(0))

    def test_bind_first_mismatch(self):
        with pytest.raises(RuleMismatchError):
            bind_rule(read_rule(TRUE, 0), lambda v: return_rule(TRUE, v),
                      lambda r, h: True, command=Bind(Read(1), lambda v: Return(v)))

    def test_bind_default_command(self):
        d = bind_rule(read_rule(TRUE, 0), lambda v: return_rule(TRUE, v), lambda r, h: True)
        assert isinstance(d.command, Bind)
        assert d.command.first == Read(0)
        assert d.command.then(4) == Return(4)


class TestConsequence:
    """RULE-003: Strengthening and weakening are discharged with z3."""

    def test_strengthen_pre(self):
        d = consequence(read_rule(lambda h: h[0] >= 0, 0), pre=lambda h: h[0] > 3)
        assert isinstance(d, ConsequenceDerivation)
        assert [ob.status for ob in d.obligations] == ["proved"]

    def test_weaken_post(self):
        d = consequence(return_rule(TRUE, 3), post=lambda r, h: r > 0)
        assert d.obligations[0].name.startswith("weaken-post")
        assert d.obligations[0].proved

    def test_bad_weakening(self):
        with pytest.raises(ProofObligationError) as info:
            consequence(return_rule(TRUE, 3), post=lambda r, h: r == 4)
        assert info.value.error.rule == "consequence"

    def test_bad_strengthening(self):
        with pytest.raises(ProofObligationError):
            consequence(read_rule(lambda h: h[0] > 3, 0), pre=lambda h: h[0] >= 0)

    def test_obligations_cannot_be_waived(self):
        with pytest.raises(TypeError):
            consequence(return_rule(TRUE, 3), post=lambda r, h: r == 4, lemma="trusted")

    def test_loop_exit_admitted_internally(self):
        d = prove_index_of(6)
        exit_ = d.unroll().instantiate(Done(2))
        assert isinstance(exit_, ConsequenceDerivation)
        assert [ob.name for ob in exit_.obligations] == ["loop-exit-post"]
        assert exit_.obligations[0].status == "lemma"

    def test_keeps_command(self):
        inner = read_rule(TRUE, 1)
        assert consequence(inner, post=inner.post).command is inner.command


class TestBindInstances:
    """RULE-004: Continuation premises are instantiated per result."""

    def test_rules_before_instantiation(self):
        assert prove_array_max(2).rules() == ["consequence", "bind", "read"]

    def test_instance_about_continuation(self):
        bind = prove_array_max(2).inner
        assert isinstance(bind, BindDerivation)
        d = bind.instantiate(5)
        assert same_shape(d.command, array_max(1, 5))
        names = [ob.name for ob in bind.obligations]
        assert "continuation-pre[5]" in names
        assert "continuation-post[5]" in names

    def test_instances_cached(self):
        bind = prove_array_max(2).inner
        assert bind.instantiate(5) is bind.instantiate(5)

    def test_family_returning_non_derivation(self):
        d = bind_rule(read_rule(TRUE, 0), lambda v: "nope", lambda r, h: True,
                      command=Bind(Read(0), lambda v: Return(v)))
        with pytest.raises(RuleMismatchError):
            d.instantiate(1)

    def test_family_about_wrong_command(self):
        d = bind_rule(read_rule(TRUE, 0), lambda v: return_rule(TRUE, v + 1),
                      lambda r, h: True, command=Bind(Read(0), lambda v: Return(v)))
        with pytest.raises(RuleMismatchError):
            d.instantiate(3)

    def test_unmet_continuation_pre(self):
        first = read_rule(TRUE, 0)
        d = bind_rule(first, lambda v: return_rule(lambda h: h[0] == 100, v),
                      lambda r, h: True, command=Bind(Read(0), lambda v: Return(v)))
        with pytest.raises(ProofObligationError):
            d.instantiate(2)

    def test_instance_checks_can_be_disabled(self, fresh_config):
        set_config(HeapspecConfig(check_instances=False))
        first = read_rule(TRUE, 0)
        d = bind_rule(first, lambda v: return_rule(lambda h: h[0] == 100, v),
                      lambda r, h: True, command=Bind(Read(0), lambda v: Return(v)))
        assert d.instantiate(2).command == Return(2)
        assert d.obligations == []


class TestLoopRule:
    """RULE-005: The loop rule and its body premise."""

    def test_conclusion(self):
        d = prove_index_of(6)
        assert isinstance(d, LoopDerivation)
        assert isinstance(d.command, Loop) and d.command.init == 0
        assert holds_on(d.pre, SCENARIO)
        assert post_holds_on(d.post, 3, SCENARIO)
        assert not post_holds_on(d.post, 2, SCENARIO)

    def test_unroll(self):
        d = prove_index_of(6)
        unrolled = d.unroll()
        assert isinstance(unrolled, BindDerivation)
        assert same_shape(unrolled.command.first, index_of(6).body(0))
        assert unrolled.post is d.post

    def test_plain_function_invariant(self):
        inv = index_of_invariant(6)
        family = lambda o, h: inv(o, h)
        program = index_of(6)
        d = loop_rule(family, 0, program.body, lambda a: None)
        assert isinstance(d.invariant, LoopInvariant)

    def test_single_function_family(self):
        def family(o, h):
            if isinstance(o, Again):
                return all_below(o.value, lambda j: h[j] != 6)
            return conj(h[o.value] == 6, all_below(o.value, lambda j: h[j] != 6))

        program = index_of(6)
        d = loop_rule(family, 0, program.body, lambda a: None)
        assert holds_on(d.pre, SCENARIO)
        assert post_holds_on(d.post, 3, SCENARIO)
        assert not post_holds_on(d.post, 2, SCENARIO)

    def test_family_raising_is_malformed(self):
        def family(o, h):
            return o.missing_attribute > 0

        with pytest.raises(MalformedInvariantError):
            loop_rule(family, 0, index_of(6).body, lambda a: None)

    def test_malformed_invariant(self):
        program = index_of(6)
        with pytest.raises(MalformedInvariantError):
            loop_rule(lambda o, h: "looping", 0, program.body, lambda a: None)

    def test_body_proof_about_wrong_command(self):
        inv = index_of_invariant(6)
        program = index_of(6)
        d = loop_rule(inv, 0, program.body, lambda a: read_rule(inv.again(a), a + 1))
        with pytest.raises(RuleMismatchError):
            d.body_instance(0)

    def test_loop_rule_command_mismatch(self):
        inv = index_of_invariant(6)
        program = index_of(6)
        with pytest.raises(RuleMismatchError):
            loop_rule(inv, 1, program.body, lambda a: None, command=program)


class TestExampleDerivations:
    """RULE-006: The example derivations build without unmet obligations."""

    @pytest.mark.parametrize("n", [0, 1, 3])
    def test_array_max(self, n):
        d = prove_array_max(n)
        assert all(ob.proved for ob in d.all_obligations())

    def test_array_max_attached_to_program(self):
        assert same_shape(prove_array_max(4).command, array_max(4, 0))

    def test_symbolic_ghost(self):
        ghost = z3.Array("ghost", z3.IntSort(), z3.IntSort())
        d = prove_increment_all(2, ghost)
        assert all(ob.proved for ob in d.all_obligations())
        assert d.inner.instantiate(7).command.first == Write(1, 8)


class TestDerivationRepr:
    """RULE-007: Derivations render their rule and triple."""

    def test_repr(self):
        assert repr(read_rule(TRUE, 1)) == "<read {P} Read(1) {Q}>"
