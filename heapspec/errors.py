"""Structured error objects for HeapSpec verification.

Every diagnostic is machine-readable. The Stepper and Driver never raise
these for ordinary execution: they belong to verification time, when a
derivation is built or checked against the Driver.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ErrorKind(Enum):
    PROOF_OBLIGATION = "proof_obligation"
    MALFORMED_INVARIANT = "malformed_invariant"
    MALFORMED_COMMAND = "malformed_command"
    RULE_MISMATCH = "rule_mismatch"
    SOUNDNESS_VIOLATION = "soundness_violation"
    SOLVER_UNKNOWN = "solver_unknown"


@dataclass
class HeapspecError:
    kind: ErrorKind
    message: str
    rule: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.message,
        }
        if self.rule:
            d["rule"] = self.rule
        if self.details:
            d["details"] = self.details
        return d

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def __str__(self) -> str:
        where = f" in {self.rule}" if self.rule else ""
        return f"[{self.kind.value}]{where}: {self.message}"


def obligation_error(
    obligation: str,
    counterexample: dict[str, str],
    rule: Optional[str] = None,
) -> HeapspecError:
    return HeapspecError(
        kind=ErrorKind.PROOF_OBLIGATION,
        message=f"Proof obligation unmet: {obligation}",
        rule=rule,
        details={
            "obligation": obligation,
            "counterexample": counterexample,
        },
    )


def unknown_error(obligation: str, reason: str, rule: Optional[str] = None) -> HeapspecError:
    return HeapspecError(
        kind=ErrorKind.SOLVER_UNKNOWN,
        message=f"Solver could not decide '{obligation}': {reason}",
        rule=rule,
        details={"obligation": obligation, "reason": reason},
    )


def invariant_error(message: str, rule: Optional[str] = None) -> HeapspecError:
    return HeapspecError(
        kind=ErrorKind.MALFORMED_INVARIANT,
        message=f"Malformed invariant: {message}",
        rule=rule,
    )


def command_error(value: Any) -> HeapspecError:
    return HeapspecError(
        kind=ErrorKind.MALFORMED_COMMAND,
        message=f"Not a command: {value!r}",
        details={"type": type(value).__name__},
    )


def loop_outcome_error(value: Any) -> HeapspecError:
    return HeapspecError(
        kind=ErrorKind.MALFORMED_COMMAND,
        message=f"Loop body yielded {value!r}, expected Again or Done",
        details={"type": type(value).__name__},
    )


def mismatch_error(rule: str, expected: str, actual: str) -> HeapspecError:
    return HeapspecError(
        kind=ErrorKind.RULE_MISMATCH,
        message=f"Derivation is about '{actual}', expected '{expected}'",
        rule=rule,
        details={"expected": expected, "actual": actual},
    )


def soundness_error(message: str, step: int, command: str, rule: Optional[str] = None) -> HeapspecError:
    return HeapspecError(
        kind=ErrorKind.SOUNDNESS_VIOLATION,
        message=message,
        rule=rule,
        details={"step": step, "command": command},
    )


class VerificationError(Exception):
    """Exception wrapping one or more HeapspecErrors."""

    def __init__(self, errors: list[HeapspecError] | HeapspecError):
        if isinstance(errors, HeapspecError):
            errors = [errors]
        self.errors = errors
        super().__init__(self._format())

    @property
    def error(self) -> HeapspecError:
        return self.errors[0]

    def _format(self) -> str:
        return "\n".join(str(e) for e in self.errors)

    def to_json(self, indent: int = 2) -> str:
        return json.dumps([e.to_dict() for e in self.errors], indent=indent)


class ProofObligationError(VerificationError):
    """A claimed entailment does not hold."""


class SolverUnknownError(VerificationError):
    """z3 could not decide an obligation."""


class MalformedInvariantError(VerificationError):
    """A loop invariant family is not a predicate over outcomes and heaps."""


class RuleMismatchError(VerificationError):
    """A derivation is attached to a command of a different shape."""


class SoundnessViolation(VerificationError):
    """The reachability invariant failed on a configuration."""


class MalformedCommandError(VerificationError, TypeError):
    """The Stepper was handed something that is not a command."""
