"""HeapSpec — heap-manipulating commands, a fuel-bounded stepper, and Hoare-style proofs"""

__version__ = "0.1.0"

from heapspec.heap import Heap, EMPTY
from heapspec.commands import (
    Command, Return, Bind, Read, Write, Loop, Again, Done, UNIT,
    bind, seq, fmap,
)
from heapspec.stepper import Answer, Suspended, step
from heapspec.driver import run, drive, resume, trace, steps_to_answer
from heapspec.config import HeapspecConfig, get_config, set_config, load_config
from heapspec.errors import (
    ErrorKind, HeapspecError, VerificationError, ProofObligationError,
    SolverUnknownError, MalformedInvariantError, MalformedCommandError,
    RuleMismatchError, SoundnessViolation,
)
