"""
Instruction stream generation for benchmark function bodies.

Three emission policies, all terminated by `end`:

- `body()`: the given instructions exactly once.
- `body_repeated()`: a K instruction sequence copied N times back to back.
  The copies are unrolled in the binary, no runtime loop is involved, so
  varying N isolates the per-call cost of a host function from loop
  control overhead.
- `body_counted()`: like `body_repeated()`, but `Counter` slots emit
  `base + i * increment` on their i-th emission so that each repetition
  touches a distinct memory address or storage key.
"""

from dataclasses import dataclass
from typing import List, Sequence, Union

from ..wasm.structures import END, FuncBody, Instruction, i32_const


@dataclass
class Counter:
    """
    Self-advancing i32 operand.

    Attributes:
        offset: Value emitted by the next `step()`
        increment_by: Amount `offset` grows by on every step
    """
    offset: int
    increment_by: int

    def step(self) -> Instruction:
        """Emit the current value as an i32.const and advance the cursor."""
        current = self.offset
        self.offset += self.increment_by
        return i32_const(current)


@dataclass(frozen=True)
class Regular:
    """A fixed instruction inside a counted sequence."""
    instruction: Instruction


CountedInstruction = Union[Counter, Regular]


def body(instructions: Sequence[Instruction]) -> FuncBody:
    """Single-shot body."""
    return FuncBody(instructions=list(instructions) + [END])


def body_repeated(repetitions: int, instructions: Sequence[Instruction]) -> FuncBody:
    """
    Cyclic-repeat body.

    Args:
        repetitions: How many copies of `instructions` to emit
        instructions: The sequence to copy

    Returns:
        A body with `repetitions * len(instructions) + 1` instructions
    """
    if repetitions < 0:
        raise ValueError(f"Repetitions must not be negative, got {repetitions}")
    return FuncBody(instructions=list(instructions) * repetitions + [END])


def body_counted(repetitions: int, instructions: List[CountedInstruction]) -> FuncBody:
    """
    Counted-repeat body.

    The `Counter` objects in `instructions` are advanced in place, which is
    why callers pass freshly built counters for every body.

    Args:
        repetitions: How many times to emit the sequence
        instructions: Mixed `Counter` and `Regular` slots

    Returns:
        A body with `repetitions * len(instructions) + 1` instructions
    """
    if repetitions < 0:
        raise ValueError(f"Repetitions must not be negative, got {repetitions}")

    emitted: List[Instruction] = []
    for _ in range(repetitions):
        for slot in instructions:
            if isinstance(slot, Counter):
                emitted.append(slot.step())
            else:
                emitted.append(slot.instruction)
    emitted.append(END)
    return FuncBody(instructions=emitted)
