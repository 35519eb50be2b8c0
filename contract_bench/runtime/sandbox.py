"""
Fixture executor for generated contract bodies.

Replays the straight-line instruction streams the module builder emits
against the imported host functions. This is not a virtual machine: there
are no locals, no arithmetic besides i32.eqz, no loops and no branches
other than if/else. Anything else traps.
"""

import logging
from typing import Any, Dict, List, Tuple

from ..config import PAGE_SIZE
from ..wasm.structures import (
    BLOCK_OPCODES, FuncBody, FuncType, Instruction, Module, Opcode, ValueType,
)
from .errors import DispatchError, Trap
from .types import ExecReturnValue

logger = logging.getLogger(__name__)

U32_MAX = 0xFFFFFFFF
U64_MAX = 0xFFFFFFFFFFFFFFFF

# Gas charged for entering a host function
HOST_CALL_COST = 1

# Opcodes `Sandbox` knows how to replay
EXECUTABLE_OPCODES = frozenset({
    Opcode.UNREACHABLE, Opcode.NOP, Opcode.IF, Opcode.ELSE, Opcode.END,
    Opcode.RETURN, Opcode.CALL, Opcode.DROP,
    Opcode.I32_CONST, Opcode.I64_CONST, Opcode.I32_EQZ,
})


class Halt(Exception):
    """Raised by host functions that end the current frame early."""

    def __init__(self, result: ExecReturnValue):
        super().__init__(result)
        self.result = result


class LinearMemory:
    """
    Linear memory of a contract instance.

    Every access is bounds checked; an out of bounds access traps.
    """

    def __init__(self, pages: int = 0):
        self.data = bytearray(pages * PAGE_SIZE)

    @property
    def size(self) -> int:
        return len(self.data)

    def _check(self, ptr: int, length: int) -> None:
        if ptr < 0 or length < 0 or ptr + length > len(self.data):
            raise Trap(f"Memory access out of bounds: [{ptr}, {ptr + length}) of {len(self.data)}")

    def read(self, ptr: int, length: int) -> bytes:
        self._check(ptr, length)
        return bytes(self.data[ptr:ptr + length])

    def write(self, ptr: int, data: bytes) -> None:
        self._check(ptr, len(data))
        self.data[ptr:ptr + len(data)] = data

    def read_u32(self, ptr: int) -> int:
        return int.from_bytes(self.read(ptr, 4), 'little')

    def write_u32(self, ptr: int, value: int) -> None:
        self.write(ptr, (value & U32_MAX).to_bytes(4, 'little'))

    def write_output(self, out_ptr: int, out_len_ptr: int, data: bytes,
                     allow_skip: bool = True) -> None:
        """
        Write `data` into a contract supplied output buffer.

        The buffer capacity is the u32 stored at `out_len_ptr`; after the
        copy the real length is written back there. An `out_ptr` of
        u32::MAX skips the copy altogether when `allow_skip` is set.

        Raises:
            Trap: If the buffer is too small or out of bounds
        """
        if allow_skip and out_ptr == U32_MAX:
            return
        capacity = self.read_u32(out_len_ptr)
        if capacity < len(data):
            raise Trap(f"Output buffer too small: {capacity} < {len(data)}")
        self.write(out_ptr, data)
        self.write_u32(out_len_ptr, len(data))


class GasMeter:
    """Tracks gas spent by a frame and the frames it spawns."""

    def __init__(self, limit: int):
        self.limit = limit
        self.spent = 0

    @property
    def remaining(self) -> int:
        return self.limit - self.spent

    def charge(self, amount: int) -> None:
        if amount > self.remaining:
            self.spent = self.limit
            raise Trap("OutOfGas")
        self.spent += amount

    def nested(self, amount: int) -> 'GasMeter':
        """Meter for a nested frame. Zero or too much means all remaining gas."""
        if amount == 0 or amount > self.remaining:
            amount = self.remaining
        return GasMeter(amount)

    def absorb(self, nested: 'GasMeter') -> None:
        self.spent += nested.spent


def _unsigned(value: int, value_type: ValueType) -> int:
    """View a signed operand the way a host function receives it."""
    if value_type == ValueType.I64:
        return value & U64_MAX
    return value & U32_MAX


def _match_blocks(instructions: List[Instruction]) -> Tuple[Dict[int, int], Dict[int, int]]:
    """
    Map block openers to their `else` and `end` positions.

    Returns:
        Tuple of (opener -> else index, opener or else -> end index)
    """
    else_of: Dict[int, int] = {}
    end_of: Dict[int, int] = {}
    open_blocks: List[int] = []
    for index, instruction in enumerate(instructions):
        if instruction.opcode in BLOCK_OPCODES:
            open_blocks.append(index)
        elif instruction.opcode == Opcode.ELSE:
            if not open_blocks:
                raise Trap(f"'else' at {index} without an enclosing block")
            else_of[open_blocks[-1]] = index
        elif instruction.opcode == Opcode.END and open_blocks:
            start = open_blocks.pop()
            end_of[start] = index
            if start in else_of:
                end_of[else_of[start]] = index
    if open_blocks:
        raise Trap(f"Block opened at {open_blocks[-1]} is never closed")
    return else_of, end_of


class Sandbox:
    """
    A module instance bound to one execution frame.

    The sandbox is also the context host functions receive: it carries the
    linear memory, the frame's external state (`ext`), its gas meter and
    the not yet consumed input data.

    Attributes:
        module: The decoded module being executed
        memory: Linear memory initialized from the data segments
        ext: Frame state and runtime callbacks
        gas_meter: Meter of this frame
        input_data: Call input, None once `seal_input` consumed it
    """

    def __init__(self, module: Module, host_functions: Dict[str, Any], ext: Any,
                 gas_meter: GasMeter, input_data: bytes):
        self.module = module
        self.ext = ext
        self.gas_meter = gas_meter
        self.input_data = input_data

        memory = module.imported_memory
        self.memory = LinearMemory(memory.limits.minimum if memory else 0)
        for entry in module.data:
            self.memory.write(entry.offset & U32_MAX, entry.value)

        self.imports: List[Tuple[Any, FuncType]] = []
        for entry in module.imported_functions:
            host_function = host_functions.get(entry.field)
            if host_function is None:
                raise Trap(f"Unknown host function '{entry.module}.{entry.field}'")
            self.imports.append((host_function, module.types[entry.type_index]))

    def invoke(self, export_name: str) -> ExecReturnValue:
        """
        Run an exported function to completion.

        Raises:
            Trap: If execution trapped
        """
        export = self.module.export(export_name)
        if export is None:
            raise Trap(f"Module does not export '{export_name}'")
        try:
            self._run(self.module.function_body(export.index))
        except Halt as halt:
            return halt.result
        return ExecReturnValue()

    def _run(self, body: FuncBody) -> None:
        instructions = body.instructions
        else_of, end_of = _match_blocks(instructions)
        stack: List[int] = []
        pc = 0

        while pc < len(instructions):
            instruction = instructions[pc]
            opcode = instruction.opcode

            if opcode in (Opcode.I32_CONST, Opcode.I64_CONST):
                stack.append(instruction.operand)
            elif opcode == Opcode.CALL:
                self._call(instruction.operand, stack)
            elif opcode == Opcode.DROP:
                self._pop(stack)
            elif opcode == Opcode.I32_EQZ:
                stack.append(1 if self._pop(stack) == 0 else 0)
            elif opcode == Opcode.IF:
                if self._pop(stack) == 0:
                    pc = else_of.get(pc, end_of[pc])
            elif opcode == Opcode.ELSE:
                # Reached the end of the taken branch
                pc = end_of[pc]
            elif opcode in (Opcode.END, Opcode.NOP):
                pass
            elif opcode == Opcode.RETURN:
                return
            elif opcode == Opcode.UNREACHABLE:
                raise Trap("Unreachable")
            else:
                raise Trap(f"Unsupported instruction: {instruction!r}")
            pc += 1

    @staticmethod
    def _pop(stack: List[int]) -> int:
        if not stack:
            raise Trap("Value stack underflow")
        return stack.pop()

    def _call(self, function_index: int, stack: List[int]) -> None:
        if function_index >= len(self.imports):
            raise Trap(f"Call to internal function {function_index} is not supported")
        host_function, signature = self.imports[function_index]

        count = len(signature.params)
        if len(stack) < count:
            raise Trap(f"Value stack underflow calling '{host_function.name}'")
        args = stack[len(stack) - count:]
        del stack[len(stack) - count:]
        args = [_unsigned(arg, kind) for arg, kind in zip(args, signature.params)]

        self.gas_meter.charge(HOST_CALL_COST)
        try:
            result = host_function.handler(self, *args)
        except DispatchError as error:
            raise Trap(f"{host_function.name}: {error}") from error

        if signature.results:
            stack.append(int(result))
