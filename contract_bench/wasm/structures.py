"""
WebAssembly format structure definitions.

Only the subset of the MVP binary format that benchmark modules use is
modelled: types, imports, functions, exports, code and data sections, plus
the control, constant and call instructions the generated bodies contain.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional, Tuple


# WebAssembly Magic and version
WASM_MAGIC = 0x6D736100  # "\0asm"
WASM_VERSION = 1

# Function type tag in the type section
FUNC_TYPE_FORM = 0x60

# Block type for blocks that leave nothing on the stack
BLOCK_TYPE_EMPTY = 0x40

# Limits flags
LIMITS_MIN_ONLY = 0x00
LIMITS_MIN_MAX = 0x01


class WasmSectionId(IntEnum):
    """WebAssembly section IDs."""
    CUSTOM = 0
    TYPE = 1
    IMPORT = 2
    FUNCTION = 3
    TABLE = 4
    MEMORY = 5
    GLOBAL = 6
    EXPORT = 7
    START = 8
    ELEMENT = 9
    CODE = 10
    DATA = 11
    DATA_COUNT = 12


class ValueType(IntEnum):
    """Number types."""
    I32 = 0x7F
    I64 = 0x7E
    F32 = 0x7D
    F64 = 0x7C


class ExternalKind(IntEnum):
    """Kinds of imports and exports."""
    FUNCTION = 0x00
    TABLE = 0x01
    MEMORY = 0x02
    GLOBAL = 0x03


class Opcode(IntEnum):
    """Instruction opcodes understood by the codec."""
    UNREACHABLE = 0x00
    NOP = 0x01
    BLOCK = 0x02
    LOOP = 0x03
    IF = 0x04
    ELSE = 0x05
    END = 0x0B
    BR = 0x0C
    BR_IF = 0x0D
    RETURN = 0x0F
    CALL = 0x10
    DROP = 0x1A
    SELECT = 0x1B
    LOCAL_GET = 0x20
    LOCAL_SET = 0x21
    LOCAL_TEE = 0x22
    GLOBAL_GET = 0x23
    GLOBAL_SET = 0x24
    I32_CONST = 0x41
    I64_CONST = 0x42
    I32_EQZ = 0x45
    I32_ADD = 0x6A


# Opcodes followed by a block type immediate
BLOCK_OPCODES = (Opcode.BLOCK, Opcode.LOOP, Opcode.IF)

# Opcodes followed by an unsigned LEB128 index immediate
INDEX_OPCODES = (
    Opcode.BR, Opcode.BR_IF, Opcode.CALL,
    Opcode.LOCAL_GET, Opcode.LOCAL_SET, Opcode.LOCAL_TEE,
    Opcode.GLOBAL_GET, Opcode.GLOBAL_SET,
)


def to_i32(value: int) -> int:
    """Reinterpret an integer as a signed 32-bit value (u32::MAX -> -1)."""
    value &= 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return value


def to_i64(value: int) -> int:
    """Reinterpret an integer as a signed 64-bit value."""
    value &= 0xFFFFFFFFFFFFFFFF
    if value >= 0x8000000000000000:
        value -= 0x10000000000000000
    return value


@dataclass(frozen=True)
class Instruction:
    """A WebAssembly instruction with its immediate, if any."""
    opcode: Opcode
    operand: Optional[int] = None

    def __repr__(self) -> str:
        name = self.opcode.name.lower().replace('_', '.', 1)
        if self.operand is not None:
            return f"{name} {self.operand}"
        return name


# ========== Instruction Constructors ==========

def i32_const(value: int) -> Instruction:
    return Instruction(Opcode.I32_CONST, to_i32(value))


def i64_const(value: int) -> Instruction:
    return Instruction(Opcode.I64_CONST, to_i64(value))


def call(function_index: int) -> Instruction:
    return Instruction(Opcode.CALL, function_index)


def if_(block_type: int = BLOCK_TYPE_EMPTY) -> Instruction:
    return Instruction(Opcode.IF, block_type)


UNREACHABLE = Instruction(Opcode.UNREACHABLE)
NOP = Instruction(Opcode.NOP)
ELSE = Instruction(Opcode.ELSE)
END = Instruction(Opcode.END)
RETURN = Instruction(Opcode.RETURN)
DROP = Instruction(Opcode.DROP)
I32_EQZ = Instruction(Opcode.I32_EQZ)


# ========== Module Structures ==========

@dataclass(frozen=True)
class FuncType:
    """Function signature."""
    params: Tuple[ValueType, ...] = ()
    results: Tuple[ValueType, ...] = ()


@dataclass(frozen=True)
class Limits:
    """Memory limits in pages."""
    minimum: int = 0
    maximum: Optional[int] = None


@dataclass
class Import:
    """Import entry. Functions carry a type index, memories carry limits."""
    module: str = ""
    field: str = ""
    kind: ExternalKind = ExternalKind.FUNCTION
    type_index: int = 0
    limits: Optional[Limits] = None


@dataclass
class Export:
    """Export entry."""
    field: str = ""
    kind: ExternalKind = ExternalKind.FUNCTION
    index: int = 0


@dataclass
class FuncBody:
    """Function body: (count, type) local groups and the instruction stream."""
    locals: List[Tuple[int, ValueType]] = field(default_factory=list)
    instructions: List[Instruction] = field(default_factory=list)


@dataclass
class DataEntry:
    """Active data segment."""
    memory_index: int = 0
    offset: int = 0  # Memory offset (evaluated from the i32.const init expr)
    value: bytes = b""


@dataclass
class Module:
    """Decoded (or to be encoded) module."""
    types: List[FuncType] = field(default_factory=list)
    imports: List[Import] = field(default_factory=list)
    functions: List[int] = field(default_factory=list)  # type index per internal function
    exports: List[Export] = field(default_factory=list)
    code: List[FuncBody] = field(default_factory=list)
    data: List[DataEntry] = field(default_factory=list)

    @property
    def imported_functions(self) -> List[Import]:
        return [i for i in self.imports if i.kind == ExternalKind.FUNCTION]

    @property
    def imported_memory(self) -> Optional[Import]:
        for entry in self.imports:
            if entry.kind == ExternalKind.MEMORY:
                return entry
        return None

    def export(self, name: str) -> Optional[Export]:
        for entry in self.exports:
            if entry.field == name:
                return entry
        return None

    def function_body(self, function_index: int) -> FuncBody:
        """
        Get the body of a function by its index in the function index space.

        Raises:
            IndexError: If the index refers to an import or does not exist
        """
        internal = function_index - len(self.imported_functions)
        if internal < 0:
            raise IndexError(f"Function {function_index} is imported and has no body")
        return self.code[internal]

    def function_type(self, function_index: int) -> FuncType:
        imported = self.imported_functions
        if function_index < len(imported):
            return self.types[imported[function_index].type_index]
        return self.types[self.functions[function_index - len(imported)]]
