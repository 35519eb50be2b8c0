"""
WebAssembly module decoder.

Parses the sections a benchmark module consists of into a `Module`,
including every instruction of every function body, so the generated code
can be inspected (instruction counts, call sites) and re-encoded.
"""

from typing import List

from ..io.binary_stream import BinaryStream
from .structures import (
    BLOCK_OPCODES, INDEX_OPCODES, FUNC_TYPE_FORM, LIMITS_MIN_MAX, LIMITS_MIN_ONLY,
    WASM_MAGIC, WASM_VERSION,
    DataEntry, Export, ExternalKind, FuncBody, FuncType, Import, Instruction,
    Limits, Module, Opcode, ValueType, WasmSectionId,
)


class WasmDecoder(BinaryStream):
    """
    Decoder for benchmark modules.

    Sections the benchmark builder never emits (tables, globals, start,
    elements) are rejected with ValueError instead of being skipped, so a
    successful decode always means a lossless one.
    """

    def __init__(self, data: bytes):
        super().__init__(data)
        self.module = Module()
        self._load()

    def _load(self) -> None:
        """Load WebAssembly structures."""
        self.position = 0

        # Read magic
        magic = self.read_uint32()
        if magic != WASM_MAGIC:
            raise ValueError(f"Invalid WebAssembly magic: 0x{magic:08X}")

        # Read version
        version = self.read_uint32()
        if version != WASM_VERSION:
            raise ValueError(f"Unsupported WebAssembly version: {version}")

        last_id = 0
        while not self.at_end:
            section_id = self.read_byte()
            size = self.read_uleb128()
            end = self.position + size

            if section_id != WasmSectionId.CUSTOM:
                if section_id <= last_id:
                    raise ValueError(f"Section {section_id} out of order")
                last_id = section_id

            self._read_section(section_id)

            if self.position != end:
                raise ValueError(
                    f"Section {section_id} size mismatch: declared end {end}, parsed to {self.position}"
                )

        if len(self.module.functions) != len(self.module.code):
            raise ValueError(
                f"Function and code section disagree: {len(self.module.functions)} "
                f"signatures, {len(self.module.code)} bodies"
            )

    def _read_section(self, section_id: int) -> None:
        module = self.module
        if section_id == WasmSectionId.TYPE:
            module.types = self.read_vector(self._read_func_type)
        elif section_id == WasmSectionId.IMPORT:
            module.imports = self.read_vector(self._read_import)
        elif section_id == WasmSectionId.FUNCTION:
            module.functions = self.read_vector(self.read_uleb128)
        elif section_id == WasmSectionId.EXPORT:
            module.exports = self.read_vector(self._read_export)
        elif section_id == WasmSectionId.CODE:
            module.code = self.read_vector(self._read_func_body)
        elif section_id == WasmSectionId.DATA:
            module.data = self.read_vector(self._read_data_entry)
        else:
            raise ValueError(f"Unsupported section id: {section_id}")

    def _read_value_type(self) -> ValueType:
        b = self.read_byte()
        try:
            return ValueType(b)
        except ValueError:
            raise ValueError(f"Invalid value type: 0x{b:02X}") from None

    def _read_func_type(self) -> FuncType:
        form = self.read_byte()
        if form != FUNC_TYPE_FORM:
            raise ValueError(f"Invalid function type form: 0x{form:02X}")
        params = tuple(self.read_vector(self._read_value_type))
        results = tuple(self.read_vector(self._read_value_type))
        return FuncType(params, results)

    def _read_limits(self) -> Limits:
        flags = self.read_byte()
        if flags == LIMITS_MIN_ONLY:
            return Limits(self.read_uleb128())
        if flags == LIMITS_MIN_MAX:
            minimum = self.read_uleb128()
            return Limits(minimum, self.read_uleb128())
        raise ValueError(f"Invalid limits flags: 0x{flags:02X}")

    def _read_import(self) -> Import:
        entry = Import(module=self.read_name(), field=self.read_name())
        entry.kind = ExternalKind(self.read_byte())
        if entry.kind == ExternalKind.FUNCTION:
            entry.type_index = self.read_uleb128()
        elif entry.kind == ExternalKind.MEMORY:
            entry.limits = self._read_limits()
        else:
            raise ValueError(f"Unsupported import kind: {entry.kind!r}")
        return entry

    def _read_export(self) -> Export:
        name = self.read_name()
        kind = ExternalKind(self.read_byte())
        return Export(name, kind, self.read_uleb128())

    def _read_func_body(self) -> FuncBody:
        size = self.read_uleb128()
        end = self.position + size
        body = FuncBody()
        body.locals = self.read_vector(lambda: (self.read_uleb128(), self._read_value_type()))
        while self.position < end:
            body.instructions.append(self.read_instruction())
        if self.position != end:
            raise ValueError("Function body overruns its declared size")
        if not body.instructions or body.instructions[-1].opcode != Opcode.END:
            raise ValueError("Function body is not terminated by end")
        return body

    def _read_data_entry(self) -> DataEntry:
        entry = DataEntry()
        flags = self.read_uleb128()
        if flags == 0:
            entry.memory_index = 0
        elif flags == 2:
            entry.memory_index = self.read_uleb128()
        else:
            raise ValueError(f"Passive data segments are not supported (flags {flags})")

        init = self.read_instruction()
        if init.opcode != Opcode.I32_CONST:
            raise ValueError(f"Data offset must be an i32.const, got {init!r}")
        entry.offset = init.operand
        if self.read_instruction().opcode != Opcode.END:
            raise ValueError("Data offset expression is not terminated by end")

        entry.value = self.read_bytes(self.read_uleb128())
        return entry

    def read_instruction(self) -> Instruction:
        """Read one instruction and its immediate."""
        b = self.read_byte()
        try:
            opcode = Opcode(b)
        except ValueError:
            raise ValueError(f"Unsupported opcode 0x{b:02X} at offset {self.position - 1}") from None

        if opcode in BLOCK_OPCODES:
            return Instruction(opcode, self.read_byte())
        if opcode in INDEX_OPCODES:
            return Instruction(opcode, self.read_uleb128())
        if opcode in (Opcode.I32_CONST, Opcode.I64_CONST):
            return Instruction(opcode, self.read_sleb128())
        return Instruction(opcode)


def decode_module(data: bytes) -> Module:
    """
    Decode module bytes.

    Raises:
        ValueError: If the data is not a well-formed benchmark module
    """
    with WasmDecoder(data) as decoder:
        return decoder.module


def count_call_sites(body: FuncBody, function_index: int) -> int:
    """Number of `call` instructions targeting `function_index`."""
    return sum(
        1 for i in body.instructions
        if i.opcode == Opcode.CALL and i.operand == function_index
    )


def instruction_count(body: FuncBody) -> int:
    """Number of instructions including the terminating end."""
    return len(body.instructions)
