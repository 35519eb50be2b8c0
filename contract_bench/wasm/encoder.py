"""
WebAssembly module encoder.

Turns a `Module` into its binary representation. Sections are emitted in
the canonical order and empty sections are omitted, so encoding the result
of `decode_module` reproduces the input byte for byte.
"""

from typing import List

from ..errors import ModuleEncodingError
from ..io.binary_stream import BinaryStream
from .structures import (
    BLOCK_OPCODES, INDEX_OPCODES, FUNC_TYPE_FORM, LIMITS_MIN_MAX, LIMITS_MIN_ONLY,
    WASM_MAGIC, WASM_VERSION,
    DataEntry, Export, ExternalKind, FuncBody, FuncType, Import, Instruction,
    Limits, Module, Opcode, WasmSectionId,
)


class WasmEncoder(BinaryStream):
    """
    Encoder writing a module into an in-memory stream.

    Use `encode_module()` unless you need to reuse the writer primitives.
    """

    def __init__(self):
        super().__init__()

    def encode(self, module: Module) -> bytes:
        """Encode a whole module and return the bytes."""
        self.write_uint32(WASM_MAGIC)
        self.write_uint32(WASM_VERSION)

        if module.types:
            self._write_section(WasmSectionId.TYPE, module.types, _write_func_type)
        if module.imports:
            self._write_section(WasmSectionId.IMPORT, module.imports, _write_import)
        if module.functions:
            self._write_section(WasmSectionId.FUNCTION, module.functions,
                                lambda s, idx: s.write_uleb128(idx))
        if module.exports:
            self._write_section(WasmSectionId.EXPORT, module.exports, _write_export)
        if module.code:
            self._write_section(WasmSectionId.CODE, module.code, _write_func_body)
        if module.data:
            self._write_section(WasmSectionId.DATA, module.data, _write_data_entry)

        return self.get_data()

    def _write_section(self, section_id: WasmSectionId, entries: List, write_entry) -> None:
        """Write a vector section: id, byte size, count, entries."""
        payload = BinaryStream()
        payload.write_uleb128(len(entries))
        for entry in entries:
            write_entry(payload, entry)

        self.write_byte(section_id)
        self.write_sized(payload.get_data())


def _write_func_type(stream: BinaryStream, func_type: FuncType) -> None:
    stream.write_byte(FUNC_TYPE_FORM)
    stream.write_uleb128(len(func_type.params))
    for param in func_type.params:
        stream.write_byte(param)
    stream.write_uleb128(len(func_type.results))
    for result in func_type.results:
        stream.write_byte(result)


def _write_limits(stream: BinaryStream, limits: Limits) -> None:
    if limits.maximum is None:
        stream.write_byte(LIMITS_MIN_ONLY)
        stream.write_uleb128(limits.minimum)
    else:
        stream.write_byte(LIMITS_MIN_MAX)
        stream.write_uleb128(limits.minimum)
        stream.write_uleb128(limits.maximum)


def _write_import(stream: BinaryStream, entry: Import) -> None:
    stream.write_name(entry.module)
    stream.write_name(entry.field)
    stream.write_byte(entry.kind)
    if entry.kind == ExternalKind.FUNCTION:
        stream.write_uleb128(entry.type_index)
    elif entry.kind == ExternalKind.MEMORY:
        if entry.limits is None:
            raise ModuleEncodingError(f"Memory import {entry.module}.{entry.field} has no limits")
        _write_limits(stream, entry.limits)
    else:
        raise ModuleEncodingError(f"Unsupported import kind: {entry.kind!r}")


def _write_export(stream: BinaryStream, entry: Export) -> None:
    stream.write_name(entry.field)
    stream.write_byte(entry.kind)
    stream.write_uleb128(entry.index)


def write_instruction(stream: BinaryStream, instruction: Instruction) -> None:
    """Write a single instruction with its immediate."""
    opcode = instruction.opcode
    stream.write_byte(opcode)
    if opcode in BLOCK_OPCODES:
        stream.write_byte(instruction.operand)
    elif opcode in INDEX_OPCODES:
        stream.write_uleb128(instruction.operand)
    elif opcode in (Opcode.I32_CONST, Opcode.I64_CONST):
        stream.write_sleb128(instruction.operand)


def _write_func_body(stream: BinaryStream, body: FuncBody) -> None:
    """Bodies are prefixed with their own byte size."""
    inner = BinaryStream()
    inner.write_uleb128(len(body.locals))
    for count, value_type in body.locals:
        inner.write_uleb128(count)
        inner.write_byte(value_type)
    for instruction in body.instructions:
        write_instruction(inner, instruction)
    stream.write_sized(inner.get_data())


def _write_data_entry(stream: BinaryStream, entry: DataEntry) -> None:
    if entry.memory_index == 0:
        stream.write_uleb128(0x00)
    else:
        stream.write_uleb128(0x02)
        stream.write_uleb128(entry.memory_index)
    write_instruction(stream, Instruction(Opcode.I32_CONST, entry.offset))
    write_instruction(stream, Instruction(Opcode.END))
    stream.write_sized(entry.value)


def encode_module(module: Module) -> bytes:
    """
    Encode a module to bytes.

    Raises:
        ModuleEncodingError: If the module contains something that cannot be
            represented (negative indices, unsupported import kinds, ...)
    """
    try:
        with WasmEncoder() as encoder:
            return encoder.encode(module)
    except (ValueError, TypeError, OverflowError) as e:
        raise ModuleEncodingError(f"Cannot encode module: {e}") from e
