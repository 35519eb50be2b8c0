"""
Synthetic contract module builder.

Assembles a minimal WebAssembly contract from a declarative
`ModuleDefinition`. Every module exports exactly "deploy" and "call",
bound to the two internal functions placed right after the imported
functions, so a `call k` instruction in a generated body always targets
the k-th import.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..config import HostConfig, PAGE_SIZE, Schedule
from ..errors import ModuleEncodingError
from ..wasm.encoder import encode_module
from ..wasm.structures import (
    END, RETURN, DataEntry, Export, ExternalKind, FuncBody, FuncType, Import,
    Limits, Module, ValueType, call, i32_const, if_, to_i32,
)
from .instructions import body_repeated

logger = logging.getLogger(__name__)

# Module and field names of the fixed contract ABI
MEMORY_MODULE = 'env'
MEMORY_FIELD = 'memory'
HOST_MODULE = 'seal0'
DEPLOY_EXPORT = 'deploy'
CALL_EXPORT = 'call'

# Size of the empty module and of one `sized_code` expansion
BASE_MODULE_SIZE = 47
EXPANSION_SIZE = 6

# Body used for an entry point that was not given one
EMPTY_BODY = FuncBody(instructions=[END])


@dataclass(frozen=True)
class ImportedFunction:
    """Host function imported from the `seal0` namespace."""
    name: str
    params: List[ValueType] = field(default_factory=list)
    return_type: Optional[ValueType] = None

    @property
    def signature(self) -> FuncType:
        results = (self.return_type,) if self.return_type is not None else ()
        return FuncType(tuple(self.params), results)


@dataclass(frozen=True)
class ImportedMemory:
    """Linear memory imported as `env.memory`."""
    min_pages: int
    max_pages: int

    @classmethod
    def max(cls, schedule: Schedule) -> 'ImportedMemory':
        """Largest memory the schedule allows."""
        pages = schedule.max_memory_pages
        return cls(min_pages=pages, max_pages=pages)


@dataclass(frozen=True)
class DataSegment:
    """Bytes written to memory at `offset` on instantiation."""
    offset: int
    value: bytes


@dataclass
class ModuleDefinition:
    """Declarative description of a benchmark module."""
    data_segments: List[DataSegment] = field(default_factory=list)
    memory: Optional[ImportedMemory] = None
    imported_functions: List[ImportedFunction] = field(default_factory=list)
    deploy_body: Optional[FuncBody] = None
    call_body: Optional[FuncBody] = None


@dataclass(frozen=True)
class WasmModule:
    """Compiled module and its content hash."""
    code: bytes
    hash: bytes


class ModuleBuilder:
    """
    Builds `WasmModule`s for a given host.

    Attributes:
        host: Host capabilities (schedule limits and code hasher)
    """

    def __init__(self, host: HostConfig):
        self.host = host

    def build(self, definition: ModuleDefinition) -> WasmModule:
        """
        Encode a module definition.

        Raises:
            ModuleEncodingError: If the definition violates the layout
                constraints or cannot be encoded
        """
        module = self.assemble(definition)
        code = encode_module(module)
        code_hash = self.host.hash(code)
        logger.debug("Built module of %d bytes (%d imports), hash 0x%s",
                     len(code), len(definition.imported_functions), code_hash.hex())
        return WasmModule(code=code, hash=code_hash)

    def assemble(self, definition: ModuleDefinition) -> Module:
        """Lay out the module structure without encoding it."""
        self._validate(definition)
        module = Module()

        # Type 0 is the signature shared by both entry points
        entry_type = self._resolve_type(module, FuncType())

        if definition.memory is not None:
            module.imports.append(Import(
                module=MEMORY_MODULE,
                field=MEMORY_FIELD,
                kind=ExternalKind.MEMORY,
                limits=Limits(definition.memory.min_pages, definition.memory.max_pages),
            ))

        # Imported functions take indices 0..n-1
        for func in definition.imported_functions:
            module.imports.append(Import(
                module=HOST_MODULE,
                field=func.name,
                kind=ExternalKind.FUNCTION,
                type_index=self._resolve_type(module, func.signature),
            ))

        func_offset = len(definition.imported_functions)
        module.functions = [entry_type, entry_type]
        module.code = [
            definition.deploy_body if definition.deploy_body is not None else EMPTY_BODY,
            definition.call_body if definition.call_body is not None else EMPTY_BODY,
        ]
        module.exports = [
            Export(DEPLOY_EXPORT, ExternalKind.FUNCTION, func_offset),
            Export(CALL_EXPORT, ExternalKind.FUNCTION, func_offset + 1),
        ]

        for segment in definition.data_segments:
            module.data.append(DataEntry(
                memory_index=0,
                offset=to_i32(segment.offset),
                value=bytes(segment.value),
            ))

        return module

    @staticmethod
    def _resolve_type(module: Module, signature: FuncType) -> int:
        """Index of `signature` in the type section, appending it if new."""
        if signature in module.types:
            return module.types.index(signature)
        module.types.append(signature)
        return len(module.types) - 1

    def _validate(self, definition: ModuleDefinition) -> None:
        memory = definition.memory
        ceiling = self.host.schedule.max_memory_pages
        if memory is not None:
            if memory.max_pages < memory.min_pages:
                raise ModuleEncodingError(
                    f"Memory max pages ({memory.max_pages}) below min pages ({memory.min_pages})"
                )
            if memory.max_pages > ceiling:
                raise ModuleEncodingError(
                    f"Memory max pages ({memory.max_pages}) above the schedule limit ({ceiling})"
                )

        if not definition.data_segments:
            return
        if memory is None:
            raise ModuleEncodingError("Data segments require an imported memory")

        memory_size = memory.min_pages * PAGE_SIZE
        occupied = []
        for segment in definition.data_segments:
            start, end = segment.offset, segment.offset + len(segment.value)
            if start < 0 or end > memory_size:
                raise ModuleEncodingError(
                    f"Data segment [{start}, {end}) outside of initial memory of {memory_size} bytes"
                )
            for other_start, other_end in occupied:
                if start < other_end and other_start < end:
                    raise ModuleEncodingError(
                        f"Data segment [{start}, {end}) overlaps [{other_start}, {other_end})"
                    )
            if end > start:
                occupied.append((start, end))


def create_code(host: HostConfig, definition: ModuleDefinition) -> WasmModule:
    """Build a module with a throwaway builder."""
    return ModuleBuilder(host).build(definition)


def dummy_code(host: HostConfig) -> WasmModule:
    """Module with empty deploy and call bodies."""
    return create_code(host, ModuleDefinition())


def sized_code(host: HostConfig, target_bytes: int) -> WasmModule:
    """
    Module close to `target_bytes` in size without exceeding it.

    The base module is 47 bytes and each `i32.const 0; if; return; end`
    expansion adds 6 bytes. One expansion less is emitted because the
    LEB128 size fields of the code section and the body grow with the
    contract.
    """
    expansions = max(max(target_bytes - BASE_MODULE_SIZE, 0) // EXPANSION_SIZE - 1, 0)
    expansion = [i32_const(0), if_(), RETURN, END]
    return create_code(host, ModuleDefinition(
        call_body=body_repeated(expansions, expansion),
    ))


def getter_code(host: HostConfig, getter_name: str, repeat: int) -> WasmModule:
    """
    Module calling a `(out_ptr, out_len_ptr)` getter `repeat` times.

    The output length slot at offset 0 starts out as the whole memory
    minus the slot itself. The host overwrites it with the real size on
    every call, which does not change between calls.
    """
    memory = ImportedMemory.max(host.schedule)
    buffer_size = memory.max_pages * PAGE_SIZE - 4
    return create_code(host, ModuleDefinition(
        memory=memory,
        imported_functions=[ImportedFunction(
            name=getter_name,
            params=[ValueType.I32, ValueType.I32],
        )],
        data_segments=[DataSegment(offset=0, value=buffer_size.to_bytes(4, 'little'))],
        call_body=body_repeated(repeat, [
            i32_const(4),  # ptr where to store output
            i32_const(0),  # ptr to length
            call(0),
        ]),
    ))


def hasher_code(host: HostConfig, name: str, repeat: int, data_size: int) -> WasmModule:
    """Module hashing `data_size` bytes at offset 0 `repeat` times, output at 0."""
    return create_code(host, ModuleDefinition(
        memory=ImportedMemory.max(host.schedule),
        imported_functions=[ImportedFunction(
            name=name,
            params=[ValueType.I32, ValueType.I32, ValueType.I32],
        )],
        call_body=body_repeated(repeat, [
            i32_const(0),  # input_ptr
            i32_const(data_size),  # input_len
            i32_const(0),  # output_ptr
            call(0),
        ]),
    ))
