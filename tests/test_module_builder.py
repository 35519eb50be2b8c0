import pytest

from contract_bench.config import PAGE_SIZE
from contract_bench.errors import ModuleEncodingError
from contract_bench.harness.module_builder import (
    BASE_MODULE_SIZE, DataSegment, ImportedFunction, ImportedMemory, ModuleBuilder,
    ModuleDefinition, dummy_code, getter_code, hasher_code, sized_code,
)
from contract_bench.wasm import count_call_sites, decode_module, encode_module, instruction_count
from contract_bench.wasm.structures import END, ExternalKind, FuncType, ValueType

I32 = ValueType.I32


def test_empty_module_size(host):
    module = dummy_code(host)
    assert len(module.code) == BASE_MODULE_SIZE == 47
    assert module.hash == host.hash(module.code)


def test_empty_module_layout(host):
    module = decode_module(dummy_code(host).code)
    assert module.types == [FuncType()]
    assert module.imports == []
    assert [(e.field, e.index) for e in module.exports] == [('deploy', 0), ('call', 1)]
    assert [b.instructions for b in module.code] == [[END], [END]]


def test_build_is_deterministic(host):
    first = getter_code(host, 'seal_caller', 5)
    second = getter_code(host, 'seal_caller', 5)
    assert first == second
    assert getter_code(host, 'seal_caller', 6).hash != first.hash


def test_decode_reencode_is_identical(host):
    for module in (dummy_code(host), getter_code(host, 'seal_now', 3),
                   hasher_code(host, 'seal_hash_sha2_256', 2, 64), sized_code(host, 512)):
        assert encode_module(decode_module(module.code)) == module.code


def test_getter_layout(host):
    module = decode_module(getter_code(host, 'seal_caller', 3).code)

    memory, getter = module.imports
    assert (memory.module, memory.field, memory.kind) == ('env', 'memory', ExternalKind.MEMORY)
    assert memory.limits.minimum == memory.limits.maximum == host.schedule.max_memory_pages
    assert (getter.module, getter.field) == ('seal0', 'seal_caller')
    assert module.types[getter.type_index] == FuncType((I32, I32))

    # Entry points come right after the single imported function
    assert module.export('call').index == 2
    call_body = module.function_body(2)
    assert count_call_sites(call_body, 0) == 3
    assert instruction_count(call_body) == 3 * 3 + 1

    (segment,) = module.data
    assert segment.offset == 0
    assert int.from_bytes(segment.value, 'little') == host.schedule.max_memory_pages * PAGE_SIZE - 4


def test_shared_signatures_are_deduplicated(host):
    module = ModuleBuilder(host).assemble(ModuleDefinition(
        imported_functions=[
            ImportedFunction('seal_caller', [I32, I32]),
            ImportedFunction('seal_address', [I32, I32]),
            ImportedFunction('seal_get_storage', [I32, I32, I32], I32),
        ],
    ))
    assert module.types == [FuncType(), FuncType((I32, I32)), FuncType((I32, I32, I32), (I32,))]
    assert [i.type_index for i in module.imports] == [1, 1, 2]


@pytest.mark.parametrize('target', [0, 47, 59, 100, 1000, 4096])
def test_sized_code_stays_below_target(host, target):
    size = len(sized_code(host, target).code)
    assert size <= max(target, BASE_MODULE_SIZE)
    # At most two expansions short of the target
    assert size > target - 3 * 6


def test_sized_code_expansion_size(host):
    assert len(sized_code(host, BASE_MODULE_SIZE + 12).code) == BASE_MODULE_SIZE + 6


class TestValidation:
    def test_data_without_memory(self, host):
        with pytest.raises(ModuleEncodingError, match='imported memory'):
            ModuleBuilder(host).build(ModuleDefinition(data_segments=[DataSegment(0, b'x')]))

    def test_overlapping_segments(self, host):
        with pytest.raises(ModuleEncodingError, match='overlaps'):
            ModuleBuilder(host).build(ModuleDefinition(
                memory=ImportedMemory(1, 1),
                data_segments=[DataSegment(0, b'abcd'), DataSegment(2, b'ef')],
            ))

    def test_segment_outside_memory(self, host):
        with pytest.raises(ModuleEncodingError, match='outside'):
            ModuleBuilder(host).build(ModuleDefinition(
                memory=ImportedMemory(1, 1),
                data_segments=[DataSegment(PAGE_SIZE - 1, b'ab')],
            ))

    def test_memory_above_schedule(self, host):
        pages = host.schedule.max_memory_pages + 1
        with pytest.raises(ModuleEncodingError, match='schedule limit'):
            ModuleBuilder(host).build(ModuleDefinition(memory=ImportedMemory(pages, pages)))

    def test_memory_max_below_min(self, host):
        with pytest.raises(ModuleEncodingError, match='below min'):
            ModuleBuilder(host).build(ModuleDefinition(memory=ImportedMemory(2, 1)))

    def test_adjacent_segments_are_fine(self, host):
        module = ModuleBuilder(host).build(ModuleDefinition(
            memory=ImportedMemory(1, 1),
            data_segments=[DataSegment(0, b'ab'), DataSegment(2, b'cd'), DataSegment(4, b'')],
        ))
        assert len(decode_module(module.code).data) == 3
