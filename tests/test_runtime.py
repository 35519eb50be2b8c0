import pytest

from contract_bench.config import MAX_WEIGHT, Schedule
from contract_bench.harness.instructions import body
from contract_bench.harness.lifecycle import Endow
from contract_bench.harness.module_builder import (
    DataSegment, ImportedFunction, ImportedMemory, ModuleDefinition, create_code, dummy_code,
    sized_code,
)
from contract_bench.runtime import (
    AliveContractInfo, DispatchError, Origin, TombstoneContractInfo,
)
from contract_bench.runtime.sandbox import U32_MAX
from contract_bench.wasm.encoder import encode_module
from contract_bench.wasm.structures import (
    DROP, UNREACHABLE, Export, ExternalKind, FuncType, Import, Limits, Module, ValueType,
    call, i32_const, i64_const,
)

I32 = ValueType.I32
I64 = ValueType.I64


def _storage_writer(host, key, trap):
    """Contract writing an empty value under `key`, then trapping if asked to."""
    return create_code(host, ModuleDefinition(
        memory=ImportedMemory(1, 1),
        imported_functions=[ImportedFunction('seal_set_storage', [I32, I32, I32])],
        data_segments=[DataSegment(0, key)],
        call_body=body([i32_const(0), i32_const(0), i32_const(0), call(0)]
                       + ([UNREACHABLE] if trap else [])),
    ))


class TestCode:
    def test_put_code_requires_signed_origin(self, runtime, host):
        with pytest.raises(DispatchError) as excinfo:
            runtime.put_code(Origin.root(), dummy_code(host).code)
        assert excinfo.value.module_error == 'BadOrigin'

    def test_put_code_too_large(self, runtime, host, driver):
        caller = driver.create_funded_user('caller', 0)
        code = sized_code(host, 8192).code
        with pytest.raises(DispatchError) as excinfo:
            runtime.put_code(Origin.signed(caller), code)
        assert excinfo.value.module_error == 'CodeTooLarge'

    def test_unknown_import_rejected(self, runtime, host):
        code = create_code(host, ModuleDefinition(
            imported_functions=[ImportedFunction('seal_does_not_exist', [I32])],
        )).code
        with pytest.raises(DispatchError) as excinfo:
            runtime.put_code_raw(code)
        assert excinfo.value.module_error == 'CodeRejected'

    def test_wrong_signature_rejected(self, runtime, host):
        code = create_code(host, ModuleDefinition(
            imported_functions=[ImportedFunction('seal_caller', [I32])],
        )).code
        with pytest.raises(DispatchError, match='Wrong signature'):
            runtime.put_code_raw(code)

    def test_missing_export_rejected(self, runtime):
        with pytest.raises(DispatchError, match="Missing export 'deploy'"):
            runtime.put_code_raw(encode_module(Module()))

    def test_stored_code_is_decoded(self, runtime, host):
        module = dummy_code(host)
        assert runtime.code(module.hash) is None
        assert runtime.put_code_raw(module.code) == module.hash
        assert runtime.code(module.hash).export('call') is not None


class TestInstantiate:
    @pytest.mark.parametrize('endowment, alive', [(16, False), (17, True), (10_000, True)])
    def test_alive_iff_endowment_reaches_subsistence(self, runtime, host, driver, endowment, alive):
        assert runtime.subsistence_threshold == 17
        caller = driver.create_funded_user('caller', 0)
        module = dummy_code(host)
        runtime.put_code_raw(module.code)
        addr = runtime.contract_address_for(module.hash, b'', caller)

        if alive:
            runtime.instantiate(Origin.signed(caller), endowment, MAX_WEIGHT, module.hash, b'')
            assert isinstance(runtime.contract_info(addr), AliveContractInfo)
            assert runtime.free_balance(addr) == endowment
        else:
            with pytest.raises(DispatchError) as excinfo:
                runtime.instantiate(Origin.signed(caller), endowment, MAX_WEIGHT, module.hash, b'')
            assert excinfo.value.module_error == 'NewContractNotFunded'
            assert runtime.contract_info(addr) is None
            assert runtime.free_balance(caller) == driver.funding()

    def test_code_not_found(self, runtime, driver):
        caller = driver.create_funded_user('caller', 0)
        with pytest.raises(DispatchError) as excinfo:
            runtime.instantiate(Origin.signed(caller), 100, MAX_WEIGHT, b'\x00' * 32, b'')
        assert excinfo.value.module_error == 'CodeNotFound'

    def test_duplicate_contract(self, runtime, host, driver):
        instance = driver.instantiate_from_index(0, dummy_code(host))
        with pytest.raises(DispatchError) as excinfo:
            runtime.instantiate(Origin.signed(instance.caller), 100, MAX_WEIGHT, instance.code_hash, b'')
        assert excinfo.value.module_error == 'DuplicateContract'

    def test_address_depends_on_input(self, runtime, host):
        module = dummy_code(host)
        caller = host.account('caller', 0)
        assert (runtime.contract_address_for(module.hash, b'a', caller)
                != runtime.contract_address_for(module.hash, b'b', caller))


class TestRent:
    def test_projection_of_rent_bearing_contract(self, runtime, host, driver):
        instance = driver.instantiate_from_index(0, dummy_code(host), endow=Endow.COLLECT_RENT)
        assert instance.endowment == 79_999
        assert runtime.rent_projection(instance.account_id).eviction_at == 19_996

    def test_projection_does_not_mutate(self, runtime, host, driver):
        instance = driver.instantiate_from_index(0, dummy_code(host), endow=Endow.COLLECT_RENT)
        runtime.set_block_number(10_000)
        before = runtime.contract_info(instance.account_id)
        runtime.rent_projection(instance.account_id)
        assert runtime.contract_info(instance.account_id) == before
        assert runtime.free_balance(instance.account_id) == instance.endowment

    def test_max_endowment_pays_no_rent(self, runtime, host, driver):
        instance = driver.instantiate_from_index(0, dummy_code(host))
        assert not runtime.rent_projection(instance.account_id).pays_rent

    def test_collect_rent_charges_then_evicts(self, runtime, host, driver):
        instance = driver.instantiate_from_index(0, dummy_code(host), endow=Endow.COLLECT_RENT)
        addr = instance.account_id

        runtime.set_block_number(101)
        info = runtime.collect_rent(addr)
        assert isinstance(info, AliveContractInfo)
        assert info.deduct_block == 101
        assert runtime.free_balance(addr) == instance.endowment - 100 * 4

        runtime.set_block_number(19_996 + 1)
        assert isinstance(runtime.collect_rent(addr), TombstoneContractInfo)
        assert runtime.free_balance(addr) == runtime.subsistence_threshold

    def test_signed_claim_uses_handicap(self, runtime, host, driver):
        instance = driver.instantiate_from_index(0, dummy_code(host), endow=Endow.COLLECT_RENT)
        addr = instance.account_id
        origin = Origin.signed(instance.caller)

        # Would be evicted now, but not two blocks earlier
        runtime.set_block_number(19_998)
        runtime.claim_surcharge(origin, addr, None)
        assert isinstance(runtime.contract_info(addr), AliveContractInfo)

        runtime.set_block_number(20_003)
        before = runtime.free_balance(instance.caller)
        runtime.claim_surcharge(origin, addr, None)
        assert isinstance(runtime.contract_info(addr), TombstoneContractInfo)
        assert runtime.free_balance(instance.caller) == before + host.rent.surcharge_reward

    def test_invalid_surcharge_claim(self, runtime, host, driver):
        instance = driver.instantiate_from_index(0, dummy_code(host), endow=Endow.COLLECT_RENT)
        with pytest.raises(DispatchError) as excinfo:
            runtime.claim_surcharge(Origin.none(), instance.account_id, None)
        assert excinfo.value.module_error == 'InvalidSurchargeClaim'

    def test_call_into_tombstone_is_rejected(self, runtime, host, driver):
        tombstone = driver.create_tombstone(0, 0)
        caller = tombstone.contract.caller
        with pytest.raises(DispatchError) as excinfo:
            runtime.call(Origin.signed(caller), tombstone.contract.addr, 0, MAX_WEIGHT, b'')
        assert excinfo.value.module_error == 'NotCallable'


class TestSchedule:
    def test_update_requires_root_and_higher_version(self, runtime):
        current = runtime.current_schedule()
        with pytest.raises(DispatchError, match='BadOrigin'):
            runtime.update_schedule(Origin.none(), Schedule(version=current.version + 1))
        with pytest.raises(DispatchError, match='InvalidScheduleVersion'):
            runtime.update_schedule(Origin.root(), Schedule(version=current.version))

        runtime.update_schedule(Origin.root(), Schedule(version=current.version + 1))
        assert runtime.current_schedule().version == current.version + 1

    def test_reset_restores_configured_schedule(self, runtime, host):
        runtime.update_schedule(Origin.root(), Schedule(version=5))
        runtime.set_block_number(3)
        runtime.reset()
        assert runtime.current_schedule() == host.schedule
        assert runtime.block_number == 0


class TestRollback:
    def test_trapped_call_leaves_no_trace(self, runtime, host, driver):
        key = host.hash_of(7)
        instance = driver.instantiate_from_index(0, _storage_writer(host, key, trap=True))
        driver.fund(instance.caller)
        caller_balance = runtime.free_balance(instance.caller)
        contract_balance = runtime.free_balance(instance.account_id)
        events = len(runtime.events)

        with pytest.raises(DispatchError) as excinfo:
            runtime.call(Origin.signed(instance.caller), instance.addr, 50, MAX_WEIGHT, b'')
        assert excinfo.value.module_error == 'ContractTrapped'

        assert runtime.read_storage(instance.account_id, key) is None
        assert runtime.free_balance(instance.caller) == caller_balance
        assert runtime.free_balance(instance.account_id) == contract_balance
        assert len(runtime.events) == events

    def test_successful_call_commits(self, runtime, host, driver):
        key = host.hash_of(7)
        instance = driver.instantiate_from_index(0, _storage_writer(host, key, trap=False))
        runtime.call(Origin.signed(instance.caller), instance.addr, 0, MAX_WEIGHT, b'')
        assert runtime.read_storage(instance.account_id, key) == b''

    def test_trapped_nested_call_is_rolled_back(self, runtime, host, driver):
        key = host.hash_of(7)
        callee = driver.instantiate_from_index(1, _storage_writer(host, key, trap=True))
        value_bytes = host.encode_balance(0)
        outer = driver.instantiate_from_index(0, create_code(host, ModuleDefinition(
            memory=ImportedMemory(1, 1),
            imported_functions=[ImportedFunction(
                'seal_call', [I32, I32, I64, I32, I32, I32, I32, I32, I32], I32,
            )],
            data_segments=[
                DataSegment(0, value_bytes),
                DataSegment(len(value_bytes), callee.account_id),
            ],
            call_body=body([
                i32_const(len(value_bytes)),  # callee_ptr
                i32_const(len(callee.account_id)),  # callee_len
                i64_const(0),  # gas
                i32_const(0),  # value_ptr
                i32_const(len(value_bytes)),  # value_len
                i32_const(0),  # input_data_ptr
                i32_const(0),  # input_data_len
                i32_const(U32_MAX),  # output_ptr
                i32_const(0),  # output_len_ptr
                call(0),
                DROP,
            ]),
        )))

        # The outer call succeeds although the nested one trapped
        result = runtime.call(Origin.signed(outer.caller), outer.addr, 0, MAX_WEIGHT, b'')
        assert result.is_success
        assert runtime.read_storage(callee.account_id, key) is None


class TestPrepare:
    def test_memory_must_be_env_memory(self, runtime):
        module = Module(
            types=[FuncType()],
            imports=[Import('env', 'mem', ExternalKind.MEMORY, limits=Limits(1, 1))],
            functions=[0, 0],
            exports=[Export('deploy', ExternalKind.FUNCTION, 0), Export('call', ExternalKind.FUNCTION, 1)],
            code=[body([]), body([])],
        )
        with pytest.raises(DispatchError, match="Memory imported as 'env.mem'"):
            runtime.put_code_raw(encode_module(module))

    def test_unbounded_memory_rejected(self, runtime):
        module = Module(
            types=[FuncType()],
            imports=[Import('env', 'memory', ExternalKind.MEMORY, limits=Limits(1))],
            functions=[0, 0],
            exports=[Export('deploy', ExternalKind.FUNCTION, 0), Export('call', ExternalKind.FUNCTION, 1)],
            code=[body([]), body([])],
        )
        with pytest.raises(DispatchError, match='exceeds the schedule'):
            runtime.put_code_raw(encode_module(module))
