import dataclasses

import pytest

from contract_bench.config import MAX_WEIGHT, Config, HostConfig, RentParameters
from contract_bench.errors import SetupError, VerificationError
from contract_bench.harness.lifecycle import STORAGE_FILL_BYTE, ContractLifecycleDriver, Endow
from contract_bench.harness.module_builder import dummy_code, getter_code
from contract_bench.runtime import AliveContractInfo, InMemoryRuntime, Origin, TombstoneContractInfo
from contract_bench.wasm import count_call_sites, decode_module


def test_funding(driver, host, runtime):
    user = driver.create_funded_user('caller', 3)
    assert user == host.account('caller', 3)
    assert runtime.free_balance(user) == host.max_balance // 2
    assert driver.max_endowment() == driver.funding() - runtime.minimum_balance


def test_deploy_is_idempotent(driver, host):
    module = dummy_code(host)
    assert driver.deploy(module) == module.hash
    assert driver.deploy(module) == module.hash


def test_instantiate_max(driver, host, runtime):
    instance = driver.instantiate_from_index(0, dummy_code(host))
    assert instance.caller == host.account('instantiator', 0)
    assert instance.endowment == driver.max_endowment()
    assert runtime.block_number == 1
    info = driver.assert_alive(instance.account_id)
    assert info.storage_size == 0


def test_rent_bearing_endowment(driver):
    storage_size, endowment = driver.rent_bearing_endowment()
    assert storage_size == 17 // 10_000
    assert endowment == 10_000 * (storage_size + 8) - 1


def test_unknown_rent_version_rejected():
    host = HostConfig(Config(rent=RentParameters(version=99)))
    driver = ContractLifecycleDriver(InMemoryRuntime(host))
    with pytest.raises(SetupError, match='Rent model version 99'):
        driver.rent_bearing_endowment()


def test_getter_called_three_times(driver, host, runtime):
    module = getter_code(host, 'seal_caller', 3)
    instance = driver.instantiate_from_index(0, module)

    result = runtime.call(Origin.signed(instance.caller), instance.addr, 0, MAX_WEIGHT, b'')
    assert result.is_success

    decoded = decode_module(module.code)
    call_body = decoded.function_body(decoded.export('call').index)
    assert count_call_sites(call_body, 0) == 3


def test_storage_helpers(driver, host, runtime):
    items = driver.create_storage(3, 5)
    assert [key for key, _ in items] == [host.hash_of(i) for i in range(3)]
    assert all(value == bytes([STORAGE_FILL_BYTE]) * 5 for _, value in items)

    instance = driver.instantiate_from_index(0, dummy_code(host))
    driver.seed_storage(instance.account_id, items)
    info = runtime.contract_info(instance.account_id)
    assert info.storage_size == 15
    assert info.total_pair_count == 3
    assert runtime.read_storage(instance.account_id, host.hash_of(2)) == items[2][1]


def test_seed_storage_needs_live_contract(driver, host):
    with pytest.raises(SetupError, match='alive'):
        driver.seed_storage(host.account('nobody', 0), [(host.hash_of(0), b'x')])


def test_eviction_at_requires_rent(driver, host):
    instance = driver.instantiate_from_index(0, dummy_code(host))
    with pytest.raises(SetupError, match='does not pay rent'):
        driver.eviction_at(instance.account_id)


def test_eviction_at_requires_contract(driver, host):
    with pytest.raises(SetupError, match='Invalid account for rent'):
        driver.eviction_at(host.account('nobody', 0))


def test_rent_collection_before_eviction_keeps_contract(driver, host, runtime):
    instance = driver.instantiate_from_index(0, dummy_code(host), endow=Endow.COLLECT_RENT)
    runtime.set_block_number(driver.eviction_at(instance.account_id))
    assert isinstance(runtime.collect_rent(instance.account_id), AliveContractInfo)


def test_force_eviction(driver, host, runtime):
    instance = driver.instantiate_from_index(0, dummy_code(host), endow=Endow.COLLECT_RENT)
    eviction_at = driver.eviction_at(instance.account_id)
    driver.force_eviction(instance.account_id)
    assert runtime.block_number == eviction_at + host.rent.signed_claim_handicap + 5
    driver.assert_tombstone(instance.account_id)


def test_tombstone_retains_storage(driver, host, runtime):
    tombstone = driver.create_tombstone(10, 100)
    addr = tombstone.contract.account_id

    info = runtime.contract_info(addr)
    assert isinstance(info, TombstoneContractInfo)
    assert len(tombstone.storage) == 10
    assert all(len(value) == 100 for _, value in tombstone.storage)
    assert info.hash == runtime.tombstone_hash(tombstone.storage, tombstone.contract.code_hash)
    # Storage of a tombstone is gone from the chain
    assert runtime.read_storage(addr, tombstone.storage[0][0]) is None


def test_tombstone_is_immutable(driver):
    tombstone = driver.create_tombstone(2, 8)
    assert isinstance(tombstone.storage, tuple)
    with pytest.raises(dataclasses.FrozenInstanceError):
        tombstone.storage = ()


def test_state_assertions(driver, host):
    addr = host.account('nobody', 0)
    driver.assert_absent(addr)
    with pytest.raises(SetupError, match='Expected contract to be alive at this point.'):
        driver.assert_alive(addr)
    with pytest.raises(VerificationError, match='tombstone'):
        driver.assert_tombstone(addr, VerificationError)

    instance = driver.instantiate_from_index(0, dummy_code(host))
    with pytest.raises(SetupError, match='does not exist'):
        driver.assert_absent(instance.account_id)
