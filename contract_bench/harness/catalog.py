"""
Benchmark catalog.

Every benchmark isolates one host-exposed operation. Its setup builds the
fixtures through the lifecycle driver and returns a `Scenario`: exactly one
measured dispatch plus an optional post-condition check. Components are the
free variables the cost is later fitted against; their bounds depend on the
host configuration.

API benchmarks repeat the host function call `r * api_benchmark_batch_size`
times with `r` in `0..api_benchmark_batches`. Per-kb and per-topic
benchmarks use a fixed multiplier of `api_benchmark_batch_size`.
"""

from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config import HostConfig, MAX_WEIGHT, PAGE_SIZE
from ..errors import SetupError, VerificationError
from ..io import scale
from ..runtime.base import Runtime
from ..runtime.sandbox import U32_MAX
from ..runtime.types import Origin
from ..wasm.structures import (
    DROP, ELSE, END, I32_EQZ, NOP, UNREACHABLE, ValueType, call, i32_const, i64_const, if_,
)
from .instructions import Counter, Regular, body, body_counted, body_repeated
from .lifecycle import Contract, ContractLifecycleDriver, Endow, Tombstone
from .module_builder import (
    DataSegment, ImportedFunction, ImportedMemory, ModuleDefinition, WasmModule,
    create_code, dummy_code, getter_code, hasher_code, sized_code,
)

I32 = ValueType.I32
I64 = ValueType.I64

RangeFn = Callable[[HostConfig], Tuple[int, int]]

# Filler byte of generated call and instantiate payloads
PAYLOAD_BYTE = 42


@dataclass(frozen=True)
class Component:
    """A free variable of a benchmark with inclusive bounds."""
    name: str
    low: int
    high: int

    def values(self, steps: int) -> List[int]:
        """
        `steps` evenly spaced values from low to high, de-duplicated.

        A single step yields only the high end.
        """
        if steps <= 0:
            raise ValueError(f"Steps must be positive, got {steps}")
        if steps == 1 or self.low == self.high:
            return [self.high]
        span = self.high - self.low
        values: List[int] = []
        for k in range(steps):
            value = self.low + span * k // (steps - 1)
            if value not in values:
                values.append(value)
        return values


@dataclass
class MeasuredCall:
    """The single runtime dispatch a benchmark measures."""
    function: str
    origin: Origin
    args: Tuple = ()

    def dispatch(self, runtime: Runtime) -> Any:
        return getattr(runtime, self.function)(self.origin, *self.args)


@dataclass
class Scenario:
    measured: MeasuredCall
    verify: Optional[Callable[[], None]] = None


@dataclass(frozen=True)
class Benchmark:
    """
    A catalog entry.

    Attributes:
        name: Unique name, usually the dispatchable or host function measured
        ranges: (component name, bounds of the component for a host) pairs
        setup: Builds the scenario from a driver and the component values
        description: One line summary
    """
    name: str
    ranges: Tuple[Tuple[str, RangeFn], ...]
    setup: Callable[..., Scenario]
    description: str = ''

    def components(self, host: HostConfig) -> List[Component]:
        return [Component(name, *bounds(host)) for name, bounds in self.ranges]

    def prepare(self, driver: ContractLifecycleDriver, values: Dict[str, int]) -> Scenario:
        """
        Run the setup for one set of component values.

        Raises:
            SetupError: If a component is missing, unknown or out of range,
                or if the setup itself fails
        """
        components = {c.name: c for c in self.components(driver.host)}
        unknown = set(values) - set(components)
        if unknown:
            raise SetupError(f"Unknown components for '{self.name}': {', '.join(sorted(unknown))}")
        for name, component in components.items():
            if name not in values:
                raise SetupError(f"Missing component '{name}' for '{self.name}'")
            if not component.low <= values[name] <= component.high:
                raise SetupError(
                    f"Component '{name}' of '{self.name}' must be in "
                    f"{component.low}..{component.high}, got {values[name]}"
                )
        return self.setup(driver, **values)


CATALOG: Dict[str, Benchmark] = {}


def register(name: str, setup: Callable[..., Scenario], description: str = '',
             **ranges: RangeFn) -> Benchmark:
    if name in CATALOG:
        raise ValueError(f"Benchmark '{name}' is already registered")
    if not description and setup.__doc__:
        description = setup.__doc__.strip().splitlines()[0]
    entry = Benchmark(name, tuple(ranges.items()), setup, description)
    CATALOG[name] = entry
    return entry


def benchmark(name: str, **ranges: RangeFn):
    """Register the decorated setup under `name`."""
    def decorator(setup: Callable[..., Scenario]) -> Callable[..., Scenario]:
        register(name, setup, **ranges)
        return setup
    return decorator


def get_benchmark(name: str) -> Benchmark:
    try:
        return CATALOG[name]
    except KeyError:
        raise KeyError(f"Unknown benchmark '{name}'") from None


# ========== Component Bounds ==========

def _batches(host: HostConfig) -> Tuple[int, int]:
    return 0, host.config.api_benchmark_batches


def _once(host: HostConfig) -> Tuple[int, int]:
    return 0, 1


def _memory_kb(host: HostConfig) -> Tuple[int, int]:
    return 0, host.schedule.max_memory_pages * 64


def _spare_memory_kb(host: HostConfig) -> Tuple[int, int]:
    return 0, max(host.schedule.max_memory_pages - 1, 0) * 64


def _value_kb(host: HostConfig) -> Tuple[int, int]:
    return 0, host.config.max_value_size // 1024


def _code_kb(host: HostConfig) -> Tuple[int, int]:
    return 0, host.schedule.max_code_size // 1024


def _topics(host: HostConfig) -> Tuple[int, int]:
    return 0, host.schedule.max_event_topics


# ========== Helpers ==========

def _batch_size(driver: ContractLifecycleDriver) -> int:
    return driver.host.config.api_benchmark_batch_size


def _max_pages(driver: ContractLifecycleDriver) -> int:
    return driver.runtime.current_schedule().max_memory_pages


def _u32(value: int) -> bytes:
    return value.to_bytes(4, 'little')


def _instance(driver: ContractLifecycleDriver, module: WasmModule,
              endow: Endow = Endow.MAX) -> Contract:
    return driver.instantiate_from_index(0, module, endow=endow)


def _call(instance: Contract, value: int = 0, data: bytes = b'') -> MeasuredCall:
    return MeasuredCall('call', Origin.signed(instance.caller),
                        (instance.addr, value, MAX_WEIGHT, data))


def _ensure(condition: bool, message: str) -> None:
    if not condition:
        raise VerificationError(message)


def _call_of(driver: ContractLifecycleDriver, definition: ModuleDefinition) -> Scenario:
    """Instantiate `definition` and measure a plain call into it."""
    return Scenario(_call(_instance(driver, create_code(driver.host, definition))))


# ========== Dispatchables ==========

@benchmark('update_schedule')
def _update_schedule(driver: ContractLifecycleDriver) -> Scenario:
    """Replace the schedule with the next version."""
    current = driver.runtime.current_schedule()
    schedule = replace(current, version=current.version + 1)

    def verify() -> None:
        _ensure(driver.runtime.current_schedule().version == schedule.version,
                "Schedule was not updated")

    return Scenario(MeasuredCall('update_schedule', Origin.root(), (schedule,)), verify)


@benchmark('put_code', n=_code_kb)
def _put_code(driver: ContractLifecycleDriver, n: int) -> Scenario:
    """Store `n` kb of code built to be maximally expensive to instrument."""
    caller = driver.create_funded_user('caller', 0)
    module = sized_code(driver.host, n * 1024)
    return Scenario(MeasuredCall('put_code', Origin.signed(caller), (module.code,)))


@benchmark('instantiate', n=_memory_kb)
def _instantiate(driver: ContractLifecycleDriver, n: int) -> Scenario:
    """Instantiate a dummy contract, hashing `n` kb of constructor input for its address."""
    runtime = driver.runtime
    data = bytes([PAYLOAD_BYTE]) * (n * 1024)
    endowment = runtime.subsistence_threshold
    caller = driver.create_funded_user('caller', 0)
    module = dummy_code(driver.host)
    addr = runtime.contract_address_for(module.hash, data, caller)
    driver.deploy(module)

    def verify() -> None:
        _ensure(runtime.free_balance(caller) == driver.funding() - endowment,
                "Endowment was not removed from the caller")
        # No rent was collected yet
        _ensure(runtime.free_balance(addr) == endowment,
                "Contract does not hold its full endowment")
        driver.assert_alive(addr, VerificationError)

    measured = MeasuredCall('instantiate', Origin.signed(caller),
                            (endowment, MAX_WEIGHT, module.hash, data))
    return Scenario(measured, verify)


@benchmark('call')
def _call_extrinsic(driver: ContractLifecycleDriver) -> Scenario:
    """Call a dummy contract that pays rent, right before its eviction."""
    runtime = driver.runtime
    data = bytes([PAYLOAD_BYTE]) * 1024
    instance = _instance(driver, dummy_code(driver.host), Endow.COLLECT_RENT)
    value = runtime.minimum_balance * 100

    # Worst case: the call collects almost all of the remaining budget
    runtime.set_block_number(driver.eviction_at(instance.account_id) - 5)
    before = runtime.free_balance(instance.account_id)

    def verify() -> None:
        _ensure(runtime.free_balance(instance.caller) == driver.funding() - instance.endowment - value,
                "Endowment and value were not removed from the caller")
        _ensure(runtime.free_balance(instance.account_id) < before + value,
                "No rent was collected")
        driver.assert_alive(instance.account_id, VerificationError)

    return Scenario(_call(instance, value, data), verify)


@benchmark('claim_surcharge')
def _claim_surcharge(driver: ContractLifecycleDriver) -> Scenario:
    """Evict an empty contract through a signed surcharge claim."""
    runtime = driver.runtime
    rent = driver.host.rent
    instance = _instance(driver, dummy_code(driver.host), Endow.COLLECT_RENT)
    driver.assert_alive(instance.account_id)

    runtime.set_block_number(driver.eviction_at(instance.account_id) + rent.signed_claim_handicap + 5)

    def verify() -> None:
        driver.assert_tombstone(instance.account_id, VerificationError)
        expected = driver.funding() - instance.endowment + rent.surcharge_reward
        _ensure(runtime.free_balance(instance.caller) == expected,
                "Claimant did not receive the surcharge reward")

    measured = MeasuredCall('claim_surcharge', Origin.signed(instance.caller),
                            (instance.account_id, None))
    return Scenario(measured, verify)


# ========== Getters ==========

GETTERS = (
    'seal_caller',
    'seal_address',
    'seal_gas_left',
    'seal_balance',
    'seal_value_transferred',
    'seal_minimum_balance',
    'seal_tombstone_deposit',
    'seal_rent_allowance',
    'seal_block_number',
    'seal_now',
)


def _getter_setup(getter_name: str) -> Callable[..., Scenario]:
    def setup(driver: ContractLifecycleDriver, r: int) -> Scenario:
        module = getter_code(driver.host, getter_name, r * _batch_size(driver))
        return Scenario(_call(_instance(driver, module)))
    return setup


for _getter in GETTERS:
    register(_getter, _getter_setup(_getter), f"Call {_getter} r batches of times", r=_batches)


@benchmark('seal_weight_to_fee', r=_batches)
def _seal_weight_to_fee(driver: ContractLifecycleDriver, r: int) -> Scenario:
    """Convert a fixed weight to a fee r batches of times."""
    buffer_size = _max_pages(driver) * PAGE_SIZE - 4
    return _call_of(driver, ModuleDefinition(
        memory=ImportedMemory.max(driver.runtime.current_schedule()),
        imported_functions=[ImportedFunction('seal_weight_to_fee', [I64, I32, I32])],
        data_segments=[DataSegment(0, _u32(buffer_size))],
        call_body=body_repeated(r * _batch_size(driver), [
            i64_const(500_000),
            i32_const(4),  # out_ptr
            i32_const(0),  # out_len_ptr
            call(0),
        ]),
    ))


@benchmark('seal_gas', r=_batches)
def _seal_gas(driver: ContractLifecycleDriver, r: int) -> Scenario:
    """Charge gas r batches of times."""
    return _call_of(driver, ModuleDefinition(
        imported_functions=[ImportedFunction('gas', [I32])],
        call_body=body_repeated(r * _batch_size(driver), [
            i32_const(42),
            call(0),
        ]),
    ))


# ========== Input And Output ==========

@benchmark('seal_input', r=_once)
def _seal_input(driver: ContractLifecycleDriver, r: int) -> Scenario:
    """Copy empty input; the input can only be read once per call."""
    return _call_of(driver, ModuleDefinition(
        memory=ImportedMemory.max(driver.runtime.current_schedule()),
        imported_functions=[ImportedFunction('seal_input', [I32, I32])],
        data_segments=[DataSegment(0, _u32(0))],
        call_body=body_repeated(r, [
            i32_const(4),  # ptr where to store output
            i32_const(0),  # ptr to length
            call(0),
        ]),
    ))


@benchmark('seal_input_per_kb', n=_memory_kb)
def _seal_input_per_kb(driver: ContractLifecycleDriver, n: int) -> Scenario:
    """Copy `n` kb of input into contract memory."""
    buffer_size = _max_pages(driver) * PAGE_SIZE - 4
    instance = _instance(driver, create_code(driver.host, ModuleDefinition(
        memory=ImportedMemory.max(driver.runtime.current_schedule()),
        imported_functions=[ImportedFunction('seal_input', [I32, I32])],
        data_segments=[DataSegment(0, _u32(buffer_size))],
        call_body=body([
            i32_const(4),  # ptr where to store output
            i32_const(0),  # ptr to length
            call(0),
        ]),
    )))
    data = bytes([PAYLOAD_BYTE]) * min(n * 1024, buffer_size)
    return Scenario(_call(instance, data=data))


def _return_code(driver: ContractLifecycleDriver, data_len: int, repeat: int) -> ModuleDefinition:
    return ModuleDefinition(
        memory=ImportedMemory.max(driver.runtime.current_schedule()),
        imported_functions=[ImportedFunction('seal_return', [I32, I32, I32])],
        call_body=body_repeated(repeat, [
            i32_const(0),  # flags
            i32_const(0),  # data_ptr
            i32_const(data_len),  # data_len
            call(0),
        ]),
    )


@benchmark('seal_return', r=_once)
def _seal_return(driver: ContractLifecycleDriver, r: int) -> Scenario:
    """Return without data; only the first return is ever executed."""
    return _call_of(driver, _return_code(driver, 0, r))


@benchmark('seal_return_per_kb', n=_memory_kb)
def _seal_return_per_kb(driver: ContractLifecycleDriver, n: int) -> Scenario:
    """Return `n` kb of output data."""
    return _call_of(driver, _return_code(driver, n * 1024, 1))


# ========== Contract Lifecycle ==========

@benchmark('seal_terminate', r=_once)
def _seal_terminate(driver: ContractLifecycleDriver, r: int) -> Scenario:
    """Terminate the contract, sending its whole balance to a fresh beneficiary."""
    runtime = driver.runtime
    beneficiary = driver.host.account('beneficiary', 0)
    instance = _instance(driver, create_code(driver.host, ModuleDefinition(
        memory=ImportedMemory.max(driver.runtime.current_schedule()),
        imported_functions=[ImportedFunction('seal_terminate', [I32, I32])],
        data_segments=[DataSegment(0, beneficiary)],
        call_body=body_repeated(r, [
            i32_const(0),  # beneficiary_ptr
            i32_const(len(beneficiary)),  # beneficiary_len
            call(0),
        ]),
    )))
    if runtime.total_balance(beneficiary) != 0:
        raise SetupError("Beneficiary must not hold any balance.")
    if runtime.total_balance(instance.account_id) != driver.max_endowment():
        raise SetupError("Contract must hold the maximum endowment.")

    def verify() -> None:
        if r > 0:
            _ensure(runtime.total_balance(instance.account_id) == 0,
                    "Terminated contract still holds balance")
            _ensure(runtime.total_balance(beneficiary) == driver.max_endowment(),
                    "Beneficiary did not receive the contract balance")

    return Scenario(_call(instance), verify)


def _restorer_scenario(driver: ContractLifecycleDriver, tombstone: Tombstone,
                       delta: List[Tuple[bytes, bytes]], repeat: int) -> Scenario:
    """
    Instantiate a contract restoring `tombstone`, holding its storage plus `delta`.

    The restoring contract writes its storage in the instantiation block; the
    block is bumped afterwards because restoring is refused in a block in
    which the origin wrote storage.
    """
    host = driver.host
    runtime = driver.runtime
    dest = tombstone.contract.account_id
    code_hash = tombstone.contract.code_hash
    rent_allowance = host.encode_balance(host.max_balance)
    delta_keys = b''.join(key for key, _ in delta)

    dest_offset = 0
    code_hash_offset = dest_offset + len(dest)
    rent_allowance_offset = code_hash_offset + len(code_hash)
    delta_keys_offset = rent_allowance_offset + len(rent_allowance)

    module = create_code(host, ModuleDefinition(
        memory=ImportedMemory.max(runtime.current_schedule()),
        imported_functions=[ImportedFunction('seal_restore_to', [I32] * 8)],
        data_segments=[
            DataSegment(dest_offset, dest),
            DataSegment(code_hash_offset, code_hash),
            DataSegment(rent_allowance_offset, rent_allowance),
            DataSegment(delta_keys_offset, delta_keys),
        ],
        call_body=body_repeated(repeat, [
            i32_const(dest_offset),
            i32_const(len(dest)),
            i32_const(code_hash_offset),
            i32_const(len(code_hash)),
            i32_const(rent_allowance_offset),
            i32_const(len(rent_allowance)),
            i32_const(delta_keys_offset),  # delta_ptr
            i32_const(len(delta)),  # delta_count
            call(0),
        ]),
    ))

    instance = driver.instantiate(host.account('origin', 0), module)
    driver.seed_storage(instance.account_id, tombstone.storage)
    driver.seed_storage(instance.account_id, delta)
    runtime.set_block_number(runtime.block_number + 1)

    def verify() -> None:
        if repeat > 0:
            driver.assert_alive(dest, VerificationError)

    return Scenario(_call(instance), verify)


@benchmark('seal_restore_to', r=_once)
def _seal_restore_to(driver: ContractLifecycleDriver, r: int) -> Scenario:
    """Restore a tombstone of 10 maximum sized items without any delta."""
    tombstone = driver.create_tombstone(10, driver.host.config.max_value_size)
    return _restorer_scenario(driver, tombstone, [], r)


@benchmark('seal_restore_to_per_delta', d=_batches)
def _seal_restore_to_per_delta(driver: ContractLifecycleDriver, d: int) -> Scenario:
    """Restore an empty tombstone, removing d batches of maximum sized items."""
    tombstone = driver.create_tombstone(0, 0)
    delta = driver.create_storage(d * _batch_size(driver), driver.host.config.max_value_size)
    return _restorer_scenario(driver, tombstone, delta, 1)


# ========== Misc ==========

@benchmark('seal_random', r=_batches)
def _seal_random(driver: ContractLifecycleDriver, r: int) -> Scenario:
    """Draw randomness for a maximum length subject r batches of times."""
    schedule = driver.runtime.current_schedule()
    subject_len = schedule.max_subject_len
    if subject_len >= 1024:
        raise SetupError(f"Subject length {subject_len} is expected to stay below 1 kb.")
    buffer_size = _max_pages(driver) * PAGE_SIZE - subject_len - 4
    return _call_of(driver, ModuleDefinition(
        memory=ImportedMemory.max(schedule),
        imported_functions=[ImportedFunction('seal_random', [I32, I32, I32, I32])],
        data_segments=[DataSegment(0, _u32(buffer_size))],
        call_body=body_repeated(r * _batch_size(driver), [
            i32_const(4),  # subject_ptr
            i32_const(subject_len),  # subject_len
            i32_const(subject_len + 4),  # out_ptr
            i32_const(0),  # out_len_ptr
            call(0),
        ]),
    ))


@benchmark('seal_deposit_event', r=_batches)
def _seal_deposit_event(driver: ContractLifecycleDriver, r: int) -> Scenario:
    """Deposit events without topics or data r batches of times."""
    return _call_of(driver, ModuleDefinition(
        memory=ImportedMemory.max(driver.runtime.current_schedule()),
        imported_functions=[ImportedFunction('seal_deposit_event', [I32, I32, I32, I32])],
        call_body=body_repeated(r * _batch_size(driver), [
            i32_const(0),  # topics_ptr
            i32_const(0),  # topics_len
            i32_const(0),  # data_ptr
            i32_const(0),  # data_len
            call(0),
        ]),
    ))


@benchmark('seal_deposit_event_per_topic_and_kb', t=_topics, n=_value_kb)
def _seal_deposit_event_per_topic_and_kb(driver: ContractLifecycleDriver, t: int, n: int) -> Scenario:
    """Deposit a batch of events with `t` distinct topics and `n` kb of data each."""
    host = driver.host
    batch_size = _batch_size(driver)
    topics = [
        scale.encode_vec(host.hash_of(i) for i in range(k * t, k * t + t))
        for k in range(batch_size)
    ]
    topics_len = len(topics[0]) if topics else 0
    return _call_of(driver, ModuleDefinition(
        memory=ImportedMemory.max(driver.runtime.current_schedule()),
        imported_functions=[ImportedFunction('seal_deposit_event', [I32, I32, I32, I32])],
        data_segments=[DataSegment(0, b''.join(topics))],
        call_body=body_counted(batch_size, [
            Counter(0, topics_len),  # topics_ptr
            Regular(i32_const(topics_len)),  # topics_len
            Regular(i32_const(0)),  # data_ptr
            Regular(i32_const(n * 1024)),  # data_len
            Regular(call(0)),
        ]),
    ))


@benchmark('seal_set_rent_allowance', r=_batches)
def _seal_set_rent_allowance(driver: ContractLifecycleDriver, r: int) -> Scenario:
    """Set the rent allowance r batches of times."""
    allowance = driver.host.encode_balance(driver.funding())
    return _call_of(driver, ModuleDefinition(
        memory=ImportedMemory(min_pages=1, max_pages=1),
        imported_functions=[ImportedFunction('seal_set_rent_allowance', [I32, I32])],
        data_segments=[DataSegment(0, allowance)],
        call_body=body_repeated(r * _batch_size(driver), [
            i32_const(0),  # value_ptr
            i32_const(len(allowance)),  # value_len
            call(0),
        ]),
    ))


# ========== Storage ==========

def _keys(driver: ContractLifecycleDriver, count: int) -> List[bytes]:
    return [driver.host.hash_of(i) for i in range(count)]


@benchmark('seal_set_storage', r=_batches)
def _seal_set_storage(driver: ContractLifecycleDriver, r: int) -> Scenario:
    """Write empty values under r batches of distinct keys."""
    runtime = driver.runtime
    keys = _keys(driver, r * _batch_size(driver))
    instance = _instance(driver, create_code(driver.host, ModuleDefinition(
        memory=ImportedMemory.max(runtime.current_schedule()),
        imported_functions=[ImportedFunction('seal_set_storage', [I32, I32, I32])],
        data_segments=[DataSegment(0, b''.join(keys))],
        call_body=body_counted(len(keys), [
            Counter(0, driver.host.hash_len),  # key_ptr
            Regular(i32_const(0)),  # value_ptr
            Regular(i32_const(0)),  # value_len
            Regular(call(0)),
        ]),
    )))

    def verify() -> None:
        missing = [key for key in keys if runtime.read_storage(instance.account_id, key) is None]
        _ensure(not missing, f"{len(missing)} keys were not written")

    return Scenario(_call(instance), verify)


@benchmark('seal_set_storage_per_kb', n=_value_kb)
def _seal_set_storage_per_kb(driver: ContractLifecycleDriver, n: int) -> Scenario:
    """Overwrite one key with an `n` kb value a batch of times."""
    key = driver.host.hash_of(1)
    return _call_of(driver, ModuleDefinition(
        memory=ImportedMemory.max(driver.runtime.current_schedule()),
        imported_functions=[ImportedFunction('seal_set_storage', [I32, I32, I32])],
        data_segments=[DataSegment(0, key)],
        call_body=body_repeated(_batch_size(driver), [
            i32_const(0),  # key_ptr
            i32_const(0),  # value_ptr
            i32_const(n * 1024),  # value_len
            call(0),
        ]),
    ))


@benchmark('seal_clear_storage', r=_batches)
def _seal_clear_storage(driver: ContractLifecycleDriver, r: int) -> Scenario:
    """Clear r batches of keys that all hold a maximum sized value."""
    runtime = driver.runtime
    keys = _keys(driver, r * _batch_size(driver))
    instance = _instance(driver, create_code(driver.host, ModuleDefinition(
        memory=ImportedMemory.max(runtime.current_schedule()),
        imported_functions=[ImportedFunction('seal_clear_storage', [I32])],
        data_segments=[DataSegment(0, b''.join(keys))],
        call_body=body_counted(len(keys), [
            Counter(0, driver.host.hash_len),  # key_ptr
            Regular(call(0)),
        ]),
    )))
    # Existing keys only, so that clearing cannot be short-circuited
    value = bytes([PAYLOAD_BYTE]) * driver.host.config.max_value_size
    driver.seed_storage(instance.account_id, [(key, value) for key in keys])

    def verify() -> None:
        left = [key for key in keys if runtime.read_storage(instance.account_id, key) is not None]
        _ensure(not left, f"{len(left)} keys were not cleared")

    return Scenario(_call(instance), verify)


@benchmark('seal_get_storage', r=_batches)
def _seal_get_storage(driver: ContractLifecycleDriver, r: int) -> Scenario:
    """Read r batches of distinct keys holding empty values."""
    keys = _keys(driver, r * _batch_size(driver))
    key_bytes = b''.join(keys)
    instance = _instance(driver, create_code(driver.host, ModuleDefinition(
        memory=ImportedMemory.max(driver.runtime.current_schedule()),
        imported_functions=[ImportedFunction('seal_get_storage', [I32, I32, I32], I32)],
        data_segments=[DataSegment(0, key_bytes)],
        call_body=body_counted(len(keys), [
            Counter(0, driver.host.hash_len),  # key_ptr
            Regular(i32_const(len(key_bytes) + 4)),  # out_ptr
            Regular(i32_const(len(key_bytes))),  # out_len_ptr
            Regular(call(0)),
            Regular(DROP),
        ]),
    )))
    driver.seed_storage(instance.account_id, [(key, b'') for key in keys])
    return Scenario(_call(instance))


@benchmark('seal_get_storage_per_kb', n=_value_kb)
def _seal_get_storage_per_kb(driver: ContractLifecycleDriver, n: int) -> Scenario:
    """Read one key holding an `n` kb value a batch of times."""
    key = driver.host.hash_of(1)
    instance = _instance(driver, create_code(driver.host, ModuleDefinition(
        memory=ImportedMemory.max(driver.runtime.current_schedule()),
        imported_functions=[ImportedFunction('seal_get_storage', [I32, I32, I32], I32)],
        data_segments=[
            DataSegment(0, key),
            DataSegment(len(key), _u32(driver.host.config.max_value_size)),
        ],
        call_body=body_repeated(_batch_size(driver), [
            i32_const(0),  # key_ptr
            i32_const(len(key) + 4),  # out_ptr
            i32_const(len(key)),  # out_len_ptr
            call(0),
            DROP,
        ]),
    )))
    driver.seed_storage(instance.account_id, [(key, bytes([PAYLOAD_BYTE]) * (n * 1024))])
    return Scenario(_call(instance))


# ========== Balance Transfer And Nested Execution ==========

@benchmark('seal_transfer', r=_batches)
def _seal_transfer(driver: ContractLifecycleDriver, r: int) -> Scenario:
    """Transfer the subsistence threshold to r batches of fresh accounts."""
    runtime = driver.runtime
    host = driver.host
    accounts = [host.account('receiver', i) for i in range(r * _batch_size(driver))]
    account_len = host.account_id_len
    value = runtime.subsistence_threshold
    if value <= 0:
        raise SetupError("Subsistence threshold must be positive.")
    value_bytes = host.encode_balance(value)

    instance = _instance(driver, create_code(host, ModuleDefinition(
        memory=ImportedMemory.max(runtime.current_schedule()),
        imported_functions=[ImportedFunction('seal_transfer', [I32, I32, I32, I32], I32)],
        data_segments=[
            DataSegment(0, value_bytes),
            DataSegment(len(value_bytes), b''.join(accounts)),
        ],
        call_body=body_counted(len(accounts), [
            Counter(len(value_bytes), account_len),  # account_ptr
            Regular(i32_const(account_len)),  # account_len
            Regular(i32_const(0)),  # value_ptr
            Regular(i32_const(len(value_bytes))),  # value_len
            Regular(call(0)),
            Regular(DROP),
        ]),
    )))
    for account in accounts:
        if runtime.total_balance(account) != 0:
            raise SetupError("Receiver must not hold any balance.")

    def verify() -> None:
        for account in accounts:
            _ensure(runtime.total_balance(account) == value,
                    f"Receiver 0x{account.hex()} did not get the transfer")

    return Scenario(_call(instance), verify)


SEAL_CALL_PARAMS = [I32, I32, I64, I32, I32, I32, I32, I32, I32]
SEAL_INSTANTIATE_PARAMS = [I32, I32, I64] + [I32] * 8


@benchmark('seal_call', r=_batches)
def _seal_call(driver: ContractLifecycleDriver, r: int) -> Scenario:
    """Call r batches of distinct dummy contracts without value, input or output."""
    host = driver.host
    code = dummy_code(host)
    callees = [
        driver.instantiate_from_index(i + 1, code)
        for i in range(r * _batch_size(driver))
    ]
    callee_len = host.account_id_len
    value_bytes = host.encode_balance(0)

    return _call_of(driver, ModuleDefinition(
        memory=ImportedMemory.max(driver.runtime.current_schedule()),
        imported_functions=[ImportedFunction('seal_call', SEAL_CALL_PARAMS, I32)],
        data_segments=[
            DataSegment(0, value_bytes),
            DataSegment(len(value_bytes), b''.join(c.account_id for c in callees)),
        ],
        call_body=body_counted(len(callees), [
            Counter(len(value_bytes), callee_len),  # callee_ptr
            Regular(i32_const(callee_len)),  # callee_len
            Regular(i64_const(0)),  # gas
            Regular(i32_const(0)),  # value_ptr
            Regular(i32_const(len(value_bytes))),  # value_len
            Regular(i32_const(0)),  # input_data_ptr
            Regular(i32_const(0)),  # input_data_len
            Regular(i32_const(U32_MAX)),  # output_ptr
            Regular(i32_const(0)),  # output_len_ptr
            Regular(call(0)),
            Regular(DROP),
        ]),
    ))


@benchmark('seal_call_per_transfer_input_output_kb', t=_once, i=_memory_kb, o=_spare_memory_kb)
def _seal_call_per_transfer_input_output_kb(driver: ContractLifecycleDriver,
                                            t: int, i: int, o: int) -> Scenario:
    """Call a batch of contracts transferring `t`, passing `i` kb and getting `o` kb back."""
    host = driver.host
    schedule = driver.runtime.current_schedule()
    callee_code = create_code(host, _return_code(driver, o * 1024, 1))
    callees = [
        driver.instantiate_from_index(k + 1, callee_code)
        for k in range(_batch_size(driver))
    ]
    callee_len = host.account_id_len
    callee_bytes = b''.join(c.account_id for c in callees)
    value_bytes = host.encode_balance(t)
    output_len_offset = len(value_bytes) + len(callee_bytes)

    return _call_of(driver, ModuleDefinition(
        memory=ImportedMemory.max(schedule),
        imported_functions=[ImportedFunction('seal_call', SEAL_CALL_PARAMS, I32)],
        data_segments=[
            DataSegment(0, value_bytes),
            DataSegment(len(value_bytes), callee_bytes),
            DataSegment(output_len_offset, _u32(o * 1024)),
        ],
        call_body=body_counted(len(callees), [
            Counter(len(value_bytes), callee_len),  # callee_ptr
            Regular(i32_const(callee_len)),  # callee_len
            Regular(i64_const(0)),  # gas
            Regular(i32_const(0)),  # value_ptr
            Regular(i32_const(len(value_bytes))),  # value_len
            Regular(i32_const(0)),  # input_data_ptr
            Regular(i32_const(i * 1024)),  # input_data_len
            Regular(i32_const(output_len_offset + 4)),  # output_ptr
            Regular(i32_const(output_len_offset)),  # output_len_ptr
            Regular(call(0)),
            Regular(DROP),
        ]),
    ))


@benchmark('seal_instantiate', r=_batches)
def _seal_instantiate(driver: ContractLifecycleDriver, r: int) -> Scenario:
    """Instantiate r batches of distinct codes, endowing each with the subsistence threshold."""
    runtime = driver.runtime
    host = driver.host
    hashes = []
    for k in range(r * _batch_size(driver)):
        module = create_code(host, ModuleDefinition(call_body=body([i32_const(k), DROP])))
        driver.deploy(module)
        hashes.append(module.hash)
    hash_len = host.hash_len
    hashes_bytes = b''.join(hashes)
    value = runtime.subsistence_threshold
    if value <= 0:
        raise SetupError("Subsistence threshold must be positive.")
    value_bytes = host.encode_balance(value)
    addr_len = host.account_id_len

    # Offsets of the static data in contract memory
    value_offset = 0
    hashes_offset = value_offset + len(value_bytes)
    addr_len_offset = hashes_offset + len(hashes_bytes)
    addr_offset = addr_len_offset + addr_len

    instance = _instance(driver, create_code(host, ModuleDefinition(
        memory=ImportedMemory.max(runtime.current_schedule()),
        imported_functions=[ImportedFunction('seal_instantiate', SEAL_INSTANTIATE_PARAMS, I32)],
        data_segments=[
            DataSegment(value_offset, value_bytes),
            DataSegment(hashes_offset, hashes_bytes),
            DataSegment(addr_len_offset, _u32(addr_len)),
        ],
        call_body=body_counted(len(hashes), [
            Counter(hashes_offset, hash_len),  # code_hash_ptr
            Regular(i32_const(hash_len)),  # code_hash_len
            Regular(i64_const(0)),  # gas
            Regular(i32_const(value_offset)),  # value_ptr
            Regular(i32_const(len(value_bytes))),  # value_len
            Regular(i32_const(0)),  # input_data_ptr
            Regular(i32_const(0)),  # input_data_len
            Regular(i32_const(addr_offset)),  # address_ptr
            Regular(i32_const(addr_len_offset)),  # address_len_ptr
            Regular(i32_const(U32_MAX)),  # output_ptr
            Regular(i32_const(0)),  # output_len_ptr
            Regular(call(0)),
            Regular(DROP),
        ]),
    )))
    addresses = [
        runtime.contract_address_for(code_hash, b'', instance.account_id)
        for code_hash in hashes
    ]
    for addr in addresses:
        driver.assert_absent(addr)

    def verify() -> None:
        for addr in addresses:
            driver.assert_alive(addr, VerificationError)

    return Scenario(_call(instance), verify)


@benchmark('seal_instantiate_per_input_output_kb', i=_spare_memory_kb, o=_spare_memory_kb)
def _seal_instantiate_per_input_output_kb(driver: ContractLifecycleDriver, i: int, o: int) -> Scenario:
    """Instantiate a batch of contracts passing `i` kb and getting `o` kb back from the constructor."""
    runtime = driver.runtime
    host = driver.host
    schedule = runtime.current_schedule()
    callee_code = create_code(host, ModuleDefinition(
        memory=ImportedMemory.max(schedule),
        imported_functions=[ImportedFunction('seal_return', [I32, I32, I32])],
        deploy_body=body([
            i32_const(0),  # flags
            i32_const(0),  # data_ptr
            i32_const(o * 1024),  # data_len
            call(0),
        ]),
    ))
    driver.deploy(callee_code)
    batch_size = _batch_size(driver)
    # Distinct inputs yield distinct addresses
    inputs = [scale.encode_u32(k) for k in range(batch_size)]
    input_len = len(inputs[0]) if inputs else 0
    input_bytes = b''.join(inputs)
    value = runtime.subsistence_threshold
    if value <= 0:
        raise SetupError("Subsistence threshold must be positive.")
    value_bytes = host.encode_balance(value)
    hash_len = host.hash_len
    addr_len = host.account_id_len

    # Offsets of the static data in contract memory
    input_offset = 0
    value_offset = len(input_bytes)
    hash_offset = value_offset + len(value_bytes)
    addr_len_offset = hash_offset + hash_len
    output_len_offset = addr_len_offset + 4
    output_offset = output_len_offset + 4

    return _call_of(driver, ModuleDefinition(
        memory=ImportedMemory.max(schedule),
        imported_functions=[ImportedFunction('seal_instantiate', SEAL_INSTANTIATE_PARAMS, I32)],
        data_segments=[
            DataSegment(input_offset, input_bytes),
            DataSegment(value_offset, value_bytes),
            DataSegment(hash_offset, callee_code.hash),
            DataSegment(addr_len_offset, _u32(addr_len)),
            DataSegment(output_len_offset, _u32(o * 1024)),
        ],
        call_body=body_counted(batch_size, [
            Regular(i32_const(hash_offset)),  # code_hash_ptr
            Regular(i32_const(hash_len)),  # code_hash_len
            Regular(i64_const(0)),  # gas
            Regular(i32_const(value_offset)),  # value_ptr
            Regular(i32_const(len(value_bytes))),  # value_len
            Counter(input_offset, input_len),  # input_data_ptr
            Regular(i32_const(max(i * 1024, input_len))),  # input_data_len
            Regular(i32_const(addr_len_offset + addr_len)),  # address_ptr
            Regular(i32_const(addr_len_offset)),  # address_len_ptr
            Regular(i32_const(output_offset)),  # output_ptr
            Regular(i32_const(output_len_offset)),  # output_len_ptr
            Regular(call(0)),
            # Trap unless the instantiation succeeded
            Regular(I32_EQZ),
            Regular(if_()),
            Regular(NOP),
            Regular(ELSE),
            Regular(UNREACHABLE),
            Regular(END),
        ]),
    ))


# ========== Hashing ==========

HASHERS = ('sha2_256', 'keccak_256', 'blake2_256', 'blake2_128')


def _hasher_setup(function_name: str) -> Callable[..., Scenario]:
    def setup(driver: ContractLifecycleDriver, r: int) -> Scenario:
        module = hasher_code(driver.host, function_name, r * _batch_size(driver), 0)
        return Scenario(_call(_instance(driver, module)))
    return setup


def _hasher_per_kb_setup(function_name: str) -> Callable[..., Scenario]:
    def setup(driver: ContractLifecycleDriver, n: int) -> Scenario:
        module = hasher_code(driver.host, function_name, _batch_size(driver), n * 1024)
        return Scenario(_call(_instance(driver, module)))
    return setup


for _hasher in HASHERS:
    _function = f'seal_hash_{_hasher}'
    register(_function, _hasher_setup(_function),
             f"Hash empty input with {_hasher} r batches of times", r=_batches)
    register(f'{_function}_per_kb', _hasher_per_kb_setup(_function),
             f"Hash `n` kb with {_hasher} a batch of times", n=_memory_kb)
