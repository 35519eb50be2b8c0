"""
Host functions of the `seal0` namespace.

Every function is registered with its exact signature; `put_code` rejects
modules importing anything else. Handlers receive the executing
`Sandbox` as their context followed by the call arguments, already
reinterpreted as unsigned integers.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..io import BinaryStream, scale
from ..utils.hashing import blake2_128, blake2_256, keccak_256, sha2_256
from ..wasm.structures import FuncType, ValueType
from .errors import ReturnCode, Trap
from .sandbox import Halt
from .types import ExecReturnValue

I32 = ValueType.I32
I64 = ValueType.I64

# Size of a storage key
KEY_SIZE = 32


@dataclass(frozen=True)
class HostFunction:
    """A host function and the signature contracts must import it with."""
    name: str
    signature: FuncType
    handler: Callable


HOST_FUNCTIONS: Dict[str, HostFunction] = {}


def host_function(name: str, params: List[ValueType], returns: Optional[ValueType] = None):
    """Register the decorated handler under `name`."""
    def register(handler: Callable) -> Callable:
        results = (returns,) if returns is not None else ()
        HOST_FUNCTIONS[name] = HostFunction(name, FuncType(tuple(params), results), handler)
        return handler
    return register


# ========== Argument Decoding ==========

def _read_account(ctx, ptr: int, length: int) -> bytes:
    data = ctx.memory.read(ptr, length)
    if len(data) != ctx.ext.runtime.host.account_id_len:
        raise Trap(f"DecodingFailed: account id of {len(data)} bytes")
    return data


def _read_balance(ctx, ptr: int, length: int) -> int:
    if length != 16:
        raise Trap(f"DecodingFailed: balance of {length} bytes")
    return scale.decode_uint(ctx.memory.read(ptr, length))


def _read_hash(ctx, ptr: int, length: int) -> bytes:
    if length != ctx.ext.runtime.host.hash_len:
        raise Trap(f"DecodingFailed: hash of {length} bytes")
    return ctx.memory.read(ptr, length)


def _read_topics(ctx, ptr: int, length: int) -> List[bytes]:
    if length == 0:
        return []
    stream = BinaryStream(ctx.memory.read(ptr, length))
    hash_len = ctx.ext.runtime.host.hash_len
    try:
        count = scale.read_compact(stream)
        return [stream.read_bytes(hash_len) for _ in range(count)]
    except ValueError as e:
        raise Trap(f"DecodingFailed: topics: {e}") from e


# ========== Getters ==========

def _register_getter(name: str, value_of: Callable) -> None:
    def getter(ctx, out_ptr: int, out_len_ptr: int) -> None:
        ctx.memory.write_output(out_ptr, out_len_ptr, value_of(ctx))
    getter.__name__ = name
    host_function(name, [I32, I32])(getter)


_GETTERS = {
    'seal_caller': lambda ctx: ctx.ext.caller,
    'seal_address': lambda ctx: ctx.ext.address,
    'seal_gas_left': lambda ctx: scale.encode_u64(ctx.gas_meter.remaining),
    'seal_balance': lambda ctx: scale.encode_u128(ctx.ext.balance()),
    'seal_value_transferred': lambda ctx: scale.encode_u128(ctx.ext.value_transferred),
    'seal_minimum_balance': lambda ctx: scale.encode_u128(ctx.ext.runtime.minimum_balance),
    'seal_tombstone_deposit': lambda ctx: scale.encode_u128(ctx.ext.runtime.host.rent.tombstone_deposit),
    'seal_rent_allowance': lambda ctx: scale.encode_u128(ctx.ext.rent_allowance()),
    'seal_block_number': lambda ctx: scale.encode_u64(ctx.ext.runtime.block_number),
    'seal_now': lambda ctx: scale.encode_u64(ctx.ext.now()),
}

for _name, _value_of in _GETTERS.items():
    _register_getter(_name, _value_of)


@host_function('seal_weight_to_fee', [I64, I32, I32])
def seal_weight_to_fee(ctx, gas: int, out_ptr: int, out_len_ptr: int) -> None:
    fee = gas * ctx.ext.runtime.host.config.weight_to_fee
    ctx.memory.write_output(out_ptr, out_len_ptr, scale.encode_u128(fee))


@host_function('gas', [I32])
def seal_gas(ctx, amount: int) -> None:
    ctx.gas_meter.charge(amount)


# ========== Input And Output ==========

@host_function('seal_input', [I32, I32])
def seal_input(ctx, out_ptr: int, out_len_ptr: int) -> None:
    # Input can only be copied once per frame
    if ctx.input_data is None:
        raise Trap("InputAlreadyRead")
    data, ctx.input_data = ctx.input_data, None
    ctx.memory.write_output(out_ptr, out_len_ptr, data)


@host_function('seal_return', [I32, I32, I32])
def seal_return(ctx, flags: int, data_ptr: int, data_len: int) -> None:
    raise Halt(ExecReturnValue(flags=flags, data=ctx.memory.read(data_ptr, data_len)))


@host_function('seal_terminate', [I32, I32])
def seal_terminate(ctx, beneficiary_ptr: int, beneficiary_len: int) -> None:
    beneficiary = _read_account(ctx, beneficiary_ptr, beneficiary_len)
    ctx.ext.terminate(beneficiary)
    raise Halt(ExecReturnValue())


@host_function('seal_restore_to', [I32] * 8)
def seal_restore_to(ctx, dest_ptr: int, dest_len: int, code_hash_ptr: int, code_hash_len: int,
                    rent_allowance_ptr: int, rent_allowance_len: int,
                    delta_ptr: int, delta_count: int) -> None:
    dest = _read_account(ctx, dest_ptr, dest_len)
    code_hash = _read_hash(ctx, code_hash_ptr, code_hash_len)
    rent_allowance = _read_balance(ctx, rent_allowance_ptr, rent_allowance_len)
    delta_bytes = ctx.memory.read(delta_ptr, delta_count * KEY_SIZE)
    delta = [delta_bytes[i * KEY_SIZE:(i + 1) * KEY_SIZE] for i in range(delta_count)]

    ctx.ext.restore_to(dest, code_hash, rent_allowance, delta)
    raise Halt(ExecReturnValue())


# ========== Misc ==========

@host_function('seal_random', [I32, I32, I32, I32])
def seal_random(ctx, subject_ptr: int, subject_len: int, out_ptr: int, out_len_ptr: int) -> None:
    max_subject_len = ctx.ext.runtime.current_schedule().max_subject_len
    if subject_len > max_subject_len:
        raise Trap(f"RandomSubjectTooLong: {subject_len} > {max_subject_len}")
    subject = ctx.memory.read(subject_ptr, subject_len)
    ctx.memory.write_output(out_ptr, out_len_ptr, ctx.ext.random(subject))


@host_function('seal_deposit_event', [I32, I32, I32, I32])
def seal_deposit_event(ctx, topics_ptr: int, topics_len: int, data_ptr: int, data_len: int) -> None:
    topics = _read_topics(ctx, topics_ptr, topics_len)
    max_topics = ctx.ext.runtime.current_schedule().max_event_topics
    if len(topics) > max_topics:
        raise Trap(f"TooManyTopics: {len(topics)} > {max_topics}")
    if len(set(topics)) != len(topics):
        raise Trap("DuplicateTopics")
    max_value_size = ctx.ext.runtime.host.config.max_value_size
    if data_len > max_value_size:
        raise Trap(f"ValueTooLarge: event data of {data_len} bytes")
    ctx.ext.deposit_event(topics, ctx.memory.read(data_ptr, data_len))


@host_function('seal_set_rent_allowance', [I32, I32])
def seal_set_rent_allowance(ctx, value_ptr: int, value_len: int) -> None:
    ctx.ext.set_rent_allowance(_read_balance(ctx, value_ptr, value_len))


# ========== Storage ==========

@host_function('seal_set_storage', [I32, I32, I32])
def seal_set_storage(ctx, key_ptr: int, value_ptr: int, value_len: int) -> None:
    max_value_size = ctx.ext.runtime.host.config.max_value_size
    if value_len > max_value_size:
        raise Trap(f"ValueTooLarge: {value_len} > {max_value_size}")
    key = ctx.memory.read(key_ptr, KEY_SIZE)
    ctx.ext.set_storage(key, ctx.memory.read(value_ptr, value_len))


@host_function('seal_clear_storage', [I32])
def seal_clear_storage(ctx, key_ptr: int) -> None:
    ctx.ext.set_storage(ctx.memory.read(key_ptr, KEY_SIZE), None)


@host_function('seal_get_storage', [I32, I32, I32], I32)
def seal_get_storage(ctx, key_ptr: int, out_ptr: int, out_len_ptr: int) -> int:
    value = ctx.ext.get_storage(ctx.memory.read(key_ptr, KEY_SIZE))
    if value is None:
        return ReturnCode.KEY_NOT_FOUND
    ctx.memory.write_output(out_ptr, out_len_ptr, value, allow_skip=False)
    return ReturnCode.SUCCESS


# ========== Balance Transfer And Nested Execution ==========

@host_function('seal_transfer', [I32, I32, I32, I32], I32)
def seal_transfer(ctx, account_ptr: int, account_len: int, value_ptr: int, value_len: int) -> int:
    dest = _read_account(ctx, account_ptr, account_len)
    value = _read_balance(ctx, value_ptr, value_len)
    return ctx.ext.transfer(dest, value)


@host_function('seal_call', [I32, I32, I64, I32, I32, I32, I32, I32, I32], I32)
def seal_call(ctx, callee_ptr: int, callee_len: int, gas: int, value_ptr: int, value_len: int,
              input_data_ptr: int, input_data_len: int, output_ptr: int, output_len_ptr: int) -> int:
    callee = _read_account(ctx, callee_ptr, callee_len)
    value = _read_balance(ctx, value_ptr, value_len)
    input_data = ctx.memory.read(input_data_ptr, input_data_len)

    code, output = ctx.ext.call(callee, value, gas, input_data)
    if code in (ReturnCode.SUCCESS, ReturnCode.CALLEE_REVERTED):
        ctx.memory.write_output(output_ptr, output_len_ptr, output)
    return code


@host_function('seal_instantiate', [I32, I32, I64] + [I32] * 8, I32)
def seal_instantiate(ctx, code_hash_ptr: int, code_hash_len: int, gas: int,
                     value_ptr: int, value_len: int, input_data_ptr: int, input_data_len: int,
                     address_ptr: int, address_len_ptr: int,
                     output_ptr: int, output_len_ptr: int) -> int:
    code_hash = _read_hash(ctx, code_hash_ptr, code_hash_len)
    value = _read_balance(ctx, value_ptr, value_len)
    input_data = ctx.memory.read(input_data_ptr, input_data_len)

    code, address, output = ctx.ext.instantiate(code_hash, value, gas, input_data)
    if code == ReturnCode.SUCCESS:
        ctx.memory.write_output(address_ptr, address_len_ptr, address)
    if code in (ReturnCode.SUCCESS, ReturnCode.CALLEE_REVERTED):
        ctx.memory.write_output(output_ptr, output_len_ptr, output)
    return code


# ========== Hashing ==========

def _register_hasher(name: str, hasher: Callable[[bytes], bytes]) -> None:
    def hash_function(ctx, input_ptr: int, input_len: int, output_ptr: int) -> None:
        ctx.memory.write(output_ptr, hasher(ctx.memory.read(input_ptr, input_len)))
    hash_function.__name__ = name
    host_function(name, [I32, I32, I32])(hash_function)


for _name, _hasher in (
    ('seal_hash_sha2_256', sha2_256),
    ('seal_hash_keccak_256', keccak_256),
    ('seal_hash_blake2_256', blake2_256),
    ('seal_hash_blake2_128', blake2_128),
):
    _register_hasher(_name, _hasher)
