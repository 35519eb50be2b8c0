"""
In-memory reference runtime.

Implements the `Runtime` interface on plain dictionaries: balances, a code
registry, contracts with their child tries, the rent model (collection,
eviction to tombstones, restoration) and events. Contract bodies are
replayed by the fixture executor in `sandbox.py`.

State changes made inside a dispatch are journaled so that failed
dispatches and failed nested calls leave no trace.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..config import HostConfig, Schedule
from ..io import scale
from ..wasm.decoder import decode_module
from ..wasm.structures import ExternalKind, FuncType, Module
from .base import Runtime
from .errors import DispatchError, ReturnCode, Trap, return_code_for
from .host import HOST_FUNCTIONS
from .sandbox import EXECUTABLE_OPCODES, GasMeter, Sandbox
from .types import (
    AliveContractInfo, ContractInfo, Event, ExecReturnValue, Origin, OriginKind,
    RentProjection, TombstoneContractInfo,
)

logger = logging.getLogger(__name__)

DEPLOY_EXPORT = 'deploy'
CALL_EXPORT = 'call'

# Milliseconds between two blocks, reported by `seal_now`
BLOCK_TIME_MS = 6000

# Length of a storage key
STORAGE_KEY_LEN = 32

_ENTRY_TYPE = FuncType()


class VerdictKind(Enum):
    EXEMPT = 'exempt'
    KILL = 'kill'
    EVICT = 'evict'
    CHARGE = 'charge'


@dataclass(frozen=True)
class Verdict:
    """Outcome of considering rent for a contract at some block."""
    kind: VerdictKind
    amount: int = 0


def _assign(mapping: Dict, key: Any, value: Any) -> None:
    if value is None:
        mapping.pop(key, None)
    else:
        mapping[key] = value


def prepare_module(code: bytes, schedule: Schedule) -> Module:
    """
    Decode and check a contract module before it is stored.

    Raises:
        DispatchError: CodeRejected if the module cannot be decoded, imports
            something the host does not provide, misses an entry point or
            uses instructions the executor cannot replay
    """
    try:
        module = decode_module(code)
    except ValueError as e:
        raise DispatchError('CodeRejected', str(e)) from e

    for entry in module.imports:
        if entry.kind == ExternalKind.MEMORY:
            if (entry.module, entry.field) != ('env', 'memory'):
                raise DispatchError('CodeRejected', f"Memory imported as '{entry.module}.{entry.field}'")
            limits = entry.limits
            if limits.maximum is None or limits.maximum > schedule.max_memory_pages:
                raise DispatchError('CodeRejected', f"Memory maximum {limits.maximum} exceeds the schedule")
            if limits.minimum > limits.maximum:
                raise DispatchError('CodeRejected', "Memory minimum exceeds its maximum")
            continue

        host_function = HOST_FUNCTIONS.get(entry.field)
        if entry.module != 'seal0' or host_function is None:
            raise DispatchError('CodeRejected', f"Unknown import '{entry.module}.{entry.field}'")
        if module.types[entry.type_index] != host_function.signature:
            raise DispatchError('CodeRejected', f"Wrong signature for '{entry.field}'")

    for name in (DEPLOY_EXPORT, CALL_EXPORT):
        export = module.export(name)
        if export is None or export.kind != ExternalKind.FUNCTION:
            raise DispatchError('CodeRejected', f"Missing export '{name}'")
        try:
            signature = module.function_type(export.index)
        except IndexError:
            raise DispatchError('CodeRejected', f"Export '{name}' points nowhere") from None
        if signature != _ENTRY_TYPE or export.index < len(module.imported_functions):
            raise DispatchError('CodeRejected', f"Export '{name}' is not a () -> () function")

    for body in module.code:
        for instruction in body.instructions:
            if instruction.opcode not in EXECUTABLE_OPCODES:
                raise DispatchError('CodeRejected', f"Unsupported instruction {instruction!r}")

    return module


class InMemoryRuntime(Runtime):
    """
    Reference contracts runtime backed by dictionaries.

    Attributes:
        host: Host capabilities
        events: Events deposited so far
    """

    def __init__(self, host: Optional[HostConfig] = None):
        super().__init__(host or HostConfig())
        self.reset()

    def reset(self) -> None:
        self._block_number = 0
        self._balances: Dict[bytes, int] = {}
        self._codes: Dict[bytes, Module] = {}
        self._contracts: Dict[bytes, ContractInfo] = {}
        self._tries: Dict[bytes, Dict[bytes, bytes]] = {}
        self._schedule = replace(self.host.schedule)
        self._trie_nonce = 0
        self.events: List[Event] = []
        self._journal: List[Callable[[], None]] = []
        self._transaction_depth = 0

    # ========== Journal ==========

    def _put(self, mapping: Dict, key: Any, value: Any) -> None:
        """Assign (or remove, for None) a value, recording how to undo it."""
        if self._transaction_depth:
            previous = mapping.get(key)
            self._journal.append(lambda: _assign(mapping, key, previous))
        _assign(mapping, key, value)

    def _checkpoint(self) -> int:
        return len(self._journal)

    def _rollback(self, checkpoint: int) -> None:
        while len(self._journal) > checkpoint:
            self._journal.pop()()

    def _transactional(self, operation: Callable[[], Any]) -> Any:
        """Run `operation`, undoing every state change if it raises."""
        checkpoint = self._checkpoint()
        self._transaction_depth += 1
        try:
            return operation()
        except Exception:
            self._rollback(checkpoint)
            raise
        finally:
            self._transaction_depth -= 1
            if not self._transaction_depth:
                self._journal.clear()

    def _deposit_event(self, name: str, topics: Optional[List[bytes]] = None, data: Tuple = ()) -> None:
        self.events.append(Event(name, list(topics or []), data))
        if self._transaction_depth:
            self._journal.append(self.events.pop)

    # ========== Chain State ==========

    @property
    def block_number(self) -> int:
        return self._block_number

    def set_block_number(self, number: int) -> None:
        self._block_number = number

    def now(self) -> int:
        """Timestamp of the current block in milliseconds."""
        return self._block_number * BLOCK_TIME_MS

    def current_schedule(self) -> Schedule:
        return self._schedule

    def code(self, code_hash: bytes) -> Optional[Module]:
        return self._codes.get(code_hash)

    # ========== Currency ==========

    def free_balance(self, account: bytes) -> int:
        return self._balances.get(account, 0)

    def total_balance(self, account: bytes) -> int:
        # No reserves are modelled
        return self._balances.get(account, 0)

    def make_free_balance_be(self, account: bytes, amount: int) -> None:
        self._put(self._balances, account, amount)

    def _transfer(self, source: bytes, dest: bytes, value: int,
                  source_is_contract: bool, allow_death: bool = False) -> None:
        """
        Move `value` from `source` to `dest`.

        Raises:
            DispatchError: TransferFailed or BelowSubsistenceThreshold
        """
        source_balance = self.free_balance(source)
        if value > source_balance:
            raise DispatchError('TransferFailed', f"balance {source_balance} below {value}")
        remaining = source_balance - value
        if not allow_death:
            if source_is_contract and remaining < self.subsistence_threshold:
                raise DispatchError('BelowSubsistenceThreshold')
            if not source_is_contract and remaining < self.minimum_balance:
                raise DispatchError('TransferFailed', "would kill the sender")
        dest_balance = self.free_balance(dest) + value
        if dest_balance < self.minimum_balance:
            raise DispatchError('TransferFailed', "below the existential deposit")
        self._put(self._balances, source, remaining)
        self._put(self._balances, dest, dest_balance)

    def _deposit_into_existing(self, account: bytes, value: int) -> None:
        if account not in self._balances:
            raise DispatchError('DeadAccount')
        self._put(self._balances, account, self._balances[account] + value)

    def _withdraw(self, account: bytes, value: int) -> None:
        self._put(self._balances, account, self.free_balance(account) - value)

    # ========== Code ==========

    @staticmethod
    def _ensure_signed(origin: Origin) -> bytes:
        if origin.kind != OriginKind.SIGNED or origin.account is None:
            raise DispatchError('BadOrigin', "expected a signed origin")
        return origin.account

    def _store_code(self, code: bytes) -> bytes:
        module = prepare_module(code, self._schedule)
        code_hash = self.host.hash(code)
        self._put(self._codes, code_hash, module)
        self._deposit_event('CodeStored', data=(code_hash,))
        return code_hash

    def put_code(self, origin: Origin, code: bytes) -> bytes:
        self._ensure_signed(origin)
        max_code_size = self._schedule.max_code_size
        if len(code) > max_code_size:
            raise DispatchError('CodeTooLarge', f"{len(code)} > {max_code_size} bytes")
        code_hash = self._transactional(lambda: self._store_code(code))
        logger.debug("Stored %d bytes of code as 0x%s", len(code), code_hash.hex())
        return code_hash

    def put_code_raw(self, code: bytes) -> bytes:
        return self._store_code(code)

    def update_schedule(self, origin: Origin, schedule: Schedule) -> None:
        if origin.kind != OriginKind.ROOT:
            raise DispatchError('BadOrigin', "expected root")
        if schedule.version <= self._schedule.version:
            raise DispatchError(
                'InvalidScheduleVersion',
                f"{schedule.version} is not above {self._schedule.version}",
            )
        self._schedule = schedule
        self._deposit_event('ScheduleUpdated', data=(schedule.version,))

    # ========== Contracts ==========

    def contract_address_for(self, code_hash: bytes, data: bytes, caller: bytes) -> bytes:
        return self.host.hash(code_hash + self.host.hash(data) + caller)

    def contract_info(self, address: bytes) -> Optional[ContractInfo]:
        return self._contracts.get(address)

    def _alive(self, address: bytes) -> AliveContractInfo:
        info = self._contracts.get(address)
        if not isinstance(info, AliveContractInfo):
            raise DispatchError('ContractEvicted', f"0x{address.hex()} is not alive")
        return info

    def _next_trie_id(self, address: bytes) -> bytes:
        trie_id = self.host.hash(address + scale.encode_u64(self._trie_nonce))
        self._trie_nonce += 1
        return trie_id

    def instantiate(self, origin: Origin, endowment: int, gas_limit: int,
                    code_hash: bytes, data: bytes) -> bytes:
        caller = self._ensure_signed(origin)

        def operation() -> bytes:
            try:
                address, result = self._instantiate(
                    caller, endowment, GasMeter(gas_limit), code_hash, data, 0, False,
                )
            except Trap as trap:
                raise DispatchError('ContractTrapped', trap.reason) from trap
            if not result.is_success:
                raise DispatchError('ContractTrapped', "deploy reverted")
            return address

        address = self._transactional(operation)
        logger.debug("Instantiated 0x%s with endowment %d", address.hex(), endowment)
        return address

    def call(self, origin: Origin, dest: bytes, value: int, gas_limit: int,
             data: bytes) -> ExecReturnValue:
        caller = self._ensure_signed(origin)

        def operation() -> ExecReturnValue:
            try:
                result = self._call(caller, dest, value, GasMeter(gas_limit), data, 0, False)
            except Trap as trap:
                raise DispatchError('ContractTrapped', trap.reason) from trap
            if not result.is_success:
                raise DispatchError('ContractTrapped', "call reverted")
            return result

        return self._transactional(operation)

    def _check_depth(self, depth: int) -> None:
        if depth > self.host.config.max_depth:
            raise DispatchError('MaxCallDepthReached')

    def _instantiate(self, caller: bytes, endowment: int, gas_meter: GasMeter,
                     code_hash: bytes, data: bytes, depth: int,
                     caller_is_contract: bool) -> Tuple[bytes, ExecReturnValue]:
        self._check_depth(depth)
        if code_hash not in self._codes:
            raise DispatchError('CodeNotFound', f"0x{code_hash.hex()}")
        address = self.contract_address_for(code_hash, data, caller)
        if address in self._contracts:
            raise DispatchError('DuplicateContract', f"0x{address.hex()}")

        trie_id = self._next_trie_id(address)
        self._put(self._contracts, address, AliveContractInfo(
            trie_id=trie_id,
            code_hash=code_hash,
            rent_allowance=self.host.max_balance,
            deduct_block=self._block_number,
        ))
        self._put(self._tries, trie_id, {})
        if endowment:
            self._transfer(caller, address, endowment, caller_is_contract)

        result = self._execute(address, code_hash, DEPLOY_EXPORT, caller, endowment,
                               gas_meter, data, depth)
        if result.is_success:
            alive = isinstance(self._contracts.get(address), AliveContractInfo)
            if alive and self.total_balance(address) < self.subsistence_threshold:
                raise DispatchError('NewContractNotFunded')
            self._deposit_event('Instantiated', data=(caller, address))
        return address, result

    def _call(self, caller: bytes, dest: bytes, value: int, gas_meter: GasMeter,
              data: bytes, depth: int, caller_is_contract: bool) -> ExecReturnValue:
        self._check_depth(depth)
        info = self.collect_rent(dest)
        if not isinstance(info, AliveContractInfo):
            raise DispatchError('NotCallable', f"0x{dest.hex()}")
        if value:
            self._transfer(caller, dest, value, caller_is_contract)
        return self._execute(dest, info.code_hash, CALL_EXPORT, caller, value,
                             gas_meter, data, depth)

    def _execute(self, address: bytes, code_hash: bytes, entry: str, caller: bytes,
                 value: int, gas_meter: GasMeter, data: bytes, depth: int) -> ExecReturnValue:
        module = self._codes.get(code_hash)
        if module is None:
            raise DispatchError('CodeNotFound', f"0x{code_hash.hex()}")
        ext = Ext(self, address, caller, value, depth, gas_meter)
        return Sandbox(module, HOST_FUNCTIONS, ext, gas_meter, data).invoke(entry)

    # ========== Storage ==========

    def read_storage(self, address: bytes, key: bytes) -> Optional[bytes]:
        info = self._contracts.get(address)
        if not isinstance(info, AliveContractInfo):
            return None
        return self._tries[info.trie_id].get(key)

    def write_storage(self, address: bytes, key: bytes, value: Optional[bytes]) -> None:
        if len(key) != STORAGE_KEY_LEN:
            raise DispatchError('InvalidStorageKey', f"key of {len(key)} bytes")
        info = self._alive(address)
        trie = self._tries[info.trie_id]

        previous = trie.get(key)
        total, empty = info.total_pair_count, info.empty_pair_count
        if previous is not None:
            total -= 1
            empty -= previous == b''
        if value is not None:
            total += 1
            empty += value == b''

        previous_len = len(previous) if previous is not None else 0
        new_len = len(value) if value is not None else 0
        self._put(trie, key, None if value is None else bytes(value))
        self._put(self._contracts, address, replace(
            info,
            storage_size=max(info.storage_size - previous_len + new_len, 0),
            total_pair_count=total,
            empty_pair_count=empty,
            last_write=self._block_number,
        ))

    def set_storage_size(self, address: bytes, storage_size: int) -> None:
        info = self._alive(address)
        self._put(self._contracts, address, replace(info, storage_size=storage_size))

    def storage_root(self, trie: Dict[bytes, bytes]) -> bytes:
        """Root hash committing to every key/value pair of a trie."""
        return self.host.hash(scale.encode_vec(
            scale.encode_bytes(key) + scale.encode_bytes(value)
            for key, value in sorted(trie.items())
        ))

    def tombstone_hash(self, storage: Sequence[Tuple[bytes, bytes]], code_hash: bytes) -> bytes:
        return self.host.hash(self.storage_root(dict(storage)) + code_hash)

    # ========== Rent ==========

    def _fee_per_block(self, free_balance: int, info: AliveContractInfo) -> int:
        rent = self.host.rent
        free_storage = free_balance // rent.rent_deposit_offset
        # Every empty pair is charged as if it held one byte
        effective_size = info.storage_size + rent.storage_size_offset + info.empty_pair_count
        return max(effective_size - free_storage, 0) * rent.rent_byte_fee

    def _rent_budget(self, total_balance: int, free_balance: int,
                     info: AliveContractInfo) -> Optional[int]:
        """Rent the contract may be charged, None if it is below subsistence."""
        subsistence = self.subsistence_threshold
        if total_balance < subsistence:
            return None
        return min(info.rent_allowance, max(free_balance - subsistence, 0))

    def _consider_case(self, address: bytes, info: AliveContractInfo, handicap: int) -> Verdict:
        blocks_passed = max(self._block_number - handicap - info.deduct_block, 0)
        if blocks_passed == 0:
            return Verdict(VerdictKind.EXEMPT)

        free_balance = self.free_balance(address)
        fee_per_block = self._fee_per_block(free_balance, info)
        if fee_per_block == 0:
            return Verdict(VerdictKind.EXEMPT)

        budget = self._rent_budget(self.total_balance(address), free_balance, info)
        if budget is None:
            return Verdict(VerdictKind.KILL)

        dues = fee_per_block * blocks_passed
        if budget < dues:
            return Verdict(VerdictKind.EVICT, budget)
        return Verdict(VerdictKind.CHARGE, dues)

    def _enact_verdict(self, address: bytes, info: AliveContractInfo,
                       verdict: Verdict) -> Optional[ContractInfo]:
        if verdict.kind == VerdictKind.EXEMPT:
            return info

        if verdict.kind == VerdictKind.KILL:
            self._put(self._contracts, address, None)
            self._put(self._tries, info.trie_id, None)
            self._deposit_event('Evicted', data=(address, False))
            logger.debug("Killed 0x%s below subsistence", address.hex())
            return None

        if verdict.kind == VerdictKind.EVICT:
            self._withdraw(address, verdict.amount)
            tombstone = TombstoneContractInfo(
                hash=self.host.hash(self.storage_root(self._tries[info.trie_id]) + info.code_hash),
                code_hash=info.code_hash,
                trie_id=info.trie_id,
            )
            self._put(self._contracts, address, tombstone)
            self._put(self._tries, info.trie_id, None)
            self._deposit_event('Evicted', data=(address, True))
            logger.debug("Evicted 0x%s at block %d", address.hex(), self._block_number)
            return tombstone

        charged = replace(
            info,
            rent_allowance=info.rent_allowance - verdict.amount,
            deduct_block=self._block_number,
        )
        self._put(self._contracts, address, charged)
        self._withdraw(address, verdict.amount)
        return charged

    def collect_rent(self, address: bytes) -> Optional[ContractInfo]:
        info = self._contracts.get(address)
        if not isinstance(info, AliveContractInfo):
            return info
        return self._enact_verdict(address, info, self._consider_case(address, info, 0))

    def rent_projection(self, address: bytes) -> RentProjection:
        info = self._alive(address)
        verdict = self._consider_case(address, info, 0)
        if verdict.kind in (VerdictKind.KILL, VerdictKind.EVICT):
            raise DispatchError('ContractEvicted', "evicted by the rent due right now")

        # Project from the state collecting the rent due now would leave
        free_balance = self.free_balance(address)
        if verdict.kind == VerdictKind.CHARGE:
            free_balance -= verdict.amount
            info = replace(info, rent_allowance=info.rent_allowance - verdict.amount)

        fee_per_block = self._fee_per_block(free_balance, info)
        if fee_per_block == 0:
            return RentProjection()
        budget = self._rent_budget(free_balance, free_balance, info)
        if budget is None:
            return RentProjection(eviction_at=self._block_number)
        return RentProjection(eviction_at=self._block_number + budget // fee_per_block)

    def claim_surcharge(self, origin: Origin, dest: bytes,
                        aux_sender: Optional[bytes] = None) -> None:
        if origin.kind == OriginKind.SIGNED and aux_sender is None:
            signed, rewarded = True, origin.account
        elif origin.kind == OriginKind.NONE and aux_sender is not None:
            signed, rewarded = False, aux_sender
        else:
            raise DispatchError('InvalidSurchargeClaim')

        # Signed claims look at an older block than unsigned ones
        handicap = self.host.rent.signed_claim_handicap if signed else 0

        def operation() -> None:
            info = self._contracts.get(dest)
            if not isinstance(info, AliveContractInfo):
                return
            verdict = self._consider_case(dest, info, handicap)
            if verdict.kind in (VerdictKind.KILL, VerdictKind.EVICT):
                self._enact_verdict(dest, info, verdict)
                self._deposit_into_existing(rewarded, self.host.rent.surcharge_reward)

        self._transactional(operation)

    # ========== Contract Initiated Operations ==========

    def _terminate(self, address: bytes, beneficiary: bytes) -> None:
        info = self._alive(address)
        balance = self.free_balance(address)
        if balance:
            self._transfer(address, beneficiary, balance, True, allow_death=True)
        self._put(self._balances, address, None)
        self._put(self._contracts, address, None)
        self._put(self._tries, info.trie_id, None)
        self._deposit_event('Terminated', data=(address, beneficiary))

    def _restore_to(self, origin: bytes, dest: bytes, code_hash: bytes,
                    rent_allowance: int, delta: List[bytes]) -> None:
        origin_info = self._alive(origin)
        current_block = self._block_number
        if origin_info.last_write == current_block:
            raise DispatchError('InvalidContractOrigin', "storage written in this block")

        dest_info = self._contracts.get(dest)
        if not isinstance(dest_info, TombstoneContractInfo):
            raise DispatchError('InvalidDestinationContract', f"0x{dest.hex()} is no tombstone")

        trie = self._tries[origin_info.trie_id]
        delta_keys = set(delta)
        remaining = {key: value for key, value in trie.items() if key not in delta_keys}
        if self.host.hash(self.storage_root(remaining) + code_hash) != dest_info.hash:
            raise DispatchError('InvalidTombstone')

        for key in delta_keys & set(trie):
            self._put(trie, key, None)

        self._put(self._contracts, origin, None)
        self._put(self._contracts, dest, AliveContractInfo(
            trie_id=origin_info.trie_id,
            code_hash=code_hash,
            storage_size=sum(len(value) for value in remaining.values()),
            empty_pair_count=sum(1 for value in remaining.values() if not value),
            total_pair_count=len(remaining),
            rent_allowance=rent_allowance,
            deduct_block=current_block,
            last_write=current_block if delta else origin_info.last_write,
        ))

        balance = self.free_balance(origin)
        self._put(self._balances, origin, None)
        self._put(self._balances, dest, self.free_balance(dest) + balance)
        self._deposit_event('Restored', data=(origin, dest, code_hash, rent_allowance))


class Ext:
    """
    State of one execution frame, handed to host functions as `ctx.ext`.

    Attributes:
        runtime: The runtime executing the frame
        address: Address of the executing contract
        caller: Account that called or instantiated it
        value_transferred: Value sent along with the call
        depth: Nesting depth, 0 for the outermost frame
        gas_meter: Meter of the frame, shared with its sandbox
    """

    def __init__(self, runtime: InMemoryRuntime, address: bytes, caller: bytes,
                 value_transferred: int, depth: int, gas_meter: GasMeter):
        self.runtime = runtime
        self.address = address
        self.caller = caller
        self.value_transferred = value_transferred
        self.depth = depth
        self.gas_meter = gas_meter

    def balance(self) -> int:
        return self.runtime.free_balance(self.address)

    def now(self) -> int:
        return self.runtime.now()

    def rent_allowance(self) -> int:
        return self.runtime._alive(self.address).rent_allowance

    def set_rent_allowance(self, allowance: int) -> None:
        info = self.runtime._alive(self.address)
        self.runtime._put(self.runtime._contracts, self.address, replace(info, rent_allowance=allowance))

    def random(self, subject: bytes) -> bytes:
        seed = self.runtime.host.config.random_seed.encode('utf-8')
        return self.runtime.host.hash(subject + seed)

    def deposit_event(self, topics: List[bytes], data: bytes) -> None:
        self.runtime._deposit_event('ContractExecution', topics, (self.address, data))

    def get_storage(self, key: bytes) -> Optional[bytes]:
        return self.runtime.read_storage(self.address, key)

    def set_storage(self, key: bytes, value: Optional[bytes]) -> None:
        self.runtime.write_storage(self.address, key, value)

    def terminate(self, beneficiary: bytes) -> None:
        self.runtime._terminate(self.address, beneficiary)

    def restore_to(self, dest: bytes, code_hash: bytes, rent_allowance: int,
                   delta: List[bytes]) -> None:
        self.runtime._restore_to(self.address, dest, code_hash, rent_allowance, delta)

    def transfer(self, dest: bytes, value: int) -> ReturnCode:
        try:
            self.runtime._transfer(self.address, dest, value, True)
        except DispatchError as error:
            code = return_code_for(error.module_error)
            if code is None:
                raise
            return code
        return ReturnCode.SUCCESS

    def _nested(self, gas: int, operation: Callable[[GasMeter], Any]) -> Tuple[ReturnCode, Any]:
        """
        Run a nested frame, rolling back its changes unless it succeeds.

        Returns:
            Tuple of (status code, operation result or None)
        """
        runtime = self.runtime
        checkpoint = runtime._checkpoint()
        gas_meter = self.gas_meter.nested(gas)
        try:
            result = operation(gas_meter)
        except Trap as trap:
            logger.debug("Nested frame trapped: %s", trap.reason)
            runtime._rollback(checkpoint)
            return ReturnCode.CALLEE_TRAPPED, None
        except DispatchError as error:
            runtime._rollback(checkpoint)
            code = return_code_for(error.module_error)
            if code is None:
                raise
            return code, None
        finally:
            self.gas_meter.absorb(gas_meter)

        output = result[1] if isinstance(result, tuple) else result
        if not output.is_success:
            runtime._rollback(checkpoint)
            return ReturnCode.CALLEE_REVERTED, result
        return ReturnCode.SUCCESS, result

    def call(self, dest: bytes, value: int, gas: int, input_data: bytes) -> Tuple[ReturnCode, bytes]:
        code, result = self._nested(gas, lambda meter: self.runtime._call(
            self.address, dest, value, meter, input_data, self.depth + 1, True,
        ))
        return code, result.data if result is not None else b''

    def instantiate(self, code_hash: bytes, value: int, gas: int,
                    input_data: bytes) -> Tuple[ReturnCode, Optional[bytes], bytes]:
        code, result = self._nested(gas, lambda meter: self.runtime._instantiate(
            self.address, value, meter, code_hash, input_data, self.depth + 1, True,
        ))
        if result is None:
            return code, None, b''
        address, output = result
        return code, address, output.data
