"""
Contract lifecycle driver.

Brings the runtime into the state a benchmark needs before its measured
operation: funded accounts, deployed code, live contracts with a chosen
rent profile, seeded storage, evicted contracts (tombstones).
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple, Type

from ..config import HostConfig, MAX_WEIGHT, SUPPORTED_RENT_VERSIONS
from ..errors import BenchError, SetupError
from ..runtime.base import Runtime
from ..runtime.errors import DispatchError
from ..runtime.types import AliveContractInfo, Origin, TombstoneContractInfo
from .module_builder import WasmModule, dummy_code

logger = logging.getLogger(__name__)

StorageItems = List[Tuple[bytes, bytes]]

# Value every generated storage item is filled with
STORAGE_FILL_BYTE = 42


class Endow(Enum):
    """How much a new contract is endowed with."""
    MAX = 'max'  # As much as possible, never pays rent
    COLLECT_RENT = 'collect_rent'  # Large, but still paying rent every block


@dataclass(frozen=True)
class Contract:
    """A contract instantiated for a benchmark."""
    caller: bytes
    account_id: bytes
    addr: bytes
    endowment: int
    code_hash: bytes


@dataclass(frozen=True)
class Tombstone:
    """An evicted contract and the storage it had before eviction."""
    contract: Contract
    storage: Tuple[Tuple[bytes, bytes], ...] = ()


class ContractLifecycleDriver:
    """
    Fixture builder on top of a `Runtime`.

    Attributes:
        runtime: Runtime the fixtures are created in
        host: Host capabilities (hashing, account derivation, rent model)
    """

    def __init__(self, runtime: Runtime, host: Optional[HostConfig] = None):
        self.runtime = runtime
        self.host = host or runtime.host

    # ========== Funding ==========

    def funding(self) -> int:
        """Balance handed to every account a benchmark acts with."""
        return self.host.max_balance // 2

    def max_endowment(self) -> int:
        return self.funding() - self.runtime.minimum_balance

    def fund(self, account: bytes) -> None:
        self.runtime.make_free_balance_be(account, self.funding())

    def create_funded_user(self, name: str, index: int) -> bytes:
        user = self.host.account(name, index)
        self.fund(user)
        return user

    # ========== Deployment ==========

    def deploy(self, module: WasmModule) -> bytes:
        """Store code without an origin. Deploying the same module twice is a no-op."""
        try:
            return self.runtime.put_code_raw(module.code)
        except DispatchError as e:
            raise SetupError(f"Failed to deploy code 0x{module.hash.hex()}: {e}") from e

    def rent_bearing_endowment(self) -> Tuple[int, int]:
        """
        Storage size and endowment of a contract that pays rent every block.

        The storage size must not be zero, otherwise a contract just above
        a large subsistence threshold pays no rent. The endowment is as
        large as possible without making the contract rent free.

        Returns:
            Tuple of (storage_size, endowment)

        Raises:
            SetupError: If the rent model version is unknown
        """
        rent = self.host.rent
        if rent.version not in SUPPORTED_RENT_VERSIONS:
            raise SetupError(
                f"Rent model version {rent.version} is not supported "
                f"(supported: {', '.join(map(str, SUPPORTED_RENT_VERSIONS))})"
            )
        storage_size = self.runtime.subsistence_threshold // rent.rent_deposit_offset
        endowment = rent.rent_deposit_offset * (storage_size + rent.storage_size_offset) - 1
        return storage_size, max(endowment, 0)

    def instantiate(self, caller: bytes, module: WasmModule, data: bytes = b'',
                    endow: Endow = Endow.MAX) -> Contract:
        """
        Fund `caller`, deploy `module` and instantiate it.

        The block number is set to one first so that the instantiation and
        the measured call that follows see the same block.

        Raises:
            SetupError: If the instantiation fails or leaves no live contract
        """
        if endow == Endow.COLLECT_RENT:
            storage_size, endowment = self.rent_bearing_endowment()
        else:
            storage_size, endowment = 0, self.max_endowment()

        self.fund(caller)
        addr = self.runtime.contract_address_for(module.hash, data, caller)
        self.runtime.set_block_number(1)
        self.deploy(module)
        try:
            self.runtime.instantiate(Origin.signed(caller), endowment, MAX_WEIGHT, module.hash, data)
        except DispatchError as e:
            raise SetupError(f"Failed to instantiate 0x{module.hash.hex()}: {e}") from e

        self.assert_alive(addr)
        self.runtime.set_storage_size(addr, storage_size)
        logger.debug("Instantiated 0x%s (%s, endowment %d)", addr.hex(), endow.value, endowment)
        return Contract(
            caller=caller,
            account_id=addr,
            addr=self.runtime.unlookup(addr),
            endowment=endowment,
            code_hash=module.hash,
        )

    def instantiate_from_index(self, index: int, module: WasmModule, data: bytes = b'',
                               endow: Endow = Endow.MAX) -> Contract:
        """Instantiate with the `index`-th instantiator account as caller."""
        return self.instantiate(self.host.account('instantiator', index), module, data, endow)

    # ========== Storage ==========

    def create_storage(self, count: int, size: int) -> StorageItems:
        """`count` items keyed by the hash of their index, each `size` bytes long."""
        return [
            (self.host.hash_of(i), bytes([STORAGE_FILL_BYTE]) * size)
            for i in range(count)
        ]

    def seed_storage(self, account: bytes, items: Sequence[Tuple[bytes, bytes]]) -> None:
        """Write storage items directly into a live contract."""
        self.assert_alive(account)
        for key, value in items:
            try:
                self.runtime.write_storage(account, key, value)
            except DispatchError as e:
                raise SetupError(f"Failed to write storage of 0x{account.hex()}: {e}") from e

    # ========== Rent ==========

    def eviction_at(self, account: bytes) -> int:
        """
        Block at which `account` is going to be evicted.

        Raises:
            SetupError: If the account is not a live contract or pays no rent
        """
        try:
            projection = self.runtime.rent_projection(account)
        except DispatchError as e:
            raise SetupError(f"Invalid account for rent: {e}") from e
        if not projection.pays_rent:
            raise SetupError("Account does not pay rent.")
        return projection.eviction_at

    def force_eviction(self, account: bytes, margin: int = 5) -> None:
        """Advance past the eviction block, collect rent and expect a tombstone."""
        eviction_at = self.eviction_at(account)
        self.runtime.set_block_number(eviction_at + self.host.rent.signed_claim_handicap + margin)
        self.runtime.collect_rent(account)
        self.assert_tombstone(account)
        logger.debug("Evicted 0x%s at block %d", account.hex(), self.runtime.block_number)

    def create_tombstone(self, count: int, size: int) -> Tombstone:
        """Evict a rent paying contract holding `count` items of `size` bytes."""
        contract = self.instantiate_from_index(0, dummy_code(self.host), endow=Endow.COLLECT_RENT)
        storage = self.create_storage(count, size)
        self.seed_storage(contract.account_id, storage)
        self.force_eviction(contract.account_id)
        return Tombstone(contract=contract, storage=tuple(storage))

    # ========== State Checks ==========

    def assert_alive(self, account: bytes,
                     error: Type[BenchError] = SetupError) -> AliveContractInfo:
        info = self.runtime.contract_info(account)
        if not isinstance(info, AliveContractInfo):
            raise error("Expected contract to be alive at this point.")
        return info

    def assert_tombstone(self, account: bytes,
                         error: Type[BenchError] = SetupError) -> TombstoneContractInfo:
        info = self.runtime.contract_info(account)
        if not isinstance(info, TombstoneContractInfo):
            raise error("Expected contract to be a tombstone at this point.")
        return info

    def assert_absent(self, account: bytes, error: Type[BenchError] = SetupError) -> None:
        if self.runtime.contract_info(account) is not None:
            raise error("Expected that contract does not exist at this point.")
