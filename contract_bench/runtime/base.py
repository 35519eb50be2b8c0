"""
Abstract base class for the contracts runtime the harness drives.

The virtual machine, the storage trie, block production and fee charging
live behind this interface. The benchmark harness only ever talks to a
runtime through it.
"""

from abc import ABC, abstractmethod
from typing import Optional, Sequence, Tuple

from ..config import HostConfig, Schedule
from ..wasm.structures import Module
from .types import ContractInfo, ExecReturnValue, Origin, RentProjection


class Runtime(ABC):
    """
    Abstract contracts runtime.

    Subclasses must implement the dispatchable calls (put_code,
    instantiate, call, claim_surcharge, update_schedule), the rent hooks
    (rent_projection, collect_rent), raw storage access and the currency
    primitives the harness uses to fund accounts and check balances.

    Attributes:
        host: Host capabilities shared with the harness
    """

    def __init__(self, host: HostConfig):
        self.host = host

    # ========== Lifecycle ==========

    @abstractmethod
    def reset(self) -> None:
        """Drop all chain state: balances, code, contracts, block height."""
        pass

    # ========== Chain State ==========

    @property
    @abstractmethod
    def block_number(self) -> int:
        pass

    @abstractmethod
    def set_block_number(self, number: int) -> None:
        pass

    # ========== Currency ==========

    @abstractmethod
    def free_balance(self, account: bytes) -> int:
        pass

    @abstractmethod
    def total_balance(self, account: bytes) -> int:
        pass

    @abstractmethod
    def make_free_balance_be(self, account: bytes, amount: int) -> None:
        pass

    @property
    def minimum_balance(self) -> int:
        """Existential deposit."""
        return self.host.config.existential_deposit

    @property
    def subsistence_threshold(self) -> int:
        """Minimum balance a contract needs to stay alive."""
        return self.minimum_balance + self.host.rent.tombstone_deposit

    # ========== Dispatchables ==========

    @abstractmethod
    def put_code(self, origin: Origin, code: bytes) -> bytes:
        """
        Store contract code.

        Args:
            origin: Must be signed
            code: Module bytes

        Returns:
            The code hash

        Raises:
            DispatchError: If the code is too large or rejected
        """
        pass

    @abstractmethod
    def instantiate(self, origin: Origin, endowment: int, gas_limit: int,
                    code_hash: bytes, data: bytes) -> bytes:
        """
        Instantiate a contract from stored code.

        Returns:
            Address of the new contract

        Raises:
            DispatchError: If the code is missing, the contract exists
                already, or the endowment is below the subsistence threshold
        """
        pass

    @abstractmethod
    def call(self, origin: Origin, dest: bytes, value: int, gas_limit: int,
             data: bytes) -> ExecReturnValue:
        """
        Call a contract, collecting its rent first.

        Raises:
            DispatchError: If the destination is not callable or the
                execution trapped
        """
        pass

    @abstractmethod
    def claim_surcharge(self, origin: Origin, dest: bytes,
                        aux_sender: Optional[bytes] = None) -> None:
        """Evict `dest` if it cannot pay its rent and reward the claimer."""
        pass

    @abstractmethod
    def update_schedule(self, origin: Origin, schedule: Schedule) -> None:
        """Replace the current schedule. Root only, version must increase."""
        pass

    # ========== Helpers Outside Dispatch ==========

    @abstractmethod
    def put_code_raw(self, code: bytes) -> bytes:
        """Store code without an origin. Storing the same code twice is a no-op."""
        pass

    @abstractmethod
    def current_schedule(self) -> Schedule:
        pass

    @abstractmethod
    def code(self, code_hash: bytes) -> Optional[Module]:
        """Stored code, decoded. None if nothing is stored under `code_hash`."""
        pass

    @abstractmethod
    def contract_address_for(self, code_hash: bytes, data: bytes, caller: bytes) -> bytes:
        """Deterministic contract address."""
        pass

    def unlookup(self, account: bytes) -> bytes:
        """Lookup-form address for an account id."""
        return account

    @abstractmethod
    def contract_info(self, address: bytes) -> Optional[ContractInfo]:
        pass

    @abstractmethod
    def set_storage_size(self, address: bytes, storage_size: int) -> None:
        """Override the storage size used for rent computation."""
        pass

    @abstractmethod
    def rent_projection(self, address: bytes) -> RentProjection:
        """
        Project when `address` is going to be evicted.

        Raises:
            DispatchError: If the contract is not alive
        """
        pass

    @abstractmethod
    def collect_rent(self, address: bytes) -> Optional[ContractInfo]:
        """Charge rent due at the current block, evicting if it cannot be paid."""
        pass

    @abstractmethod
    def write_storage(self, address: bytes, key: bytes, value: Optional[bytes]) -> None:
        """
        Write a raw storage item of an alive contract. None removes the item.

        Raises:
            DispatchError: If the contract is not alive or the key has the
                wrong length
        """
        pass

    @abstractmethod
    def read_storage(self, address: bytes, key: bytes) -> Optional[bytes]:
        pass

    @abstractmethod
    def tombstone_hash(self, storage: Sequence[Tuple[bytes, bytes]], code_hash: bytes) -> bytes:
        """Tombstone hash a contract with `storage` and `code_hash` would leave behind."""
        pass
