"""
Runtime state structures shared by the runtime interface and the harness.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple, Union


class OriginKind(Enum):
    SIGNED = 'signed'
    ROOT = 'root'
    NONE = 'none'


@dataclass(frozen=True)
class Origin:
    """Origin of a dispatchable call."""
    kind: OriginKind
    account: Optional[bytes] = None

    @classmethod
    def signed(cls, account: bytes) -> 'Origin':
        return cls(OriginKind.SIGNED, account)

    @classmethod
    def root(cls) -> 'Origin':
        return cls(OriginKind.ROOT)

    @classmethod
    def none(cls) -> 'Origin':
        return cls(OriginKind.NONE)


@dataclass
class AliveContractInfo:
    """Bookkeeping of a live contract."""
    trie_id: bytes
    code_hash: bytes
    storage_size: int = 0
    empty_pair_count: int = 0
    total_pair_count: int = 0
    rent_allowance: int = 0
    deduct_block: int = 0
    last_write: Optional[int] = None


@dataclass(frozen=True)
class TombstoneContractInfo:
    """Evicted contract: hash over its storage root and code hash."""
    hash: bytes
    code_hash: bytes
    trie_id: bytes


ContractInfo = Union[AliveContractInfo, TombstoneContractInfo]


@dataclass(frozen=True)
class RentProjection:
    """Block at which a contract is going to be evicted, None if never."""
    eviction_at: Optional[int] = None

    @property
    def pays_rent(self) -> bool:
        return self.eviction_at is not None


# Flag set in ExecReturnValue.flags when the contract reverted
RETURN_FLAG_REVERT = 0x0000_0001


@dataclass
class ExecReturnValue:
    """Outcome of executing a contract entry point."""
    flags: int = 0
    data: bytes = b''

    @property
    def is_success(self) -> bool:
        return not self.flags & RETURN_FLAG_REVERT


@dataclass
class Event:
    """Event deposited during execution."""
    name: str
    topics: List[bytes] = field(default_factory=list)
    data: Tuple = ()
