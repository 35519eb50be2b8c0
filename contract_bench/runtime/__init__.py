"""
Contracts runtime interface and the in-memory reference runtime.
"""

from .base import Runtime
from .errors import DispatchError, ReturnCode, Trap
from .memory import InMemoryRuntime
from .types import (
    AliveContractInfo, ContractInfo, Event, ExecReturnValue, Origin, OriginKind,
    RentProjection, TombstoneContractInfo,
)

__all__ = [
    'Runtime', 'InMemoryRuntime',
    'DispatchError', 'ReturnCode', 'Trap',
    'AliveContractInfo', 'ContractInfo', 'TombstoneContractInfo', 'Event',
    'ExecReturnValue', 'Origin', 'OriginKind', 'RentProjection',
]
