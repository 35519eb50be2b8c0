"""
Errors reported by a contracts runtime.
"""

from enum import IntEnum
from typing import Optional

from ..errors import BenchError


class DispatchError(BenchError):
    """
    A dispatchable call was rejected.

    Attributes:
        module_error: Name of the module error, e.g. 'CodeNotFound'
    """

    def __init__(self, module_error: str, detail: str = ''):
        message = module_error if not detail else f"{module_error}: {detail}"
        super().__init__(message)
        self.module_error = module_error
        self.detail = detail


class Trap(Exception):
    """Contract execution trapped."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ReturnCode(IntEnum):
    """Status codes host functions hand back to contracts."""
    SUCCESS = 0
    CALLEE_TRAPPED = 1
    CALLEE_REVERTED = 2
    KEY_NOT_FOUND = 3
    BELOW_SUBSISTENCE_THRESHOLD = 4
    TRANSFER_FAILED = 5
    NEW_CONTRACT_NOT_FUNDED = 6
    CODE_NOT_FOUND = 7
    NOT_CALLABLE = 8


# Dispatch errors a contract can observe as a status code instead of a trap
_RETURN_CODES = {
    'BelowSubsistenceThreshold': ReturnCode.BELOW_SUBSISTENCE_THRESHOLD,
    'TransferFailed': ReturnCode.TRANSFER_FAILED,
    'NewContractNotFunded': ReturnCode.NEW_CONTRACT_NOT_FUNDED,
    'CodeNotFound': ReturnCode.CODE_NOT_FOUND,
    'NotCallable': ReturnCode.NOT_CALLABLE,
}


def return_code_for(module_error: str) -> Optional[ReturnCode]:
    """Status code reported for a failed nested dispatch, None if it must trap."""
    return _RETURN_CODES.get(module_error)
