"""
Exceptions raised by the benchmark harness.
"""


class BenchError(Exception):
    """Base class for all harness errors."""


class ModuleEncodingError(BenchError):
    """A module description could not be encoded. This is a builder defect."""


class SetupError(BenchError):
    """A fixture could not be built or a precondition does not hold."""


class VerificationError(BenchError):
    """The measured operation did not leave the expected state behind."""


class MeasurementError(BenchError):
    """The measured dispatch failed."""

    def __init__(self, benchmark: str, cause: Exception):
        super().__init__(f"Measured operation of '{benchmark}' failed: {cause}")
        self.benchmark = benchmark
        self.cause = cause
