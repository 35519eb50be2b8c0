"""
Benchmark harness: module generation, fixtures, catalog and runner.
"""

from .catalog import CATALOG, Benchmark, Component, MeasuredCall, Scenario, get_benchmark
from .lifecycle import Contract, ContractLifecycleDriver, Endow, Tombstone
from .module_builder import (
    DataSegment, ImportedFunction, ImportedMemory, ModuleBuilder, ModuleDefinition,
    WasmModule, create_code,
)
from .runner import BenchmarkReport, BenchmarkResult, BenchmarkRunner, component_samples

__all__ = [
    'CATALOG', 'Benchmark', 'Component', 'MeasuredCall', 'Scenario', 'get_benchmark',
    'Contract', 'ContractLifecycleDriver', 'Endow', 'Tombstone',
    'DataSegment', 'ImportedFunction', 'ImportedMemory', 'ModuleBuilder',
    'ModuleDefinition', 'WasmModule', 'create_code',
    'BenchmarkReport', 'BenchmarkResult', 'BenchmarkRunner', 'component_samples',
]
