"""
contract-bench
Weight benchmark harness for a WebAssembly smart-contract runtime.

Generates synthetic contract modules, drives contracts through their
lifecycle (funding, instantiation, storage, rent, eviction, restoration)
and times one host-exposed operation per scenario.
"""

__version__ = "0.1.0"

from .config import Config, HostConfig
from .harness import CATALOG, BenchmarkRunner, ContractLifecycleDriver, ModuleBuilder
from .runtime import InMemoryRuntime, Runtime

__all__ = [
    'Config', 'HostConfig', 'CATALOG', 'BenchmarkRunner', 'ContractLifecycleDriver',
    'ModuleBuilder', 'InMemoryRuntime', 'Runtime', '__version__',
]
