#!/usr/bin/env python3
"""
contract-bench

Command-line interface for running contract weight benchmarks against the
in-memory reference runtime.

Usage:
    contract-bench list
    contract-bench run [NAME ...] [--steps N] [--repeat N] [--output FILE]
    contract-bench inspect NAME [--values k=v ...]
    contract-bench -h | --help
    contract-bench --version

Options:
    -h --help          Show this help message
    --version          Show version
    --config FILE      Path to config.json
    -v --verbose       Log setup and runtime details
"""

import sys
import argparse
import logging
from pathlib import Path
from typing import Dict, List, Optional

from . import __version__
from .config import Config, HostConfig
from .errors import BenchError
from .harness.catalog import CATALOG, Benchmark, MeasuredCall, get_benchmark
from .harness.lifecycle import ContractLifecycleDriver
from .harness.runner import BenchmarkRunner
from .runtime.base import Runtime
from .runtime.memory import InMemoryRuntime
from .wasm.decoder import count_call_sites, decode_module
from .wasm.encoder import encode_module
from .wasm.structures import ExternalKind, Module


def parse_values(pairs: List[str]) -> Dict[str, int]:
    """
    Parse `name=value` component assignments.

    Raises:
        ValueError: If a pair is malformed
    """
    values = {}
    for pair in pairs:
        name, sep, value = pair.partition('=')
        if not sep or not name:
            raise ValueError(f"Expected name=value, got '{pair}'")
        try:
            values[name] = int(value)
        except ValueError:
            raise ValueError(f"Component '{name}' must be an integer, got '{value}'") from None
    return values


def measured_module(runtime: Runtime, measured: MeasuredCall) -> Optional[Module]:
    """Module the measured dispatch executes or stores, if there is one."""
    if measured.function == 'put_code':
        return decode_module(measured.args[0])
    if measured.function == 'instantiate':
        return runtime.code(measured.args[2])
    if measured.function == 'call':
        info = runtime.contract_info(measured.args[0])
        if info is not None:
            return runtime.code(info.code_hash)
    return None


def describe_module(module: Module) -> List[str]:
    """Human readable summary of a module's sections."""
    lines = [f"Size: {len(encode_module(module))} bytes"]

    lines.append(f"Types ({len(module.types)}):")
    for index, func_type in enumerate(module.types):
        params = ', '.join(p.name.lower() for p in func_type.params)
        results = ', '.join(r.name.lower() for r in func_type.results)
        lines.append(f"  {index}: ({params}) -> ({results})")

    lines.append(f"Imports ({len(module.imports)}):")
    for entry in module.imports:
        if entry.kind == ExternalKind.MEMORY:
            limits = entry.limits
            lines.append(f"  {entry.module}.{entry.field}: memory {limits.minimum}..{limits.maximum} pages")
        else:
            lines.append(f"  {entry.module}.{entry.field}: type {entry.type_index}")

    lines.append(f"Exports ({len(module.exports)}):")
    for entry in module.exports:
        lines.append(f"  {entry.field} -> function {entry.index}")

    imported = len(module.imported_functions)
    for offset, func_body in enumerate(module.code):
        index = imported + offset
        calls = ', '.join(
            f"{count_call_sites(func_body, i)}x {entry.field}"
            for i, entry in enumerate(module.imported_functions)
        )
        lines.append(
            f"Function {index}: {len(func_body.instructions)} instructions"
            + (f" (calls: {calls})" if calls else "")
        )

    lines.append(f"Data segments ({len(module.data)}):")
    for entry in module.data:
        lines.append(f"  [{entry.offset}, {entry.offset + len(entry.value)})")
    return lines


def cmd_list(host: HostConfig) -> None:
    for name, benchmark in CATALOG.items():
        components = ', '.join(
            f"{c.name}={c.low}..{c.high}" for c in benchmark.components(host)
        )
        print(f"{name:<42} {components}")
    print(f"\n{len(CATALOG)} benchmarks")


def cmd_run(host: HostConfig, names: List[str], steps: Optional[int],
            repeat: Optional[int], output: Optional[str]) -> None:
    runner = BenchmarkRunner(InMemoryRuntime(host))

    def progress(name: str, index: int, total: int) -> None:
        print(f"[{index + 1}/{total}] {name}")

    report = runner.run_all(names or None, steps, repeat, progress)

    for name in report.benchmarks():
        timings = [r.elapsed_ns for r in report.results if r.name == name]
        print(f"{name:<42} {len(timings):>4} samples, min {min(timings)} ns, max {max(timings)} ns")

    if output:
        report.save(output)
        print(f"Report written to {output}")


def cmd_inspect(host: HostConfig, benchmark: Benchmark, values: Dict[str, int]) -> None:
    components = benchmark.components(host)
    # Unspecified components default to their high value
    full_values = {c.name: values.get(c.name, c.high) for c in components}
    full_values.update(values)

    runtime = InMemoryRuntime(host)
    scenario = benchmark.prepare(ContractLifecycleDriver(runtime), full_values)
    measured = scenario.measured

    print(f"Benchmark: {benchmark.name}")
    if benchmark.description:
        print(f"  {benchmark.description}")
    print(f"Components: {full_values}")
    print(f"Measured: {measured.function} ({measured.origin.kind.value} origin)")
    print(f"Block: {runtime.block_number}")

    module = measured_module(runtime, measured)
    if module is not None:
        for line in describe_module(module):
            print(line)


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="contract-bench - Weight benchmarks for WebAssembly contracts",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument('--version', action='version', version=f'contract-bench {__version__}')
    parser.add_argument('--config', type=str, help='Path to config.json')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')
    subparsers = parser.add_subparsers(dest='command')

    subparsers.add_parser('list', help='List benchmarks and their components')

    run_parser = subparsers.add_parser('run', help='Run benchmarks')
    run_parser.add_argument('names', nargs='*', help='Benchmarks to run (default: all)')
    run_parser.add_argument('--steps', type=int, help='Samples per component')
    run_parser.add_argument('--repeat', type=int, help='Repetitions per sample')
    run_parser.add_argument('--output', '-o', type=str, help='Write the JSON report to this file')

    inspect_parser = subparsers.add_parser('inspect', help='Build a scenario and show its module')
    inspect_parser.add_argument('name', help='Benchmark name')
    inspect_parser.add_argument('--values', nargs='*', default=[], help='Component values as name=value')

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(levelname)s %(name)s: %(message)s',
    )

    try:
        # Load config
        config_path = Path(args.config) if args.config else None
        host = HostConfig(Config.load(config_path))

        if args.command == 'list':
            cmd_list(host)
        elif args.command == 'run':
            for name in args.names:
                get_benchmark(name)
            cmd_run(host, args.names, args.steps, args.repeat, args.output)
        elif args.command == 'inspect':
            cmd_inspect(host, get_benchmark(args.name), parse_values(args.values))
    except KeyError as e:
        print(f"ERROR: {e.args[0]}")
        sys.exit(1)
    except (BenchError, ValueError) as e:
        print(f"ERROR: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
