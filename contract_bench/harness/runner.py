"""
Benchmark runner and report structures.

The runner resets the runtime before every sample, builds the scenario
through the catalog, times the single measured dispatch and checks the
scenario's post-conditions. Fitting weights to the samples is left to
whatever consumes the JSON report.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..errors import MeasurementError
from ..runtime.base import Runtime
from ..runtime.errors import DispatchError
from .catalog import CATALOG, Benchmark, Component, get_benchmark
from .lifecycle import ContractLifecycleDriver

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int], None]


def component_samples(components: List[Component], steps: int) -> List[Dict[str, int]]:
    """
    Component values to run a benchmark with.

    Each component is swept from low to high while all others stay at their
    high value. A benchmark without components yields one empty sample.
    """
    highs = {c.name: c.high for c in components}
    if not components:
        return [{}]

    samples: List[Dict[str, int]] = []
    for component in components:
        for value in component.values(steps):
            sample = dict(highs, **{component.name: value})
            if sample not in samples:
                samples.append(sample)
    return samples


@dataclass
class BenchmarkResult:
    """One timed execution of a benchmark."""
    name: str
    components: Dict[str, int] = field(default_factory=dict)
    elapsed_ns: int = 0
    repeat_index: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "components": dict(self.components),
            "elapsedNs": self.elapsed_ns,
            "repeatIndex": self.repeat_index,
        }


@dataclass
class BenchmarkReport:
    """
    Results of a benchmark run.

    The schedule and rent model versions are recorded so that results
    taken with different fee constants are never mixed up.
    """
    results: List[BenchmarkResult] = field(default_factory=list)
    steps: int = 0
    repeat: int = 0
    schedule_version: int = 0
    rent_version: int = 0
    hashing: str = ""

    def benchmarks(self) -> List[str]:
        names: List[str] = []
        for result in self.results:
            if result.name not in names:
                names.append(result.name)
        return names

    def to_dict(self) -> Dict[str, Any]:
        return {
            "steps": self.steps,
            "repeat": self.repeat,
            "scheduleVersion": self.schedule_version,
            "rentVersion": self.rent_version,
            "hashing": self.hashing,
            "results": [r.to_dict() for r in self.results],
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)

    def save(self, path: str) -> None:
        with open(path, 'w', encoding='utf-8') as f:
            f.write(self.to_json())


class BenchmarkRunner:
    """
    Runs catalog benchmarks against a runtime.

    Attributes:
        runtime: Runtime every scenario is built in, reset before each sample
    """

    def __init__(self, runtime: Runtime):
        self.runtime = runtime

    @property
    def host(self):
        return self.runtime.host

    def run_once(self, benchmark: Benchmark, values: Dict[str, int],
                 repeat_index: int = 0) -> BenchmarkResult:
        """
        Set up, measure and verify one sample on a fresh runtime state.

        Raises:
            SetupError: If the scenario cannot be built
            MeasurementError: If the measured dispatch fails
            VerificationError: If a post-condition does not hold
        """
        self.runtime.reset()
        driver = ContractLifecycleDriver(self.runtime)
        scenario = benchmark.prepare(driver, values)

        start = time.perf_counter_ns()
        try:
            scenario.measured.dispatch(self.runtime)
        except DispatchError as e:
            raise MeasurementError(benchmark.name, e) from e
        elapsed = time.perf_counter_ns() - start

        if scenario.verify is not None:
            scenario.verify()

        logger.debug("%s %s: %d ns", benchmark.name, values, elapsed)
        return BenchmarkResult(
            name=benchmark.name,
            components=dict(values),
            elapsed_ns=elapsed,
            repeat_index=repeat_index,
        )

    def run(self, benchmark: Benchmark, steps: int, repeat: int = 1) -> List[BenchmarkResult]:
        """Run every component sample of `benchmark` `repeat` times."""
        if repeat <= 0:
            raise ValueError(f"Repeat must be positive, got {repeat}")
        results = []
        for values in component_samples(benchmark.components(self.host), steps):
            for repeat_index in range(repeat):
                results.append(self.run_once(benchmark, values, repeat_index))
        return results

    def run_all(self, names: Optional[Iterable[str]] = None, steps: Optional[int] = None,
                repeat: Optional[int] = None,
                progress: Optional[ProgressCallback] = None) -> BenchmarkReport:
        """
        Run a selection of benchmarks (all of them by default).

        Args:
            names: Benchmarks to run, in order
            steps: Samples per component, defaults to the configured value
            repeat: Repetitions per sample, defaults to the configured value
            progress: Called with (name, index, total) before each benchmark

        Returns:
            The report over all results
        """
        config = self.host.config
        steps = steps if steps is not None else config.steps
        repeat = repeat if repeat is not None else config.repeat
        benchmarks = [get_benchmark(name) for name in (names or list(CATALOG))]

        report = BenchmarkReport(
            steps=steps,
            repeat=repeat,
            schedule_version=self.host.schedule.version,
            rent_version=self.host.rent.version,
            hashing=config.hashing,
        )
        for index, benchmark in enumerate(benchmarks):
            if progress is not None:
                progress(benchmark.name, index, len(benchmarks))
            logger.info("Running %s (%d/%d)", benchmark.name, index + 1, len(benchmarks))
            report.results.extend(self.run(benchmark, steps, repeat))
        return report
