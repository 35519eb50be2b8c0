import json

import pytest

from contract_bench.errors import MeasurementError, VerificationError
from contract_bench.harness.catalog import Benchmark, Component, MeasuredCall, Scenario, get_benchmark
from contract_bench.harness.runner import BenchmarkRunner, component_samples
from contract_bench.runtime import Origin


def test_samples_without_components():
    assert component_samples([], 5) == [{}]


def test_samples_sweep_one_component_at_a_time():
    samples = component_samples([Component('a', 0, 2), Component('b', 0, 4)], 3)
    assert samples == [
        {'a': 0, 'b': 4},
        {'a': 1, 'b': 4},
        {'a': 2, 'b': 4},
        {'a': 2, 'b': 0},
        {'a': 2, 'b': 2},
    ]


def test_run_repeats_every_sample(runtime):
    results = BenchmarkRunner(runtime).run(get_benchmark('seal_gas'), steps=2, repeat=2)
    assert [(r.components, r.repeat_index) for r in results] == [
        ({'r': 0}, 0), ({'r': 0}, 1), ({'r': 2}, 0), ({'r': 2}, 1),
    ]


def test_repeat_must_be_positive(runtime):
    with pytest.raises(ValueError):
        BenchmarkRunner(runtime).run(get_benchmark('seal_gas'), steps=2, repeat=0)


def test_failed_dispatch_is_a_measurement_error(runtime, host):
    def setup(driver):
        # Updating the schedule needs root
        caller = driver.create_funded_user('caller', 0)
        return Scenario(MeasuredCall('update_schedule', Origin.signed(caller), (host.schedule,)))

    with pytest.raises(MeasurementError, match="'bad_origin'") as excinfo:
        BenchmarkRunner(runtime).run_once(Benchmark('bad_origin', (), setup), {})
    assert excinfo.value.cause.module_error == 'BadOrigin'


def test_failed_verification_propagates(runtime):
    def verify():
        raise VerificationError("never holds")

    def setup(driver):
        scenario = get_benchmark('update_schedule').prepare(driver, {})
        return Scenario(scenario.measured, verify)

    with pytest.raises(VerificationError, match='never holds'):
        BenchmarkRunner(runtime).run_once(Benchmark('always_fails', (), setup), {})


def test_run_all_report(runtime, tmp_path):
    seen = []
    report = BenchmarkRunner(runtime).run_all(
        ['update_schedule', 'seal_caller'],
        progress=lambda name, index, total: seen.append((name, index, total)),
    )
    assert seen == [('update_schedule', 0, 2), ('seal_caller', 1, 2)]
    # Steps and repeat default to the configuration
    assert (report.steps, report.repeat) == (2, 1)
    assert report.benchmarks() == ['update_schedule', 'seal_caller']
    assert len(report.results) == 1 + 2

    path = tmp_path / 'report.json'
    report.save(str(path))
    data = json.loads(path.read_text(encoding='utf-8'))
    assert data['hashing'] == 'blake2_256'
    assert data['rentVersion'] == 1
    assert data['results'][1]['name'] == 'seal_caller'
    assert data['results'][1]['components'] == {'r': 0}
    assert set(data['results'][0]) == {'name', 'components', 'elapsedNs', 'repeatIndex'}


def test_run_all_unknown_name(runtime):
    with pytest.raises(KeyError):
        BenchmarkRunner(runtime).run_all(['nope'])
