import pytest

from contract_bench.errors import SetupError
from contract_bench.harness.catalog import (
    CATALOG, GETTERS, HASHERS, Component, MeasuredCall, get_benchmark, register,
)
from contract_bench.harness.runner import BenchmarkRunner
from contract_bench.runtime import Origin


def test_catalog_is_complete():
    assert len(CATALOG) == 46
    assert list(CATALOG)[:5] == ['update_schedule', 'put_code', 'instantiate', 'call', 'claim_surcharge']
    for getter in GETTERS:
        assert getter in CATALOG
    for hasher in HASHERS:
        assert f'seal_hash_{hasher}' in CATALOG
        assert f'seal_hash_{hasher}_per_kb' in CATALOG


def test_every_benchmark_has_a_description():
    for benchmark in CATALOG.values():
        assert benchmark.description, benchmark.name


def test_unknown_benchmark():
    with pytest.raises(KeyError, match="Unknown benchmark 'nope'"):
        get_benchmark('nope')


def test_duplicate_registration_rejected():
    benchmark = get_benchmark('seal_gas')
    with pytest.raises(ValueError, match='already registered'):
        register('seal_gas', benchmark.setup)


def test_component_bounds_follow_the_host(host):
    components = {c.name: c for c in get_benchmark('seal_call_per_transfer_input_output_kb').components(host)}
    assert components['t'] == Component('t', 0, 1)
    assert components['i'] == Component('i', 0, 2 * 64)
    assert components['o'] == Component('o', 0, 64)
    assert get_benchmark('put_code').components(host) == [Component('n', 0, 4)]
    assert get_benchmark('update_schedule').components(host) == []


class TestComponent:
    def test_values(self):
        assert Component('r', 0, 4).values(3) == [0, 2, 4]
        assert Component('r', 0, 2).values(5) == [0, 1, 2]
        assert Component('r', 0, 4).values(1) == [4]
        assert Component('r', 3, 3).values(4) == [3]

    def test_steps_must_be_positive(self):
        with pytest.raises(ValueError):
            Component('r', 0, 4).values(0)


class TestPrepare:
    def test_missing_component(self, driver):
        with pytest.raises(SetupError, match="Missing component 'r'"):
            get_benchmark('seal_gas').prepare(driver, {})

    def test_unknown_component(self, driver):
        with pytest.raises(SetupError, match='Unknown components'):
            get_benchmark('seal_gas').prepare(driver, {'r': 1, 'x': 1})

    def test_out_of_range(self, driver):
        with pytest.raises(SetupError, match='must be in 0..2'):
            get_benchmark('seal_gas').prepare(driver, {'r': 3})

    def test_measured_call_dispatches(self, driver, runtime):
        scenario = get_benchmark('update_schedule').prepare(driver, {})
        assert isinstance(scenario.measured, MeasuredCall)
        assert scenario.measured.origin == Origin.root()
        scenario.measured.dispatch(runtime)
        scenario.verify()


@pytest.mark.parametrize('bound', ['low', 'high'])
@pytest.mark.parametrize('name', list(CATALOG))
def test_benchmark_runs_at_its_bounds(name, bound, runtime, host):
    benchmark = get_benchmark(name)
    values = {c.name: getattr(c, bound) for c in benchmark.components(host)}
    result = BenchmarkRunner(runtime).run_once(benchmark, values)
    assert result.name == name
    assert result.components == values
    assert result.elapsed_ns >= 0

