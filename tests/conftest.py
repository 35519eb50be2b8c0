"""Shared fixtures: a small host configuration keeps generated modules and batches tiny."""

import pytest

from contract_bench.config import Config, HostConfig, Schedule
from contract_bench.harness.lifecycle import ContractLifecycleDriver
from contract_bench.runtime.memory import InMemoryRuntime


def small_config() -> Config:
    return Config(
        max_value_size=1024,
        api_benchmark_batch_size=4,
        api_benchmark_batches=2,
        steps=2,
        repeat=1,
        schedule=Schedule(max_memory_pages=2, max_code_size=4096),
    )


@pytest.fixture
def config():
    return small_config()


@pytest.fixture
def host(config):
    return HostConfig(config)


@pytest.fixture
def runtime(host):
    return InMemoryRuntime(host)


@pytest.fixture
def driver(runtime):
    return ContractLifecycleDriver(runtime)


@pytest.fixture
def config_file(tmp_path, config):
    path = tmp_path / 'config.json'
    config.save(path)
    return path
