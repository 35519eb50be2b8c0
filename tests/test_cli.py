import json

import pytest

from contract_bench.cli import main, parse_values


def test_parse_values():
    assert parse_values(['r=2', 'n=0']) == {'r': 2, 'n': 0}
    with pytest.raises(ValueError, match='name=value'):
        parse_values(['r'])
    with pytest.raises(ValueError, match='must be an integer'):
        parse_values(['r=x'])


def test_no_command_prints_help(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main([])
    assert excinfo.value.code == 1
    assert 'usage' in capsys.readouterr().out


def test_list(config_file, capsys):
    main(['--config', str(config_file), 'list'])
    out = capsys.readouterr().out
    assert 'update_schedule' in out
    assert 'seal_call_per_transfer_input_output_kb' in out
    assert 'r=0..2' in out
    assert '46 benchmarks' in out


def test_run_writes_report(config_file, tmp_path, capsys):
    output = tmp_path / 'report.json'
    main(['--config', str(config_file), 'run', 'seal_gas', '--steps', '2', '--output', str(output)])
    out = capsys.readouterr().out
    assert '[1/1] seal_gas' in out
    assert 'Report written to' in out

    report = json.loads(output.read_text(encoding='utf-8'))
    assert [r['components'] for r in report['results']] == [{'r': 0}, {'r': 2}]


def test_run_unknown_benchmark(config_file, capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(['--config', str(config_file), 'run', 'nope'])
    assert excinfo.value.code == 1
    assert "ERROR: Unknown benchmark 'nope'" in capsys.readouterr().out


def test_inspect(config_file, capsys):
    main(['--config', str(config_file), 'inspect', 'seal_caller', '--values', 'r=1'])
    out = capsys.readouterr().out
    assert 'Benchmark: seal_caller' in out
    assert "Components: {'r': 1}" in out
    assert 'seal0.seal_caller' in out
    assert '4x seal_caller' in out


def test_inspect_defaults_to_high_values(config_file, capsys):
    main(['--config', str(config_file), 'inspect', 'put_code'])
    out = capsys.readouterr().out
    assert "Components: {'n': 4}" in out
    assert 'Measured: put_code (signed origin)' in out


def test_inspect_out_of_range(config_file, capsys):
    with pytest.raises(SystemExit):
        main(['--config', str(config_file), 'inspect', 'seal_caller', '--values', 'r=9'])
    assert 'ERROR:' in capsys.readouterr().out
