import json
import time

import pytest

import server


@pytest.fixture
def client(tmp_path, config_file):
    server.app.config['OUTPUT_FOLDER'] = str(tmp_path / 'reports')
    server.app.config['CONFIG_PATH'] = str(config_file)
    server.app.config['TESTING'] = True
    with server.jobs_lock:
        server.jobs.clear()
    with server.app.test_client() as client:
        yield client


def _wait_for(client, job_id, timeout=30.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        status = client.get(f'/api/jobs/{job_id}').get_json()
        if status['status'] in ('completed', 'failed'):
            return status
        time.sleep(0.05)
    raise AssertionError(f"Job {job_id} did not finish")


def test_docs(client):
    data = client.get('/api/docs').get_json()
    assert 'POST /api/jobs' in data['endpoints']


def test_list_benchmarks(client):
    benchmarks = client.get('/api/benchmarks').get_json()['benchmarks']
    assert len(benchmarks) == 46
    seal_gas = next(b for b in benchmarks if b['name'] == 'seal_gas')
    assert seal_gas['components'] == [{'name': 'r', 'low': 0, 'high': 2}]


@pytest.mark.parametrize('body, message', [
    ({'benchmarks': 'seal_gas'}, 'must be a list'),
    ({'benchmarks': ['nope']}, 'Unknown benchmarks: nope'),
    ({'steps': 0}, "'steps' must be an integer"),
    ({'repeat': server.MAX_REPEAT + 1}, "'repeat' must be an integer"),
])
def test_create_job_validation(client, body, message):
    response = client.post('/api/jobs', json=body)
    assert response.status_code == 400
    assert message in response.get_json()['error']


def test_job_lifecycle(client):
    response = client.post('/api/jobs', json={'benchmarks': ['seal_gas'], 'steps': 2})
    assert response.status_code == 201
    job_id = response.get_json()['job_id']

    status = _wait_for(client, job_id)
    assert status['status'] == 'completed'
    assert status['summary'] == {'benchmarks': 1, 'samples': 2, 'steps': 2, 'repeat': 1}

    report = client.get(f'/api/jobs/{job_id}/report')
    assert report.status_code == 200
    data = json.loads(report.data)
    assert [r['components'] for r in data['results']] == [{'r': 0}, {'r': 2}]

    stream = client.get(f'/api/jobs/{job_id}/stream')
    assert stream.mimetype == 'text/event-stream'
    events = [json.loads(line[len('data: '):]) for line in stream.data.decode().splitlines()
              if line.startswith('data: ')]
    assert events[0]['type'] == 'status'
    assert events[-1]['type'] == 'completed'


def test_process_job_records_failure(client, tmp_path):
    job = server.Job(id='00000000-0000-0000-0000-000000000000', names=['nope'],
                     output_dir=str(tmp_path / 'job'))
    server.process_benchmark_job(job)
    assert job.status == 'failed'
    assert 'nope' in job.error


def test_unexpected_error_fails_job(client, tmp_path, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError('runtime exploded')

    monkeypatch.setattr(server.BenchmarkRunner, 'run_all', explode)
    job = server.Job(id='33333333-3333-3333-3333-333333333333', names=['seal_gas'],
                     output_dir=str(tmp_path / 'job'))
    server.process_benchmark_job(job)
    assert job.status == 'failed'
    assert job.error == 'runtime exploded'
    assert job.event_queue.queue[-1] == {'type': 'failed', 'error': 'runtime exploded'}


def test_unknown_job(client):
    assert client.get('/api/jobs/not-a-uuid').status_code == 404
    assert client.get('/api/jobs/00000000-0000-0000-0000-000000000000/report').status_code == 404


def test_report_of_unfinished_job(client):
    job = server.Job(id='11111111-1111-1111-1111-111111111111')
    with server.jobs_lock:
        server.jobs[job.id] = job
    assert client.get(f'/api/jobs/{job.id}/report').status_code == 409


def test_expired_jobs_are_removed(client):
    job = server.Job(id='22222222-2222-2222-2222-222222222222', created=0.0)
    with server.jobs_lock:
        server.jobs[job.id] = job
    assert server.remove_expired_jobs(now=server.JOB_RETENTION_SECONDS + 1.0) == [job.id]
    assert server.get_job(job.id) is None
