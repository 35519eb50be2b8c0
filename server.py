"""
contract-bench Flask Server

Features:
- Benchmark catalog listing
- Background benchmark jobs, each on its own runtime instance
- Real-time SSE streaming for job progress
- JSON report download and job retention cleanup
"""

import uuid
import shutil
import threading
import queue
import time
import json
from pathlib import Path
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
from flask import Flask, request, jsonify, send_file, Response

from contract_bench import __version__
from contract_bench.config import Config, HostConfig
from contract_bench.harness.catalog import CATALOG
from contract_bench.harness.runner import BenchmarkRunner
from contract_bench.runtime.memory import InMemoryRuntime

app = Flask(__name__)

# Configuration
app.config['OUTPUT_FOLDER'] = '/tmp/contract_bench_reports'
app.config['CONFIG_PATH'] = None  # Packaged config.json when unset

# Request limits
MAX_STEPS = 50
MAX_REPEAT = 20

REPORT_FILENAME = 'report.json'


@dataclass
class Job:
    """Represents a benchmark job."""
    id: str
    status: str = 'created'  # created, running, completed, failed
    progress: int = 0
    error: Optional[str] = None
    created: float = field(default_factory=time.time)
    names: List[str] = field(default_factory=list)
    steps: Optional[int] = None
    repeat: Optional[int] = None
    output_dir: str = ''
    summary: Dict[str, Any] = field(default_factory=dict)
    event_queue: queue.Queue = field(default_factory=queue.Queue)

    def send_event(self, event_type: str, **data):
        """Send an event to connected SSE clients."""
        event = {'type': event_type, **data}
        try:
            self.event_queue.put_nowait(event)
        except queue.Full:
            pass  # Drop event if queue is full

    def log(self, level: str, message: str):
        """Send a log event."""
        self.send_event('log', level=level, message=message)

    def update_progress(self, progress: int, message: str = ''):
        """Update job progress."""
        self.progress = progress
        self.send_event('progress', progress=progress, message=message)

    @property
    def report_path(self) -> Path:
        return Path(self.output_dir) / REPORT_FILENAME


# Job storage
jobs: Dict[str, Job] = {}
jobs_lock = threading.Lock()


def ensure_dirs():
    """Ensure the report directory exists."""
    Path(app.config['OUTPUT_FOLDER']).mkdir(parents=True, exist_ok=True)


def get_job(job_id: str) -> Optional[Job]:
    """Get a job by ID with validation."""
    try:
        uuid.UUID(job_id)
    except ValueError:
        return None

    with jobs_lock:
        return jobs.get(job_id)


def load_host() -> HostConfig:
    config_path = app.config.get('CONFIG_PATH')
    return HostConfig(Config.load(Path(config_path) if config_path else None))


def process_benchmark_job(job: Job):
    """Run the benchmarks of a job in a background thread with streaming updates."""
    try:
        job.status = 'running'
        job.log('info', 'Starting benchmark run...')

        host = load_host()
        runner = BenchmarkRunner(InMemoryRuntime(host))
        job.update_progress(5, 'Configuration loaded')

        def progress(name: str, index: int, total: int) -> None:
            job.log('info', f'Running {name}')
            job.update_progress(5 + 90 * index // max(total, 1), name)

        report = runner.run_all(job.names or None, job.steps, job.repeat, progress)

        job.update_progress(95, 'Writing report...')
        Path(job.output_dir).mkdir(parents=True, exist_ok=True)
        report.save(str(job.report_path))

        job.summary = {
            'benchmarks': len(report.benchmarks()),
            'samples': len(report.results),
            'steps': report.steps,
            'repeat': report.repeat,
        }
        job.log('success', f"Collected {len(report.results)} samples from {len(report.benchmarks())} benchmarks")

        job.status = 'completed'
        job.progress = 100
        job.send_event('completed', summary=job.summary)

    except Exception as e:
        job.status = 'failed'
        job.error = str(e)
        job.log('error', f'Benchmark run failed: {e}')
        job.send_event('failed', error=str(e))


def _positive_int(data: Dict[str, Any], key: str, limit: int) -> Optional[int]:
    """Read an optional bounded positive integer from the request body."""
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, int) or isinstance(value, bool) or not 0 < value <= limit:
        raise ValueError(f"'{key}' must be an integer in 1..{limit}")
    return value


# ============== Routes ==============

@app.route('/api/benchmarks')
def list_benchmarks():
    """List the benchmark catalog."""
    host = load_host()
    return jsonify({
        'benchmarks': [
            {
                'name': name,
                'description': benchmark.description,
                'components': [
                    {'name': c.name, 'low': c.low, 'high': c.high}
                    for c in benchmark.components(host)
                ],
            }
            for name, benchmark in CATALOG.items()
        ]
    })


@app.route('/api/jobs', methods=['POST'])
def create_job():
    """Create a benchmark job and start it."""
    data = request.get_json(silent=True) or {}

    names = data.get('benchmarks', [])
    if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
        return jsonify({'error': "'benchmarks' must be a list of names"}), 400
    unknown = [n for n in names if n not in CATALOG]
    if unknown:
        return jsonify({'error': f"Unknown benchmarks: {', '.join(unknown)}"}), 400

    try:
        steps = _positive_int(data, 'steps', MAX_STEPS)
        repeat = _positive_int(data, 'repeat', MAX_REPEAT)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    job_id = str(uuid.uuid4())
    job = Job(
        id=job_id,
        names=names,
        steps=steps,
        repeat=repeat,
        output_dir=str(Path(app.config['OUTPUT_FOLDER']) / job_id),
    )

    with jobs_lock:
        jobs[job_id] = job

    # Start processing thread
    thread = threading.Thread(target=process_benchmark_job, args=(job,), daemon=True)
    thread.start()

    return jsonify({'job_id': job_id}), 201


@app.route('/api/jobs/<job_id>/stream')
def stream_job(job_id: str):
    """SSE endpoint for job events."""
    job = get_job(job_id)
    if not job:
        return jsonify({'error': 'Job not found'}), 404

    from flask import stream_with_context

    def generate():
        """Generate SSE events."""
        # Send initial status immediately
        yield f"data: {json.dumps({'type': 'status', 'status': job.status, 'progress': job.progress})}\n\n"

        # If already completed/failed, send that and close
        if job.status == 'completed':
            yield f"data: {json.dumps({'type': 'completed', 'summary': job.summary})}\n\n"
            return
        elif job.status == 'failed':
            yield f"data: {json.dumps({'type': 'failed', 'error': job.error})}\n\n"
            return

        # Stream events
        while True:
            try:
                event = job.event_queue.get(timeout=1.0)
                yield f"data: {json.dumps(event)}\n\n"

                if event.get('type') in ('completed', 'failed'):
                    break

            except queue.Empty:
                # Send comment as keepalive
                yield ":keepalive\n\n"

                # Check if job finished without sending event
                if job.status == 'completed':
                    yield f"data: {json.dumps({'type': 'completed', 'summary': job.summary})}\n\n"
                    break
                elif job.status == 'failed':
                    yield f"data: {json.dumps({'type': 'failed', 'error': job.error})}\n\n"
                    break

    return Response(
        stream_with_context(generate()),
        mimetype='text/event-stream',
        headers={
            'Cache-Control': 'no-cache',
            'X-Accel-Buffering': 'no',
            'Connection': 'keep-alive',
        }
    )


@app.route('/api/jobs/<job_id>')
def get_job_status(job_id: str):
    """Get job status."""
    job = get_job(job_id)
    if not job:
        return jsonify({'error': 'Job not found'}), 404

    return jsonify({
        'id': job.id,
        'status': job.status,
        'progress': job.progress,
        'error': job.error,
        'benchmarks': job.names,
        'summary': job.summary,
        'created': job.created
    })


@app.route('/api/jobs/<job_id>/report')
def download_report(job_id: str):
    """Download the JSON report of a completed job."""
    job = get_job(job_id)
    if not job:
        return jsonify({'error': 'Job not found'}), 404

    if job.status != 'completed':
        return jsonify({'error': f'Report not available (status: {job.status})'}), 409

    if not job.report_path.exists():
        return jsonify({'error': 'Report file missing'}), 404

    return send_file(
        job.report_path,
        mimetype='application/json',
        as_attachment=True,
        download_name=f'contract-bench-{job_id[:8]}.json'
    )


@app.route('/api/docs')
def api_docs():
    """API documentation."""
    return jsonify({
        'name': 'contract-bench API',
        'version': __version__,
        'endpoints': {
            'GET /api/benchmarks': {
                'description': 'List benchmarks with their component ranges'
            },
            'POST /api/jobs': {
                'description': 'Create and start a benchmark job',
                'body': {'benchmarks': ['name'], 'steps': 'number', 'repeat': 'number'},
                'response': {'job_id': 'uuid'}
            },
            'GET /api/jobs/{id}/stream': {
                'description': 'SSE stream for real-time job events',
                'events': ['log', 'progress', 'completed', 'failed']
            },
            'GET /api/jobs/{id}': {
                'description': 'Get job status'
            },
            'GET /api/jobs/{id}/report': {
                'description': 'Download the JSON report of a completed job'
            }
        },
        'limits': {
            'max_steps': MAX_STEPS,
            'max_repeat': MAX_REPEAT,
            'job_retention': '30 minutes'
        }
    })


# ============== Cleanup ==============

# Cleanup settings
JOB_RETENTION_SECONDS = 30 * 60  # 30 minutes
CLEANUP_INTERVAL_SECONDS = 60  # Check every minute


def remove_expired_jobs(now: Optional[float] = None) -> List[str]:
    """Drop jobs older than JOB_RETENTION_SECONDS together with their reports."""
    current_time = now if now is not None else time.time()
    to_delete = []

    with jobs_lock:
        for job_id, job in jobs.items():
            age = current_time - job.created
            if age > JOB_RETENTION_SECONDS:
                to_delete.append(job_id)

        for job_id in to_delete:
            del jobs[job_id]

    for job_id in to_delete:
        shutil.rmtree(Path(app.config['OUTPUT_FOLDER']) / job_id, ignore_errors=True)
    return to_delete


def cleanup_old_jobs():
    """Periodically clean up expired jobs."""
    while True:
        time.sleep(CLEANUP_INTERVAL_SECONDS)
        removed = remove_expired_jobs()
        if removed:
            print(f"Cleaned up {len(removed)} old job(s)")


if __name__ == '__main__':
    ensure_dirs()

    # Start cleanup thread
    cleanup_thread = threading.Thread(target=cleanup_old_jobs, daemon=True)
    cleanup_thread.start()

    print("=" * 60)
    print(f"contract-bench Server v{__version__}")
    print("=" * 60)
    print("API Docs: http://localhost:5000/api/docs")
    print("=" * 60)

    app.run(host='0.0.0.0', port=5000, debug=False, threaded=True)
