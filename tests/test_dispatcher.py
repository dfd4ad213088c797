"""Worker pool admission control and deadlines."""
import threading
import time

import pytest

from korsify.generation.dispatcher import JobDispatcher
from korsify.generation.jobs import JobStore
from korsify.guardrails.errors import JobAdmissionError


def _wait_until(predicate, timeout=5.0):
    end = time.monotonic() + timeout
    while time.monotonic() < end:
        if predicate():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def gate():
    return threading.Event()


@pytest.fixture
def blocking_dispatcher(gate):
    started = []

    def runner(job_id):
        started.append(job_id)
        gate.wait(5)

    jobs = JobStore()
    d = JobDispatcher(jobs=jobs, max_workers=1, max_queued=1, job_timeout_seconds=60, runner=runner)
    d.started = started
    yield d
    gate.set()
    d.shutdown(wait=True)


def test_submit_returns_pending_job_with_deadline(blocking_dispatcher):
    before = time.time()
    job = blocking_dispatcher.submit("c1", ["d1"], {"moduleCount": 2})
    assert job.status == "pending"
    assert job.course_id == "c1"
    assert before + 60 <= job.deadline <= time.time() + 60
    assert blocking_dispatcher.jobs.get(job.job_id) is not None


def test_rejects_beyond_capacity_without_creating_job(blocking_dispatcher, gate):
    blocking_dispatcher.submit("c1", ["d1"], {})
    blocking_dispatcher.submit("c2", ["d2"], {})
    assert blocking_dispatcher.in_flight() == 2

    with pytest.raises(JobAdmissionError):
        blocking_dispatcher.submit("c3", ["d3"], {})
    assert len(blocking_dispatcher.jobs.list()) == 2
    assert blocking_dispatcher.jobs.list(course_id="c3") == []

    gate.set()
    assert _wait_until(lambda: blocking_dispatcher.in_flight() == 0)
    blocking_dispatcher.submit("c3", ["d3"], {})


def test_only_max_workers_run_at_once(blocking_dispatcher):
    a = blocking_dispatcher.submit("c1", ["d1"], {})
    blocking_dispatcher.submit("c2", ["d2"], {})
    assert _wait_until(lambda: blocking_dispatcher.started == [a.job_id])
    time.sleep(0.05)
    assert blocking_dispatcher.started == [a.job_id]


def test_wait_blocks_until_runner_returns():
    done = []
    d = JobDispatcher(jobs=JobStore(), max_workers=2, max_queued=0, runner=lambda job_id: done.append(job_id))
    job = d.submit("c1", ["d1"], {})
    d.wait(job.job_id, timeout=5)
    assert done == [job.job_id]
    d.shutdown()


def test_runner_exception_frees_slot():
    def runner(job_id):
        raise RuntimeError("crash")

    d = JobDispatcher(jobs=JobStore(), max_workers=1, max_queued=0, runner=runner)
    d.submit("c1", ["d1"], {})
    assert _wait_until(lambda: d.in_flight() == 0)
    d.submit("c2", ["d2"], {})
    d.shutdown()


def test_capacity_defaults_from_settings():
    from korsify.core.config import settings

    d = JobDispatcher(jobs=JobStore(), runner=lambda job_id: None)
    assert d.max_workers == settings.max_concurrent_jobs
    assert d.capacity == settings.max_concurrent_jobs + settings.max_queued_jobs
    assert d.job_timeout_seconds == settings.job_timeout_seconds
