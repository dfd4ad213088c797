"""Bounded worker pool with admission control and per-job deadlines for course generation."""
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

from korsify.core.config import settings
from korsify.generation.jobs import JOBS, Job, JobStore
from korsify.generation.worker import run_generation_job
from korsify.guardrails.errors import JobAdmissionError

logger = logging.getLogger(__name__)


class JobDispatcher:
    """Creates jobs and runs them on a fixed-size thread pool.
    At most max_workers jobs run at once and at most max_workers + max_queued are unfinished; beyond that submit() raises JobAdmissionError before any job is created."""

    def __init__(
        self,
        jobs: JobStore = JOBS,
        max_workers: Optional[int] = None,
        max_queued: Optional[int] = None,
        job_timeout_seconds: Optional[float] = None,
        runner: Callable[[str], Any] = run_generation_job,
    ):
        self.jobs = jobs
        self.max_workers = max_workers or settings.max_concurrent_jobs
        self.max_queued = settings.max_queued_jobs if max_queued is None else max_queued
        self.job_timeout_seconds = job_timeout_seconds or settings.job_timeout_seconds
        self._runner = runner
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()
        self._in_flight: Dict[str, Future] = {}

    @property
    def capacity(self) -> int:
        return self.max_workers + self.max_queued

    def _pool(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="korsify-job")
        return self._executor

    def in_flight(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def submit(self, course_id: str, document_ids: List[str], options: Dict[str, Any]) -> Job:
        """Admit, create and enqueue a job; returns the new (pending) job immediately."""
        with self._lock:
            if len(self._in_flight) >= self.capacity:
                logger.warning("job_rejected_capacity", extra={"in_flight": len(self._in_flight), "capacity": self.capacity})
                raise JobAdmissionError("Generation capacity exhausted. Please retry later.")
            job = self.jobs.create(
                course_id=course_id,
                document_ids=document_ids,
                options=options,
                deadline=time.time() + self.job_timeout_seconds,
            )
            future = self._pool().submit(self._runner, job.job_id)
            self._in_flight[job.job_id] = future
        future.add_done_callback(lambda _f, jid=job.job_id: self._done(jid))
        logger.info("job_submitted", extra={"job_id": job.job_id, "course_id": course_id})
        return job

    def _done(self, job_id: str) -> None:
        with self._lock:
            future = self._in_flight.pop(job_id, None)
        if future is not None and future.exception() is not None:
            logger.error("job_runner_raised", exc_info=future.exception(), extra={"job_id": job_id})

    def wait(self, job_id: str, timeout: Optional[float] = None) -> None:
        """Block until the job's runner returns (used by scripts and tests)."""
        with self._lock:
            future = self._in_flight.get(job_id)
        if future is not None:
            future.result(timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)


_dispatcher: Optional[JobDispatcher] = None


def get_dispatcher() -> JobDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = JobDispatcher()
    return _dispatcher


def set_dispatcher(dispatcher: Optional[JobDispatcher]) -> None:
    global _dispatcher
    _dispatcher = dispatcher
