"""
Client-side job poller: an explicit idle -> polling -> done state machine.

Each run polls GET /api/processing-jobs/{id} on a fixed interval from a
dedicated thread and resolves a Future with the terminal job. Cancelling
only stops observing; the server-side job keeps running.
"""
import enum
import logging
import threading
import time
from concurrent.futures import Future
from typing import Any, Callable, Dict, Optional

import requests

from korsify.client.api_client import ApiError, KorsifyClient

logger = logging.getLogger(__name__)

TERMINAL = ("completed", "failed")

JobDict = Dict[str, Any]


class PollerState(str, enum.Enum):
    IDLE = "idle"
    POLLING = "polling"
    DONE = "done"


class JobNotFoundError(Exception):
    """The server does not know the job id."""


class PollTimeoutError(Exception):
    """No terminal status was observed within the poller's timeout."""


class JobPoller:
    """Polls one job at a time until it is completed or failed.

    Callbacks run on the polling thread:
      on_update(job)   every accepted snapshot (progress never shown going backwards)
      on_complete(job) once, when status == completed
      on_failed(job)   once, when status == failed (job["error"] holds the message)

    Transient errors (connection problems, HTTP 5xx) are treated as "still processing".
    """

    def __init__(
        self,
        client: KorsifyClient,
        interval: float = 1.0,
        timeout: Optional[float] = None,
        on_update: Optional[Callable[[JobDict], None]] = None,
        on_complete: Optional[Callable[[JobDict], None]] = None,
        on_failed: Optional[Callable[[JobDict], None]] = None,
    ):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.client = client
        self.interval = interval
        self.timeout = timeout
        self.on_update = on_update
        self.on_complete = on_complete
        self.on_failed = on_failed

        self._lock = threading.Lock()
        self._state = PollerState.IDLE
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._future: Optional[Future] = None
        self.job_id: Optional[str] = None
        self.last: Optional[JobDict] = None

    @property
    def state(self) -> PollerState:
        return self._state

    def start(self, job_id: str) -> Future:
        """Begin polling job_id; returns a Future resolved with the terminal job dict."""
        with self._lock:
            if self._state == PollerState.POLLING:
                raise RuntimeError(f"Already polling job {self.job_id}")
            self._state = PollerState.POLLING
            self._stop = threading.Event()
            self._future = Future()
            self.job_id = job_id
            self.last = None
            future = self._future
            self._thread = threading.Thread(
                target=self._run,
                args=(job_id, self._stop, future),
                name=f"korsify-poll-{job_id[:8]}",
                daemon=True,
            )
            self._thread.start()
        return future

    def cancel(self) -> None:
        """Stop polling (e.g. the owning view was closed). The pending Future is cancelled."""
        with self._lock:
            if self._state != PollerState.POLLING:
                return
            self._stop.set()
            if self._future is not None:
                self._future.cancel()
            self._state = PollerState.IDLE

    def join(self, timeout: Optional[float] = None) -> None:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)

    # -------------------------
    # Polling thread
    # -------------------------

    def _finish(self, future: Future, result: Optional[JobDict] = None, error: Optional[BaseException] = None) -> bool:
        with self._lock:
            if future.done():
                return False
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(result)
            self._state = PollerState.DONE
            return True

    def _accept(self, job: JobDict) -> JobDict:
        """Merge a snapshot with the last one so progress shown to the user never decreases."""
        prev = self.last
        if prev is not None and isinstance(job.get("progress"), int) and isinstance(prev.get("progress"), int):
            if job["progress"] < prev["progress"] and job.get("status") not in TERMINAL:
                job = {**job, "progress": prev["progress"]}
        self.last = job
        return job

    def _callback(self, fn: Optional[Callable[[JobDict], None]], job: JobDict) -> None:
        if fn is None:
            return
        try:
            fn(job)
        except Exception:
            logger.exception("poller_callback_failed", extra={"job_id": self.job_id})

    def _run(self, job_id: str, stop: threading.Event, future: Future) -> None:
        started = time.monotonic()
        while not stop.is_set():
            try:
                job = self.client.get_job(job_id)
            except ApiError as e:
                if e.status_code == 404:
                    self._finish(future, error=JobNotFoundError(f"Job {job_id} not found"))
                    return
                if e.status_code < 500 and e.status_code != 429:
                    self._finish(future, error=e)
                    return
                logger.warning("poll_transient_error", extra={"job_id": job_id, "status": e.status_code})
            except requests.RequestException as e:
                logger.warning("poll_transient_error", extra={"job_id": job_id, "error": type(e).__name__})
            else:
                if stop.is_set():
                    # cancelled mid-request; self.last may belong to a newer run
                    return
                job = self._accept(job)
                self._callback(self.on_update, job)
                status = job.get("status")
                if status in TERMINAL:
                    if not self._finish(future, result=job):
                        return
                    self._callback(self.on_complete if status == "completed" else self.on_failed, job)
                    return

            if self.timeout is not None and time.monotonic() - started >= self.timeout:
                self._finish(future, error=PollTimeoutError(f"Job {job_id} not finished after {self.timeout}s"))
                return
            stop.wait(self.interval)


def wait_for_job(client: KorsifyClient, job_id: str, interval: float = 1.0, timeout: Optional[float] = None) -> JobDict:
    """Blocking helper: poll until terminal and return the final job dict."""
    poller = JobPoller(client, interval=interval, timeout=timeout)
    return poller.start(job_id).result()
