"""In-memory job store for course generation: track status (pending / processing / completed / failed), pipeline phase and progress."""
import copy
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from korsify.guardrails.errors import INTERNAL, JobStateError

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

TERMINAL_STATUSES = (COMPLETED, FAILED)

# Fixed pipeline order; a job's phase only ever moves forward through this list.
PHASES = (
    "document_analysis",
    "content_analysis",
    "content_generation",
    "validation",
    "finalization",
)


def phase_index(phase: str) -> int:
    """Position of phase in PHASES. Raises ValueError for unknown names."""
    try:
        return PHASES.index(phase)
    except ValueError:
        raise ValueError(f"Unknown phase: {phase}") from None


@dataclass
class Job:
    """A single course generation job: identity, inputs, phase/progress/status, and error details once failed.
    Why available: The worker is the only writer; /api/processing-jobs reads snapshots of it so clients can poll until a terminal status."""

    job_id: str
    course_id: str
    document_ids: List[str]
    options: Dict[str, Any]
    phase: str = PHASES[0]
    progress: int = 0
    status: str = PENDING
    error: Optional[str] = None
    error_kind: Optional[str] = None
    result: Dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    deadline: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def _ensure_mutable(self) -> None:
        if self.is_terminal:
            raise JobStateError(f"Job {self.job_id} is already {self.status}")

    def start(self) -> None:
        """pending -> processing."""
        self._ensure_mutable()
        self.status = PROCESSING
        self.started_at = time.time()

    def advance(self, phase: str, progress: int) -> None:
        """Move to phase (same or later in PHASES) and raise progress.
        Progress is clamped to [0, 100] and never goes down; a lower value keeps the current one."""
        self._ensure_mutable()
        if phase_index(phase) < phase_index(self.phase):
            raise JobStateError(f"Phase cannot move back from {self.phase} to {phase}")
        self.phase = phase
        self.progress = max(self.progress, min(100, max(0, int(progress))))

    def complete(self, result: Optional[Dict[str, Any]] = None) -> None:
        self._ensure_mutable()
        self.phase = PHASES[-1]
        self.progress = 100
        self.status = COMPLETED
        self.result = dict(result or {})
        self.finished_at = time.time()

    def fail(self, error: str, kind: str = INTERNAL) -> None:
        self._ensure_mutable()
        self.status = FAILED
        self.error = (error or "").strip() or "Unknown error occurred"
        self.error_kind = kind
        self.finished_at = time.time()

    def deadline_exceeded(self, now: Optional[float] = None) -> bool:
        return self.deadline is not None and (now if now is not None else time.time()) >= self.deadline

    def remaining_seconds(self, now: Optional[float] = None) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - (now if now is not None else time.time()))


class JobStore:
    """Thread-safe in-memory map job_id -> Job. In production: Redis/DB.
    Readers get copies from snapshot() so a poll never observes a half-applied update."""

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.RLock()

    def create(
        self,
        course_id: str,
        document_ids: List[str],
        options: Dict[str, Any],
        deadline: Optional[float] = None,
    ) -> Job:
        job = Job(
            job_id=str(uuid.uuid4()),
            course_id=course_id,
            document_ids=list(document_ids),
            options=dict(options),
            deadline=deadline,
        )
        with self._lock:
            self._jobs[job.job_id] = job
        return job

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def snapshot(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job is not None else None

    def update(self, job_id: str, fn) -> Job:
        """Apply fn(job) under the store lock. Raises KeyError for unknown ids."""
        with self._lock:
            job = self._jobs[job_id]
            fn(job)
            return job

    def unfinished_count(self) -> int:
        with self._lock:
            return sum(1 for j in self._jobs.values() if not j.is_terminal)

    def list(self, course_id: Optional[str] = None) -> List[Job]:
        with self._lock:
            jobs = [copy.deepcopy(j) for j in self._jobs.values()]
        if course_id is not None:
            jobs = [j for j in jobs if j.course_id == course_id]
        return sorted(jobs, key=lambda j: j.created_at)

    def clear(self) -> None:
        with self._lock:
            self._jobs.clear()


JOBS = JobStore()
