import logging
from typing import Optional

from fastapi import HTTPException

logger = logging.getLogger(__name__)

# Failure kinds recorded on a failed job (Job.error_kind)
UPSTREAM = "upstream"
TIMEOUT = "timeout"
INVALID_OUTPUT = "invalid_output"
INTERNAL = "internal"


class GenerationError(Exception):
    """Base error raised inside the generation pipeline. `kind` is copied onto the failed job so clients can tell an API outage from a timeout or a malformed response."""

    kind = INTERNAL

    def __init__(self, message: str, kind: Optional[str] = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class UpstreamError(GenerationError):
    """The LLM API call failed (network, auth, rate limit, server error)."""

    kind = UPSTREAM


class InvalidOutputError(GenerationError):
    """The LLM answered but the payload is not valid JSON, violates the course schema, or fails structural validation."""

    kind = INVALID_OUTPUT


class JobTimeoutError(GenerationError):
    """The job ran past its deadline."""

    kind = TIMEOUT


class DocumentExtractionError(GenerationError):
    """A source document could not be turned into text."""

    kind = INVALID_OUTPUT


class JobStateError(Exception):
    """Illegal job transition, e.g. mutating a terminal job or moving a phase backwards."""


class JobAdmissionError(Exception):
    """The dispatcher is at capacity; the generation request is rejected before a job is created."""


def as_http_500(e: Exception, request_id: str = "unknown") -> HTTPException:
    """Log exception and return a generic 500 HTTPException (no internal details leaked).
    Why available: Centralized error handling so API never leaks stack traces or internal state to clients."""
    logger.error("unhandled_error", exc_info=e, extra={"request_id": request_id})
    return HTTPException(status_code=500, detail="Internal server error")
