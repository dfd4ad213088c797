import logging
import time
from typing import Callable, Optional, Type, TypeVar, Tuple

T = TypeVar("T")

logger = logging.getLogger(__name__)


def with_retry(
    fn: Callable[[], T],
    *,
    retries: int = 3,
    backoff_seconds: float = 0.5,
    retry_on: Optional[Tuple[Type[BaseException], ...]] = (Exception,),
    deadline: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run fn() with retries and exponential backoff. If retry_on is None, defaults to (Exception,).
    When deadline (epoch seconds) is given, no retry is attempted if the backoff would end past it; the last error is raised instead.
    Why available: Used by the course generator to absorb transient OpenAI failures (rate limits, connection resets) without failing the job."""
    exc_types: Tuple[Type[BaseException], ...] = retry_on or (Exception,)

    last_err: Optional[BaseException] = None

    for attempt in range(retries + 1):
        try:
            return fn()
        except exc_types as e:
            last_err = e
            if attempt >= retries:
                raise
            sleep_s = backoff_seconds * (2 ** attempt)
            if deadline is not None and time.time() + sleep_s >= deadline:
                raise
            logger.warning(
                "retrying_after_error",
                extra={"attempt": attempt + 1, "sleep_s": sleep_s, "error": type(e).__name__},
            )
            sleep(sleep_s)

    # Should be unreachable, but keeps type-checkers happy.
    assert last_err is not None
    raise last_err
