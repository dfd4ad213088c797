import threading
import time
from collections import defaultdict
from fastapi import HTTPException
from starlette.requests import Request


class SimpleRateLimiter:
    """Sliding-window rate limiter; in-memory (per process), keyed by client IP and a bucket name so uploads and generation requests are counted separately.
    Why available: Generation is expensive (several LLM calls per job); caps how fast one client can start jobs."""

    def __init__(self, max_requests: int, window_seconds: int):
        """Configure limiter: max_requests per window_seconds per (client IP, bucket)."""
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.storage = defaultdict(list)  # (ip, bucket) -> [timestamps]
        self._lock = threading.Lock()

    def check(self, request: Request, bucket: str = "default"):
        """Raise 429 (with Retry-After) if the client has exceeded the limit for this bucket; otherwise record the request."""
        now = time.time()
        ip = request.client.host if request.client else "unknown"
        key = (ip, bucket)

        with self._lock:
            # Remove expired timestamps
            recent = [t for t in self.storage[key] if now - t < self.window_seconds]
            if len(recent) >= self.max_requests:
                self.storage[key] = recent
                retry_after = max(1, int(self.window_seconds - (now - recent[0])))
                raise HTTPException(
                    status_code=429,
                    detail="Rate limit exceeded. Please retry later.",
                    headers={"Retry-After": str(retry_after)},
                )
            recent.append(now)
            self.storage[key] = recent

    def reset(self) -> None:
        with self._lock:
            self.storage.clear()
