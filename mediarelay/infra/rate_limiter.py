# mediarelay/infra/rate_limiter.py
from __future__ import annotations
import time
from collections import defaultdict
from threading import Lock
from typing import Optional

from fastapi import Request, HTTPException, status

from mediarelay.infra.logging_config import get_logger

logger = get_logger(__name__)


class InMemoryRateLimiter:
    """
    Sliding-window limiter keyed by client IP.

    Tunnel requests hold an upstream connection for the whole transfer and
    every resolution fans out to several mirrors, so callers are throttled
    before any outbound work starts.

    Not horizontally scalable: each process holds its own window,
    so with N replicas the effective limit is N × max_requests.
    """

    def __init__(self, max_requests: int, window_seconds: int = 60):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._requests: dict[str, list[float]] = defaultdict(list)
        self._lock = Lock()

    def is_allowed(self, key: str) -> tuple[bool, Optional[int]]:
        """
        Check if request is allowed for the given key.

        Returns:
            (allowed, retry_after_seconds)
        """
        now = time.time()
        cutoff = now - self.window_seconds

        with self._lock:
            self._requests[key] = [
                ts for ts in self._requests[key] if ts > cutoff
            ]

            request_count = len(self._requests[key])

            if request_count >= self.max_requests:
                oldest = min(self._requests[key])
                retry_after = int(oldest + self.window_seconds - now) + 1

                logger.warning(
                    "Rate limit exceeded for client=%s (count=%d, limit=%d)",
                    key, request_count, self.max_requests,
                )
                return False, retry_after

            self._requests[key].append(now)
            return True, None

    def cleanup(self, max_age_seconds: int = 3600) -> int:
        """
        Remove keys that haven't been used recently.
        Returns number of keys removed.
        """
        cutoff = time.time() - max_age_seconds

        with self._lock:
            to_remove = [
                key for key, timestamps in self._requests.items()
                if not timestamps or max(timestamps) < cutoff
            ]
            for key in to_remove:
                del self._requests[key]

        if to_remove:
            logger.info(f"Rate limiter cleanup: removed {len(to_remove)} keys")
        return len(to_remove)


class RateLimitDependency:
    """FastAPI dependency for rate limiting"""

    def __init__(self, limiter: InMemoryRateLimiter):
        self.limiter = limiter

    async def __call__(self, request: Request) -> None:
        client_ip = request.client.host if request.client else "unknown"
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            client_ip = forwarded_for.split(",")[0].strip()

        allowed, retry_after = self.limiter.is_allowed(client_ip)

        if not allowed:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Rate limit exceeded",
                headers={"Retry-After": str(retry_after)} if retry_after else None,
            )
