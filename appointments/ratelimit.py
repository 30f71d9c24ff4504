"""In-memory fixed-window rate limiting for the public booking endpoints.

Each key (``"book:email:bob@example.com"``, ``"book:ip:203.0.113.7"`` ...)
gets ``limit`` requests per ``window_seconds``.  The window starts with the
first request for a key and resets once it has elapsed.  State is per
process.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable

from fastapi import Request

from appointments.errors import RateLimitedError
from appointments.pii import redact_pii

log = logging.getLogger("appointments.ratelimit")

# Clean up expired entries at most this often
CLEANUP_INTERVAL_SECONDS = 60


@dataclass
class _Window:
    count: int
    reset_time: float


class RateLimiter:
    def __init__(
        self,
        limit: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit < 1 or window_seconds < 1:
            raise ValueError("Rate limit and window must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = Lock()
        self._last_cleanup = clock()

    def check(self, key: str) -> tuple[bool, int, int]:
        """Count one request for ``key``.

        Returns ``(is_allowed, current_count, retry_after_seconds)``.
        """
        now = self._clock()
        with self._lock:
            self._cleanup(now)
            window = self._windows.get(key)
            if window is None or now >= window.reset_time:
                window = _Window(count=0, reset_time=now + self.window_seconds)
                self._windows[key] = window

            is_allowed = window.count < self.limit
            if is_allowed:
                window.count += 1
            ttl = max(0, math.ceil(window.reset_time - now))
            return is_allowed, window.count, ttl

    def hit(self, key: str) -> None:
        """Count a request and raise RateLimitedError when over the limit."""
        is_allowed, count, retry_after = self.check(key)
        if not is_allowed:
            log.warning("Rate limit exceeded for %s (%d/%d)", redact_pii(key), count, self.limit)
            raise RateLimitedError(
                "Too many booking requests. Please try again later.",
                retry_after=retry_after,
            )

    def _cleanup(self, now: float) -> None:
        if now - self._last_cleanup < CLEANUP_INTERVAL_SECONDS:
            return
        expired = [k for k, w in self._windows.items() if now >= w.reset_time]
        for key in expired:
            del self._windows[key]
        self._last_cleanup = now


def client_ip(request: Request) -> str:
    """Caller address, preferring the first ``X-Forwarded-For`` hop."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
