"""
Rate Limiter - in-process fixed-window request counter.

Gates the admin API (and the public check-in link endpoint) per client IP.

Design:
- Fixed window per key: the first request opens a window of
  ``window_seconds``; up to ``limit`` requests pass inside it.
- A burst straddling a window boundary can pass up to 2x limit within
  any contiguous window.
- Records are reset lazily when their key is seen again; the map is never
  pruned proactively and lives as long as the process.
- Limits are per process. Several API instances each keep their own counts;
  a global limit needs a shared store behind the same interface.

Usage:
    from app.middleware.rate_limiter import rate_limiter

    key = "admin:ip:203.0.113.7"
    allowed, info = rate_limiter.check_rate_limit(key)
    if not allowed:
        raise RateLimitExceeded(key, info["limit"], info["retry_after"])
"""

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

Clock = Callable[[], float]


class RateLimitExceeded(Exception):
    """Caller exceeded its request quota for the current window."""

    def __init__(self, key: str, limit: int, retry_after: int):
        super().__init__(f"Rate limit exceeded for {key}")
        self.key = key
        self.limit = limit
        self.retry_after = retry_after


@dataclass(slots=True)
class RateRecord:
    count: int
    reset_at: float


class RateLimiter:
    """
    Fixed-window rate limiter keyed by an arbitrary non-empty string.

    Thread Safety:
        A single lock guards the read-modify-write of each record.
    """

    def __init__(
        self,
        limit: int = 60,
        window_seconds: int = 60,
        clock: Clock = time.monotonic,
    ):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._records: dict[str, RateRecord] = {}
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        """Return True if the request identified by ``key`` may proceed."""
        allowed, _ = self.check_rate_limit(key)
        return allowed

    def check_rate_limit(self, key: str, limit: int | None = None) -> tuple[bool, dict]:
        """
        Count one request against ``key``.

        Args:
            key: Rate limit key (e.g. "ip:192.168.1.1")
            limit: Per-call override of the configured limit

        Returns:
            Tuple of (allowed, info) where info carries limit, remaining and
            retry_after (seconds until the window resets).
        """
        if not key:
            raise ValueError("Rate limit key must be a non-empty string")

        limit = limit or self.limit

        with self._lock:
            now = self._clock()
            record = self._records.get(key)

            if record is None or now >= record.reset_at:
                record = RateRecord(count=1, reset_at=now + self.window_seconds)
                self._records[key] = record
                return True, self._create_info_dict(True, limit, limit - 1, record.reset_at - now)

            if record.count >= limit:
                # Denied requests do not count
                return False, self._create_info_dict(False, limit, 0, record.reset_at - now)

            record.count += 1
            return True, self._create_info_dict(
                True, limit, limit - record.count, record.reset_at - now
            )

    def reset(self, key: str | None = None) -> None:
        """Forget one key, or every key when called without arguments."""
        with self._lock:
            if key is None:
                self._records.clear()
            else:
                self._records.pop(key, None)

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._records)

    def _create_info_dict(
        self, allowed: bool, limit: int, remaining: int, seconds_left: float
    ) -> dict:
        return {
            "allowed": allowed,
            "limit": limit,
            "remaining": max(0, remaining),
            "retry_after": max(1, math.ceil(seconds_left)),
            "window_seconds": self.window_seconds,
        }


def create_rate_limiter() -> RateLimiter:
    """Build the process-wide limiter from settings."""
    limits = settings.get_rate_limits()
    return RateLimiter(
        limit=limits["admin_per_window"],
        window_seconds=limits["window_seconds"],
    )


# Process-wide instance; cleared by the app lifespan on shutdown.
rate_limiter = create_rate_limiter()
