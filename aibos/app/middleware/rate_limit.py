"""Sliding-window in-memory rate limiter.

Used by the login endpoint. For multi-replica deployments, swap to Redis.
"""

from __future__ import annotations

import time
from collections import defaultdict

from fastapi import HTTPException, status


class InMemoryRateLimiter:
    """Sliding-window limiter keyed by an arbitrary string (usually client IP)."""

    def __init__(self, window_seconds: int = 60, max_attempts: int = 5) -> None:
        self._window = window_seconds
        self._max = max_attempts
        self._attempts: dict[str, list[float]] = defaultdict(list)

    def check(self, key: str) -> None:
        """Raise HTTP 429 if *key* has exceeded *max_attempts* in the window."""
        now = time.time()
        recent = [t for t in self._attempts[key] if now - t < self._window]
        if len(recent) >= self._max:
            self._attempts[key] = recent
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={
                    "code": "RATE_LIMITED",
                    "detail": f"Too many attempts. Try again in {self._window} seconds.",
                },
                headers={"Retry-After": str(self._window)},
            )
        recent.append(now)
        self._attempts[key] = recent

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._attempts.clear()
        else:
            self._attempts.pop(key, None)
