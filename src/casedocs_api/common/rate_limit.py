"""In-memory sliding-window rate limiting."""

from __future__ import annotations

import math
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass

from fastapi import Request

from .problem_details import ApiError


@dataclass(frozen=True, slots=True)
class RateLimit:
    max_requests: int
    window_seconds: float


class InMemoryRateLimiter:
    """Sliding-window limiter keyed by arbitrary strings (per process)."""

    def __init__(self, *, limit: RateLimit) -> None:
        self._limit = limit
        self._events: defaultdict[str, deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    @property
    def limit(self) -> RateLimit:
        return self._limit

    def hit(self, key: str, *, now: float | None = None) -> float | None:
        """Record a request for ``key``.

        Returns ``None`` when allowed, otherwise the seconds until the oldest
        event leaves the window.
        """
        timestamp = now if now is not None else time.monotonic()
        window_start = timestamp - self._limit.window_seconds
        with self._lock:
            events = self._events[key]
            while events and events[0] <= window_start:
                events.popleft()
            if len(events) >= self._limit.max_requests:
                return events[0] - window_start
            events.append(timestamp)
            return None

    def allow(self, key: str, *, now: float | None = None) -> bool:
        return self.hit(key, now=now) is None

    def reset(self) -> None:
        with self._lock:
            self._events.clear()


def client_key(request: Request, scope: str) -> str:
    host = request.client.host if request.client else "unknown"
    return f"{host}:{scope}"


def enforce_rate_limit(limiter: InMemoryRateLimiter, request: Request, *, scope: str) -> None:
    """Raise a 429 ``ApiError`` when ``request`` exceeds ``limiter``."""

    retry_after = limiter.hit(client_key(request, scope))
    if retry_after is None:
        return
    raise ApiError(
        error_type="rate_limited",
        detail="Too many requests; retry later.",
        headers={"Retry-After": str(max(1, math.ceil(retry_after)))},
    )


__all__ = ["InMemoryRateLimiter", "RateLimit", "client_key", "enforce_rate_limit"]
