"""Per-client attempt limiting for the login, registration and form intake endpoints.

Fixed window, in-process. Each client key gets `max_attempts` per `window_seconds`;
the window starts at the first attempt. Multiple API processes each keep their own
counters.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Tuple

from enrollment_portal.errors import ErrorKind, ServiceError


class RateLimitExceeded(ServiceError):
    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__(ErrorKind.RATE_LIMITED, "too_many_attempts")
        self.retry_after_seconds = max(1, int(retry_after_seconds))


class AttemptLimiter:
    def __init__(
        self,
        *,
        max_attempts: int = 5,
        window_seconds: float = 900,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_attempts = max(1, int(max_attempts))
        self.window_seconds = float(window_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (window_started_at, attempts)
        self._windows: Dict[str, Tuple[float, int]] = {}

    def hit(self, key: str) -> None:
        """Count one attempt for `key`; raise RateLimitExceeded once the window is full."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            started, n = self._windows.get(key, (now, 0))
            if n >= self.max_attempts:
                raise RateLimitExceeded(int(started + self.window_seconds - now) + 1)
            self._windows[key] = (started, n + 1)

    def reset(self, key: str) -> None:
        with self._lock:
            self._windows.pop(key, None)

    def _prune(self, now: float) -> None:
        expired = [k for k, (started, _) in self._windows.items() if now - started >= self.window_seconds]
        for k in expired:
            del self._windows[k]


def client_key(request: object, *, trust_forwarded: bool = False) -> str:
    """Throttling identity: peer address plus user agent.

    The first X-Forwarded-For hop replaces the peer address only when
    `trust_forwarded` is set, i.e. a reverse proxy in front owns that header.
    """
    client = getattr(request, "client", None)
    host = getattr(client, "host", None) or "unknown"
    headers = getattr(request, "headers", None) or {}
    if trust_forwarded:
        forwarded = (headers.get("x-forwarded-for") or "").split(",")[0].strip()
        host = forwarded or host
    ua = headers.get("user-agent") or ""
    return f"{host}|{ua}"
