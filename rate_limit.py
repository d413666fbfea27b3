"""Fixed-window request counting per caller."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Mapping


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int


def client_identity(headers: Mapping[str, str]) -> str:
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or "unknown"
    return headers.get("x-real-ip") or "unknown"


class FixedWindowRateLimiter:
    """Allow ``limit`` requests per caller in each ``window_s`` window.

    One instance per endpoint; instances never share counters.
    """

    def __init__(
        self,
        limit: int,
        window_s: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.window_s = window_s
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, tuple[int, float]] = {}

    def check(self, identity: str) -> RateLimitResult:
        now = self._clock()
        with self._lock:
            self._evict(now)
            count, started = self._windows.get(identity, (0, now))
            if count >= self.limit:
                return RateLimitResult(allowed=False, remaining=0)
            count += 1
            self._windows[identity] = (count, started)
            return RateLimitResult(allowed=True, remaining=self.limit - count)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _evict(self, now: float) -> None:
        expired = [key for key, (_, started) in self._windows.items() if now - started >= self.window_s]
        for key in expired:
            del self._windows[key]
