"""
Rate Limiter
-------------
Per-caller sliding-window request gate.

For every key the limiter keeps the timestamps (ms) of previously admitted
calls.  On each check it drops timestamps at or before `now - window_ms`;
if `limit` remain the call is rejected and nothing is recorded, otherwise
`now` is recorded and the call is admitted.
Every SWEEP_INTERVAL checks, keys with no call inside the longest window
seen are forgotten, so the map only holds recently active callers.

InMemoryRateLimiter is process-local: it is not persisted across restarts
and does not coordinate between instances, so N running instances admit
up to N x limit per key.  A shared counter store can be plugged in by
subclassing RateLimiter.
"""
from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from loguru import logger

LOOPBACK_KEY = "127.0.0.1"
SWEEP_INTERVAL = 1024           # checks between idle-key sweeps


def _now_ms() -> float:
    return time.time() * 1000


class RateLimiter(ABC):
    @abstractmethod
    def admit(self, key: str, limit: int, window_ms: int) -> bool:
        """Return True and record the call if `key` is under its limit."""
        ...


class InMemoryRateLimiter(RateLimiter):
    """Thread-safe in-process sliding window (the default backend)."""

    def __init__(self, clock: Callable[[], float] = _now_ms, sweep_interval: int = SWEEP_INTERVAL) -> None:
        self._clock = clock
        self._trackers: dict[str, list[float]] = {}
        self._lock = threading.Lock()
        self._sweep_interval = sweep_interval
        self._checks = 0
        self._longest_window_ms = 0

    def admit(self, key: str, limit: int, window_ms: int) -> bool:
        with self._lock:
            now = self._clock()
            self._checks += 1
            self._longest_window_ms = max(self._longest_window_ms, window_ms)
            if self._checks % self._sweep_interval == 0:
                self._sweep(now)

            window_start = now - window_ms
            timestamps = [t for t in self._trackers.get(key, []) if t > window_start]

            if len(timestamps) >= limit:
                self._trackers[key] = timestamps
                logger.warning(
                    f"[RateLimiter] Rejected | key={key} | "
                    f"{len(timestamps)}/{limit} in {window_ms}ms"
                )
                return False

            timestamps.append(now)
            self._trackers[key] = timestamps
            return True

    def _sweep(self, now: float) -> None:
        """Forget keys with no call inside the longest window seen.  Caller holds the lock."""
        cutoff = now - self._longest_window_ms
        idle = [key for key, stamps in self._trackers.items() if not stamps or stamps[-1] <= cutoff]
        for key in idle:
            del self._trackers[key]
        if idle:
            logger.debug(f"[RateLimiter] Swept {len(idle)} idle keys, {len(self._trackers)} tracked")

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._trackers)


def client_key(forwarded_for: Optional[str]) -> str:
    """
    Derive the rate-limit key from an X-Forwarded-For header.

    Uses the first (client-most) address.  Callers behind a proxy that
    drops the header all share the loopback bucket.
    """
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return LOOPBACK_KEY
