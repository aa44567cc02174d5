from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict


@dataclass(frozen=True)
class LimitDecision:
    allowed: bool
    remaining: int = 0
    retry_after_seconds: float = 0.0


class RateLimiter:
    """
    Sliding-window attempt counter keyed by identity (email or id).

    State is process-local and resets on restart. check() is an atomic
    check-and-record: concurrent callers for the same key can never both take the
    last slot.
    """

    def __init__(self, *, window_seconds: float = 60.0, max_events: int = 10, time_fn: Callable[[], float] = time.time):
        self.window_seconds = float(window_seconds)
        self.max_events = int(max_events)
        self._time = time_fn
        self._lock = threading.Lock()
        self._windows: Dict[str, Deque[float]] = {}
        self._checks = 0

    def _prune_locked(self, key: str, now: float) -> Deque[float]:
        dq = self._windows.get(key)
        if dq is None:
            dq = deque()
            self._windows[key] = dq
        cutoff = now - self.window_seconds
        while dq and dq[0] <= cutoff:
            dq.popleft()
        return dq

    def check(self, key: str) -> LimitDecision:
        k = str(key or "").strip().lower() or "anonymous"
        with self._lock:
            now = self._time()
            dq = self._prune_locked(k, now)
            if len(dq) >= self.max_events:
                retry = max(0.0, dq[0] + self.window_seconds - now)
                return LimitDecision(allowed=False, remaining=0, retry_after_seconds=retry)
            dq.append(now)
            self._checks += 1
            if self._checks % 1000 == 0:
                self._sweep_locked(now)
            return LimitDecision(allowed=True, remaining=self.max_events - len(dq))

    def can_send(self, key: str) -> bool:
        return self.check(key).allowed

    def remaining(self, key: str) -> int:
        k = str(key or "").strip().lower() or "anonymous"
        with self._lock:
            return max(0, self.max_events - len(self._prune_locked(k, self._time())))

    def reset(self, key: str) -> None:
        with self._lock:
            self._windows.pop(str(key or "").strip().lower(), None)

    def _sweep_locked(self, now: float) -> None:
        cutoff = now - self.window_seconds
        for k in [k for k, dq in self._windows.items() if not dq or dq[-1] <= cutoff]:
            del self._windows[k]
