from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional


class BreakerState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class BreakerConfig:
    failures: int = 5
    window_seconds: int = 30
    cooldown_seconds: int = 10


class CircuitBreaker:
    def __init__(
        self,
        cfg: BreakerConfig,
        *,
        name: str = "backend",
        time_fn: Callable[[], float] = time.time,
        on_state_change: Optional[Callable[[BreakerState, "CircuitBreaker"], None]] = None,
    ):
        self.cfg = cfg
        self.name = name
        self._time = time_fn
        self._lock = threading.Lock()
        self._fail_times: List[float] = []
        self._state = BreakerState.CLOSED
        self._opened_at: Optional[float] = None
        self._half_open_tested = False
        self._on_state_change = on_state_change

    def state(self) -> BreakerState:
        with self._lock:
            self._update_state_locked()
            return self._state

    def allow(self) -> bool:
        with self._lock:
            self._update_state_locked()
            if self._state == BreakerState.CLOSED:
                return True
            if self._state == BreakerState.OPEN:
                return False
            # HALF_OPEN: allow exactly one probe
            if not self._half_open_tested:
                self._half_open_tested = True
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            old = self._state
            self._fail_times.clear()
            self._state = BreakerState.CLOSED
            self._opened_at = None
            self._half_open_tested = False
            self._notify_locked(old)

    def record_failure(self) -> None:
        with self._lock:
            now = self._time()
            self._fail_times.append(now)
            cutoff = now - float(self.cfg.window_seconds)
            self._fail_times = [t for t in self._fail_times if t >= cutoff]
            if self._state == BreakerState.HALF_OPEN or len(self._fail_times) >= int(self.cfg.failures):
                old = self._state
                self._state = BreakerState.OPEN
                self._opened_at = now
                self._half_open_tested = False
                self._notify_locked(old)

    def _update_state_locked(self) -> None:
        if self._state == BreakerState.OPEN and self._opened_at is not None:
            if (self._time() - self._opened_at) >= float(self.cfg.cooldown_seconds):
                old = self._state
                self._state = BreakerState.HALF_OPEN
                self._half_open_tested = False
                self._notify_locked(old)

    def _notify_locked(self, old: BreakerState) -> None:
        if old == self._state or self._on_state_change is None:
            return
        try:
            self._on_state_change(self._state, self)
        except Exception:
            pass

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            cutoff = self._time() - float(self.cfg.window_seconds)
            opened_at = self._opened_at
            return {
                "state": self._state.value,
                "opened_at": opened_at,
                "cooldown_until": (opened_at + float(self.cfg.cooldown_seconds)) if opened_at else None,
                "failure_count_window": len([t for t in self._fail_times if t >= cutoff]),
            }
