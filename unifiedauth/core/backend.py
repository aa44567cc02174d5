from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, Optional, TypeVar

from unifiedauth.core.circuit_breaker import BreakerConfig, BreakerState, CircuitBreaker
from unifiedauth.core.errors import AuthError, BackendUnavailableError
from unifiedauth.core.logger import get_logger

T = TypeVar("T")


class BackendGuard:
    """
    Runs calls into external collaborators (user directory, face profile store)
    with a short timeout and a per-backend circuit breaker.

    Any timeout or unexpected exception surfaces as BackendUnavailableError so the
    authentication path can fail closed instead of crashing.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 0.5,
        breaker: Optional[BreakerConfig] = None,
        max_workers: int = 8,
        time_fn: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ):
        self.timeout_seconds = float(timeout_seconds)
        self.breaker_cfg = breaker or BreakerConfig()
        self.logger = logger or get_logger()
        self._time = time_fn
        self._lock = threading.Lock()
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._executor = ThreadPoolExecutor(max_workers=max(1, int(max_workers)), thread_name_prefix="auth-backend")

    def _breaker(self, name: str) -> CircuitBreaker:
        with self._lock:
            br = self._breakers.get(name)
            if br is None:
                br = CircuitBreaker(self.breaker_cfg, name=name, time_fn=self._time, on_state_change=self._on_breaker_change)
                self._breakers[name] = br
            return br

    def _on_breaker_change(self, state: BreakerState, br: CircuitBreaker) -> None:
        self.logger.warning(f"[backend] breaker {br.name} -> {state.value}")

    def call(self, name: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        br = self._breaker(name)
        if not br.allow():
            raise BackendUnavailableError(backend=name, cause="circuit_open")
        fut = self._executor.submit(fn, *args, **kwargs)
        try:
            out = fut.result(timeout=self.timeout_seconds)
        except AuthError:
            # domain errors pass through and do not trip the breaker
            br.record_success()
            raise
        except FutureTimeout:
            fut.cancel()
            br.record_failure()
            self.logger.warning(f"[backend] {name} timed out after {self.timeout_seconds:.2f}s")
            raise BackendUnavailableError(backend=name, cause="timeout") from None
        except Exception as e:  # noqa: BLE001
            br.record_failure()
            self.logger.warning(f"[backend] {name} failed: {e.__class__.__name__}: {e}")
            raise BackendUnavailableError(backend=name, cause=e.__class__.__name__) from e
        br.record_success()
        return out

    def status(self) -> Dict[str, Dict[str, object]]:
        with self._lock:
            items = list(self._breakers.items())
        return {k: v.snapshot() for k, v in items}

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
