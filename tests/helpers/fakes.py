from __future__ import annotations

import base64
import threading
import time as _time
from typing import Any, Dict, List, Optional, Tuple

import numpy as np


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self._t = float(start)

    def time(self) -> float:
        return self._t

    def advance(self, seconds: float) -> None:
        self._t += float(seconds)


class DummyLogger:
    def __init__(self) -> None:
        self.records: List[Tuple[str, str]] = []

    def debug(self, msg, *_a, **_k):  # noqa: ANN001
        self.records.append(("debug", str(msg)))

    def info(self, msg, *_a, **_k):  # noqa: ANN001
        self.records.append(("info", str(msg)))

    def warning(self, msg, *_a, **_k):  # noqa: ANN001
        self.records.append(("warning", str(msg)))

    def error(self, msg, *_a, **_k):  # noqa: ANN001
        self.records.append(("error", str(msg)))

    def messages(self, level: str) -> List[str]:
        return [m for lvl, m in self.records if lvl == level]


class RecordingDispatcher:
    """Notification dispatcher that keeps what it was asked to send."""

    def __init__(self, *, fail: bool = False):
        self.fail = fail
        self._lock = threading.Lock()
        self.sent: List[Tuple[str, str, Dict[str, Any]]] = []

    def send(self, identity_id: str, type, details: Dict[str, Any]) -> None:  # noqa: ANN001
        if self.fail:
            raise RuntimeError("smtp down")
        with self._lock:
            self.sent.append((identity_id, type.value, dict(details)))

    def of_type(self, type_value: str) -> List[Tuple[str, str, Dict[str, Any]]]:
        with self._lock:
            return [s for s in self.sent if s[1] == type_value]


class SlowDirectory:
    """Wraps a directory and stalls lookups, to exercise backend timeouts."""

    def __init__(self, inner: Any, *, delay_seconds: float = 1.0):
        self.inner = inner
        self.delay_seconds = float(delay_seconds)

    def get_by_email(self, email: str):  # noqa: ANN201
        _time.sleep(self.delay_seconds)
        return self.inner.get_by_email(email)

    def __getattr__(self, name: str) -> Any:
        return getattr(self.inner, name)


class FailingDirectory:
    def __init__(self, inner: Any):
        self.inner = inner

    def get_by_email(self, email: str):  # noqa: ANN201
        raise ConnectionError("directory unreachable")

    def get_by_id(self, user_id: str):  # noqa: ANN201
        raise ConnectionError("directory unreachable")

    def __getattr__(self, name: str) -> Any:
        return getattr(self.inner, name)


class FailingSink:
    def create(self, entry) -> None:  # noqa: ANN001
        raise OSError("disk full")

    def query(self, q):  # noqa: ANN001, ANN201
        return []

    def get_recent(self, limit: int = 100):  # noqa: ANN201
        return []

    def distinct_users(self, *, since: Optional[float] = None):  # noqa: ANN201
        return []


def descriptor(seed: int, length: int = 128) -> List[float]:
    rng = np.random.default_rng(seed)
    v = rng.normal(size=length)
    return (v / np.linalg.norm(v)).tolist()


def near(vec: List[float], *, noise: float = 0.05, seed: int = 99) -> List[float]:
    rng = np.random.default_rng(seed)
    v = np.asarray(vec) + rng.normal(scale=noise, size=len(vec)) / np.sqrt(len(vec))
    return v.tolist()


def raw_face_payload(values: List[float]) -> str:
    """base64 float32 payload built without descriptor validation."""
    return base64.b64encode(np.asarray(values, dtype="<f4").tobytes()).decode("ascii")
