from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from unifiedauth.core.logger import get_logger
from unifiedauth.core.redaction import redact_value


class NotificationType(str, Enum):
    login = "login"
    password_change = "password_change"
    password_reset = "password_reset"
    suspicious_activity = "suspicious_activity"
    new_device_login = "new_device_login"
    account_blocked = "account_blocked"


class NotificationDispatcher(Protocol):
    def send(self, identity_id: str, type: NotificationType, details: Dict[str, Any]) -> None: ...


class LoggingNotificationDispatcher:
    """Default dispatcher: writes the notification to the log instead of delivering it."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or get_logger()

    def send(self, identity_id: str, type: NotificationType, details: Dict[str, Any]) -> None:
        self.logger.info(f"[notify] {type.value} -> user={identity_id} details={redact_value(details)}")


class Notifier:
    """
    Fire-and-forget wrapper around a NotificationDispatcher.

    send() returns immediately; delivery runs on a small pool and a failing
    dispatcher is logged, never raised to the caller.
    """

    def __init__(self, dispatcher: NotificationDispatcher, *, logger: Optional[logging.Logger] = None, max_workers: int = 2):
        self.dispatcher = dispatcher
        self.logger = logger or get_logger()
        self._executor = ThreadPoolExecutor(max_workers=max(1, int(max_workers)), thread_name_prefix="auth-notify")
        self._lock = threading.Lock()
        self._pending: List[Future] = []

    def send(self, identity_id: str, type: NotificationType, details: Optional[Dict[str, Any]] = None) -> None:
        payload = dict(details or {})
        try:
            fut = self._executor.submit(self.dispatcher.send, str(identity_id), type, payload)
        except RuntimeError as e:
            self.logger.error(f"[notify] dispatcher unavailable, dropped {type.value} for user={identity_id}: {e}")
            return
        fut.add_done_callback(lambda f, t=type, uid=identity_id: self._done(f, t, uid))
        with self._lock:
            self._pending = [p for p in self._pending if not p.done()]
            self._pending.append(fut)

    def _done(self, fut: Future, type: NotificationType, identity_id: str) -> None:
        if fut.cancelled():
            return
        exc = fut.exception()
        if exc is not None:
            self.logger.error(f"[notify] {type.value} for user={identity_id} failed: {exc.__class__.__name__}: {exc}")

    def flush(self, timeout: float = 5.0) -> bool:
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _done, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
