from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from unifiedauth.core.audit.models import SYSTEM_ACTOR, AuditAction, AuditEntry, AuditQuery, SecurityAction
from unifiedauth.core.config.models import ProtectionConfig
from unifiedauth.core.logger import get_logger
from unifiedauth.core.notifications import NotificationType


@dataclass(frozen=True)
class SweepReport:
    examined: int = 0
    blocked: List[str] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    cancelled: bool = False


class AutoProtectionController:
    """
    Blocks identities that crossed the failed-login threshold inside the detection
    window, attributing the block to the reserved system actor.

    Idempotent: an identity that is already inactive is skipped, and failures
    recorded before the identity's latest unblock do not count again. Each identity
    is decided independently, so a cancelled sweep leaves no partial state.
    """

    def __init__(
        self,
        *,
        analytics: Any,
        accounts: Any,
        directory: Any,
        audit: Any,
        cfg: Optional[ProtectionConfig] = None,
        time_fn: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ):
        self.analytics = analytics
        self.accounts = accounts
        self.directory = directory
        self.audit = audit
        self.cfg = cfg or ProtectionConfig()
        self._time = time_fn
        self.logger = logger or get_logger()
        self._sweep_lock = threading.Lock()

    def _last_unblock(self, user_id: str, since: float) -> float:
        rows = self.audit.query(AuditQuery(user_id=user_id, action=AuditAction.user_unblocked, success=True, since=since, limit=1))
        return float(rows[0].timestamp) if rows else float("-inf")

    def _evaluate(self, user_id: str, failures: List[AuditEntry], since: float) -> Optional[str]:
        """Returns None when blocked, otherwise the reason the identity was skipped."""
        ident = self.directory.get_by_id(user_id)
        if ident is None:
            return "unknown identity"
        if not ident.active:
            return "already blocked"
        after = self._last_unblock(user_id, since)
        count = sum(1 for e in failures if float(e.timestamp) > after)
        if count < int(self.cfg.failed_attempt_threshold):
            return f"{count} failed attempts"
        hours = int(self.cfg.detection_window_seconds // 3600)
        self.accounts.block(
            user_id,
            reason=f"Automatic block: {count} failed login attempts in {hours}h",
            actor=SYSTEM_ACTOR,
            notification=NotificationType.suspicious_activity,
        )
        return None

    def check_user(self, user_id: str) -> bool:
        """On-demand check for one identity; True when it was blocked."""
        with self._sweep_lock:
            since = self._time() - float(self.cfg.detection_window_seconds)
            failures = self.analytics.failed_logins_by_user(since).get(user_id, [])
            if len(failures) < int(self.cfg.failed_attempt_threshold):
                return False
            blocked = self._evaluate(user_id, failures, since) is None
        if blocked:
            self._record_summary([user_id])
        return blocked

    def sweep(self, cancel: Optional[threading.Event] = None) -> SweepReport:
        with self._sweep_lock:
            since = self._time() - float(self.cfg.detection_window_seconds)
            by_user = self.analytics.failed_logins_by_user(since)
            blocked: List[str] = []
            skipped: Dict[str, str] = {}
            errors: Dict[str, str] = {}
            examined = 0
            cancelled = False
            for user_id in sorted(by_user):
                if cancel is not None and cancel.is_set():
                    cancelled = True
                    break
                examined += 1
                try:
                    why = self._evaluate(user_id, by_user[user_id], since)
                except Exception as e:  # noqa: BLE001
                    errors[user_id] = f"{e.__class__.__name__}: {e}"
                    self.logger.error(f"[protection] evaluating user={user_id} failed: {e}")
                    continue
                if why is None:
                    blocked.append(user_id)
                else:
                    skipped[user_id] = why
        if blocked:
            self._record_summary(blocked)
        if cancelled:
            self.logger.info(f"[protection] sweep cancelled after {examined} identities")
        return SweepReport(examined=examined, blocked=blocked, skipped=skipped, errors=errors, cancelled=cancelled)

    def _record_summary(self, blocked: List[str]) -> None:
        self.audit.record(
            SecurityAction(
                timestamp=self._time(),
                user_id=SYSTEM_ACTOR,
                actor_id=SYSTEM_ACTOR,
                action=AuditAction.auto_block_executed,
                success=True,
                details=f"blocked {len(blocked)} account(s): {', '.join(blocked)}",
            )
        )


class ProtectionScheduler:
    """Runs AutoProtectionController.sweep on a daemon thread every interval seconds."""

    def __init__(self, *, controller: AutoProtectionController, interval_seconds: float, logger: Optional[logging.Logger] = None):
        self.controller = controller
        self.interval_seconds = max(0.05, float(interval_seconds))
        self.logger = logger or get_logger()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.runs = 0

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="auth-protection", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=2.0)

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                report = self.controller.sweep(cancel=self._stop)
                self.runs += 1
                if report.blocked:
                    self.logger.warning(f"[protection] auto-blocked {len(report.blocked)} account(s)")
            except Exception as e:  # noqa: BLE001
                self.logger.warning(f"[protection] sweep error: {e}")
