from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional

from unifiedauth.core.audit.models import AuditAction, AuditQuery, device_class_of
from unifiedauth.core.faceid.models import DeviceDecision


class DeviceTrustPolicy:
    """
    Known devices are the device classes a user has successfully logged in from.

    An unknown device is allowed but flagged for approval, unless the user already
    picked up max_new_devices new devices inside the window; then it is denied for
    the current attempt only. Nothing is remembered about the denial.
    """

    def __init__(
        self,
        *,
        audit: Any,
        max_new_devices: int = 3,
        window_seconds: float = 24 * 3600,
        time_fn: Callable[[], float] = time.time,
        history_limit: int = 5000,
    ):
        self.audit = audit
        self.max_new_devices = int(max_new_devices)
        self.window_seconds = float(window_seconds)
        self._time = time_fn
        self.history_limit = int(history_limit)

    def _first_seen(self, user_id: str) -> Dict[str, float]:
        rows = self.audit.query(AuditQuery(user_id=user_id, action=AuditAction.login_success, limit=self.history_limit))
        seen: Dict[str, float] = {}
        for e in rows:
            if not e.device_info:
                continue
            cls = device_class_of(e.device_info)
            ts = float(e.timestamp)
            if cls not in seen or ts < seen[cls]:
                seen[cls] = ts
        return seen

    def evaluate(self, user_id: str, device_info: Optional[str]) -> DeviceDecision:
        device_class = device_class_of(device_info)
        if not device_info:
            return DeviceDecision(allowed=True, known=False, requires_approval=False, device_class=device_class, reason="no device information")
        seen = self._first_seen(user_id)
        if device_class in seen:
            return DeviceDecision(allowed=True, known=True, requires_approval=False, device_class=device_class, reason="known device")
        cutoff = self._time() - self.window_seconds
        recent_new = sum(1 for ts in seen.values() if ts >= cutoff)
        if recent_new >= self.max_new_devices:
            return DeviceDecision(
                allowed=False,
                known=False,
                requires_approval=True,
                device_class=device_class,
                new_devices_in_window=recent_new,
                reason="too many new devices",
            )
        return DeviceDecision(
            allowed=True,
            known=False,
            requires_approval=True,
            device_class=device_class,
            new_devices_in_window=recent_new,
            reason="new device",
        )
