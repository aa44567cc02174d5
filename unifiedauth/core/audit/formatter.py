from __future__ import annotations

import time

from unifiedauth.core.audit.models import AuditEntry


def format_line(entry: AuditEntry) -> str:
    ts = time.strftime("%H:%M:%S", time.localtime(float(entry.timestamp)))
    outcome = "ok" if entry.success else "failed"
    out = f"{ts} | {entry.method} {entry.action.value} user={entry.user_id} | {outcome}"
    if entry.reason is not None:
        out = f"{out} [{entry.reason.value}]"
    return out
