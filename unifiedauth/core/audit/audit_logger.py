from __future__ import annotations

import csv
import io
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from unifiedauth.core.audit.formatter import format_line
from unifiedauth.core.audit.models import AuditEntry, AuditQuery, IntegrityReport
from unifiedauth.core.redaction import redact_text
from unifiedauth.core.audit.sink import AuditSink
from unifiedauth.core.errors import ValidationError
from unifiedauth.core.logger import get_logger
from unifiedauth.core.trace import current_trace_id

CSV_COLUMNS = [
    "timestamp",
    "user_id",
    "method",
    "action",
    "success",
    "reason",
    "ip_address",
    "device_info",
    "confidence",
    "quality",
    "details",
]


def _iso(ts: float) -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(float(ts)))


class AuditLogger:
    """
    Front door to the audit sink.

    record() never raises: a sink failure is logged at error level and counted, so a
    broken audit backend is visible in the logs without taking down a login.
    """

    def __init__(
        self,
        sink: AuditSink,
        *,
        logger: Optional[logging.Logger] = None,
        time_fn: Callable[[], float] = time.time,
        max_rows: int = 20000,
    ):
        self.sink = sink
        self.logger = logger or get_logger()
        self._time = time_fn
        self.max_rows = int(max_rows)
        self._lock = threading.Lock()
        self._failed_writes = 0

    @property
    def failed_writes(self) -> int:
        with self._lock:
            return self._failed_writes

    def record(self, entry: AuditEntry) -> bool:
        update: Dict[str, Any] = {}
        if entry.trace_id is None:
            tid = current_trace_id()
            if tid:
                update["trace_id"] = tid
        if entry.details:
            update["details"] = redact_text(entry.details)
        if update:
            entry = entry.model_copy(update=update)
        try:
            self.sink.create(entry)
        except Exception as e:  # noqa: BLE001
            with self._lock:
                self._failed_writes += 1
            self.logger.error(f"[audit] write failed action={entry.action.value} user={entry.user_id} audit_id={entry.audit_id}: {e}")
            return False
        self.logger.info(f"[audit] {format_line(entry)}")
        return True

    # ---- query API ----
    def query(self, q: Optional[AuditQuery] = None, **filters: Any) -> List[AuditEntry]:
        q = q or AuditQuery(**filters)
        if q.limit > self.max_rows:
            q = q.model_copy(update={"limit": self.max_rows})
        return self.sink.query(q)

    def for_user(self, user_id: str, *, since: Optional[float] = None, limit: Optional[int] = None) -> List[AuditEntry]:
        return self.query(AuditQuery(user_id=user_id, since=since, limit=limit or self.max_rows))

    def since(self, since: float, **filters: Any) -> List[AuditEntry]:
        filters.setdefault("limit", self.max_rows)
        return self.query(AuditQuery(since=since, **filters))

    # ---- export ----
    def export(self, q: AuditQuery, fmt: str = "json") -> Tuple[str, int]:
        rows = self.query(q)
        if fmt == "json":
            return self._json_doc(q, rows), len(rows)
        if fmt == "csv":
            return self._csv_doc(rows), len(rows)
        raise ValidationError("Unsupported export format.", format=fmt)

    def _json_doc(self, q: AuditQuery, rows: List[AuditEntry]) -> str:
        doc = {
            "export_date": _iso(self._time()),
            "total_records": len(rows),
            "filters": q.model_dump(mode="json", exclude_none=True),
            "logs": [r.model_dump(mode="json") for r in rows],
        }
        return json.dumps(doc, indent=2, ensure_ascii=False)

    def _csv_doc(self, rows: List[AuditEntry]) -> str:
        buf = io.StringIO()
        w = csv.writer(buf)
        w.writerow(CSV_COLUMNS)
        for e in rows:
            quality = getattr(e, "quality", None)
            w.writerow(
                [
                    _iso(e.timestamp),
                    e.user_id,
                    e.method,
                    e.action.value,
                    "true" if e.success else "false",
                    e.reason.value if e.reason is not None else "",
                    e.ip_address or "",
                    e.device_info or "",
                    "" if getattr(e, "confidence", None) is None else getattr(e, "confidence"),
                    quality.value if quality is not None else "",
                    e.details or "",
                ]
            )
        return buf.getvalue()

    # ---- integrity / retention ----
    def verify_integrity(self, *, limit_last_n: int = 2000) -> IntegrityReport:
        return self.sink.verify_integrity(limit_last_n=limit_last_n)

    def cleanup(self, older_than_days: int) -> int:
        cutoff = self._time() - float(int(older_than_days) * 86400)
        removed = self.sink.delete_older_than(cutoff)
        self.logger.info(f"[audit] retention cleanup removed {removed} entries older than {older_than_days}d")
        return removed
