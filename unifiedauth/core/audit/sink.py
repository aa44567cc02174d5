from __future__ import annotations

import logging
import os
import threading
from typing import List, Optional, Protocol

from unifiedauth.core.audit.hasher import compute_hash, strip_chain
from unifiedauth.core.audit.models import AuditEntry, AuditQuery, IntegrityReport, parse_entry
from unifiedauth.core.audit.store_jsonl import AuditJsonlStore
from unifiedauth.core.audit.store_sqlite import AuditSqliteIndex
from unifiedauth.core.logger import get_logger


class AuditSink(Protocol):
    def create(self, entry: AuditEntry) -> None: ...

    def query(self, q: AuditQuery) -> List[AuditEntry]: ...

    def delete_older_than(self, cutoff_ts: float) -> int: ...

    def verify_integrity(self, *, limit_last_n: int = 1000) -> IntegrityReport: ...


class ChainedAuditSink:
    """
    Durable audit sink: a hash-chained JSONL file is the source of truth, an SQLite
    table indexed by (user_id, ts), (method, ts), (action, ts) serves queries.

    Writes, retention and index rebuilds are serialized so the index never
    diverges from the file.
    """

    def __init__(self, *, path_jsonl: str, sqlite_path: str, logger: Optional[logging.Logger] = None):
        self.path_jsonl = path_jsonl
        self.head_path = os.path.join(os.path.dirname(path_jsonl) or ".", "head.json")
        self.logger = logger or get_logger()
        self._jsonl = AuditJsonlStore(path=path_jsonl, head_path=self.head_path)
        self._sqlite = AuditSqliteIndex(path=sqlite_path)
        self._write_lock = threading.Lock()

    def create(self, entry: AuditEntry) -> None:
        with self._write_lock:
            rec = self._jsonl.append(entry.model_dump(mode="json"))
            self._sqlite.insert(strip_chain(rec))

    def query(self, q: AuditQuery) -> List[AuditEntry]:
        rows = self._sqlite.query(
            user_id=q.user_id,
            method=q.method,
            action=q.action.value if q.action is not None else None,
            success=q.success,
            since=q.since,
            until=q.until,
            limit=q.limit,
            offset=q.offset,
        )
        out: List[AuditEntry] = []
        for r in rows:
            try:
                out.append(parse_entry(r))
            except ValueError as e:
                self.logger.warning(f"[audit] skipping unreadable index row {r.get('audit_id')}: {e}")
        return out

    def delete_older_than(self, cutoff_ts: float) -> int:
        """Drops entries older than cutoff from both stores and rechains what survives."""
        cutoff = float(cutoff_ts)
        with self._write_lock:
            removed = self._jsonl.retain(lambda rec: float(rec.get("timestamp") or 0.0) >= cutoff)
            self._sqlite.delete_older_than(cutoff)
        return removed

    def rebuild_index(self) -> int:
        with self._write_lock:
            self._sqlite.drop_all()
            n = 0
            for rec in self._jsonl.iter_lines():
                self._sqlite.insert(strip_chain(rec))
                n += 1
            return n

    def verify_integrity(self, *, limit_last_n: int = 1000) -> IntegrityReport:
        head = self._jsonl.read_head_hash()
        lines = self._jsonl.tail(n=max(1, int(limit_last_n)))
        if not lines:
            return IntegrityReport(ok=True, checked=0, message="no events", head_hash=head)
        checked = 0
        for idx, cur in enumerate(lines):
            if idx > 0 and str(cur.get("prev_hash") or "") != str(lines[idx - 1].get("hash") or ""):
                return IntegrityReport(ok=False, checked=checked, broken_at_line=idx, message="prev_hash mismatch", head_hash=head)
            if compute_hash(str(cur.get("prev_hash") or ""), strip_chain(cur)) != str(cur.get("hash") or ""):
                return IntegrityReport(ok=False, checked=checked, broken_at_line=idx, message="hash mismatch", head_hash=head)
            checked += 1
        if str(lines[-1].get("hash") or "") != head:
            return IntegrityReport(ok=False, checked=checked, broken_at_line=len(lines) - 1, message="head mismatch", head_hash=head)
        return IntegrityReport(ok=True, checked=checked, message="ok", head_hash=head)
