from __future__ import annotations

import json
import os
import sqlite3
from typing import Any, Dict, List, Optional


class AuditSqliteIndex:
    def __init__(self, *, path: str):
        self.path = path
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        self._init()

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=5.0)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        return conn

    def _init(self) -> None:
        with self._conn() as c:
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS auth_events (
                  audit_id TEXT PRIMARY KEY,
                  ts REAL NOT NULL,
                  user_id TEXT NOT NULL,
                  method TEXT NOT NULL,
                  action TEXT NOT NULL,
                  success INTEGER NOT NULL,
                  json TEXT NOT NULL
                )
                """
            )
            c.execute("CREATE INDEX IF NOT EXISTS idx_auth_ts ON auth_events(ts);")
            c.execute("CREATE INDEX IF NOT EXISTS idx_auth_user ON auth_events(user_id, ts);")
            c.execute("CREATE INDEX IF NOT EXISTS idx_auth_method ON auth_events(method, ts);")
            c.execute("CREATE INDEX IF NOT EXISTS idx_auth_action ON auth_events(action, ts);")

    def insert(self, event: Dict[str, Any]) -> None:
        with self._conn() as c:
            c.execute(
                """
                INSERT OR REPLACE INTO auth_events(audit_id, ts, user_id, method, action, success, json)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(event.get("audit_id")),
                    float(event.get("timestamp") or 0.0),
                    str(event.get("user_id") or "unknown"),
                    str(event.get("method") or ""),
                    str(event.get("action") or ""),
                    1 if event.get("success") else 0,
                    json.dumps(event, ensure_ascii=False),
                ),
            )

    def query(
        self,
        *,
        user_id: Optional[str] = None,
        method: Optional[str] = None,
        action: Optional[str] = None,
        success: Optional[bool] = None,
        since: Optional[float] = None,
        until: Optional[float] = None,
        limit: int = 200,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        # most selective predicates first; sqlite picks idx_auth_user when user_id is set
        where = []
        params: List[Any] = []
        if user_id is not None:
            where.append("user_id = ?")
            params.append(str(user_id))
        if action is not None:
            where.append("action = ?")
            params.append(str(action))
        if method is not None:
            where.append("method = ?")
            params.append(str(method))
        if since is not None:
            where.append("ts >= ?")
            params.append(float(since))
        if until is not None:
            where.append("ts <= ?")
            params.append(float(until))
        if success is not None:
            where.append("success = ?")
            params.append(1 if success else 0)

        sql = "SELECT json FROM auth_events"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY ts DESC LIMIT ? OFFSET ?"
        params.append(int(limit))
        params.append(int(offset))
        out: List[Dict[str, Any]] = []
        with self._conn() as c:
            for (blob,) in c.execute(sql, params):
                try:
                    out.append(json.loads(blob))
                except ValueError:
                    continue
        return out

    def delete_older_than(self, cutoff_ts: float) -> int:
        with self._conn() as c:
            cur = c.execute("DELETE FROM auth_events WHERE ts < ?", (float(cutoff_ts),))
            return int(cur.rowcount or 0)

    def drop_all(self) -> None:
        with self._conn() as c:
            c.execute("DELETE FROM auth_events;")
