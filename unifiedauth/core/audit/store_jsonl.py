from __future__ import annotations

import json
import os
import threading
from typing import Any, Callable, Dict, Iterator, List

from unifiedauth.core.audit.hasher import GENESIS_HASH, chain_record, compute_hash, strip_chain


class AuditJsonlStore:
    """Append-only JSONL file where every record carries the hash of its predecessor."""

    def __init__(self, *, path: str, head_path: str):
        self.path = path
        self.head_path = head_path
        self._lock = threading.Lock()
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        os.makedirs(os.path.dirname(head_path) or ".", exist_ok=True)

    def read_head_hash(self) -> str:
        try:
            with open(self.head_path, "r", encoding="utf-8") as f:
                obj = json.load(f)
            return str(obj.get("head_hash") or GENESIS_HASH)
        except (OSError, ValueError):
            return GENESIS_HASH

    def write_head_hash(self, head_hash: str) -> None:
        tmp = self.head_path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump({"head_hash": head_hash}, f, indent=2, ensure_ascii=False)
            f.write("\n")
        os.replace(tmp, self.head_path)

    def append(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Appends a record with hash chaining.
        payload must NOT include prev_hash/hash (they are added here).
        Returns the stored record.
        """
        with self._lock:
            prev = self.read_head_hash()
            rec = chain_record(payload=payload, prev_hash=prev)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(rec, ensure_ascii=False) + "\n")
            self.write_head_hash(str(rec["hash"]))
            return rec

    def iter_lines(self) -> Iterator[Dict[str, Any]]:
        if not os.path.exists(self.path):
            return
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    obj = json.loads(line)
                except ValueError:
                    continue
                if isinstance(obj, dict):
                    yield obj

    def tail(self, n: int = 200) -> List[Dict[str, Any]]:
        items = list(self.iter_lines())
        return items[-max(1, int(n)) :]

    def retain(self, keep: Callable[[Dict[str, Any]], bool]) -> int:
        """
        Keeps only the records for which keep(record) is true, rechaining the
        survivors from genesis in their original order. Reading, filtering and
        rewriting all happen under the append lock. Returns the number removed.
        """
        with self._lock:
            kept: List[Dict[str, Any]] = []
            removed = 0
            for rec in self.iter_lines():
                if keep(rec):
                    kept.append(strip_chain(rec))
                else:
                    removed += 1
            tmp = self.path + ".tmp"
            head = GENESIS_HASH
            with open(tmp, "w", encoding="utf-8") as f:
                for payload in kept:
                    rec = {"prev_hash": head, **payload}
                    head = compute_hash(head, payload)
                    rec["hash"] = head
                    f.write(json.dumps(rec, ensure_ascii=False) + "\n")
            os.replace(tmp, self.path)
            self.write_head_hash(head)
            return removed
