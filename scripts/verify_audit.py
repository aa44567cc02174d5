"""
Offline audit chain check.

Recomputes the hash chain of the audit JSONL file and compares the last record
with the stored head hash. Optionally rebuilds the SQLite query index from the
JSONL file (the file is the source of truth).

Usage:
  python scripts/verify_audit.py [--config config/auth.json] [--last 5000] [--rebuild-index]
"""

from __future__ import annotations

import argparse
import sys

from unifiedauth.core.audit import ChainedAuditSink
from unifiedauth.core.config import load_config


def main() -> int:
    ap = argparse.ArgumentParser(description="Verify the audit hash chain.")
    ap.add_argument("--config", default="config/auth.json")
    ap.add_argument("--last", type=int, default=None, help="Number of trailing records to check.")
    ap.add_argument("--rebuild-index", action="store_true")
    args = ap.parse_args()

    cfg = load_config(args.config, write_defaults=False)
    sink = ChainedAuditSink(path_jsonl=cfg.audit.path_jsonl, sqlite_path=cfg.audit.sqlite_path)
    report = sink.verify_integrity(limit_last_n=args.last or cfg.audit.verify_last_n)
    print(report.model_dump_json(indent=2))
    if not report.ok:
        return 1
    if args.rebuild_index:
        n = sink.rebuild_index()
        print(f"index rebuilt: {n} records")
    return 0


if __name__ == "__main__":
    sys.exit(main())
