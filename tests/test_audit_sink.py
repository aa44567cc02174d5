from __future__ import annotations

import csv
import io
import json
import threading

import pytest

from unifiedauth.core.audit import (
    AuditAction,
    AuditLogger,
    AuditQuery,
    ChainedAuditSink,
    FaceAttempt,
    PasswordAttempt,
    SecurityAction,
)
from unifiedauth.core.errors import FailureReason, ValidationError
from unifiedauth.core.trace import trace_context

from .helpers.fakes import DummyLogger, FailingSink, FakeClock
from .helpers.log_assertions import read_jsonl


def _sink(tmp_path):
    return ChainedAuditSink(path_jsonl=str(tmp_path / "audit" / "events.jsonl"), sqlite_path=str(tmp_path / "audit" / "index.sqlite"))


def _failed_password(ts, user_id="u1", **kw):
    return PasswordAttempt(timestamp=ts, user_id=user_id, action=AuditAction.login_failed, success=False, reason=FailureReason.INVALID_CREDENTIAL, **kw)


def test_audit_chain_verifies(tmp_path):
    sink = _sink(tmp_path)
    for i in range(5):
        sink.create(_failed_password(1000.0 + i))
    rep = sink.verify_integrity()
    assert rep.ok is True
    assert rep.checked == 5


def test_audit_tamper_detected(tmp_path):
    sink = _sink(tmp_path)
    for i in range(3):
        sink.create(_failed_password(1000.0 + i))
    path = tmp_path / "audit" / "events.jsonl"
    lines = path.read_text(encoding="utf-8").splitlines()
    rec = json.loads(lines[1])
    rec["success"] = True
    lines[1] = json.dumps(rec)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    rep = sink.verify_integrity()
    assert rep.ok is False
    assert rep.broken_at_line == 1
    assert rep.message == "hash mismatch"


def test_query_filters_and_order(tmp_path):
    sink = _sink(tmp_path)
    sink.create(_failed_password(1000.0, "u1"))
    sink.create(PasswordAttempt(timestamp=1001.0, user_id="u1", action=AuditAction.login_success, success=True))
    sink.create(FaceAttempt(timestamp=1002.0, user_id="u2", action=AuditAction.login_success, success=True, confidence=91.0))

    rows = sink.query(AuditQuery(user_id="u1"))
    assert [r.timestamp for r in rows] == [1001.0, 1000.0]
    assert [r.user_id for r in sink.query(AuditQuery(method="face_id"))] == ["u2"]
    assert len(sink.query(AuditQuery(success=False))) == 1
    assert len(sink.query(AuditQuery(since=1001.0))) == 2
    assert len(sink.query(AuditQuery(limit=1, offset=1))) == 1
    face = sink.query(AuditQuery(method="face_id"))[0]
    assert isinstance(face, FaceAttempt)
    assert face.confidence == 91.0


def test_cleanup_drops_old_entries_and_rechains(tmp_path):
    clock = FakeClock(start=100 * 86400.0)
    sink = _sink(tmp_path)
    audit = AuditLogger(sink, time_fn=clock.time, logger=DummyLogger())
    audit.record(_failed_password(clock.time() - 40 * 86400))
    audit.record(_failed_password(clock.time() - 35 * 86400))
    audit.record(_failed_password(clock.time() - 1 * 86400))

    assert audit.cleanup(30) == 2
    assert len(audit.query(AuditQuery())) == 1
    assert len(read_jsonl(tmp_path / "audit" / "events.jsonl")) == 1
    assert audit.verify_integrity().ok is True


def test_sink_failure_is_logged_not_raised():
    log = DummyLogger()
    audit = AuditLogger(FailingSink(), logger=log)
    ok = audit.record(_failed_password(1000.0))
    assert ok is False
    assert audit.failed_writes == 1
    errors = log.messages("error")
    assert len(errors) == 1
    assert "write failed" in errors[0]


def test_record_redacts_details_and_binds_trace(tmp_path):
    sink = _sink(tmp_path)
    audit = AuditLogger(sink, logger=DummyLogger())
    with trace_context("trace-abc"):
        audit.record(_failed_password(1000.0, details="retry with password=hunter2"))
    row = audit.query(AuditQuery())[0]
    assert "hunter2" not in (row.details or "")
    assert row.trace_id == "trace-abc"
    raw = (tmp_path / "audit" / "events.jsonl").read_text(encoding="utf-8")
    assert "hunter2" not in raw


def test_export_json_document(tmp_path):
    clock = FakeClock(start=1_700_000_000.0)
    audit = AuditLogger(_sink(tmp_path), time_fn=clock.time, logger=DummyLogger())
    audit.record(_failed_password(1000.0, "u1"))
    audit.record(SecurityAction(timestamp=1001.0, user_id="u1", actor_id="admin", action=AuditAction.user_blocked, success=True))

    content, count = audit.export(AuditQuery(user_id="u1"), "json")
    doc = json.loads(content)
    assert count == 2
    assert set(doc) == {"export_date", "total_records", "filters", "logs"}
    assert doc["total_records"] == 2
    assert doc["filters"]["user_id"] == "u1"
    assert doc["export_date"] == "2023-11-14T22:13:20Z"
    assert {log["method"] for log in doc["logs"]} == {"password", "system"}


def test_export_csv_columns(tmp_path):
    audit = AuditLogger(_sink(tmp_path), logger=DummyLogger())
    audit.record(FaceAttempt(timestamp=0.0, user_id="u9", action=AuditAction.login_success, success=True, confidence=88.5, device_info="Pixel 8"))
    content, _ = audit.export(AuditQuery(), "csv")
    rows = list(csv.reader(io.StringIO(content)))
    assert rows[0][:4] == ["timestamp", "user_id", "method", "action"]
    assert rows[1][0] == "1970-01-01T00:00:00Z"
    assert rows[1][1:5] == ["u9", "face_id", "login_success", "true"]
    assert "88.5" in rows[1]


def test_export_unknown_format_rejected(tmp_path):
    audit = AuditLogger(_sink(tmp_path), logger=DummyLogger())
    with pytest.raises(ValidationError):
        audit.export(AuditQuery(), "xml")


def test_query_limit_is_capped(tmp_path):
    sink = _sink(tmp_path)
    audit = AuditLogger(sink, logger=DummyLogger(), max_rows=3)
    for i in range(5):
        audit.record(_failed_password(1000.0 + i))
    assert len(audit.query(AuditQuery(limit=100))) == 3


def test_cleanup_keeps_entries_appended_concurrently(tmp_path):
    sink = _sink(tmp_path)
    for i in range(200):
        sink.create(_failed_password(1000.0 + i))

    def writer():
        for i in range(150):
            sink.create(_failed_password(5000.0 + i, user_id="u2"))

    t = threading.Thread(target=writer)
    t.start()
    removed = 0
    for _ in range(5):
        removed += sink.delete_older_than(0.0)
    t.join(timeout=30.0)

    assert removed == 0
    assert len(read_jsonl(tmp_path / "audit" / "events.jsonl")) == 350
    assert len(sink.query(AuditQuery(user_id="u2", limit=1000))) == 150
    assert sink.verify_integrity(limit_last_n=1000).ok is True


def test_cleanup_index_matches_file(tmp_path):
    sink = _sink(tmp_path)
    for ts in (100.0, 200.0, 300.0, 400.0):
        sink.create(_failed_password(ts))
    assert sink.delete_older_than(250.0) == 2
    assert [r.timestamp for r in sink.query(AuditQuery())] == [400.0, 300.0]
    assert sink.rebuild_index() == 2
