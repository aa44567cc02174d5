from __future__ import annotations

from unifiedauth.core.audit import AuditAction, UNKNOWN_USER
from unifiedauth.core.errors import FailureReason
from unifiedauth.core.identity import InMemoryUserDirectory

from .conftest import ALICE_PASSWORD
from .helpers.config_builders import build_auth_config
from .helpers.fakes import FailingDirectory, SlowDirectory, descriptor, near, raw_face_payload


def _password(email, password):
    return {"email": email, "password": password}


def _failed(facade):
    return facade.get_access_logs(action=AuditAction.login_failed)


def test_password_login_success(facade, alice):
    res = facade.login("password", _password("Alice@Example.com", ALICE_PASSWORD), {"ip_address": "10.0.0.5"})
    assert res.success is True
    assert res.code is None
    assert res.session.identity.id == alice.id
    assert res.token == res.session.token
    assert res.user["email"] == "alice@example.com"
    assert "password_hash" not in res.user
    assert res.requires_face_setup is True

    claims = facade.validate_token(res.token)
    assert claims.sub == alice.id
    assert claims.email == alice.email
    assert claims.sid == res.session.id

    rows = facade.get_access_logs(user_id=alice.id)
    assert len(rows) == 1
    assert rows[0].action == AuditAction.login_success
    assert rows[0].method == "password"
    assert rows[0].ip_address == "10.0.0.5"
    assert rows[0].trace_id == res.trace_id
    assert facade.directory.get_by_id(alice.id).last_login_at is not None


def test_wrong_password_writes_one_failed_entry(facade, alice):
    res = facade.login("password", _password("alice@example.com", "wrong password"))
    assert res.success is False
    assert res.session is None and res.token is None
    assert res.error == "Invalid email or password."
    assert res.code == "invalid_credential"

    rows = _failed(facade)
    assert len(rows) == 1
    assert rows[0].user_id == alice.id
    assert rows[0].reason == FailureReason.INVALID_CREDENTIAL
    assert rows[0].subject == "alice@example.com"


def test_unknown_email_looks_like_wrong_password(facade, alice):
    unknown = facade.login("password", _password("nobody@example.com", "whatever1"))
    wrong = facade.login("password", _password("alice@example.com", "whatever1"))
    assert unknown.error == wrong.error
    assert unknown.code == wrong.code == "invalid_credential"
    rows = {r.subject: r for r in _failed(facade)}
    assert rows["nobody@example.com"].user_id == UNKNOWN_USER
    assert rows["nobody@example.com"].reason == FailureReason.NOT_FOUND


def test_eleventh_attempt_is_rate_limited(facade, alice):
    for _ in range(10):
        assert facade.login("password", _password("alice@example.com", "bad guess")).code == "invalid_credential"
    res = facade.login("password", _password("alice@example.com", ALICE_PASSWORD))
    assert res.success is False
    assert res.code == "rate_limited"

    rows = _failed(facade)
    assert len(rows) == 11
    assert [r.reason for r in rows].count(FailureReason.RATE_LIMITED) == 1


def test_rate_limit_window_recovers(facade, alice, clock):
    for _ in range(10):
        facade.login("password", _password("alice@example.com", "bad guess"))
    clock.advance(61)
    assert facade.login("password", _password("alice@example.com", ALICE_PASSWORD)).success is True


def test_malformed_requests_are_validation_errors(facade, alice):
    bad_method = facade.login("sms", {"code": "1234"})
    assert bad_method.code == "validation_error"
    assert bad_method.error == "Invalid request."

    missing = facade.login("password", {"email": "alice@example.com"})
    assert missing.code == "validation_error"

    not_a_dict = facade.login("password", ["alice@example.com", ALICE_PASSWORD])
    assert not_a_dict.code == "validation_error"

    rows = _failed(facade)
    assert len(rows) == 3
    assert all(r.reason == FailureReason.VALIDATION_ERROR for r in rows)
    assert {r.method for r in rows} == {"system", "password"}


def test_backend_timeout_fails_closed(make_facade, tmp_path, clock):
    cfg = build_auth_config(tmp_path, overrides={"backend": {"timeout_seconds": 0.1}})
    slow = SlowDirectory(InMemoryUserDirectory(time_fn=clock.time), delay_seconds=1.0)
    facade = make_facade(cfg, directory=slow)
    facade.create_user("alice@example.com", ALICE_PASSWORD)

    res = facade.login("password", _password("alice@example.com", ALICE_PASSWORD))
    assert res.success is False
    assert res.code == "backend_unavailable"
    assert res.session is None

    rows = _failed(facade)
    assert len(rows) == 1
    assert rows[0].reason == FailureReason.BACKEND_UNAVAILABLE


def test_unreachable_directory_fails_closed(make_facade, tmp_path, clock):
    facade = make_facade(directory=FailingDirectory(InMemoryUserDirectory(time_fn=clock.time)))
    facade.create_user("alice@example.com", ALICE_PASSWORD)
    res = facade.login("password", _password("alice@example.com", ALICE_PASSWORD))
    assert res.code == "backend_unavailable"
    assert facade.guard.status()["directory"]["failure_count_window"] == 1


def test_blocked_account_cannot_log_in(facade, alice, admin):
    first = facade.login("password", _password("alice@example.com", ALICE_PASSWORD))
    assert facade.block_user(alice.id, reason="fraud review", actor=admin.id).data["changed"] is True
    assert facade.validate_token(first.token) is None

    res = facade.login("password", _password("alice@example.com", ALICE_PASSWORD))
    assert res.success is False
    assert res.code == "account_blocked"
    assert _failed(facade)[0].reason == FailureReason.ACCOUNT_BLOCKED

    assert facade.unblock_user(alice.id, actor=admin.id).success is True
    assert facade.login("password", _password("alice@example.com", ALICE_PASSWORD)).success is True


def test_logout_revokes_token(facade, alice):
    res = facade.login("password", _password("alice@example.com", ALICE_PASSWORD))
    out = facade.logout(res.session.id)
    assert out.success is True
    assert facade.validate_token(res.token) is None
    assert facade.validate_session(res.session.id) is None
    assert facade.logout(res.session.id).code == "not_found"
    assert len(facade.get_access_logs(action=AuditAction.logout)) == 1


def test_face_login_and_face_setup_flag(facade, alice, clock):
    d = descriptor(11)
    assert facade.register_face_id(alice.id, {"descriptor": d, "confidence": 92.0}).success
    pw = facade.login("password", _password("alice@example.com", ALICE_PASSWORD))
    assert pw.requires_face_setup is False

    clock.advance(1)
    res = facade.login("face_id", {"descriptor": near(d)}, {"ip_address": "10.0.0.9"})
    assert res.success is True
    assert res.session.method == "face_id"
    row = facade.get_access_logs(user_id=alice.id, method="face_id", action=AuditAction.login_success)[0]
    assert row.confidence is not None and row.confidence > 90
    assert row.quality.value == "high"


def test_face_login_unknown_face(facade, alice):
    facade.register_face_id(alice.id, {"descriptor": descriptor(11), "confidence": 92.0})
    res = facade.login("face_id", {"descriptor": descriptor(12)})
    assert res.success is False
    assert res.error == "Face ID not recognized."
    assert res.code == "invalid_credential"
    assert _failed(facade)[0].reason == FailureReason.NO_BIOMETRIC_MATCH


def test_device_gate_denies_after_three_new_devices(facade, alice, clock, dispatcher):
    d = descriptor(21)
    facade.register_face_id(alice.id, {"descriptor": d, "confidence": 92.0})
    for device in ("iPhone 15 Safari", "Pixel 8 Chrome", "Galaxy S23"):
        clock.advance(5)
        res = facade.login("face_id", {"descriptor": near(d), "device_info": device})
        assert res.success is True
        assert res.requires_device_approval is True

    clock.advance(5)
    known = facade.login("face_id", {"descriptor": near(d), "device_info": "iPhone 14"})
    assert known.success is True
    assert known.requires_device_approval is False

    clock.advance(5)
    denied = facade.login("face_id", {"descriptor": near(d), "device_info": "Surface Pro"})
    assert denied.success is False
    assert denied.code == "untrusted_device"
    assert _failed(facade)[0].reason == FailureReason.UNTRUSTED_DEVICE

    facade.notifier.flush()
    assert len(dispatcher.of_type("new_device_login")) == 3

    # the denial is per attempt; once the window passes the device is let in
    clock.advance(24 * 3600)
    later = facade.login("face_id", {"descriptor": near(d), "device_info": "Surface Pro"})
    assert later.success is True


def test_qr_login_round_trip(facade, alice, clock):
    qr = facade.generate_user_qr(alice.id)
    assert qr.success is True
    assert qr.expires_at == clock.time() + 300
    assert len(facade.get_access_logs(action=AuditAction.qr_generated)) == 1

    clock.advance(60)
    res = facade.login("qr_code", {"qr_code": qr.qr_code})
    assert res.success is True
    row = facade.get_access_logs(method="qr_code", action=AuditAction.login_success)[0]
    assert row.qr_age_seconds == 60


def test_expired_qr_rejected(facade, alice, clock):
    qr = facade.generate_user_qr(alice.id)
    clock.advance(301)
    res = facade.login("qr_code", {"qr_code": qr.qr_code})
    assert res.success is False
    assert res.error == "QR code invalid or expired."
    row = _failed(facade)[0]
    assert row.reason == FailureReason.QR_EXPIRED
    assert row.user_id == alice.id


def test_qr_for_blocked_user_not_issued(facade, alice, admin):
    facade.block_user(alice.id, reason="test", actor=admin.id)
    qr = facade.generate_user_qr(alice.id)
    assert qr.success is False
    assert qr.code == "account_blocked"
    assert facade.generate_user_qr("missing-user").code == "not_found"


def test_face_login_with_nan_payload_is_rejected(facade, alice):
    assert facade.register_face_id(alice.id, {"descriptor": descriptor(1), "confidence": 90.0}).success
    res = facade.login("face_id", {"face_data": raw_face_payload([float("nan")] * 128)})
    assert res.success is False
    assert res.code == "validation_error"
    assert res.session is None and res.user is None

    rows = _failed(facade)
    assert len(rows) == 1
    assert rows[0].reason == FailureReason.VALIDATION_ERROR
    assert rows[0].user_id == UNKNOWN_USER


def test_face_login_without_client_info_is_not_globally_throttled(facade, alice):
    d = descriptor(21)
    assert facade.register_face_id(alice.id, {"descriptor": d, "confidence": 90.0}).success
    for _ in range(11):
        facade.login("face_id", {"descriptor": descriptor(22)})
    assert facade.login("face_id", {"descriptor": near(d)}).success is True


def test_directory_outage_on_account_operations_is_reported(make_facade, clock):
    facade = make_facade(directory=FailingDirectory(InMemoryUserDirectory(time_fn=clock.time)))
    ident = facade.create_user("alice@example.com", ALICE_PASSWORD)

    changed = facade.change_password(ident.id, ALICE_PASSWORD, "another-long-password")
    assert changed.success is False
    assert changed.code == "backend_unavailable"

    qr = facade.generate_user_qr(ident.id)
    assert qr.success is False
    assert qr.code == "backend_unavailable"

    sent = facade.send_security_notification(ident.id, "suspicious_activity")
    assert sent.success is False
    assert sent.code == "backend_unavailable"

    assert facade.request_password_reset("alice@example.com").code == "backend_unavailable"
