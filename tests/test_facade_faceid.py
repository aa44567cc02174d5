from __future__ import annotations

from unifiedauth.core.audit import AuditAction
from unifiedauth.core.errors import FailureReason
from unifiedauth.core.faceid import FaceIdState

from .helpers.fakes import descriptor, near, raw_face_payload


def _entries(facade, user_id, action):
    return facade.get_access_logs(user_id=user_id, action=action)


def test_low_quality_registration_rejected(facade, alice):
    low = facade.register_face_id(alice.id, {"descriptor": descriptor(1), "confidence": 70.0})
    assert low.success is False
    assert low.code == "validation_error"
    assert facade.get_face_id_status(alice.id).state == FaceIdState.unregistered

    ok = facade.register_face_id(alice.id, {"descriptor": descriptor(1), "confidence": 76.0})
    assert ok.success is True
    assert "descriptor" not in ok.profile
    assert ok.profile["confidence"] == 76.0

    rows = _entries(facade, alice.id, AuditAction.face_id_registered)
    assert sorted(r.success for r in rows) == [False, True]
    failed = [r for r in rows if not r.success][0]
    assert failed.reason == FailureReason.VALIDATION_ERROR
    assert failed.actor_id == alice.id


def test_reregistration_keeps_single_active_profile(facade, alice, clock):
    first = facade.register_face_id(alice.id, {"descriptor": descriptor(1), "confidence": 80.0})
    clock.advance(10)
    second = facade.register_face_id(alice.id, {"descriptor": descriptor(2), "confidence": 88.0})
    assert first.profile["id"] == second.profile["id"]

    profiles = facade.face_store.list_by_user_id(alice.id)
    assert len([p for p in profiles if p.active]) == 1
    assert facade.get_face_id_status(alice.id).confidence == 88.0

    # the old face no longer opens the account
    assert facade.login("face_id", {"descriptor": descriptor(1)}).success is False
    assert facade.login("face_id", {"descriptor": near(descriptor(2))}).success is True


def test_malformed_registration_is_audited_once(facade, alice):
    res = facade.register_face_id(alice.id, {"descriptor": descriptor(1)})
    assert res.success is False
    assert res.code == "validation_error"

    wrong_len = facade.register_face_id(alice.id, {"descriptor": [0.1, 0.2, 0.3], "confidence": 90.0})
    assert wrong_len.code == "validation_error"

    empty = facade.register_face_id(alice.id, {"descriptor": [], "confidence": 90.0})
    assert empty.code == "insufficient_biometric_data"

    assert len(_entries(facade, alice.id, AuditAction.face_id_registered)) == 3


def test_update_requires_active_profile(facade, alice):
    missing = facade.update_face_id(alice.id, {"descriptor": descriptor(1), "confidence": 90.0})
    assert missing.code == "not_found"

    facade.register_face_id(alice.id, {"descriptor": descriptor(1), "confidence": 90.0})
    updated = facade.update_face_id(alice.id, {"descriptor": descriptor(3), "confidence": 91.0})
    assert updated.success is True
    assert updated.profile["confidence"] == 91.0
    assert len(_entries(facade, alice.id, AuditAction.face_id_updated)) == 2


def test_disable_face_id(facade, alice):
    facade.register_face_id(alice.id, {"descriptor": descriptor(1), "confidence": 90.0})
    res = facade.disable_face_id(alice.id)
    assert res.success is True
    status = facade.get_face_id_status(alice.id)
    assert status.state == FaceIdState.deactivated
    assert status.enabled is False
    assert facade.login("face_id", {"descriptor": descriptor(1)}).success is False

    again = facade.disable_face_id(alice.id)
    assert again.code == "not_found"
    assert len(_entries(facade, alice.id, AuditAction.face_id_disabled)) == 2


def test_temporary_disable_reactivates_lazily(facade, alice, admin, clock):
    d = descriptor(5)
    facade.register_face_id(alice.id, {"descriptor": d, "confidence": 90.0})
    res = facade.temporary_disable_face_id(alice.id, minutes=10, reason="lost phone", actor=admin.id)
    assert res.success is True

    status = facade.get_face_id_status(alice.id)
    assert status.state == FaceIdState.temporarily_disabled
    assert status.disabled_until == clock.time() + 600
    assert status.reason == "lost phone"
    assert facade.login("face_id", {"descriptor": near(d)}).success is False

    clock.advance(601)
    assert facade.get_face_id_status(alice.id).state == FaceIdState.active
    ok = facade.login("face_id", {"descriptor": near(d)})
    assert ok.success is True
    assert facade.face_store.get_by_user_id(alice.id).active is True

    rows = _entries(facade, alice.id, AuditAction.face_id_temporarily_disabled)
    assert len(rows) == 1
    assert rows[0].actor_id == admin.id


def test_temporary_disable_bounds(facade, alice, admin):
    facade.register_face_id(alice.id, {"descriptor": descriptor(5), "confidence": 90.0})
    assert facade.temporary_disable_face_id(alice.id, minutes=0, reason="x", actor=admin.id).code == "validation_error"
    assert facade.temporary_disable_face_id(alice.id, minutes=31 * 24 * 60, reason="x", actor=admin.id).code == "validation_error"


def test_register_while_temporarily_disabled(facade, alice, admin, clock):
    facade.register_face_id(alice.id, {"descriptor": descriptor(5), "confidence": 90.0})
    facade.temporary_disable_face_id(alice.id, minutes=5, reason="review", actor=admin.id)
    blocked = facade.register_face_id(alice.id, {"descriptor": descriptor(6), "confidence": 90.0})
    assert blocked.code == "validation_error"

    clock.advance(301)
    assert facade.register_face_id(alice.id, {"descriptor": descriptor(6), "confidence": 90.0}).success is True
    assert facade.get_face_id_status(alice.id).state == FaceIdState.active


def test_forced_reregistration(facade, alice, admin, clock):
    d = descriptor(7)
    facade.register_face_id(alice.id, {"descriptor": d, "confidence": 90.0})
    res = facade.force_face_id_reregistration(alice.id, reason="descriptor drift", actor=admin.id)
    assert res.success is True
    status = facade.get_face_id_status(alice.id)
    assert status.state == FaceIdState.pending_reregistration
    assert status.enabled is False
    assert facade.login("face_id", {"descriptor": d}).success is False

    clock.advance(1)
    again = facade.register_face_id(alice.id, {"descriptor": descriptor(8), "confidence": 90.0})
    assert again.success is True
    assert facade.get_face_id_status(alice.id).state == FaceIdState.active
    assert facade.login("face_id", {"descriptor": near(descriptor(8))}).success is True


def test_face_operations_for_unknown_user(facade):
    assert facade.register_face_id("ghost", {"descriptor": descriptor(1), "confidence": 90.0}).code == "not_found"
    assert facade.disable_face_id("ghost").code == "not_found"


def test_non_finite_registration_rejected(facade, alice, admin):
    d = descriptor(1)
    assert facade.register_face_id(alice.id, {"descriptor": d, "confidence": 90.0}).success

    nan = facade.register_face_id(admin.id, {"face_data": raw_face_payload([float("nan")] * 128), "confidence": 90.0})
    assert nan.success is False
    assert nan.code == "validation_error"
    inf = facade.register_face_id(admin.id, {"descriptor": [float("inf")] * 128, "confidence": 90.0})
    assert inf.code == "validation_error"
    assert facade.get_face_id_status(admin.id).state == FaceIdState.unregistered

    res = facade.login("face_id", {"descriptor": near(d)})
    assert res.success is True
    assert res.session.identity.id == alice.id

    rows = _entries(facade, admin.id, AuditAction.face_id_registered)
    assert [r.success for r in rows] == [False, False]
