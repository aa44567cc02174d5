from __future__ import annotations

import numpy as np
import pytest

from unifiedauth.core.credentials import (
    FaceCredential,
    FaceVerifier,
    PasswordCredential,
    PasswordHasher,
    PasswordVerifier,
    QRCredential,
    QRVerifier,
)
from unifiedauth.core.errors import FailureReason, ValidationError
from unifiedauth.core.faceid import InMemoryFaceProfileStore
from unifiedauth.core.faceid.similarity import best_match, decode_descriptor, encode_descriptor
from unifiedauth.core.identity import InMemoryUserDirectory
from unifiedauth.core.sessions import TokenIssuer

from .helpers.config_builders import TEST_SECRET
from .helpers.fakes import FakeClock, descriptor, near, raw_face_payload


def _hasher():
    return PasswordHasher(n=2**10)


def test_password_hash_roundtrip_and_format():
    h = _hasher()
    encoded = h.hash("hunter22")
    assert encoded.startswith("scrypt$1024$8$1$")
    assert h.verify("hunter22", encoded) is True
    assert h.verify("hunter23", encoded) is False
    assert h.verify("hunter22", "not-a-hash") is False
    assert h.hash("hunter22") != encoded


def test_password_verifier_outcomes():
    directory = InMemoryUserDirectory()
    h = _hasher()
    ident = directory.add_user(email="Bob@Example.com", password_hash=h.hash("s3cret-pass"))
    v = PasswordVerifier(directory=directory, hasher=h)

    ok = v.verify(PasswordCredential(email="bob@example.com", password="s3cret-pass"))
    assert ok.ok and ok.identity.id == ident.id

    wrong = v.verify(PasswordCredential(email="bob@example.com", password="nope"))
    assert wrong.ok is False
    assert wrong.reason == FailureReason.INVALID_CREDENTIAL
    assert wrong.user_id == ident.id

    missing = v.verify(PasswordCredential(email="ghost@example.com", password="nope"))
    assert missing.reason == FailureReason.NOT_FOUND
    assert missing.user_id is None


def test_password_rate_key_uses_normalized_email():
    v = PasswordVerifier(directory=InMemoryUserDirectory(), hasher=_hasher())
    cred = v.parse({"email": "  Bob@Example.COM ", "password": "x"})
    assert v.rate_key(cred, client_key="10.0.0.1") == "password:bob@example.com"
    assert v.subject(cred) == "bob@example.com"


def test_parse_rejects_unknown_and_missing_fields():
    v = PasswordVerifier(directory=InMemoryUserDirectory(), hasher=_hasher())
    with pytest.raises(ValidationError) as ei:
        v.parse({"email": "a@b.c"})
    assert "password" in ei.value.context["fields"]
    with pytest.raises(ValidationError):
        v.parse({"email": "a@b.c", "password": "x", "otp": "123"})


def _face_setup(clock):
    directory = InMemoryUserDirectory(time_fn=clock.time)
    store = InMemoryFaceProfileStore(time_fn=clock.time)
    ident = directory.add_user(email="carol@example.com")
    return directory, store, ident


def test_face_match_above_threshold():
    clock = FakeClock()
    directory, store, ident = _face_setup(clock)
    d = descriptor(1)
    store.create(user_id=ident.id, descriptor=d, confidence=90.0, device_metadata={})
    v = FaceVerifier(store=store, directory=directory, time_fn=clock.time)

    res = v.verify(FaceCredential(descriptor=near(d)))
    assert res.ok and res.identity.id == ident.id
    assert res.confidence > 90.0

    # base64 float32 payloads resolve to the same descriptor
    res2 = v.verify(FaceCredential(face_data=encode_descriptor(near(d))))
    assert res2.ok


def test_face_below_threshold_never_matches():
    clock = FakeClock()
    directory, store, ident = _face_setup(clock)
    store.create(user_id=ident.id, descriptor=descriptor(1), confidence=90.0, device_metadata={})
    v = FaceVerifier(store=store, directory=directory, time_fn=clock.time)

    res = v.verify(FaceCredential(descriptor=descriptor(2)))
    assert res.ok is False
    assert res.reason == FailureReason.NO_BIOMETRIC_MATCH
    assert res.user_id is None


def test_inactive_profile_is_not_matched():
    clock = FakeClock()
    directory, store, ident = _face_setup(clock)
    d = descriptor(3)
    p = store.create(user_id=ident.id, descriptor=d, confidence=90.0, device_metadata={})
    store.deactivate(p.id, ident.id)
    v = FaceVerifier(store=store, directory=directory, time_fn=clock.time)

    res = v.verify(FaceCredential(descriptor=d))
    assert res.ok is False
    assert res.reason == FailureReason.NO_BIOMETRIC_MATCH


def test_face_empty_descriptor_is_insufficient():
    clock = FakeClock()
    directory, store, _ = _face_setup(clock)
    v = FaceVerifier(store=store, directory=directory, time_fn=clock.time)
    assert v.verify(FaceCredential(descriptor=[])).reason == FailureReason.INSUFFICIENT_BIOMETRIC_DATA
    assert v.verify(FaceCredential()).reason == FailureReason.INSUFFICIENT_BIOMETRIC_DATA


def test_face_non_finite_payload_is_rejected():
    clock = FakeClock()
    directory, store, ident = _face_setup(clock)
    store.create(user_id=ident.id, descriptor=descriptor(1), confidence=90.0, device_metadata={})
    v = FaceVerifier(store=store, directory=directory, time_fn=clock.time)

    for bad in ([float("nan")] * 128, [float("inf")] * 128, [0.1] * 127 + [float("-inf")]):
        res = v.verify(FaceCredential(face_data=raw_face_payload(bad)))
        assert res.ok is False
        assert res.reason == FailureReason.VALIDATION_ERROR
        assert res.user_id is None
    with pytest.raises(ValidationError):
        decode_descriptor(raw_face_payload([float("nan")] * 4))


def test_non_finite_stored_profile_never_wins_match():
    clock = FakeClock()
    directory, store, ident = _face_setup(clock)
    other = directory.add_user(email="mallory@example.com")
    store.create(user_id=other.id, descriptor=[float("nan")] * 128, confidence=90.0, device_metadata={})
    d = descriptor(4)
    store.create(user_id=ident.id, descriptor=d, confidence=90.0, device_metadata={})

    i, sim = best_match(np.asarray(d, dtype=np.float32), [[float("nan")] * 128])
    assert (i, sim) == (-1, 0.0)

    v = FaceVerifier(store=store, directory=directory, time_fn=clock.time)
    res = v.verify(FaceCredential(descriptor=near(d)))
    assert res.ok and res.identity.id == ident.id
    assert v.verify(FaceCredential(descriptor=descriptor(5))).ok is False


def test_face_required_confidence_applies_to_capture_confidence():
    clock = FakeClock()
    directory, store, ident = _face_setup(clock)
    d = descriptor(4)
    store.create(user_id=ident.id, descriptor=d, confidence=90.0, device_metadata={})
    v = FaceVerifier(store=store, directory=directory, required_confidence=lambda uid: 85.0, time_fn=clock.time)

    low = v.verify(FaceCredential(descriptor=near(d), confidence=80.0))
    assert low.ok is False
    assert low.reason == FailureReason.NO_BIOMETRIC_MATCH
    assert low.user_id == ident.id

    assert v.verify(FaceCredential(descriptor=near(d), confidence=88.0)).ok


def _qr_setup(clock):
    directory = InMemoryUserDirectory(time_fn=clock.time)
    ident = directory.add_user(email="dave@example.com")
    tokens = TokenIssuer(secret=TEST_SECRET, time_fn=clock.time)
    return directory, tokens, ident


def test_qr_fresh_payload_accepted():
    clock = FakeClock()
    directory, tokens, ident = _qr_setup(clock)
    v = QRVerifier(directory=directory, tokens=tokens, time_fn=clock.time)
    payload = v.issue(ident.id)
    clock.advance(120)
    res = v.verify(QRCredential(qr_code=payload))
    assert res.ok and res.identity.id == ident.id
    assert res.qr_age_seconds == pytest.approx(120.0)
    assert v.rate_key(QRCredential(qr_code=payload), client_key="1.2.3.4") == f"qr:{ident.id}"


def test_qr_older_than_validity_rejected():
    clock = FakeClock()
    directory, tokens, ident = _qr_setup(clock)
    v = QRVerifier(directory=directory, tokens=tokens, validity_seconds=300, time_fn=clock.time)
    payload = v.issue(ident.id)
    clock.advance(301)
    res = v.verify(QRCredential(qr_code=payload))
    assert res.ok is False
    assert res.reason == FailureReason.QR_EXPIRED
    assert res.user_id == ident.id


def test_qr_from_the_future_is_malformed():
    clock = FakeClock()
    directory, tokens, ident = _qr_setup(clock)
    v = QRVerifier(directory=directory, tokens=tokens, clock_skew_seconds=30, time_fn=clock.time)
    payload = v.issue(ident.id)
    v_behind = QRVerifier(directory=directory, tokens=tokens, clock_skew_seconds=30, time_fn=lambda: clock.time() - 60)
    res = v_behind.verify(QRCredential(qr_code=payload))
    assert res.reason == FailureReason.VALIDATION_ERROR

    v_slightly_behind = QRVerifier(directory=directory, tokens=tokens, clock_skew_seconds=30, time_fn=lambda: clock.time() - 10)
    assert v_slightly_behind.verify(QRCredential(qr_code=payload)).ok


def test_qr_tampered_or_foreign_payload_rejected():
    clock = FakeClock()
    directory, tokens, ident = _qr_setup(clock)
    v = QRVerifier(directory=directory, tokens=tokens, time_fn=clock.time)
    payload = v.issue(ident.id)
    tampered = payload[:-2] + ("A" if payload[-2] != "A" else "B") + payload[-1]
    assert v.verify(QRCredential(qr_code=tampered)).reason == FailureReason.VALIDATION_ERROR
    assert v.rate_key(QRCredential(qr_code=tampered), client_key="1.2.3.4") == "qr:1.2.3.4"

    other = TokenIssuer(secret="another-secret-0123456789abcdef0123456789", time_fn=clock.time)
    forged = QRVerifier(directory=directory, tokens=other, time_fn=clock.time).issue(ident.id)
    assert v.verify(QRCredential(qr_code=forged)).reason == FailureReason.VALIDATION_ERROR


def test_session_token_is_not_a_qr_payload():
    from unifiedauth.core.identity import IdentitySnapshot

    clock = FakeClock()
    directory, tokens, ident = _qr_setup(clock)
    v = QRVerifier(directory=directory, tokens=tokens, time_fn=clock.time)
    session_token = tokens.issue(IdentitySnapshot.of(ident), session_id="s1")
    assert v.verify(QRCredential(qr_code=session_token)).reason == FailureReason.VALIDATION_ERROR


def test_verifier_uses_guard_when_present():
    calls = []

    class RecordingGuard:
        def call(self, name, fn, *args, **kwargs):
            calls.append(name)
            return fn(*args, **kwargs)

    directory = InMemoryUserDirectory()
    h = _hasher()
    directory.add_user(email="erin@example.com", password_hash=h.hash("pw-pw-pw-pw"))
    v = PasswordVerifier(directory=directory, hasher=h, guard=RecordingGuard())
    assert v.verify(PasswordCredential(email="erin@example.com", password="pw-pw-pw-pw")).ok
    assert calls == ["directory"]
