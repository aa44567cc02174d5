from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional

from unifiedauth.core.credentials.base import AuthMethod, CredentialVerifier, QRCredential, VerifyResult
from unifiedauth.core.errors import AuthError, FailureReason
from unifiedauth.core.sessions.tokens import QR_AUDIENCE, TokenIssuer

QR_TYPE = "user_access"


class QRVerifier(CredentialVerifier[QRCredential]):
    """
    QR payloads are signed tokens carrying the user id and issue time. They expire
    validity_seconds after issue; a payload dated in the future beyond the allowed
    clock skew is treated as malformed.
    """

    method = AuthMethod.qr_code
    credential_model = QRCredential

    def __init__(
        self,
        *,
        directory: Any,
        tokens: TokenIssuer,
        guard: Any = None,
        validity_seconds: int = 300,
        clock_skew_seconds: int = 30,
        time_fn: Callable[[], float] = time.time,
    ):
        self.directory = directory
        self.tokens = tokens
        self.guard = guard
        self.validity_seconds = int(validity_seconds)
        self.clock_skew_seconds = int(clock_skew_seconds)
        self._time = time_fn

    def issue(self, user_id: str) -> str:
        return self.tokens.issue_purpose(user_id, audience=QR_AUDIENCE, extra={"type": QR_TYPE})

    def _payload(self, credential: QRCredential) -> Optional[Dict[str, Any]]:
        try:
            payload = self.tokens.decode_purpose(credential.qr_code, audience=QR_AUDIENCE)
        except AuthError:
            return None
        if payload.get("type") != QR_TYPE:
            return None
        return payload

    def rate_key(self, credential: QRCredential, *, client_key: str) -> str:
        payload = self._payload(credential)
        if payload is None:
            return f"qr:{client_key}"
        return f"qr:{payload['sub']}"

    def verify(self, credential: QRCredential) -> VerifyResult:
        payload = self._payload(credential)
        if payload is None:
            return VerifyResult.failure(FailureReason.VALIDATION_ERROR, "malformed or tampered QR payload")
        user_id = str(payload["sub"])
        age = self._time() - float(payload["iat"])
        if age < -self.clock_skew_seconds:
            return VerifyResult.failure(FailureReason.VALIDATION_ERROR, "QR issued in the future", user_id=user_id, qr_age_seconds=age)
        if age > self.validity_seconds:
            return VerifyResult.failure(FailureReason.QR_EXPIRED, f"QR is {int(age)}s old", user_id=user_id, qr_age_seconds=age)
        ident = self._call("directory", self.directory.get_by_id, user_id)
        if ident is None:
            return VerifyResult.failure(FailureReason.NOT_FOUND, "QR identity no longer exists", user_id=user_id, qr_age_seconds=age)
        return VerifyResult.success(ident, qr_age_seconds=max(0.0, age))
