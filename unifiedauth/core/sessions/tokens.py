from __future__ import annotations

import secrets
import time
from typing import Any, Callable, Dict, Optional

import jwt

from unifiedauth.core.errors import InvalidCredentialError, QRExpiredError
from unifiedauth.core.identity.models import IdentitySnapshot
from unifiedauth.core.sessions.models import TokenClaims

SESSION_AUDIENCE = "session"
QR_AUDIENCE = "qr-login"
RESET_AUDIENCE = "password-reset"

# exp/iat are checked against the injected clock, not PyJWT's wall clock
_DECODE_OPTIONS = {"verify_exp": False, "verify_iat": False, "verify_nbf": False, "require": ["iat", "sub", "aud"]}


class TokenIssuer:
    """
    Signs and verifies HMAC JWTs.

    Session tokens embed the identity snapshot and session id; purpose tokens (QR
    login, password reset) use their own audience so one kind can never be replayed
    as another.
    """

    def __init__(
        self,
        *,
        secret: str,
        algorithm: str = "HS256",
        issuer: str = "unifiedauth",
        ttl_seconds: int = 7 * 24 * 3600,
        time_fn: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ValueError("token secret must not be empty")
        self._secret = secret
        self.algorithm = algorithm
        self.issuer = issuer
        self.ttl_seconds = int(ttl_seconds)
        self._time = time_fn

    def issue(self, identity: IdentitySnapshot, *, session_id: Optional[str] = None) -> str:
        now = int(self._time())
        claims: Dict[str, Any] = {
            "sub": identity.id,
            "email": identity.email,
            "role": identity.role.value,
            "name": identity.name,
            "iat": now,
            "exp": now + self.ttl_seconds,
            "jti": secrets.token_hex(8),
            "iss": self.issuer,
            "aud": SESSION_AUDIENCE,
        }
        if session_id:
            claims["sid"] = session_id
        return jwt.encode(claims, self._secret, algorithm=self.algorithm)

    def _decode(self, token: str, audience: str) -> Dict[str, Any]:
        try:
            return jwt.decode(
                str(token or ""),
                self._secret,
                algorithms=[self.algorithm],
                audience=audience,
                issuer=self.issuer,
                options=_DECODE_OPTIONS,
            )
        except jwt.InvalidTokenError as e:
            raise InvalidCredentialError("Invalid token.", cause=e.__class__.__name__) from e

    def verify(self, token: str) -> TokenClaims:
        payload = self._decode(token, SESSION_AUDIENCE)
        exp = payload.get("exp")
        if exp is None or int(exp) <= int(self._time()):
            raise InvalidCredentialError("Token expired.", cause="expired")
        for k in ("iss", "aud"):
            payload.pop(k, None)
        try:
            return TokenClaims.model_validate(payload)
        except ValueError as e:
            raise InvalidCredentialError("Invalid token.", cause="claims") from e

    # ---- purpose tokens ----
    def issue_purpose(self, subject: str, *, audience: str, ttl_seconds: Optional[int] = None, extra: Optional[Dict[str, Any]] = None) -> str:
        now = int(self._time())
        claims: Dict[str, Any] = dict(extra or {})
        claims.update({"sub": str(subject), "iat": now, "iss": self.issuer, "aud": audience, "jti": secrets.token_hex(8)})
        if ttl_seconds is not None:
            claims["exp"] = now + int(ttl_seconds)
        return jwt.encode(claims, self._secret, algorithm=self.algorithm)

    def decode_purpose(self, token: str, *, audience: str) -> Dict[str, Any]:
        payload = self._decode(token, audience)
        exp = payload.get("exp")
        if exp is not None and int(exp) <= int(self._time()):
            if audience == QR_AUDIENCE:
                raise QRExpiredError(cause="expired")
            raise InvalidCredentialError("Token expired.", cause="expired")
        return payload
