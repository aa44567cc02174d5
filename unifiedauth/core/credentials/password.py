from __future__ import annotations

import os
import secrets
from typing import Any, Optional

from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from unifiedauth.core.credentials.base import AuthMethod, CredentialVerifier, PasswordCredential, VerifyResult
from unifiedauth.core.errors import FailureReason
from unifiedauth.core.identity.directory import normalize_email


def _scrypt_hash(password: str, salt: bytes, n: int = 2**14, r: int = 8, p: int = 1) -> bytes:
    kdf = Scrypt(salt=salt, length=32, n=n, r=r, p=p)
    return kdf.derive(password.encode("utf-8"))


class PasswordHasher:
    """
    scrypt password hashes encoded as ``scrypt$n$r$p$salt_hex$digest_hex``.
    The KDF parameters travel with the hash so they can be raised later.
    """

    def __init__(self, *, n: int = 2**14, r: int = 8, p: int = 1):
        self.n = int(n)
        self.r = int(r)
        self.p = int(p)
        self._dummy: Optional[str] = None

    def hash(self, password: str) -> str:
        salt = os.urandom(16)
        digest = _scrypt_hash(password, salt, n=self.n, r=self.r, p=self.p)
        return f"scrypt${self.n}${self.r}${self.p}${salt.hex()}${digest.hex()}"

    def verify(self, password: str, encoded: str) -> bool:
        try:
            name, n, r, p, salt_hex, digest_hex = str(encoded).split("$")
            if name != "scrypt":
                return False
            salt = bytes.fromhex(salt_hex)
            expected = bytes.fromhex(digest_hex)
            digest = _scrypt_hash(password, salt, n=int(n), r=int(r), p=int(p))
        except ValueError:
            return False
        return secrets.compare_digest(digest, expected)

    def burn(self, password: str) -> None:
        """Spends one hash computation so unknown emails cost the same as wrong passwords."""
        if self._dummy is None:
            self._dummy = self.hash(secrets.token_hex(8))
        self.verify(password, self._dummy)


class PasswordVerifier(CredentialVerifier[PasswordCredential]):
    method = AuthMethod.password
    credential_model = PasswordCredential

    def __init__(self, *, directory: Any, hasher: PasswordHasher, guard: Any = None):
        self.directory = directory
        self.hasher = hasher
        self.guard = guard

    def subject(self, credential: PasswordCredential) -> Optional[str]:
        return normalize_email(credential.email)

    def rate_key(self, credential: PasswordCredential, *, client_key: str) -> str:
        return f"password:{normalize_email(credential.email)}"

    def verify(self, credential: PasswordCredential) -> VerifyResult:
        ident = self._call("directory", self.directory.get_by_email, credential.email)
        if ident is None:
            self.hasher.burn(credential.password)
            return VerifyResult.failure(FailureReason.NOT_FOUND, "no identity for email")
        if not ident.password_hash or not self.hasher.verify(credential.password, ident.password_hash):
            return VerifyResult.failure(FailureReason.INVALID_CREDENTIAL, "password mismatch", user_id=ident.id)
        return VerifyResult.success(ident)
