from unifiedauth.core.credentials.base import (
    AuthMethod,
    CredentialVerifier,
    FaceCredential,
    PasswordCredential,
    QRCredential,
    VerifyResult,
)
from unifiedauth.core.credentials.face import FaceVerifier
from unifiedauth.core.credentials.password import PasswordHasher, PasswordVerifier
from unifiedauth.core.credentials.qr import QRVerifier

__all__ = [
    "AuthMethod",
    "CredentialVerifier",
    "FaceCredential",
    "FaceVerifier",
    "PasswordCredential",
    "PasswordHasher",
    "PasswordVerifier",
    "QRCredential",
    "QRVerifier",
    "VerifyResult",
]
