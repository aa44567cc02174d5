from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from unifiedauth.core.redaction import redact_value


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class FailureReason(str, Enum):
    """Internal failure taxonomy. Always recorded in the audit entry, never shown to callers."""

    INVALID_CREDENTIAL = "invalid_credential"
    NOT_FOUND = "not_found"
    ACCOUNT_BLOCKED = "account_blocked"
    INSUFFICIENT_BIOMETRIC_DATA = "insufficient_biometric_data"
    NO_BIOMETRIC_MATCH = "no_biometric_match"
    QR_EXPIRED = "qr_expired"
    RATE_LIMITED = "rate_limited"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    VALIDATION_ERROR = "validation_error"
    UNTRUSTED_DEVICE = "untrusted_device"
    INTERNAL_ERROR = "internal_error"


@dataclass
class AuthError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.code)

    @property
    def reason(self) -> FailureReason:
        try:
            return FailureReason(self.code)
        except ValueError:
            return FailureReason.INTERNAL_ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "context": redact_value(self.context or {}),
        }


# ---- Core types ----
class ConfigError(AuthError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


class InvalidCredentialError(AuthError):
    def __init__(self, user_message: str = "Invalid credentials.", **ctx: Any):
        super().__init__("invalid_credential", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class NotFoundError(AuthError):
    def __init__(self, user_message: str = "Not found.", **ctx: Any):
        super().__init__("not_found", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class AccountBlockedError(AuthError):
    def __init__(self, user_message: str = "Account is blocked.", **ctx: Any):
        super().__init__("account_blocked", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class InsufficientBiometricDataError(AuthError):
    def __init__(self, user_message: str = "Face data is missing or unreadable.", **ctx: Any):
        super().__init__("insufficient_biometric_data", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class NoBiometricMatchError(AuthError):
    def __init__(self, user_message: str = "Face ID not recognized.", **ctx: Any):
        super().__init__("no_biometric_match", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class QRExpiredError(AuthError):
    def __init__(self, user_message: str = "QR code expired.", **ctx: Any):
        super().__init__("qr_expired", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class RateLimitError(AuthError):
    def __init__(self, user_message: str = "Too many attempts. Please try again later.", **ctx: Any):
        super().__init__("rate_limited", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class BackendUnavailableError(AuthError):
    def __init__(self, user_message: str = "Authentication is temporarily unavailable.", **ctx: Any):
        super().__init__("backend_unavailable", user_message, severity=Severity.ERROR, recoverable=True, context=ctx)


class ValidationError(AuthError):
    def __init__(self, user_message: str = "Invalid request.", **ctx: Any):
        super().__init__("validation_error", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class UntrustedDeviceError(AuthError):
    def __init__(self, user_message: str = "This device is not trusted.", **ctx: Any):
        super().__init__("untrusted_device", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


_BY_REASON = {
    FailureReason.INVALID_CREDENTIAL: InvalidCredentialError,
    FailureReason.NOT_FOUND: NotFoundError,
    FailureReason.ACCOUNT_BLOCKED: AccountBlockedError,
    FailureReason.INSUFFICIENT_BIOMETRIC_DATA: InsufficientBiometricDataError,
    FailureReason.NO_BIOMETRIC_MATCH: NoBiometricMatchError,
    FailureReason.QR_EXPIRED: QRExpiredError,
    FailureReason.RATE_LIMITED: RateLimitError,
    FailureReason.BACKEND_UNAVAILABLE: BackendUnavailableError,
    FailureReason.VALIDATION_ERROR: ValidationError,
    FailureReason.UNTRUSTED_DEVICE: UntrustedDeviceError,
}


def error_for(reason: FailureReason, **ctx: Any) -> AuthError:
    cls = _BY_REASON.get(reason)
    if cls is None:
        return AuthError("internal_error", "Internal error.", severity=Severity.ERROR, recoverable=True, context=ctx)
    return cls(**ctx)
