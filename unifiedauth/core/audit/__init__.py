from unifiedauth.core.audit.audit_logger import AuditLogger
from unifiedauth.core.audit.models import (
    SYSTEM_ACTOR,
    UNKNOWN_USER,
    AuditAction,
    AuditEntry,
    AuditQuery,
    FaceAttempt,
    FaceQuality,
    IntegrityReport,
    PasswordAttempt,
    QRAttempt,
    SecurityAction,
    TokenEvent,
    device_class_of,
    quality_tier,
)
from unifiedauth.core.audit.sink import AuditSink, ChainedAuditSink

__all__ = [
    "SYSTEM_ACTOR",
    "UNKNOWN_USER",
    "AuditAction",
    "AuditEntry",
    "AuditLogger",
    "AuditQuery",
    "AuditSink",
    "ChainedAuditSink",
    "FaceAttempt",
    "FaceQuality",
    "IntegrityReport",
    "PasswordAttempt",
    "QRAttempt",
    "SecurityAction",
    "TokenEvent",
    "device_class_of",
    "quality_tier",
]
