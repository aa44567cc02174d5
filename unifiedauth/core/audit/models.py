from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from unifiedauth.core.errors import FailureReason

SYSTEM_ACTOR = "system"
UNKNOWN_USER = "unknown"


class AuditAction(str, Enum):
    login_success = "login_success"
    login_failed = "login_failed"
    logout = "logout"
    session_revoked = "session_revoked"
    user_blocked = "user_blocked"
    user_unblocked = "user_unblocked"
    auto_block_executed = "auto_block_executed"
    password_changed = "password_changed"
    password_reset_requested = "password_reset_requested"
    password_reset = "password_reset"
    face_id_registered = "face_id_registered"
    face_id_updated = "face_id_updated"
    face_id_disabled = "face_id_disabled"
    face_id_temporarily_disabled = "face_id_temporarily_disabled"
    face_id_reregistration_required = "face_id_reregistration_required"
    qr_generated = "qr_generated"
    security_notification_sent = "security_notification_sent"
    logs_exported = "logs_exported"
    logs_cleanup = "logs_cleanup"


LOGIN_ACTIONS = frozenset({AuditAction.login_success, AuditAction.login_failed})


class FaceQuality(str, Enum):
    high = "high"
    medium = "medium"
    low = "low"


def quality_tier(confidence: Optional[float]) -> Optional[FaceQuality]:
    if confidence is None:
        return None
    c = float(confidence)
    if c > 90:
        return FaceQuality.high
    if c > 75:
        return FaceQuality.medium
    return FaceQuality.low


def device_class_of(device_info: Optional[str]) -> str:
    """First word of a free-form device string ("iPhone 15 Safari" -> "iPhone")."""
    parts = str(device_info or "").strip().split()
    return parts[0] if parts else "unknown"


class _EntryBase(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    audit_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: float = Field(default_factory=lambda: time.time())
    trace_id: Optional[str] = None

    user_id: str = UNKNOWN_USER
    action: AuditAction
    success: bool
    reason: Optional[FailureReason] = None
    subject: Optional[str] = None
    actor_id: Optional[str] = None

    ip_address: Optional[str] = None
    device_info: Optional[str] = None
    utc_offset_minutes: Optional[int] = None
    details: Optional[str] = None

    @property
    def is_login_attempt(self) -> bool:
        return self.action in LOGIN_ACTIONS


class PasswordAttempt(_EntryBase):
    method: Literal["password"] = "password"


class FaceAttempt(_EntryBase):
    method: Literal["face_id"] = "face_id"
    confidence: Optional[float] = None
    quality: Optional[FaceQuality] = None
    device_class: Optional[str] = None


class QRAttempt(_EntryBase):
    method: Literal["qr_code"] = "qr_code"
    qr_age_seconds: Optional[float] = None


class TokenEvent(_EntryBase):
    method: Literal["token"] = "token"


class SecurityAction(_EntryBase):
    method: Literal["system"] = "system"


AuditEntry = Annotated[
    Union[PasswordAttempt, FaceAttempt, QRAttempt, TokenEvent, SecurityAction],
    Field(discriminator="method"),
]

_ENTRY_ADAPTER: TypeAdapter = TypeAdapter(AuditEntry)


def parse_entry(obj: Dict[str, Any]) -> AuditEntry:
    rec = dict(obj)
    rec.pop("prev_hash", None)
    rec.pop("hash", None)
    return _ENTRY_ADAPTER.validate_python(rec)


class AuditQuery(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: Optional[str] = None
    method: Optional[str] = None
    success: Optional[bool] = None
    action: Optional[AuditAction] = None
    since: Optional[float] = None
    until: Optional[float] = None
    limit: int = Field(default=200, ge=1)
    offset: int = Field(default=0, ge=0)


class IntegrityReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ok: bool
    checked: int
    broken_at_line: Optional[int] = None
    message: str = ""
    head_hash: Optional[str] = None
