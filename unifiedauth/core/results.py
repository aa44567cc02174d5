from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from unifiedauth.core.errors import AuthError
from unifiedauth.core.faceid.models import FaceProfile
from unifiedauth.core.sessions.models import Session


class LoginResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    success: bool
    session: Optional[Session] = None
    token: Optional[str] = Field(default=None, repr=False)
    user: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    # public failure category; credential failures are never broken down further
    code: Optional[str] = None
    requires_face_setup: bool = False
    requires_device_approval: bool = False
    trace_id: Optional[str] = None


class ActionResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    success: bool
    message: str = ""
    error: Optional[str] = None
    code: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, message: str = "", **data: Any) -> "ActionResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def failed(cls, err: AuthError) -> "ActionResult":
        return cls(success=False, error=err.user_message, code=err.code)


def profile_view(profile: FaceProfile) -> Dict[str, Any]:
    """Profile fields safe to hand to callers; the descriptor never leaves the store."""
    return profile.model_dump(mode="json", exclude={"descriptor"})


class FaceIdResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    success: bool
    profile: Optional[Dict[str, Any]] = None
    message: str = ""
    error: Optional[str] = None
    code: Optional[str] = None

    @classmethod
    def ok(cls, profile: FaceProfile, message: str = "") -> "FaceIdResult":
        return cls(success=True, profile=profile_view(profile), message=message)

    @classmethod
    def failed(cls, err: AuthError) -> "FaceIdResult":
        return cls(success=False, error=err.user_message, code=err.code)


class QRCodeResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    success: bool
    qr_code: Optional[str] = Field(default=None, repr=False)
    expires_at: Optional[float] = None
    error: Optional[str] = None
    code: Optional[str] = None


class ExportResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    success: bool
    format: str
    filename: Optional[str] = None
    content: str = ""
    records: int = 0
    error: Optional[str] = None
    code: Optional[str] = None
