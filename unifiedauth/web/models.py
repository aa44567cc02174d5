from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ClientInfoIn(BaseModel):
    device_info: Optional[str] = Field(default=None, max_length=256)
    utc_offset_minutes: Optional[int] = Field(default=None, ge=-14 * 60, le=14 * 60)


class LoginRequest(BaseModel):
    method: str = Field(min_length=1, max_length=32)
    credentials: Dict[str, Any] = Field(default_factory=dict)
    client: Optional[ClientInfoIn] = None


class TokenValidateRequest(BaseModel):
    token: str = Field(min_length=1, max_length=8192)


class TokenValidateResponse(BaseModel):
    valid: bool
    claims: Optional[Dict[str, Any]] = None


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=1024)
    new_password: str = Field(min_length=1, max_length=1024)


class PasswordResetRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)


class PasswordResetConfirm(BaseModel):
    token: str = Field(min_length=1, max_length=8192)
    new_password: str = Field(min_length=1, max_length=1024)


class DeviceValidateRequest(BaseModel):
    device_info: Optional[str] = Field(default=None, max_length=256)


class BlockRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class TemporaryDisableRequest(BaseModel):
    minutes: int = Field(ge=1)
    reason: str = Field(min_length=1, max_length=500)


class ReregistrationRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class NotifyRequest(BaseModel):
    type: str = Field(min_length=1, max_length=64)
    details: Dict[str, Any] = Field(default_factory=dict)


class ExportRequest(BaseModel):
    format: str = Field(default="json", max_length=8)
    filters: Optional[Dict[str, Any]] = None


class CleanupRequest(BaseModel):
    days: Optional[int] = Field(default=None, ge=1, le=3650)
