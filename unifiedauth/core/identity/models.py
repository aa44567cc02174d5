from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class UserRole(str, Enum):
    user = "user"
    admin = "admin"


class Identity(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    email: str
    display_name: str = ""
    role: UserRole = UserRole.user
    active: bool = True
    face_id_enabled: bool = False
    last_login_at: Optional[float] = None
    created_at: float = Field(default_factory=lambda: time.time())

    blocked_reason: Optional[str] = None
    blocked_by: Optional[str] = None
    blocked_at: Optional[float] = None

    password_hash: str = Field(default="", repr=False)

    def public(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"password_hash"})


class IdentitySnapshot(BaseModel):
    """Frozen view of an identity captured when a session is issued."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str
    email: str
    name: str
    role: UserRole

    @classmethod
    def of(cls, identity: Identity) -> "IdentitySnapshot":
        return cls(id=identity.id, email=identity.email, name=identity.display_name, role=identity.role)


class ClientInfo(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    ip_address: Optional[str] = None
    device_info: Optional[str] = None
    utc_offset_minutes: Optional[int] = Field(default=None, ge=-14 * 60, le=14 * 60)
