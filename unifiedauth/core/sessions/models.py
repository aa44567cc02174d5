from __future__ import annotations

import secrets
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from unifiedauth.core.identity.models import ClientInfo, IdentitySnapshot, UserRole


class Session(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=lambda: secrets.token_urlsafe(24))
    identity: IdentitySnapshot
    method: str
    created_at: float
    expires_at: float
    client: ClientInfo = Field(default_factory=ClientInfo)
    token: str = Field(default="", repr=False)

    def expired(self, now: float) -> bool:
        return float(now) >= float(self.expires_at)


class TokenClaims(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    sub: str
    email: str
    role: UserRole
    name: str
    iat: int
    exp: int
    sid: Optional[str] = None
    jti: str
