from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from unifiedauth.core.errors import FailureReason, ValidationError
from unifiedauth.core.identity.models import Identity


class AuthMethod(str, Enum):
    password = "password"
    face_id = "face_id"
    qr_code = "qr_code"


class PasswordCredential(BaseModel):
    model_config = ConfigDict(extra="forbid")
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1, max_length=1024, repr=False)


class FaceCredential(BaseModel):
    model_config = ConfigDict(extra="forbid")
    descriptor: Optional[List[float]] = None
    face_data: Optional[str] = Field(default=None, repr=False)
    confidence: Optional[float] = Field(default=None, ge=0.0, le=100.0)


class QRCredential(BaseModel):
    model_config = ConfigDict(extra="forbid")
    qr_code: str = Field(min_length=1, max_length=4096, repr=False)


@dataclass(frozen=True)
class VerifyResult:
    ok: bool
    identity: Optional[Identity] = None
    reason: Optional[FailureReason] = None
    # identity the attempt was aimed at, known even on some failures (wrong password, expired QR)
    user_id: Optional[str] = None
    detail: str = ""
    confidence: Optional[float] = None
    profile_id: Optional[str] = None
    qr_age_seconds: Optional[float] = None

    @classmethod
    def success(cls, identity: Identity, **kw: Any) -> "VerifyResult":
        return cls(ok=True, identity=identity, user_id=identity.id, **kw)

    @classmethod
    def failure(cls, reason: FailureReason, detail: str = "", **kw: Any) -> "VerifyResult":
        return cls(ok=False, reason=reason, detail=detail, **kw)


C = TypeVar("C", bound=BaseModel)


class CredentialVerifier(ABC, Generic[C]):
    """One implementation per AuthMethod; the facade only talks to this interface."""

    method: AuthMethod
    credential_model: Type[C]
    guard: Any = None

    def _call(self, backend: str, fn: Any, *args: Any, **kwargs: Any) -> Any:
        if self.guard is None:
            return fn(*args, **kwargs)
        return self.guard.call(backend, fn, *args, **kwargs)

    def parse(self, raw: Dict[str, Any]) -> C:
        try:
            return self.credential_model.model_validate(raw or {})
        except PydanticValidationError as e:
            fields = sorted({str(err.get("loc", ("?",))[0]) for err in e.errors()})
            raise ValidationError("Malformed credentials.", method=self.method.value, fields=fields) from e

    @abstractmethod
    def rate_key(self, credential: C, *, client_key: str) -> str:
        """Key for the per-identity rate limit, derived before verification."""

    @abstractmethod
    def verify(self, credential: C) -> VerifyResult:
        ...

    def subject(self, credential: C) -> Optional[str]:
        return None
