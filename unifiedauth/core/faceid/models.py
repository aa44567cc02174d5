from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class FaceProfileStatus(str, Enum):
    active = "active"
    temporarily_disabled = "temporarily_disabled"
    deactivated = "deactivated"
    pending_reregistration = "pending_reregistration"


class FaceIdState(str, Enum):
    unregistered = "unregistered"
    active = "active"
    temporarily_disabled = "temporarily_disabled"
    deactivated = "deactivated"
    pending_reregistration = "pending_reregistration"


class FaceProfile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: str
    descriptor: List[float]
    confidence: float
    status: FaceProfileStatus = FaceProfileStatus.active
    registered_at: float = Field(default_factory=lambda: time.time())
    updated_at: float = Field(default_factory=lambda: time.time())
    last_used_at: Optional[float] = None
    device_metadata: Dict[str, str] = Field(default_factory=dict)

    disabled_until: Optional[float] = None
    disabled_reason: Optional[str] = None
    disabled_by: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.status == FaceProfileStatus.active

    def reactivation_due(self, now: float) -> bool:
        return (
            self.status == FaceProfileStatus.temporarily_disabled
            and self.disabled_until is not None
            and float(self.disabled_until) <= float(now)
        )

    def eligible(self, now: float) -> bool:
        """Usable for matching: active, or temporarily disabled with the window elapsed."""
        return self.active or self.reactivation_due(now)


class FaceRegistration(BaseModel):
    model_config = ConfigDict(extra="forbid")

    descriptor: Optional[List[float]] = None
    face_data: Optional[str] = None
    confidence: float = Field(ge=0.0, le=100.0)
    device_info: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class FaceIdStatus(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str
    state: FaceIdState
    enabled: bool
    profile_id: Optional[str] = None
    confidence: Optional[float] = None
    registered_at: Optional[float] = None
    last_used_at: Optional[float] = None
    disabled_until: Optional[float] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class FaceMatch:
    profile: FaceProfile
    similarity: float

    @property
    def confidence(self) -> float:
        return round(float(self.similarity) * 100.0, 2)


@dataclass(frozen=True)
class DeviceDecision:
    allowed: bool
    known: bool
    requires_approval: bool
    device_class: str
    new_devices_in_window: int = 0
    reason: str = ""
