from __future__ import annotations

import time
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from unifiedauth.core.audit.models import AuditEntry

DAY = 86400


class AnalyticsPeriod(str, Enum):
    day = "day"
    week = "week"
    month = "month"

    @property
    def seconds(self) -> int:
        return {"day": DAY, "week": 7 * DAY, "month": 30 * DAY}[self.value]


class RiskLevel(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class AlertSeverity(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class RiskProfile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str
    period: AnalyticsPeriod
    method: Optional[str] = None
    total_attempts: int = 0
    failed_attempts: int = 0
    failure_rate: float = 0.0
    successful_logins: int = 0
    night_logins: int = 0
    night_ratio: float = 0.0
    device_set: List[str] = Field(default_factory=list)
    risk_level: RiskLevel = RiskLevel.low
    required_confidence: float = 75.0
    anomalies: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    computed_at: float = Field(default_factory=lambda: time.time())


class AdaptiveFaceIdSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str
    risk_level: RiskLevel
    required_confidence: float
    allowed_devices: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    computed_at: float = Field(default_factory=lambda: time.time())


class SecurityAlert(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: str
    severity: AlertSeverity
    message: str
    count: int = 0


class MethodStats(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total: int = 0
    successful: int = 0
    failed: int = 0


class ReasonCount(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str
    count: int


class SecurityAnalytics(BaseModel):
    model_config = ConfigDict(extra="forbid")

    period: AnalyticsPeriod
    since: float
    total_attempts: int = 0
    successful_logins: int = 0
    failed_logins: int = 0
    success_rate: float = 0.0
    unique_users: int = 0
    method_breakdown: Dict[str, MethodStats] = Field(default_factory=dict)
    hourly_distribution: List[int] = Field(default_factory=lambda: [0] * 24)
    top_failure_reasons: List[ReasonCount] = Field(default_factory=list)
    alerts: List[SecurityAlert] = Field(default_factory=list)


class UserStats(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str
    total_logins: int = 0
    successful_logins: int = 0
    failed_logins: int = 0
    logins_by_method: Dict[str, int] = Field(default_factory=dict)
    preferred_method: Optional[str] = None
    last_login_at: Optional[float] = None
    face_id_enabled: bool = False


class DeviceCount(BaseModel):
    model_config = ConfigDict(extra="forbid")

    device: str
    count: int


class FaceIdAnalytics(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: Optional[str] = None
    total_profiles: int = 0
    active_profiles: int = 0
    average_registration_confidence: float = 0.0
    face_login_attempts: int = 0
    face_login_successes: int = 0
    success_rate: float = 0.0
    average_login_confidence: float = 0.0
    low_confidence_logins: int = 0
    top_devices: List[DeviceCount] = Field(default_factory=list)
    alerts: List[SecurityAlert] = Field(default_factory=list)


class SuspiciousActivityReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: Optional[str] = None
    window_seconds: int
    suspicious_logins: List[AuditEntry] = Field(default_factory=list)
    multiple_failed_attempts: Dict[str, int] = Field(default_factory=dict)
    unusual_login_times: List[AuditEntry] = Field(default_factory=list)
    new_device_logins: List[AuditEntry] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)

    @property
    def has_findings(self) -> bool:
        return bool(self.suspicious_logins or self.multiple_failed_attempts or self.unusual_login_times or self.new_device_logins)
