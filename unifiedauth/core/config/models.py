from __future__ import annotations

import ipaddress
import os
from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SessionsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    session_ttl_seconds: int = Field(default=24 * 3600, ge=60)
    revocation_retention_seconds: int = Field(default=8 * 24 * 3600, ge=60)


class TokensConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    secret: str = ""
    algorithm: str = "HS256"
    issuer: str = "unifiedauth"
    token_ttl_seconds: int = Field(default=7 * 24 * 3600, ge=60)
    check_revocation: bool = True
    qr_validity_seconds: int = Field(default=300, ge=10)
    qr_clock_skew_seconds: int = Field(default=30, ge=0)
    password_reset_ttl_seconds: int = Field(default=3600, ge=60)

    @field_validator("algorithm")
    @classmethod
    def _hmac_only(cls, v: str) -> str:
        if v not in {"HS256", "HS384", "HS512"}:
            raise ValueError("tokens.algorithm must be an HMAC algorithm (HS256/HS384/HS512).")
        return v


class RateLimitConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    window_seconds: float = Field(default=60.0, gt=0)
    max_events: int = Field(default=10, ge=1)


class PasswordConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    min_length: int = Field(default=8, ge=4)
    scrypt_n: int = Field(default=2**14, ge=2**10)
    scrypt_r: int = Field(default=8, ge=1)
    scrypt_p: int = Field(default=1, ge=1)


class FaceConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    similarity_threshold: float = Field(default=0.60, gt=0.0, le=1.0)
    min_registration_confidence: float = Field(default=75.0, ge=0.0, le=100.0)
    descriptor_length: int = Field(default=128, ge=0)
    enforce_adaptive_confidence: bool = True


class DevicesConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    max_new_devices: int = Field(default=3, ge=1)
    new_device_window_seconds: int = Field(default=24 * 3600, ge=60)
    enforce_on_face_login: bool = True
    notify_new_device: bool = True


class AnalyticsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    high_failure_rate: float = 0.3
    medium_failure_rate: float = 0.1
    high_device_count: int = 5
    medium_device_count: int = 3
    night_ratio_threshold: float = 0.3
    night_start_hour: int = Field(default=0, ge=0, le=23)
    night_end_hour: int = Field(default=6, ge=1, le=24)
    alert_low_failures: int = 10
    alert_high_failures: int = 50
    suspicious_window_seconds: int = Field(default=24 * 3600, ge=60)
    suspicious_failure_threshold: int = Field(default=3, ge=1)
    max_rows: int = Field(default=20000, ge=100)


class ProtectionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    enabled: bool = True
    failed_attempt_threshold: int = Field(default=5, ge=1)
    detection_window_seconds: int = Field(default=24 * 3600, ge=60)
    sweep_interval_seconds: float = Field(default=300.0, gt=0)
    check_on_failure: bool = True


class AuditConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    path_jsonl: str = os.path.join("logs", "audit", "auth_events.jsonl")
    sqlite_path: str = os.path.join("logs", "audit", "auth_index.sqlite")
    retention_days: int = Field(default=90, ge=1)
    verify_last_n: int = Field(default=2000, ge=1)


class BackendConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    timeout_seconds: float = Field(default=0.5, gt=0.0, le=5.0)
    max_workers: int = Field(default=8, ge=1)
    breaker_failures: int = Field(default=5, ge=1)
    breaker_window_seconds: int = Field(default=30, ge=1)
    breaker_cooldown_seconds: int = Field(default=10, ge=1)


class WebConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    enabled: bool = True
    bind_host: str = "127.0.0.1"
    port: int = Field(default=8000, ge=1, le=65535)
    allow_remote: bool = False
    allowed_origins: List[str] = Field(default_factory=list)

    @field_validator("bind_host")
    @classmethod
    def _host_is_ip(cls, v: str) -> str:
        if v == "localhost":
            return v
        ipaddress.ip_address(v)
        return v


class AuthConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    config_version: int = Field(default=1, ge=1)
    log_dir: str = "logs"
    log_level: str = "INFO"
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    tokens: TokensConfig = Field(default_factory=TokensConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    passwords: PasswordConfig = Field(default_factory=PasswordConfig)
    face: FaceConfig = Field(default_factory=FaceConfig)
    devices: DevicesConfig = Field(default_factory=DevicesConfig)
    analytics: AnalyticsConfig = Field(default_factory=AnalyticsConfig)
    protection: ProtectionConfig = Field(default_factory=ProtectionConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    web: WebConfig = Field(default_factory=WebConfig)
