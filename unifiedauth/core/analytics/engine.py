from __future__ import annotations

import logging
import threading
import time
from collections import Counter, defaultdict
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Optional

from unifiedauth.core.analytics.models import (
    AdaptiveFaceIdSettings,
    AlertSeverity,
    AnalyticsPeriod,
    DeviceCount,
    FaceIdAnalytics,
    MethodStats,
    ReasonCount,
    RiskLevel,
    RiskProfile,
    SecurityAlert,
    SecurityAnalytics,
    SuspiciousActivityReport,
    UserStats,
)
from unifiedauth.core.audit.models import UNKNOWN_USER, SYSTEM_ACTOR, AuditEntry, device_class_of
from unifiedauth.core.config.models import AnalyticsConfig
from unifiedauth.core.logger import get_logger

REQUIRED_CONFIDENCE = {RiskLevel.low: 75.0, RiskLevel.medium: 85.0, RiskLevel.high: 90.0}
LOW_CONFIDENCE_MARK = 80.0


def _login_attempts(entries: Iterable[AuditEntry]) -> List[AuditEntry]:
    return [e for e in entries if e.is_login_attempt]


def _real_user(user_id: str) -> bool:
    return user_id not in {UNKNOWN_USER, SYSTEM_ACTOR, ""}


class SecurityAnalyticsEngine:
    """
    Derives risk signals from audit history. Nothing here is a source of truth:
    every figure is recomputed from audit entries; the only state is a cache of
    adaptive face settings consulted on the face login path.
    """

    def __init__(
        self,
        *,
        audit: Any,
        directory: Any = None,
        face_store: Any = None,
        cfg: Optional[AnalyticsConfig] = None,
        time_fn: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ):
        self.audit = audit
        self.directory = directory
        self.face_store = face_store
        self.cfg = cfg or AnalyticsConfig()
        self._time = time_fn
        self.logger = logger or get_logger()
        self._lock = threading.Lock()
        self._adaptive: Dict[str, AdaptiveFaceIdSettings] = {}
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="auth-analytics")

    # ---- helpers ----
    def _since(self, period: AnalyticsPeriod) -> float:
        return self._time() - float(period.seconds)

    def hour_of(self, e: AuditEntry) -> int:
        if e.utc_offset_minutes is not None:
            return time.gmtime(float(e.timestamp) + int(e.utc_offset_minutes) * 60).tm_hour
        return time.localtime(float(e.timestamp)).tm_hour

    def is_night(self, e: AuditEntry) -> bool:
        return self.cfg.night_start_hour <= self.hour_of(e) < self.cfg.night_end_hour

    # ---- per identity ----
    def risk_profile(self, user_id: str, period: AnalyticsPeriod = AnalyticsPeriod.week, *, method: Optional[str] = None) -> RiskProfile:
        entries = self.audit.for_user(user_id, since=self._since(period))
        attempts = [e for e in _login_attempts(entries) if method is None or e.method == method]
        failed = [e for e in attempts if not e.success]
        ok = [e for e in attempts if e.success]
        failure_rate = (len(failed) / len(attempts)) if attempts else 0.0
        devices = sorted({device_class_of(e.device_info) for e in ok if e.device_info})
        night = [e for e in ok if self.is_night(e)]
        night_ratio = (len(night) / len(ok)) if ok else 0.0

        anomalies: List[str] = []
        recommendations: List[str] = []
        if night_ratio > self.cfg.night_ratio_threshold:
            anomalies.append("night_logins")
            recommendations.append("Many night-time logins; require additional verification.")
        if len(devices) > self.cfg.medium_device_count:
            anomalies.append("many_devices")
        if len(devices) > self.cfg.high_device_count:
            recommendations.append("Too many devices in use; run a security review.")

        if failure_rate > self.cfg.high_failure_rate or len(devices) > self.cfg.high_device_count:
            level = RiskLevel.high
        elif failure_rate > self.cfg.medium_failure_rate or anomalies:
            level = RiskLevel.medium
        else:
            level = RiskLevel.low

        if failure_rate > self.cfg.high_failure_rate:
            recommendations.append("Re-register Face ID.")
            recommendations.append("Enable an additional authentication factor.")
        elif failure_rate > self.cfg.medium_failure_rate:
            recommendations.append("Check lighting conditions when using Face ID.")

        return RiskProfile(
            user_id=user_id,
            period=period,
            method=method,
            total_attempts=len(attempts),
            failed_attempts=len(failed),
            failure_rate=round(failure_rate, 4),
            successful_logins=len(ok),
            night_logins=len(night),
            night_ratio=round(night_ratio, 4),
            device_set=devices,
            risk_level=level,
            required_confidence=REQUIRED_CONFIDENCE[level],
            anomalies=anomalies,
            recommendations=recommendations,
            computed_at=self._time(),
        )

    def adaptive_face_settings(self, user_id: str, period: AnalyticsPeriod = AnalyticsPeriod.week) -> AdaptiveFaceIdSettings:
        try:
            rp = self.risk_profile(user_id, period, method="face_id")
            settings = AdaptiveFaceIdSettings(
                user_id=user_id,
                risk_level=rp.risk_level,
                required_confidence=rp.required_confidence,
                allowed_devices=rp.device_set,
                recommendations=rp.recommendations,
                computed_at=rp.computed_at,
            )
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"[analytics] adaptive settings failed for user={user_id}: {e}")
            return AdaptiveFaceIdSettings(
                user_id=user_id,
                risk_level=RiskLevel.medium,
                required_confidence=REQUIRED_CONFIDENCE[RiskLevel.medium],
                recommendations=["Analysis failed; review this account manually."],
                computed_at=self._time(),
            )
        with self._lock:
            self._adaptive[user_id] = settings
        return settings

    def required_confidence(self, user_id: str) -> float:
        with self._lock:
            cached = self._adaptive.get(user_id)
        return cached.required_confidence if cached else REQUIRED_CONFIDENCE[RiskLevel.low]

    def schedule_refresh(self, user_id: str) -> Optional[Future]:
        try:
            fut = self._executor.submit(self.adaptive_face_settings, user_id)
        except RuntimeError:
            return None
        fut.add_done_callback(self._log_failure)
        return fut

    def _log_failure(self, fut: Future) -> None:
        if not fut.cancelled() and fut.exception() is not None:
            self.logger.error(f"[analytics] refresh failed: {fut.exception()}")

    def user_stats(self, user_id: str) -> UserStats:
        attempts = _login_attempts(self.audit.for_user(user_id))
        ok = [e for e in attempts if e.success]
        by_method = Counter(e.method for e in ok)
        ident = self.directory.get_by_id(user_id) if self.directory is not None else None
        return UserStats(
            user_id=user_id,
            total_logins=len(attempts),
            successful_logins=len(ok),
            failed_logins=len(attempts) - len(ok),
            logins_by_method=dict(by_method),
            preferred_method=by_method.most_common(1)[0][0] if by_method else None,
            last_login_at=max((e.timestamp for e in ok), default=None),
            face_id_enabled=bool(ident.face_id_enabled) if ident else False,
        )

    # ---- system wide ----
    def _count_alert(self, type: str, label: str, count: int, period: AnalyticsPeriod) -> Optional[SecurityAlert]:
        if count > self.cfg.alert_high_failures:
            severity = AlertSeverity.high
        elif count > self.cfg.alert_low_failures:
            severity = AlertSeverity.low
        else:
            return None
        return SecurityAlert(type=type, severity=severity, message=f"{count} failed {label} attempts in the last {period.value}", count=count)

    def system_analytics(self, period: AnalyticsPeriod = AnalyticsPeriod.week) -> SecurityAnalytics:
        since = self._since(period)
        attempts = _login_attempts(self.audit.since(since))
        ok = [e for e in attempts if e.success]
        failed = [e for e in attempts if not e.success]

        methods: Dict[str, MethodStats] = defaultdict(MethodStats)
        hourly = [0] * 24
        for e in attempts:
            ms = methods[e.method]
            ms.total += 1
            if e.success:
                ms.successful += 1
            else:
                ms.failed += 1
            hourly[self.hour_of(e)] += 1

        reasons = Counter(e.reason.value for e in failed if e.reason is not None)
        alerts = [
            a
            for a in (
                self._count_alert("failed_face_id", "Face ID", sum(1 for e in failed if e.method == "face_id"), period),
                self._count_alert("failed_password", "password", sum(1 for e in failed if e.method == "password"), period),
            )
            if a is not None
        ]
        return SecurityAnalytics(
            period=period,
            since=since,
            total_attempts=len(attempts),
            successful_logins=len(ok),
            failed_logins=len(failed),
            success_rate=round(len(ok) / len(attempts), 4) if attempts else 0.0,
            unique_users=len({e.user_id for e in attempts if _real_user(e.user_id)}),
            method_breakdown=dict(methods),
            hourly_distribution=hourly,
            top_failure_reasons=[ReasonCount(reason=r, count=c) for r, c in reasons.most_common(5)],
            alerts=alerts,
        )

    def face_id_analytics(self, user_id: Optional[str] = None, period: AnalyticsPeriod = AnalyticsPeriod.month) -> FaceIdAnalytics:
        profiles = []
        if self.face_store is not None:
            profiles = self.face_store.list_by_user_id(user_id) if user_id else self.face_store.get_all()
        active = [p for p in profiles if p.active]
        since = self._since(period)
        entries = self.audit.for_user(user_id, since=since) if user_id else self.audit.since(since, method="face_id")
        face = [e for e in _login_attempts(entries) if e.method == "face_id"]
        ok = [e for e in face if e.success]
        confidences = [float(e.confidence) for e in ok if getattr(e, "confidence", None) is not None]
        low = sum(1 for c in confidences if c < LOW_CONFIDENCE_MARK)
        devices = Counter(device_class_of(e.device_info) for e in ok if e.device_info)

        alerts: List[SecurityAlert] = []
        if low > 5:
            alerts.append(
                SecurityAlert(
                    type="low_confidence",
                    severity=AlertSeverity.medium,
                    message=f"{low} Face ID logins below {LOW_CONFIDENCE_MARK:.0f}% confidence",
                    count=low,
                )
            )
        failed_alert = self._count_alert("failed_face_id", "Face ID", len(face) - len(ok), period)
        if failed_alert is not None:
            alerts.append(failed_alert)

        return FaceIdAnalytics(
            user_id=user_id,
            total_profiles=len(profiles),
            active_profiles=len(active),
            average_registration_confidence=round(sum(p.confidence for p in active) / len(active), 2) if active else 0.0,
            face_login_attempts=len(face),
            face_login_successes=len(ok),
            success_rate=round(len(ok) / len(face), 4) if face else 0.0,
            average_login_confidence=round(sum(confidences) / len(confidences), 2) if confidences else 0.0,
            low_confidence_logins=low,
            top_devices=[DeviceCount(device=d, count=c) for d, c in devices.most_common(5)],
            alerts=alerts,
        )

    def detect_suspicious_activity(self, user_id: Optional[str] = None) -> SuspiciousActivityReport:
        window = int(self.cfg.suspicious_window_seconds)
        since = self._time() - float(window)
        if user_id:
            recent = _login_attempts(self.audit.for_user(user_id, since=since))
        else:
            recent = _login_attempts(self.audit.since(since))

        failed = [e for e in recent if not e.success]
        per_user = Counter(e.user_id for e in failed if _real_user(e.user_id))
        multiple = {u: c for u, c in per_user.items() if c >= self.cfg.suspicious_failure_threshold}
        ok = [e for e in recent if e.success]
        night = [e for e in ok if self.is_night(e)]

        new_device: List[AuditEntry] = []
        for uid in sorted({e.user_id for e in ok if e.device_info}):
            history = [e for e in self.audit.for_user(uid) if e.success and e.is_login_attempt and e.device_info]
            first_seen: Dict[str, float] = {}
            for e in history:
                cls = device_class_of(e.device_info)
                first_seen[cls] = min(first_seen.get(cls, e.timestamp), e.timestamp)
            for e in ok:
                if e.user_id == uid and e.device_info and first_seen.get(device_class_of(e.device_info)) == e.timestamp and e.timestamp >= since:
                    new_device.append(e)

        recommendations: List[str] = []
        if multiple:
            recommendations.append("Block or review accounts with repeated failed logins.")
        if night:
            recommendations.append("Confirm night-time logins with the account owners.")
        if new_device:
            recommendations.append("Ask users to confirm logins from new devices.")

        return SuspiciousActivityReport(
            user_id=user_id,
            window_seconds=window,
            suspicious_logins=failed,
            multiple_failed_attempts=multiple,
            unusual_login_times=night,
            new_device_logins=new_device,
            recommendations=recommendations,
        )

    def failed_logins_by_user(self, since: float) -> Dict[str, List[AuditEntry]]:
        out: Dict[str, List[AuditEntry]] = defaultdict(list)
        for e in self.audit.since(since, success=False):
            if e.is_login_attempt and _real_user(e.user_id):
                out[e.user_id].append(e)
        return dict(out)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
