from unifiedauth.core.analytics.engine import REQUIRED_CONFIDENCE, SecurityAnalyticsEngine
from unifiedauth.core.analytics.models import (
    AdaptiveFaceIdSettings,
    AlertSeverity,
    AnalyticsPeriod,
    FaceIdAnalytics,
    RiskLevel,
    RiskProfile,
    SecurityAlert,
    SecurityAnalytics,
    SuspiciousActivityReport,
    UserStats,
)

__all__ = [
    "REQUIRED_CONFIDENCE",
    "AdaptiveFaceIdSettings",
    "AlertSeverity",
    "AnalyticsPeriod",
    "FaceIdAnalytics",
    "RiskLevel",
    "RiskProfile",
    "SecurityAlert",
    "SecurityAnalytics",
    "SecurityAnalyticsEngine",
    "SuspiciousActivityReport",
    "UserStats",
]
