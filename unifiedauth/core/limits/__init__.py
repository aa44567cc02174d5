from unifiedauth.core.limits.limiter import LimitDecision, RateLimiter

__all__ = ["LimitDecision", "RateLimiter"]
