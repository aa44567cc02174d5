from unifiedauth.core.sessions.manager import SessionManager
from unifiedauth.core.sessions.models import Session, TokenClaims
from unifiedauth.core.sessions.tokens import QR_AUDIENCE, RESET_AUDIENCE, SESSION_AUDIENCE, TokenIssuer

__all__ = ["QR_AUDIENCE", "RESET_AUDIENCE", "SESSION_AUDIENCE", "Session", "SessionManager", "TokenClaims", "TokenIssuer"]
