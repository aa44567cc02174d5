from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from unifiedauth.core.errors import AuthError
from unifiedauth.core.identity.models import ClientInfo, Identity, IdentitySnapshot
from unifiedauth.core.logger import get_logger
from unifiedauth.core.sessions.models import Session, TokenClaims
from unifiedauth.core.sessions.tokens import TokenIssuer


class SessionManager:
    """
    In-memory session table plus a revocation list keyed by session id.

    validate() and validate_token() only read; expired sessions and stale
    revocations are pruned on the write paths (create/revoke).
    """

    def __init__(
        self,
        *,
        tokens: TokenIssuer,
        session_ttl_seconds: int = 24 * 3600,
        revocation_retention_seconds: int = 8 * 24 * 3600,
        check_revocation: bool = True,
        time_fn: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ):
        self.tokens = tokens
        self.session_ttl_seconds = int(session_ttl_seconds)
        self.revocation_retention_seconds = int(revocation_retention_seconds)
        self.check_revocation = bool(check_revocation)
        self._time = time_fn
        self.logger = logger or get_logger()
        self._lock = threading.Lock()
        self._sessions: Dict[str, Session] = {}
        self._revoked: Dict[str, float] = {}

    def create(self, identity: Identity, method: str, client_info: Optional[ClientInfo] = None) -> Session:
        now = self._time()
        snapshot = IdentitySnapshot.of(identity)
        draft = Session(
            identity=snapshot,
            method=str(method),
            created_at=now,
            expires_at=now + self.session_ttl_seconds,
            client=client_info or ClientInfo(),
        )
        session = draft.model_copy(update={"token": self.tokens.issue(snapshot, session_id=draft.id)})
        with self._lock:
            self._prune_locked(now)
            self._sessions[session.id] = session
        return session

    def validate(self, session_id: str) -> Optional[Session]:
        with self._lock:
            s = self._sessions.get(str(session_id))
        if s is None or s.expired(self._time()):
            return None
        return s

    def revoke(self, session_id: str) -> Optional[Session]:
        """Removes the session and remembers its id; returns the revoked session, if any."""
        now = self._time()
        with self._lock:
            s = self._sessions.pop(str(session_id), None)
            if s is None:
                return None
            self._revoked[s.id] = now + self.revocation_retention_seconds
            self._prune_locked(now)
        return s

    def revoke_for_user(self, user_id: str) -> int:
        now = self._time()
        with self._lock:
            ids = [sid for sid, s in self._sessions.items() if s.identity.id == str(user_id)]
            for sid in ids:
                self._sessions.pop(sid, None)
                self._revoked[sid] = now + self.revocation_retention_seconds
        if ids:
            self.logger.info(f"[sessions] revoked {len(ids)} session(s) for user={user_id}")
        return len(ids)

    def is_revoked(self, session_id: str) -> bool:
        with self._lock:
            return str(session_id) in self._revoked

    def validate_token(self, token: str) -> Optional[TokenClaims]:
        try:
            claims = self.tokens.verify(token)
        except AuthError:
            return None
        if self.check_revocation and claims.sid and self.is_revoked(claims.sid):
            return None
        return claims

    def active_sessions(self, user_id: Optional[str] = None) -> List[Session]:
        now = self._time()
        with self._lock:
            items = list(self._sessions.values())
        return [s for s in items if not s.expired(now) and (user_id is None or s.identity.id == str(user_id))]

    def _prune_locked(self, now: float) -> None:
        for sid in [sid for sid, s in self._sessions.items() if s.expired(now)]:
            del self._sessions[sid]
        for sid in [sid for sid, until in self._revoked.items() if until <= now]:
            del self._revoked[sid]
