from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

from unifiedauth.core.audit.models import AuditAction, SecurityAction
from unifiedauth.core.errors import AuthError, FailureReason, NotFoundError
from unifiedauth.core.logger import get_logger
from unifiedauth.core.notifications import NotificationType


class AccountAdmin:
    """
    Block/unblock with their side effects: sessions of a blocked user are revoked,
    the user is notified, and exactly one audit entry is written per call.
    """

    def __init__(
        self,
        *,
        directory: Any,
        sessions: Any,
        audit: Any,
        notifier: Any,
        time_fn: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ):
        self.directory = directory
        self.sessions = sessions
        self.audit = audit
        self.notifier = notifier
        self._time = time_fn
        self.logger = logger or get_logger()

    def _record(self, action: AuditAction, user_id: str, *, actor: str, success: bool, details: str, reason: Optional[FailureReason] = None) -> None:
        self.audit.record(
            SecurityAction(
                timestamp=self._time(),
                user_id=str(user_id),
                actor_id=str(actor),
                action=action,
                success=success,
                reason=reason,
                details=details,
            )
        )

    def block(
        self,
        user_id: str,
        *,
        reason: str,
        actor: str,
        notification: NotificationType = NotificationType.account_blocked,
    ) -> bool:
        try:
            if self.directory.get_by_id(user_id) is None:
                raise NotFoundError("User not found.", user_id=user_id)
            changed = bool(self.directory.block_user(user_id, reason, actor))
        except AuthError as e:
            self._record(AuditAction.user_blocked, user_id, actor=actor, success=False, details=e.user_message, reason=e.reason)
            raise
        except Exception as e:
            self._record(AuditAction.user_blocked, user_id, actor=actor, success=False, details=e.__class__.__name__, reason=FailureReason.INTERNAL_ERROR)
            raise
        if changed:
            revoked = self.sessions.revoke_for_user(user_id)
            self.notifier.send(user_id, notification, {"reason": reason, "actor": actor, "revoked_sessions": revoked})
            self.logger.warning(f"[accounts] user={user_id} blocked by {actor}: {reason}")
        self._record(AuditAction.user_blocked, user_id, actor=actor, success=True, details=reason if changed else f"{reason} (already blocked)")
        return changed

    def unblock(self, user_id: str, *, actor: str) -> bool:
        try:
            if self.directory.get_by_id(user_id) is None:
                raise NotFoundError("User not found.", user_id=user_id)
            changed = bool(self.directory.unblock_user(user_id, actor))
        except AuthError as e:
            self._record(AuditAction.user_unblocked, user_id, actor=actor, success=False, details=e.user_message, reason=e.reason)
            raise
        except Exception as e:
            self._record(AuditAction.user_unblocked, user_id, actor=actor, success=False, details=e.__class__.__name__, reason=FailureReason.INTERNAL_ERROR)
            raise
        if changed:
            self.logger.info(f"[accounts] user={user_id} unblocked by {actor}")
        self._record(AuditAction.user_unblocked, user_id, actor=actor, success=True, details="unblocked" if changed else "already active")
        return changed
