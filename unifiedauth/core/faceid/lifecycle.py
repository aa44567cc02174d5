from __future__ import annotations

import contextlib
import logging
import time
from typing import Any, Callable, Dict, Iterator, Optional

import numpy as np

from unifiedauth.core.audit.models import AuditAction, FaceAttempt, device_class_of, quality_tier
from unifiedauth.core.errors import AuthError, FailureReason, NotFoundError, ValidationError
from unifiedauth.core.faceid.models import (
    FaceIdState,
    FaceIdStatus,
    FaceProfile,
    FaceProfileStatus,
    FaceRegistration,
)
from unifiedauth.core.faceid.similarity import resolve_descriptor
from unifiedauth.core.logger import get_logger

MAX_TEMPORARY_DISABLE_MINUTES = 30 * 24 * 60

_STATE_BY_STATUS = {
    FaceProfileStatus.active: FaceIdState.active,
    FaceProfileStatus.temporarily_disabled: FaceIdState.temporarily_disabled,
    FaceProfileStatus.deactivated: FaceIdState.deactivated,
    FaceProfileStatus.pending_reregistration: FaceIdState.pending_reregistration,
}


class FaceIdLifecycle:
    """
    Registration and state changes for a user's biometric credential.

    Every operation writes exactly one face_id audit entry, success or failure,
    attributed to the acting identity (the user themself unless an admin or the
    system acted).
    """

    def __init__(
        self,
        *,
        store: Any,
        directory: Any,
        audit: Any,
        min_confidence: float = 75.0,
        descriptor_length: int = 128,
        time_fn: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.directory = directory
        self.audit = audit
        self.min_confidence = float(min_confidence)
        self.descriptor_length = int(descriptor_length)
        self._time = time_fn
        self.logger = logger or get_logger()

    # ---- audit helpers ----
    def _record(
        self,
        action: AuditAction,
        user_id: str,
        *,
        success: bool,
        actor: Optional[str],
        reason: Optional[FailureReason] = None,
        confidence: Optional[float] = None,
        device_info: Optional[str] = None,
        details: Optional[str] = None,
    ) -> None:
        self.audit.record(
            FaceAttempt(
                timestamp=self._time(),
                user_id=str(user_id),
                actor_id=actor,
                action=action,
                success=success,
                reason=reason,
                confidence=confidence,
                quality=quality_tier(confidence),
                device_info=device_info,
                device_class=device_class_of(device_info) if device_info else None,
                details=details,
            )
        )

    @contextlib.contextmanager
    def _audited(
        self,
        action: AuditAction,
        user_id: str,
        *,
        actor: Optional[str],
        confidence: Optional[float] = None,
        device_info: Optional[str] = None,
    ) -> Iterator[Dict[str, Any]]:
        out: Dict[str, Any] = {"details": None}
        try:
            yield out
        except AuthError as e:
            self._record(action, user_id, success=False, actor=actor, reason=e.reason, confidence=confidence, device_info=device_info, details=e.user_message)
            raise
        except Exception as e:
            self._record(action, user_id, success=False, actor=actor, reason=FailureReason.INTERNAL_ERROR, confidence=confidence, device_info=device_info, details=e.__class__.__name__)
            raise
        self._record(action, user_id, success=True, actor=actor, confidence=confidence, device_info=device_info, details=out.get("details"))

    def reject(self, action: AuditAction, user_id: str, err: AuthError, *, actor: Optional[str] = None) -> None:
        """Records a request that was refused before it reached a transition (malformed input)."""
        self._record(action, user_id, success=False, actor=actor or user_id, reason=err.reason, details=err.user_message)

    # ---- validation ----
    def _require_user(self, user_id: str) -> None:
        if self.directory.get_by_id(user_id) is None:
            raise NotFoundError("User not found.", user_id=user_id)

    def _descriptor(self, registration: FaceRegistration) -> np.ndarray:
        if float(registration.confidence) < self.min_confidence:
            raise ValidationError(
                "Face quality is too low for registration. Please try again in better lighting.",
                confidence=registration.confidence,
                required=self.min_confidence,
            )
        vec = resolve_descriptor(registration.descriptor, registration.face_data)
        if self.descriptor_length and vec.size != self.descriptor_length:
            raise ValidationError("Face descriptor has the wrong length.", expected=self.descriptor_length, got=int(vec.size))
        return vec

    @staticmethod
    def _metadata(registration: FaceRegistration) -> Dict[str, str]:
        meta = {str(k): str(v) for k, v in (registration.metadata or {}).items()}
        if registration.device_info:
            meta.setdefault("device_info", registration.device_info)
            meta.setdefault("device_class", device_class_of(registration.device_info))
        return meta

    # ---- transitions ----
    def register(self, user_id: str, registration: FaceRegistration, *, actor: Optional[str] = None) -> FaceProfile:
        with self._audited(
            AuditAction.face_id_registered,
            user_id,
            actor=actor or user_id,
            confidence=registration.confidence,
            device_info=registration.device_info,
        ) as out:
            self._require_user(user_id)
            vec = self._descriptor(registration)
            current = self.store.get_by_user_id(user_id)
            if current is not None and current.status == FaceProfileStatus.temporarily_disabled:
                if not current.reactivation_due(self._time()):
                    raise ValidationError("Face ID is temporarily disabled.", disabled_until=current.disabled_until)
                self.store.reactivate(current.id)
            profile, created = self.store.replace_active(
                user_id=user_id,
                descriptor=vec.tolist(),
                confidence=float(registration.confidence),
                device_metadata=self._metadata(registration),
            )
            self.directory.update_face_id_flag(user_id, True)
            out["details"] = "created" if created else "replaced active profile"
        self.logger.info(f"[faceid] registered user={user_id} profile={profile.id} created={created}")
        return profile

    def update(self, user_id: str, registration: FaceRegistration, *, actor: Optional[str] = None) -> FaceProfile:
        with self._audited(
            AuditAction.face_id_updated,
            user_id,
            actor=actor or user_id,
            confidence=registration.confidence,
            device_info=registration.device_info,
        ):
            current = self.store.get_by_user_id(user_id)
            if current is None or not current.active:
                raise NotFoundError("No active Face ID profile to update.", user_id=user_id)
            vec = self._descriptor(registration)
            profile = self.store.update(
                current.id,
                descriptor=vec.tolist(),
                confidence=float(registration.confidence),
                device_metadata=self._metadata(registration),
            )
        return profile

    def disable(self, user_id: str, *, actor: str, reason: Optional[str] = None) -> FaceProfile:
        with self._audited(AuditAction.face_id_disabled, user_id, actor=actor) as out:
            current = self.store.get_by_user_id(user_id)
            if current is None or current.status == FaceProfileStatus.deactivated:
                raise NotFoundError("No Face ID profile to disable.", user_id=user_id)
            profile = self.store.deactivate(current.id, actor)
            self.directory.update_face_id_flag(user_id, False)
            out["details"] = reason or "disabled"
        return profile

    def temporary_disable(self, user_id: str, *, minutes: int, reason: str, actor: str) -> FaceProfile:
        with self._audited(AuditAction.face_id_temporarily_disabled, user_id, actor=actor) as out:
            if int(minutes) <= 0 or int(minutes) > MAX_TEMPORARY_DISABLE_MINUTES:
                raise ValidationError("Disable duration is out of range.", minutes=minutes)
            current = self.store.get_by_user_id(user_id)
            if current is None or not current.eligible(self._time()):
                raise NotFoundError("No active Face ID profile to disable.", user_id=user_id)
            until = self._time() + int(minutes) * 60.0
            profile = self.store.temporary_disable(current.id, until, reason, actor)
            out["details"] = f"{reason} (for {int(minutes)} min)"
        return profile

    def force_reregistration(self, user_id: str, *, reason: str, actor: str) -> FaceProfile:
        with self._audited(AuditAction.face_id_reregistration_required, user_id, actor=actor) as out:
            current = self.store.get_by_user_id(user_id)
            if current is None or current.status == FaceProfileStatus.deactivated:
                raise NotFoundError("No Face ID profile to reset.", user_id=user_id)
            profile = self.store.mark_pending_reregistration(current.id, reason, actor)
            self.directory.update_face_id_flag(user_id, False)
            out["details"] = reason
        return profile

    # ---- read side ----
    def status(self, user_id: str) -> FaceIdStatus:
        ident = self.directory.get_by_id(user_id)
        if ident is None:
            raise NotFoundError("User not found.", user_id=user_id)
        p = self.store.get_by_user_id(user_id)
        if p is None:
            return FaceIdStatus(user_id=user_id, state=FaceIdState.unregistered, enabled=bool(ident.face_id_enabled))
        state = FaceIdState.active if p.reactivation_due(self._time()) else _STATE_BY_STATUS[p.status]
        return FaceIdStatus(
            user_id=user_id,
            state=state,
            enabled=bool(ident.face_id_enabled),
            profile_id=p.id,
            confidence=p.confidence,
            registered_at=p.registered_at,
            last_used_at=p.last_used_at,
            disabled_until=p.disabled_until if state == FaceIdState.temporarily_disabled else None,
            reason=p.disabled_reason if state != FaceIdState.active else None,
        )
