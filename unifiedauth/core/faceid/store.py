from __future__ import annotations

import threading
import time
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from unifiedauth.core.errors import NotFoundError
from unifiedauth.core.faceid.models import FaceMatch, FaceProfile, FaceProfileStatus
from unifiedauth.core.faceid.similarity import best_match


class FaceProfileStore(Protocol):
    def find_by_descriptor(self, descriptor: Sequence[float], threshold: float, *, now: float) -> Optional[FaceMatch]: ...

    def get_by_user_id(self, user_id: str) -> Optional[FaceProfile]: ...

    def list_by_user_id(self, user_id: str) -> List[FaceProfile]: ...

    def create(self, *, user_id: str, descriptor: Sequence[float], confidence: float, device_metadata: Dict[str, str]) -> FaceProfile: ...

    def update(self, profile_id: str, *, descriptor: Sequence[float], confidence: float, device_metadata: Dict[str, str]) -> FaceProfile: ...

    def replace_active(self, *, user_id: str, descriptor: Sequence[float], confidence: float, device_metadata: Dict[str, str]) -> Tuple[FaceProfile, bool]: ...

    def deactivate(self, profile_id: str, actor: str) -> FaceProfile: ...

    def temporary_disable(self, profile_id: str, until: float, reason: str, actor: str) -> FaceProfile: ...

    def mark_pending_reregistration(self, profile_id: str, reason: str, actor: str) -> FaceProfile: ...

    def reactivate(self, profile_id: str) -> FaceProfile: ...

    def touch(self, profile_id: str, ts: float) -> None: ...

    def get_all(self) -> List[FaceProfile]: ...


class InMemoryFaceProfileStore:
    """
    Profiles are never deleted; disabling only changes status. At most one profile
    per user is ever in the active state, enforced by replace_active under the store lock.
    """

    def __init__(self, *, time_fn: Callable[[], float] = time.time):
        self._lock = threading.Lock()
        self._time = time_fn
        self._profiles: Dict[str, FaceProfile] = {}

    def _require(self, profile_id: str) -> FaceProfile:
        p = self._profiles.get(str(profile_id))
        if p is None:
            raise NotFoundError("Face profile not found.", profile_id=profile_id)
        return p

    def _user_profiles_locked(self, user_id: str) -> List[FaceProfile]:
        items = [p for p in self._profiles.values() if p.user_id == str(user_id)]
        items.sort(key=lambda p: (p.updated_at, p.registered_at))
        return items

    def find_by_descriptor(self, descriptor: Sequence[float], threshold: float, *, now: float) -> Optional[FaceMatch]:
        with self._lock:
            candidates = [p for p in self._profiles.values() if p.eligible(now)]
            if not candidates:
                return None
            i, sim = best_match(descriptor, [p.descriptor for p in candidates])
            if i < 0 or sim < float(threshold):
                return None
            return FaceMatch(profile=candidates[i].model_copy(deep=True), similarity=sim)

    def get_by_user_id(self, user_id: str) -> Optional[FaceProfile]:
        """The active profile if there is one, else the most recently changed."""
        with self._lock:
            items = self._user_profiles_locked(user_id)
            if not items:
                return None
            active = [p for p in items if p.active]
            return (active[-1] if active else items[-1]).model_copy(deep=True)

    def list_by_user_id(self, user_id: str) -> List[FaceProfile]:
        with self._lock:
            return [p.model_copy(deep=True) for p in self._user_profiles_locked(user_id)]

    def create(self, *, user_id: str, descriptor: Sequence[float], confidence: float, device_metadata: Dict[str, str]) -> FaceProfile:
        with self._lock:
            return self._create_locked(user_id, descriptor, confidence, device_metadata).model_copy(deep=True)

    def _create_locked(self, user_id: str, descriptor: Sequence[float], confidence: float, device_metadata: Dict[str, str]) -> FaceProfile:
        now = self._time()
        p = FaceProfile(
            user_id=str(user_id),
            descriptor=[float(x) for x in descriptor],
            confidence=float(confidence),
            registered_at=now,
            updated_at=now,
            device_metadata=dict(device_metadata or {}),
        )
        self._profiles[p.id] = p
        return p

    def update(self, profile_id: str, *, descriptor: Sequence[float], confidence: float, device_metadata: Dict[str, str]) -> FaceProfile:
        with self._lock:
            p = self._require(profile_id)
            p.descriptor = [float(x) for x in descriptor]
            p.confidence = float(confidence)
            p.device_metadata = dict(device_metadata or {})
            p.updated_at = self._time()
            return p.model_copy(deep=True)

    def replace_active(self, *, user_id: str, descriptor: Sequence[float], confidence: float, device_metadata: Dict[str, str]) -> Tuple[FaceProfile, bool]:
        with self._lock:
            active = [p for p in self._user_profiles_locked(user_id) if p.active]
            if not active:
                return self._create_locked(user_id, descriptor, confidence, device_metadata).model_copy(deep=True), True
            keep = active[-1]
            for extra in active[:-1]:
                extra.status = FaceProfileStatus.deactivated
                extra.disabled_reason = "superseded"
            keep.descriptor = [float(x) for x in descriptor]
            keep.confidence = float(confidence)
            keep.device_metadata = dict(device_metadata or {})
            keep.updated_at = self._time()
            return keep.model_copy(deep=True), False

    def _set_status(self, profile_id: str, status: FaceProfileStatus, *, until: Optional[float], reason: Optional[str], actor: Optional[str]) -> FaceProfile:
        with self._lock:
            p = self._require(profile_id)
            p.status = status
            p.disabled_until = until
            p.disabled_reason = reason
            p.disabled_by = actor
            p.updated_at = self._time()
            return p.model_copy(deep=True)

    def deactivate(self, profile_id: str, actor: str) -> FaceProfile:
        return self._set_status(profile_id, FaceProfileStatus.deactivated, until=None, reason="disabled", actor=actor)

    def temporary_disable(self, profile_id: str, until: float, reason: str, actor: str) -> FaceProfile:
        return self._set_status(profile_id, FaceProfileStatus.temporarily_disabled, until=float(until), reason=reason, actor=actor)

    def mark_pending_reregistration(self, profile_id: str, reason: str, actor: str) -> FaceProfile:
        return self._set_status(profile_id, FaceProfileStatus.pending_reregistration, until=None, reason=reason, actor=actor)

    def reactivate(self, profile_id: str) -> FaceProfile:
        return self._set_status(profile_id, FaceProfileStatus.active, until=None, reason=None, actor=None)

    def touch(self, profile_id: str, ts: float) -> None:
        with self._lock:
            self._require(profile_id).last_used_at = float(ts)

    def get_all(self) -> List[FaceProfile]:
        with self._lock:
            return [p.model_copy(deep=True) for p in self._profiles.values()]
