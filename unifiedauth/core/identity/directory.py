from __future__ import annotations

import threading
import time
from typing import Callable, Dict, List, Optional, Protocol

from unifiedauth.core.errors import NotFoundError, ValidationError
from unifiedauth.core.identity.models import Identity, UserRole


def normalize_email(email: str) -> str:
    return str(email or "").strip().lower()


class UserDirectory(Protocol):
    def get_by_email(self, email: str) -> Optional[Identity]: ...

    def get_by_id(self, user_id: str) -> Optional[Identity]: ...

    def update_last_login(self, user_id: str, ts: float) -> None: ...

    def update_password(self, user_id: str, password_hash: str) -> None: ...

    def block_user(self, user_id: str, reason: str, actor: str) -> bool: ...

    def unblock_user(self, user_id: str, actor: str) -> bool: ...

    def update_face_id_flag(self, user_id: str, enabled: bool) -> None: ...

    def list_users(self) -> List[Identity]: ...


class InMemoryUserDirectory:
    """
    Thread-safe in-process directory.

    Reads hand out copies; the only way to change a record is through the mutators,
    each of which runs under the directory lock.
    """

    def __init__(self, *, time_fn: Callable[[], float] = time.time):
        self._lock = threading.Lock()
        self._time = time_fn
        self._by_id: Dict[str, Identity] = {}
        self._by_email: Dict[str, str] = {}

    def add_user(
        self,
        *,
        email: str,
        password_hash: str = "",
        display_name: str = "",
        role: UserRole = UserRole.user,
        active: bool = True,
        user_id: Optional[str] = None,
    ) -> Identity:
        key = normalize_email(email)
        if not key or "@" not in key:
            raise ValidationError("A valid email is required.", field="email")
        with self._lock:
            if key in self._by_email:
                raise ValidationError("Email already registered.", field="email")
            kwargs = {"id": user_id} if user_id else {}
            ident = Identity(
                email=key,
                password_hash=password_hash,
                display_name=display_name or key.split("@")[0],
                role=role,
                active=active,
                created_at=self._time(),
                **kwargs,
            )
            self._by_id[ident.id] = ident
            self._by_email[key] = ident.id
            return ident.model_copy(deep=True)

    def get_by_email(self, email: str) -> Optional[Identity]:
        with self._lock:
            uid = self._by_email.get(normalize_email(email))
            ident = self._by_id.get(uid) if uid else None
            return ident.model_copy(deep=True) if ident else None

    def get_by_id(self, user_id: str) -> Optional[Identity]:
        with self._lock:
            ident = self._by_id.get(str(user_id))
            return ident.model_copy(deep=True) if ident else None

    def _require(self, user_id: str) -> Identity:
        ident = self._by_id.get(str(user_id))
        if ident is None:
            raise NotFoundError("User not found.", user_id=user_id)
        return ident

    def update_last_login(self, user_id: str, ts: float) -> None:
        with self._lock:
            self._require(user_id).last_login_at = float(ts)

    def update_password(self, user_id: str, password_hash: str) -> None:
        with self._lock:
            self._require(user_id).password_hash = str(password_hash)

    def block_user(self, user_id: str, reason: str, actor: str) -> bool:
        with self._lock:
            ident = self._require(user_id)
            if not ident.active:
                return False
            ident.active = False
            ident.blocked_reason = str(reason)
            ident.blocked_by = str(actor)
            ident.blocked_at = self._time()
            return True

    def unblock_user(self, user_id: str, actor: str) -> bool:
        with self._lock:
            ident = self._require(user_id)
            if ident.active:
                return False
            ident.active = True
            ident.blocked_reason = None
            ident.blocked_by = None
            ident.blocked_at = None
            return True

    def update_face_id_flag(self, user_id: str, enabled: bool) -> None:
        with self._lock:
            self._require(user_id).face_id_enabled = bool(enabled)

    def list_users(self) -> List[Identity]:
        with self._lock:
            return [i.model_copy(deep=True) for i in self._by_id.values()]
