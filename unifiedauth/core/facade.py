from __future__ import annotations

import hashlib
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from unifiedauth.core.accounts import AccountAdmin
from unifiedauth.core.analytics import (
    AdaptiveFaceIdSettings,
    AnalyticsPeriod,
    FaceIdAnalytics,
    SecurityAnalytics,
    SecurityAnalyticsEngine,
    SuspiciousActivityReport,
    UserStats,
)
from unifiedauth.core.audit import (
    SYSTEM_ACTOR,
    UNKNOWN_USER,
    AuditAction,
    AuditEntry,
    AuditLogger,
    AuditQuery,
    ChainedAuditSink,
    FaceAttempt,
    IntegrityReport,
    PasswordAttempt,
    QRAttempt,
    SecurityAction,
    TokenEvent,
    device_class_of,
    quality_tier,
)
from unifiedauth.core.backend import BackendGuard
from unifiedauth.core.circuit_breaker import BreakerConfig
from unifiedauth.core.config import AuthConfig, ensure_secret
from unifiedauth.core.credentials import (
    AuthMethod,
    CredentialVerifier,
    FaceVerifier,
    PasswordHasher,
    PasswordVerifier,
    QRVerifier,
)
from unifiedauth.core.errors import (
    AccountBlockedError,
    AuthError,
    BackendUnavailableError,
    FailureReason,
    InvalidCredentialError,
    NotFoundError,
    RateLimitError,
    UntrustedDeviceError,
    ValidationError,
)
from unifiedauth.core.faceid import (
    DeviceDecision,
    DeviceTrustPolicy,
    FaceIdLifecycle,
    FaceIdStatus,
    FaceRegistration,
    InMemoryFaceProfileStore,
)
from unifiedauth.core.identity import ClientInfo, Identity, IdentitySnapshot, InMemoryUserDirectory, UserRole, normalize_email
from unifiedauth.core.limits import RateLimiter
from unifiedauth.core.logger import get_logger
from unifiedauth.core.notifications import LoggingNotificationDispatcher, NotificationType, Notifier
from unifiedauth.core.protection import AutoProtectionController, ProtectionScheduler, SweepReport
from unifiedauth.core.results import ActionResult, ExportResult, FaceIdResult, LoginResult, QRCodeResult
from unifiedauth.core.sessions import RESET_AUDIENCE, Session, SessionManager, TokenClaims, TokenIssuer
from unifiedauth.core.trace import trace_context

FAILURE_MESSAGES = {
    AuthMethod.password: "Invalid email or password.",
    AuthMethod.face_id: "Face ID not recognized.",
    AuthMethod.qr_code: "QR code invalid or expired.",
}
INVALID_REQUEST_MESSAGE = "Invalid request."
INTERNAL_MESSAGE = "Authentication failed. Please try again."
RESET_REQUESTED_MESSAGE = "If the account exists, a reset link has been sent."

_CLIENT_KEYS = ("ip_address", "device_info", "utc_offset_minutes")
# failures that say nothing about the identity itself
_NOT_COUNTED = {FailureReason.RATE_LIMITED, FailureReason.BACKEND_UNAVAILABLE, FailureReason.ACCOUNT_BLOCKED}


def _split_client(credentials: Dict[str, Any], client: Union[ClientInfo, Dict[str, Any], None]) -> Tuple[Dict[str, Any], ClientInfo]:
    creds = dict(credentials)
    if isinstance(client, ClientInfo):
        info = client.model_dump(exclude_none=True)
    else:
        info = dict(client or {})
    for k in _CLIENT_KEYS:
        if k in creds:
            v = creds.pop(k)
            info.setdefault(k, v)
    return creds, ClientInfo.model_validate(info)


def _client_key(client: ClientInfo, trace_id: str) -> str:
    # callers without client info never share a bucket
    return client.ip_address or client.device_info or f"anonymous:{trace_id}"


def _hash_fingerprint(password_hash: str) -> str:
    return hashlib.sha256(str(password_hash).encode("utf-8")).hexdigest()[:16]


@dataclass
class _Attempt:
    trace_id: str
    method: Optional[AuthMethod] = None
    client: ClientInfo = field(default_factory=ClientInfo)
    subject: Optional[str] = None
    user_id: str = UNKNOWN_USER
    confidence: Optional[float] = None
    qr_age_seconds: Optional[float] = None
    recorded: bool = False


class UnifiedAuthFacade:
    """
    Single entry point for authentication.

    login() is an early-return pipeline: method dispatch, credential parsing, the
    per-identity rate limit, verification through the backend guard, the blocked
    and device gates, then session issue. Every path through it ends in exactly one
    audit entry and a LoginResult; it never raises. Failure messages are generic
    per method, the internal reason only goes to the audit trail.
    """

    def __init__(
        self,
        *,
        cfg: AuthConfig,
        directory: Any,
        face_store: Any,
        audit: AuditLogger,
        limiter: RateLimiter,
        tokens: TokenIssuer,
        sessions: SessionManager,
        hasher: PasswordHasher,
        verifiers: Dict[AuthMethod, CredentialVerifier],
        lifecycle: FaceIdLifecycle,
        devices: DeviceTrustPolicy,
        analytics: SecurityAnalyticsEngine,
        accounts: AccountAdmin,
        protection: AutoProtectionController,
        notifier: Notifier,
        guard: BackendGuard,
        time_fn: Any = time.time,
        logger: Optional[logging.Logger] = None,
    ):
        self.cfg = cfg
        self.directory = directory
        self.face_store = face_store
        self.audit = audit
        self.limiter = limiter
        self.tokens = tokens
        self.sessions = sessions
        self.hasher = hasher
        self.verifiers = dict(verifiers)
        self.lifecycle = lifecycle
        self.devices = devices
        self.analytics = analytics
        self.accounts = accounts
        self.protection = protection
        self.notifier = notifier
        self.guard = guard
        self._time = time_fn
        self.logger = logger or get_logger()
        self.scheduler = ProtectionScheduler(
            controller=protection,
            interval_seconds=cfg.protection.sweep_interval_seconds,
            logger=self.logger,
        )
        self._background = ThreadPoolExecutor(max_workers=1, thread_name_prefix="auth-protect")

    @classmethod
    def build(
        cls,
        cfg: Optional[AuthConfig] = None,
        *,
        directory: Any = None,
        face_store: Any = None,
        audit_sink: Any = None,
        dispatcher: Any = None,
        time_fn: Any = time.time,
        logger: Optional[logging.Logger] = None,
    ) -> "UnifiedAuthFacade":
        log = logger or get_logger()
        cfg = ensure_secret(cfg or AuthConfig(), logger=log)
        guard = BackendGuard(
            timeout_seconds=cfg.backend.timeout_seconds,
            breaker=BreakerConfig(
                failures=cfg.backend.breaker_failures,
                window_seconds=cfg.backend.breaker_window_seconds,
                cooldown_seconds=cfg.backend.breaker_cooldown_seconds,
            ),
            max_workers=cfg.backend.max_workers,
            time_fn=time_fn,
            logger=log,
        )
        directory = directory if directory is not None else InMemoryUserDirectory(time_fn=time_fn)
        face_store = face_store if face_store is not None else InMemoryFaceProfileStore(time_fn=time_fn)
        sink = audit_sink if audit_sink is not None else ChainedAuditSink(path_jsonl=cfg.audit.path_jsonl, sqlite_path=cfg.audit.sqlite_path, logger=log)
        audit = AuditLogger(sink, logger=log, time_fn=time_fn, max_rows=cfg.analytics.max_rows)
        notifier = Notifier(dispatcher or LoggingNotificationDispatcher(log), logger=log)

        tokens = TokenIssuer(
            secret=cfg.tokens.secret,
            algorithm=cfg.tokens.algorithm,
            issuer=cfg.tokens.issuer,
            ttl_seconds=cfg.tokens.token_ttl_seconds,
            time_fn=time_fn,
        )
        sessions = SessionManager(
            tokens=tokens,
            session_ttl_seconds=cfg.sessions.session_ttl_seconds,
            revocation_retention_seconds=cfg.sessions.revocation_retention_seconds,
            check_revocation=cfg.tokens.check_revocation,
            time_fn=time_fn,
            logger=log,
        )
        analytics = SecurityAnalyticsEngine(audit=audit, directory=directory, face_store=face_store, cfg=cfg.analytics, time_fn=time_fn, logger=log)
        hasher = PasswordHasher(n=cfg.passwords.scrypt_n, r=cfg.passwords.scrypt_r, p=cfg.passwords.scrypt_p)
        verifiers: Dict[AuthMethod, CredentialVerifier] = {
            AuthMethod.password: PasswordVerifier(directory=directory, hasher=hasher, guard=guard),
            AuthMethod.face_id: FaceVerifier(
                store=face_store,
                directory=directory,
                guard=guard,
                threshold=cfg.face.similarity_threshold,
                required_confidence=analytics.required_confidence if cfg.face.enforce_adaptive_confidence else None,
                time_fn=time_fn,
            ),
            AuthMethod.qr_code: QRVerifier(
                directory=directory,
                tokens=tokens,
                guard=guard,
                validity_seconds=cfg.tokens.qr_validity_seconds,
                clock_skew_seconds=cfg.tokens.qr_clock_skew_seconds,
                time_fn=time_fn,
            ),
        }
        lifecycle = FaceIdLifecycle(
            store=face_store,
            directory=directory,
            audit=audit,
            min_confidence=cfg.face.min_registration_confidence,
            descriptor_length=cfg.face.descriptor_length,
            time_fn=time_fn,
            logger=log,
        )
        devices = DeviceTrustPolicy(
            audit=audit,
            max_new_devices=cfg.devices.max_new_devices,
            window_seconds=cfg.devices.new_device_window_seconds,
            time_fn=time_fn,
        )
        accounts = AccountAdmin(directory=directory, sessions=sessions, audit=audit, notifier=notifier, time_fn=time_fn, logger=log)
        protection = AutoProtectionController(
            analytics=analytics,
            accounts=accounts,
            directory=directory,
            audit=audit,
            cfg=cfg.protection,
            time_fn=time_fn,
            logger=log,
        )
        return cls(
            cfg=cfg,
            directory=directory,
            face_store=face_store,
            audit=audit,
            limiter=RateLimiter(window_seconds=cfg.rate_limit.window_seconds, max_events=cfg.rate_limit.max_events, time_fn=time_fn),
            tokens=tokens,
            sessions=sessions,
            hasher=hasher,
            verifiers=verifiers,
            lifecycle=lifecycle,
            devices=devices,
            analytics=analytics,
            accounts=accounts,
            protection=protection,
            notifier=notifier,
            guard=guard,
            time_fn=time_fn,
            logger=log,
        )

    # ---- lifecycle ----
    def start(self) -> None:
        if self.cfg.protection.enabled:
            self.scheduler.start()
        self.logger.info("[auth] unified auth started")

    def close(self) -> None:
        self.scheduler.stop()
        self._background.shutdown(wait=True)
        self.analytics.close()
        self.notifier.shutdown()
        self.guard.shutdown()
        self.logger.info("[auth] unified auth stopped")

    # ---- users ----
    def create_user(self, email: str, password: str, *, display_name: str = "", role: UserRole = UserRole.user) -> Identity:
        self._check_password_policy(password)
        return self.directory.add_user(email=email, password_hash=self.hasher.hash(password), display_name=display_name, role=role)

    # ---- login pipeline ----
    def login(
        self,
        method: Union[AuthMethod, str],
        credentials: Dict[str, Any],
        client: Union[ClientInfo, Dict[str, Any], None] = None,
    ) -> LoginResult:
        with trace_context() as trace_id:
            attempt = _Attempt(trace_id=trace_id)
            try:
                return self._login(attempt, method, credentials, client)
            except Exception as e:  # noqa: BLE001
                self.logger.error(f"[auth] login error trace_id={trace_id}: {e.__class__.__name__}: {e}")
                if not attempt.recorded:
                    self._record_attempt(attempt, success=False, reason=FailureReason.INTERNAL_ERROR, details=e.__class__.__name__)
                return LoginResult(success=False, error=INTERNAL_MESSAGE, code="internal_error", trace_id=trace_id)

    def _login(self, a: _Attempt, method: Any, credentials: Any, client: Any) -> LoginResult:
        try:
            m = AuthMethod(method)
        except ValueError:
            return self._fail(a, FailureReason.VALIDATION_ERROR, INVALID_REQUEST_MESSAGE, f"unsupported method {str(method)[:32]!r}", code="validation_error")
        a.method = m
        if not isinstance(credentials, dict):
            return self._fail(a, FailureReason.VALIDATION_ERROR, INVALID_REQUEST_MESSAGE, "credentials must be an object", code="validation_error")
        try:
            raw, a.client = _split_client(credentials, client)
        except PydanticValidationError:
            return self._fail(a, FailureReason.VALIDATION_ERROR, INVALID_REQUEST_MESSAGE, "malformed client info", code="validation_error")

        verifier = self.verifiers[m]
        try:
            cred = verifier.parse(raw)
        except ValidationError as e:
            return self._fail(a, FailureReason.VALIDATION_ERROR, INVALID_REQUEST_MESSAGE, f"malformed credentials: {e.context.get('fields')}", code="validation_error")
        a.subject = verifier.subject(cred)
        a.confidence = getattr(cred, "confidence", None)

        decision = self.limiter.check(verifier.rate_key(cred, client_key=_client_key(a.client, a.trace_id)))
        if not decision.allowed:
            return self._fail(a, FailureReason.RATE_LIMITED, RateLimitError().user_message, f"retry after {decision.retry_after_seconds:.0f}s", code="rate_limited")

        try:
            result = verifier.verify(cred)
        except BackendUnavailableError as e:
            self.logger.warning(f"[auth] {m.value} login failed closed: backend={e.context.get('backend')} cause={e.context.get('cause')}")
            return self._fail(a, FailureReason.BACKEND_UNAVAILABLE, BackendUnavailableError().user_message, f"backend {e.context.get('backend')} unavailable", code="backend_unavailable")

        if result.user_id:
            a.user_id = result.user_id
        if result.confidence is not None:
            a.confidence = result.confidence
        a.qr_age_seconds = result.qr_age_seconds
        if not result.ok or result.identity is None:
            if m is AuthMethod.face_id and result.reason is FailureReason.VALIDATION_ERROR:
                return self._fail(a, FailureReason.VALIDATION_ERROR, INVALID_REQUEST_MESSAGE, result.detail, code="validation_error")
            return self._fail(a, result.reason or FailureReason.INVALID_CREDENTIAL, FAILURE_MESSAGES[m], result.detail)

        ident = result.identity
        if not ident.active:
            return self._fail(a, FailureReason.ACCOUNT_BLOCKED, AccountBlockedError().user_message, ident.blocked_reason or "blocked", code="account_blocked")

        device: Optional[DeviceDecision] = None
        if m is AuthMethod.face_id and a.client.device_info:
            device = self.devices.evaluate(ident.id, a.client.device_info)
            if not device.allowed and self.cfg.devices.enforce_on_face_login:
                return self._fail(a, FailureReason.UNTRUSTED_DEVICE, UntrustedDeviceError().user_message, device.reason, code="untrusted_device")

        session = self.sessions.create(ident, m.value, a.client)
        self._touch_last_login(ident.id)
        details = result.detail or None
        if device is not None and not device.known:
            details = f"{details}; new device {device.device_class}" if details else f"new device {device.device_class}"
        self._record_attempt(a, success=True, details=details)

        if m is AuthMethod.face_id:
            self.analytics.schedule_refresh(ident.id)
        if device is not None and not device.known and self.cfg.devices.notify_new_device:
            self.notifier.send(ident.id, NotificationType.new_device_login, {"device_class": device.device_class, "ip_address": a.client.ip_address})
        return LoginResult(
            success=True,
            session=session,
            token=session.token,
            user=IdentitySnapshot.of(ident).model_dump(mode="json"),
            requires_face_setup=(m is AuthMethod.password and not ident.face_id_enabled),
            requires_device_approval=bool(device is not None and device.requires_approval),
            trace_id=a.trace_id,
        )

    def _fail(
        self,
        a: _Attempt,
        reason: FailureReason,
        message: str,
        details: Optional[str] = None,
        *,
        code: str = "invalid_credential",
    ) -> LoginResult:
        self._record_attempt(a, success=False, reason=reason, details=details)
        if a.user_id != UNKNOWN_USER and reason not in _NOT_COUNTED:
            if a.method is AuthMethod.face_id:
                self.analytics.schedule_refresh(a.user_id)
            if self.cfg.protection.enabled and self.cfg.protection.check_on_failure:
                self._schedule_protection(a.user_id)
        return LoginResult(success=False, error=message, code=code, trace_id=a.trace_id)

    def _record_attempt(self, a: _Attempt, *, success: bool, reason: Optional[FailureReason] = None, details: Optional[str] = None) -> None:
        if a.recorded:
            return
        a.recorded = True
        common: Dict[str, Any] = {
            "timestamp": self._time(),
            "trace_id": a.trace_id,
            "user_id": a.user_id,
            "action": AuditAction.login_success if success else AuditAction.login_failed,
            "success": success,
            "reason": reason,
            "subject": a.subject,
            "ip_address": a.client.ip_address,
            "device_info": a.client.device_info,
            "utc_offset_minutes": a.client.utc_offset_minutes,
            "details": details,
        }
        entry: AuditEntry
        if a.method is AuthMethod.face_id:
            entry = FaceAttempt(
                **common,
                confidence=a.confidence,
                quality=quality_tier(a.confidence),
                device_class=device_class_of(a.client.device_info) if a.client.device_info else None,
            )
        elif a.method is AuthMethod.qr_code:
            entry = QRAttempt(**common, qr_age_seconds=a.qr_age_seconds)
        elif a.method is AuthMethod.password:
            entry = PasswordAttempt(**common)
        else:
            entry = SecurityAction(**common)
        self.audit.record(entry)

    def _directory(self, op: str, *args: Any) -> Any:
        return self.guard.call("directory", getattr(self.directory, op), *args)

    def _touch_last_login(self, user_id: str) -> None:
        try:
            self._directory("update_last_login", user_id, self._time())
        except AuthError as e:
            self.logger.warning(f"[auth] last login not updated for user={user_id}: {e.code}")

    def _schedule_protection(self, user_id: str) -> None:
        try:
            fut = self._background.submit(self.protection.check_user, user_id)
        except RuntimeError:
            return
        fut.add_done_callback(self._log_background_failure)

    def _log_background_failure(self, fut: Future) -> None:
        if not fut.cancelled() and fut.exception() is not None:
            self.logger.error(f"[auth] protection check failed: {fut.exception()}")

    # ---- sessions ----
    def logout(self, session_id: str) -> ActionResult:
        with trace_context():
            session = self.sessions.revoke(session_id)
            if session is None:
                return ActionResult.failed(NotFoundError("Session not found."))
            self.audit.record(
                TokenEvent(
                    timestamp=self._time(),
                    user_id=session.identity.id,
                    action=AuditAction.logout,
                    success=True,
                    subject=session.identity.email,
                    ip_address=session.client.ip_address,
                    device_info=session.client.device_info,
                    details=f"{session.method} session ended",
                )
            )
        return ActionResult.ok("Logged out.")

    def validate_session(self, session_id: str) -> Optional[Session]:
        return self.sessions.validate(session_id)

    def validate_token(self, token: str) -> Optional[TokenClaims]:
        return self.sessions.validate_token(token)

    # ---- Face ID lifecycle ----
    def _registration(self, action: AuditAction, user_id: str, registration: Any, actor: Optional[str]) -> FaceRegistration:
        if isinstance(registration, FaceRegistration):
            return registration
        try:
            return FaceRegistration.model_validate(registration or {})
        except PydanticValidationError as e:
            err = ValidationError("Face registration data is malformed.", fields=sorted({str(x.get("loc", ("?",))[0]) for x in e.errors()}))
            self.lifecycle.reject(action, user_id, err, actor=actor)
            raise err from e

    def register_face_id(self, user_id: str, registration: Union[FaceRegistration, Dict[str, Any]], *, actor: Optional[str] = None) -> FaceIdResult:
        with trace_context():
            try:
                reg = self._registration(AuditAction.face_id_registered, user_id, registration, actor)
                profile = self.lifecycle.register(user_id, reg, actor=actor)
            except AuthError as e:
                return FaceIdResult.failed(e)
        self.analytics.schedule_refresh(user_id)
        return FaceIdResult.ok(profile, "Face ID registered.")

    def update_face_id(self, user_id: str, registration: Union[FaceRegistration, Dict[str, Any]], *, actor: Optional[str] = None) -> FaceIdResult:
        with trace_context():
            try:
                reg = self._registration(AuditAction.face_id_updated, user_id, registration, actor)
                profile = self.lifecycle.update(user_id, reg, actor=actor)
            except AuthError as e:
                return FaceIdResult.failed(e)
        return FaceIdResult.ok(profile, "Face ID updated.")

    def disable_face_id(self, user_id: str, *, actor: Optional[str] = None, reason: Optional[str] = None) -> FaceIdResult:
        with trace_context():
            try:
                profile = self.lifecycle.disable(user_id, actor=actor or user_id, reason=reason)
            except AuthError as e:
                return FaceIdResult.failed(e)
        return FaceIdResult.ok(profile, "Face ID disabled.")

    def temporary_disable_face_id(self, user_id: str, *, minutes: int, reason: str, actor: str) -> FaceIdResult:
        with trace_context():
            try:
                profile = self.lifecycle.temporary_disable(user_id, minutes=minutes, reason=reason, actor=actor)
            except AuthError as e:
                return FaceIdResult.failed(e)
        return FaceIdResult.ok(profile, f"Face ID disabled for {int(minutes)} minutes.")

    def force_face_id_reregistration(self, user_id: str, *, reason: str, actor: str) -> FaceIdResult:
        with trace_context():
            try:
                profile = self.lifecycle.force_reregistration(user_id, reason=reason, actor=actor)
            except AuthError as e:
                return FaceIdResult.failed(e)
        return FaceIdResult.ok(profile, "Face ID must be registered again.")

    def get_face_id_status(self, user_id: str) -> FaceIdStatus:
        return self.lifecycle.status(user_id)

    def validate_face_id_device(self, user_id: str, device_info: Optional[str]) -> DeviceDecision:
        if self._directory("get_by_id", user_id) is None:
            raise NotFoundError("User not found.", user_id=user_id)
        return self.devices.evaluate(user_id, device_info)

    # ---- account administration ----
    def block_user(self, user_id: str, *, reason: str, actor: str) -> ActionResult:
        with trace_context():
            try:
                changed = self.accounts.block(user_id, reason=reason, actor=actor)
            except AuthError as e:
                return ActionResult.failed(e)
        return ActionResult.ok("User blocked." if changed else "User was already blocked.", changed=changed)

    def unblock_user(self, user_id: str, *, actor: str) -> ActionResult:
        with trace_context():
            try:
                changed = self.accounts.unblock(user_id, actor=actor)
            except AuthError as e:
                return ActionResult.failed(e)
        return ActionResult.ok("User unblocked." if changed else "User was not blocked.", changed=changed)

    # ---- passwords ----
    def _check_password_policy(self, password: str) -> None:
        if len(str(password or "")) < int(self.cfg.passwords.min_length):
            raise ValidationError(f"Password must be at least {int(self.cfg.passwords.min_length)} characters.", field="password")

    def _record_password_event(self, action: AuditAction, user_id: str, *, success: bool, subject: Optional[str] = None, err: Optional[AuthError] = None, details: Optional[str] = None) -> None:
        self.audit.record(
            PasswordAttempt(
                timestamp=self._time(),
                user_id=user_id,
                actor_id=user_id if user_id != UNKNOWN_USER else None,
                action=action,
                success=success,
                reason=err.reason if err is not None else None,
                subject=subject,
                details=err.user_message if err is not None else details,
            )
        )

    def change_password(self, user_id: str, current_password: str, new_password: str) -> ActionResult:
        with trace_context():
            try:
                ident = self._directory("get_by_id", user_id)
                if ident is None:
                    raise NotFoundError("User not found.", user_id=user_id)
                if not self.hasher.verify(str(current_password or ""), ident.password_hash):
                    raise InvalidCredentialError("Current password is incorrect.")
                self._check_password_policy(new_password)
                self._directory("update_password", user_id, self.hasher.hash(new_password))
            except AuthError as e:
                self._record_password_event(AuditAction.password_changed, user_id, success=False, err=e)
                return ActionResult.failed(e)
            self._record_password_event(AuditAction.password_changed, user_id, success=True, subject=ident.email, details="password changed")
        self.notifier.send(user_id, NotificationType.password_change, {"email": ident.email})
        return ActionResult.ok("Password changed.")

    def request_password_reset(self, email: str) -> ActionResult:
        with trace_context():
            subject = normalize_email(email)
            if not self.limiter.check(f"reset:{subject}").allowed:
                err = RateLimitError()
                self._record_password_event(AuditAction.password_reset_requested, UNKNOWN_USER, success=False, subject=subject, err=err)
                return ActionResult.failed(err)
            try:
                ident = self._directory("get_by_email", subject)
            except AuthError as e:
                self._record_password_event(AuditAction.password_reset_requested, UNKNOWN_USER, success=False, subject=subject, err=e)
                return ActionResult.failed(e)
            if ident is None or not ident.active:
                err = NotFoundError("No active identity for email.")
                self._record_password_event(AuditAction.password_reset_requested, ident.id if ident else UNKNOWN_USER, success=False, subject=subject, err=err)
                return ActionResult.ok(RESET_REQUESTED_MESSAGE)
            token = self.tokens.issue_purpose(
                ident.id,
                audience=RESET_AUDIENCE,
                ttl_seconds=self.cfg.tokens.password_reset_ttl_seconds,
                extra={"fp": _hash_fingerprint(ident.password_hash)},
            )
            self._record_password_event(AuditAction.password_reset_requested, ident.id, success=True, subject=subject, details="reset token issued")
        self.notifier.send(ident.id, NotificationType.password_reset, {"reset_token": token, "expires_in": self.cfg.tokens.password_reset_ttl_seconds})
        return ActionResult.ok(RESET_REQUESTED_MESSAGE)

    def reset_password(self, token: str, new_password: str) -> ActionResult:
        with trace_context():
            user_id = UNKNOWN_USER
            try:
                payload = self.tokens.decode_purpose(token, audience=RESET_AUDIENCE)
                user_id = str(payload["sub"])
                ident = self._directory("get_by_id", user_id)
                # the fingerprint changes with the hash, so a token works once
                if ident is None or payload.get("fp") != _hash_fingerprint(ident.password_hash):
                    raise InvalidCredentialError("Reset link is invalid or has already been used.")
                if not ident.active:
                    raise AccountBlockedError()
                self._check_password_policy(new_password)
                self._directory("update_password", user_id, self.hasher.hash(new_password))
            except AuthError as e:
                self._record_password_event(AuditAction.password_reset, user_id, success=False, err=e)
                return ActionResult.failed(e)
            revoked = self.sessions.revoke_for_user(user_id)
            self._record_password_event(AuditAction.password_reset, user_id, success=True, subject=ident.email, details=f"password reset; {revoked} session(s) revoked")
        self.notifier.send(user_id, NotificationType.password_change, {"email": ident.email, "via": "reset"})
        return ActionResult.ok("Password has been reset.")

    # ---- QR ----
    def generate_user_qr(self, user_id: str) -> QRCodeResult:
        with trace_context():
            err: Optional[AuthError] = None
            try:
                ident = self._directory("get_by_id", user_id)
                if ident is None:
                    err = NotFoundError("User not found.", user_id=user_id)
                elif not ident.active:
                    err = AccountBlockedError()
            except AuthError as e:
                err = e
            verifier = self.verifiers[AuthMethod.qr_code]
            self.audit.record(
                QRAttempt(
                    timestamp=self._time(),
                    user_id=user_id,
                    actor_id=user_id,
                    action=AuditAction.qr_generated,
                    success=err is None,
                    reason=err.reason if err is not None else None,
                    details=err.user_message if err is not None else None,
                )
            )
            if err is not None:
                return QRCodeResult(success=False, error=err.user_message, code=err.code)
            qr_code = verifier.issue(user_id)
        return QRCodeResult(success=True, qr_code=qr_code, expires_at=self._time() + float(self.cfg.tokens.qr_validity_seconds))

    # ---- audit and analytics ----
    def get_access_logs(
        self,
        *,
        user_id: Optional[str] = None,
        method: Optional[str] = None,
        success: Optional[bool] = None,
        action: Optional[AuditAction] = None,
        since: Optional[float] = None,
        until: Optional[float] = None,
        limit: int = 200,
        offset: int = 0,
    ) -> List[AuditEntry]:
        return self.audit.query(AuditQuery(user_id=user_id, method=method, success=success, action=action, since=since, until=until, limit=limit, offset=offset))

    def get_security_analytics(self, period: AnalyticsPeriod = AnalyticsPeriod.week) -> SecurityAnalytics:
        return self.analytics.system_analytics(AnalyticsPeriod(period))

    def get_face_id_analytics(self, user_id: Optional[str] = None, period: AnalyticsPeriod = AnalyticsPeriod.month) -> FaceIdAnalytics:
        return self.analytics.face_id_analytics(user_id, AnalyticsPeriod(period))

    def get_user_stats(self, user_id: str) -> UserStats:
        return self.analytics.user_stats(user_id)

    def get_adaptive_face_id_settings(self, user_id: str) -> AdaptiveFaceIdSettings:
        return self.analytics.adaptive_face_settings(user_id)

    def detect_suspicious_activity(self, user_id: Optional[str] = None) -> SuspiciousActivityReport:
        return self.analytics.detect_suspicious_activity(user_id)

    def auto_block_on_suspicious_activity(self, cancel: Any = None) -> SweepReport:
        with trace_context():
            return self.protection.sweep(cancel=cancel)

    def send_security_notification(self, user_id: str, type: Union[NotificationType, str], details: Optional[Dict[str, Any]] = None) -> ActionResult:
        with trace_context():
            try:
                kind = NotificationType(type)
            except ValueError:
                return ActionResult.failed(ValidationError("Unknown notification type.", type=str(type)))
            try:
                if self._directory("get_by_id", user_id) is None:
                    return ActionResult.failed(NotFoundError("User not found.", user_id=user_id))
            except AuthError as e:
                return ActionResult.failed(e)
            self.notifier.send(user_id, kind, details)
            self.audit.record(
                SecurityAction(
                    timestamp=self._time(),
                    user_id=user_id,
                    actor_id=SYSTEM_ACTOR,
                    action=AuditAction.security_notification_sent,
                    success=True,
                    details=kind.value,
                )
            )
        return ActionResult.ok("Notification queued.")

    def export_security_logs(
        self,
        format: str = "json",
        filters: Union[AuditQuery, Dict[str, Any], None] = None,
        *,
        actor: str = SYSTEM_ACTOR,
    ) -> ExportResult:
        fmt = str(format or "").lower()
        with trace_context():
            if filters is None:
                q = AuditQuery(limit=self.cfg.analytics.max_rows)
            elif isinstance(filters, AuditQuery):
                q = filters
            else:
                try:
                    q = AuditQuery.model_validate(filters)
                except PydanticValidationError:
                    err = ValidationError("Invalid export filters.")
                    return ExportResult(success=False, format=fmt, error=err.user_message, code=err.code)
            try:
                content, count = self.audit.export(q, fmt)
            except ValidationError as e:
                return ExportResult(success=False, format=fmt, error=e.user_message, code=e.code)
            filename = f"security_logs_{time.strftime('%Y-%m-%d', time.gmtime(self._time()))}.{fmt}"
            self.audit.record(
                SecurityAction(
                    timestamp=self._time(),
                    user_id=actor,
                    actor_id=actor,
                    action=AuditAction.logs_exported,
                    success=True,
                    details=f"{count} records as {fmt}",
                )
            )
        return ExportResult(success=True, format=fmt, filename=filename, content=content, records=count)

    def cleanup_old_logs(self, days: Optional[int] = None) -> ActionResult:
        keep = int(days if days is not None else self.cfg.audit.retention_days)
        if keep < 1:
            return ActionResult.failed(ValidationError("Retention must be at least one day.", days=keep))
        with trace_context():
            removed = self.audit.cleanup(keep)
            self.audit.record(
                SecurityAction(
                    timestamp=self._time(),
                    user_id=SYSTEM_ACTOR,
                    actor_id=SYSTEM_ACTOR,
                    action=AuditAction.logs_cleanup,
                    success=True,
                    details=f"removed {removed} entries older than {keep}d",
                )
            )
        return ActionResult.ok(f"Removed {removed} entries.", removed=removed)

    def verify_audit_integrity(self) -> IntegrityReport:
        return self.audit.verify_integrity(limit_last_n=self.cfg.audit.verify_last_n)
