from __future__ import annotations

from typing import Any, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from unifiedauth.core.analytics import AnalyticsPeriod
from unifiedauth.core.config.models import WebConfig
from unifiedauth.core.errors import AuthError, NotFoundError, ValidationError
from unifiedauth.core.faceid import FaceRegistration
from unifiedauth.core.logger import get_logger
from unifiedauth.core.sessions import TokenClaims
from unifiedauth.web.auth import build_admin_auth, build_bearer_auth
from unifiedauth.web.middleware import TraceMiddleware
from unifiedauth.web.models import (
    BlockRequest,
    CleanupRequest,
    DeviceValidateRequest,
    ExportRequest,
    LoginRequest,
    NotifyRequest,
    PasswordChangeRequest,
    PasswordResetConfirm,
    PasswordResetRequest,
    ReregistrationRequest,
    TemporaryDisableRequest,
    TokenValidateRequest,
    TokenValidateResponse,
)

STATUS_BY_CODE = {
    "validation_error": 400,
    "insufficient_biometric_data": 400,
    "invalid_credential": 401,
    "no_biometric_match": 401,
    "qr_expired": 401,
    "account_blocked": 403,
    "untrusted_device": 403,
    "admin_required": 403,
    "not_found": 404,
    "rate_limited": 429,
    "backend_unavailable": 503,
}


def status_for(code: Optional[str]) -> int:
    return STATUS_BY_CODE.get(str(code or ""), 500)


def _client_ip(request: Request) -> Optional[str]:
    return getattr(getattr(request, "client", None), "host", None)


def _result(result: Any) -> Any:
    """Successful results pass through; failed ones become the matching error response."""
    if getattr(result, "success", True):
        return result
    return JSONResponse(status_code=status_for(result.code), content={"detail": result.error, "code": result.code})


def create_app(facade, web_cfg: Optional[WebConfig] = None, *, logger=None) -> FastAPI:
    cfg = web_cfg or WebConfig()
    log = logger or get_logger()
    app = FastAPI(title="Unified Auth", version="0.1.0")

    if cfg.allowed_origins:
        if any(o == "*" for o in cfg.allowed_origins):
            raise ValueError("Wildcard CORS origins are not allowed.")
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cfg.allowed_origins,
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.middleware("http")(TraceMiddleware(logger=log))

    user_auth = build_bearer_auth(facade)
    admin_auth = build_admin_auth(facade)

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        code = status_for(exc.code)
        if code >= 500:
            log.error(f"[web] {request.url.path} failed: {exc.code}")
        return JSONResponse(status_code=code, content={"detail": exc.user_message, "code": exc.code})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": "Invalid request.", "code": "validation_error"})

    @app.get("/health")
    def health():
        return {"status": "ok", "backends": facade.guard.status()}

    # ---- sessions ----
    @app.post("/v1/auth/login")
    def login(req: LoginRequest, request: Request):
        client = {"ip_address": _client_ip(request)}
        if req.client is not None:
            client.update(req.client.model_dump(exclude_none=True))
        res = facade.login(req.method, req.credentials, client)
        if res.success:
            return res.model_dump(mode="json")
        return JSONResponse(status_code=status_for(res.code), content={"detail": res.error, "code": res.code, "trace_id": res.trace_id})

    @app.post("/v1/auth/logout")
    def logout(claims: TokenClaims = Depends(user_auth)):
        if not claims.sid:
            raise ValidationError("Token is not bound to a session.")
        return _result(facade.logout(claims.sid))

    @app.get("/v1/auth/session/{session_id}")
    def session_info(session_id: str, claims: TokenClaims = Depends(user_auth)):
        s = facade.validate_session(session_id)
        if s is None or (s.identity.id != claims.sub and claims.role.value != "admin"):
            raise NotFoundError("Session not found.")
        return s.model_dump(mode="json", exclude={"token"})

    @app.post("/v1/auth/token/validate", response_model=TokenValidateResponse)
    def token_validate(req: TokenValidateRequest):
        claims = facade.validate_token(req.token)
        if claims is None:
            return TokenValidateResponse(valid=False)
        return TokenValidateResponse(valid=True, claims=claims.model_dump(mode="json"))

    # ---- passwords / QR ----
    @app.post("/v1/auth/password/change")
    def password_change(req: PasswordChangeRequest, claims: TokenClaims = Depends(user_auth)):
        return _result(facade.change_password(claims.sub, req.current_password, req.new_password))

    @app.post("/v1/auth/password/reset-request")
    def password_reset_request(req: PasswordResetRequest):
        return _result(facade.request_password_reset(req.email))

    @app.post("/v1/auth/password/reset")
    def password_reset(req: PasswordResetConfirm):
        return _result(facade.reset_password(req.token, req.new_password))

    @app.post("/v1/auth/qr")
    def qr_generate(claims: TokenClaims = Depends(user_auth)):
        return _result(facade.generate_user_qr(claims.sub))

    # ---- Face ID (self service) ----
    @app.post("/v1/face-id/register")
    def face_register(req: FaceRegistration, claims: TokenClaims = Depends(user_auth)):
        return _result(facade.register_face_id(claims.sub, req))

    @app.put("/v1/face-id")
    def face_update(req: FaceRegistration, claims: TokenClaims = Depends(user_auth)):
        return _result(facade.update_face_id(claims.sub, req))

    @app.delete("/v1/face-id")
    def face_disable(claims: TokenClaims = Depends(user_auth)):
        return _result(facade.disable_face_id(claims.sub, actor=claims.sub))

    @app.get("/v1/face-id/status")
    def face_status(claims: TokenClaims = Depends(user_auth)):
        return facade.get_face_id_status(claims.sub)

    @app.post("/v1/face-id/device/validate")
    def face_device(req: DeviceValidateRequest, claims: TokenClaims = Depends(user_auth)):
        d = facade.validate_face_id_device(claims.sub, req.device_info)
        return {
            "allowed": d.allowed,
            "known": d.known,
            "requires_approval": d.requires_approval,
            "device_class": d.device_class,
            "reason": d.reason,
        }

    # ---- admin ----
    @app.post("/v1/admin/users/{user_id}/block")
    def admin_block(user_id: str, req: BlockRequest, claims: TokenClaims = Depends(admin_auth)):
        return _result(facade.block_user(user_id, reason=req.reason, actor=claims.sub))

    @app.post("/v1/admin/users/{user_id}/unblock")
    def admin_unblock(user_id: str, claims: TokenClaims = Depends(admin_auth)):
        return _result(facade.unblock_user(user_id, actor=claims.sub))

    @app.post("/v1/admin/users/{user_id}/face-id/temporary-disable")
    def admin_face_temp_disable(user_id: str, req: TemporaryDisableRequest, claims: TokenClaims = Depends(admin_auth)):
        return _result(facade.temporary_disable_face_id(user_id, minutes=req.minutes, reason=req.reason, actor=claims.sub))

    @app.post("/v1/admin/users/{user_id}/face-id/reregister")
    def admin_face_reregister(user_id: str, req: ReregistrationRequest, claims: TokenClaims = Depends(admin_auth)):
        return _result(facade.force_face_id_reregistration(user_id, reason=req.reason, actor=claims.sub))

    @app.get("/v1/admin/users/{user_id}/stats")
    def admin_user_stats(user_id: str, claims: TokenClaims = Depends(admin_auth)):
        return facade.get_user_stats(user_id)

    @app.get("/v1/admin/users/{user_id}/adaptive-face-id")
    def admin_adaptive(user_id: str, claims: TokenClaims = Depends(admin_auth)):
        return facade.get_adaptive_face_id_settings(user_id)

    @app.post("/v1/admin/users/{user_id}/notify")
    def admin_notify(user_id: str, req: NotifyRequest, claims: TokenClaims = Depends(admin_auth)):
        return _result(facade.send_security_notification(user_id, req.type, req.details))

    @app.get("/v1/admin/logs")
    def admin_logs(
        user_id: Optional[str] = None,
        method: Optional[str] = None,
        success: Optional[bool] = None,
        limit: int = 200,
        offset: int = 0,
        claims: TokenClaims = Depends(admin_auth),
    ):
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative.")
        rows = facade.get_access_logs(user_id=user_id, method=method, success=success, limit=limit, offset=offset)
        return {"logs": [r.model_dump(mode="json") for r in rows], "count": len(rows)}

    @app.get("/v1/admin/analytics")
    def admin_analytics(period: AnalyticsPeriod = AnalyticsPeriod.week, claims: TokenClaims = Depends(admin_auth)):
        return facade.get_security_analytics(period)

    @app.get("/v1/admin/analytics/face-id")
    def admin_face_analytics(user_id: Optional[str] = None, claims: TokenClaims = Depends(admin_auth)):
        return facade.get_face_id_analytics(user_id)

    @app.get("/v1/admin/suspicious")
    def admin_suspicious(user_id: Optional[str] = None, claims: TokenClaims = Depends(admin_auth)):
        return facade.detect_suspicious_activity(user_id)

    @app.post("/v1/admin/protection/sweep")
    def admin_sweep(claims: TokenClaims = Depends(admin_auth)):
        report = facade.auto_block_on_suspicious_activity()
        return {
            "examined": report.examined,
            "blocked": report.blocked,
            "skipped": report.skipped,
            "errors": report.errors,
            "cancelled": report.cancelled,
        }

    @app.post("/v1/admin/export")
    def admin_export(req: ExportRequest, claims: TokenClaims = Depends(admin_auth)):
        return _result(facade.export_security_logs(req.format, req.filters, actor=claims.sub))

    @app.post("/v1/admin/logs/cleanup")
    def admin_cleanup(req: CleanupRequest, claims: TokenClaims = Depends(admin_auth)):
        return _result(facade.cleanup_old_logs(req.days))

    @app.get("/v1/admin/audit/integrity")
    def admin_integrity(claims: TokenClaims = Depends(admin_auth)):
        return facade.verify_audit_integrity()

    return app
