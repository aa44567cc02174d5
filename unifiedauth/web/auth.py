from __future__ import annotations

from typing import Callable

from fastapi import Header, Request

from unifiedauth.core.errors import AuthError, InvalidCredentialError
from unifiedauth.core.identity import UserRole
from unifiedauth.core.sessions import TokenClaims


class AdminRequiredError(AuthError):
    def __init__(self, user_message: str = "Admin role required.", **ctx):
        super().__init__("admin_required", user_message, recoverable=False, context=ctx)


def _bearer(authorization: str) -> str:
    scheme, _, value = str(authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return ""
    return value.strip()


def build_bearer_auth(facade) -> Callable[..., TokenClaims]:
    def dep(request: Request, authorization: str = Header(default="")) -> TokenClaims:
        token = _bearer(authorization)
        if not token:
            raise InvalidCredentialError("Missing bearer token.")
        claims = facade.validate_token(token)
        if claims is None:
            raise InvalidCredentialError("Invalid or expired token.")
        request.state.claims = claims
        return claims

    return dep


def build_admin_auth(facade) -> Callable[..., TokenClaims]:
    bearer = build_bearer_auth(facade)

    def dep(request: Request, authorization: str = Header(default="")) -> TokenClaims:
        claims = bearer(request, authorization)
        if claims.role != UserRole.admin:
            raise AdminRequiredError(user_id=claims.sub)
        return claims

    return dep
