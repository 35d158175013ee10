from __future__ import annotations

from collections.abc import Callable
from typing import Annotated, Any, NoReturn

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from orgscope.domain.errors import (
    AuthError,
    AuthorizationEngineError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from orgscope.domain.scope import ScopeContext
from orgscope.infra.audit import AuditRequestMeta
from orgscope.infra.auth import decode_access_token
from orgscope.infra.tenant import set_request_context
from orgscope.services.permission_gate import PermissionGate
from orgscope.services.scope_context_service import ScopeContextService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/identity/dev-login")

SCOPE_CONTEXT_STATE_KEY = "scope_context"

_ERROR_STATUS: tuple[tuple[type[AuthorizationEngineError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (AuthError, status.HTTP_401_UNAUTHORIZED),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (StorageError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def handle_service_error(exc: AuthorizationEngineError) -> NoReturn:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            raise HTTPException(status_code=status_code, detail=str(exc)) from exc
    raise exc


def get_current_claims(
    request: Request,
    token: str = Depends(oauth2_scheme),
) -> dict[str, Any]:
    try:
        claims = decode_access_token(token)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    claims["user_id"] = int(claims["sub"])
    request.state.claims = claims
    set_request_context(claims["tenant_id"], claims["user_id"])
    return claims


def get_permission_gate() -> PermissionGate:
    return PermissionGate()


def get_scope_context_service() -> ScopeContextService:
    return ScopeContextService()


def require_perm(permission: str) -> Callable[..., dict[str, Any]]:
    def _checker(
        claims: Annotated[dict[str, Any], Depends(get_current_claims)],
        gate: Annotated[PermissionGate, Depends(get_permission_gate)],
    ) -> dict[str, Any]:
        if not gate.has_permission(claims["tenant_id"], claims["user_id"], permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {permission}",
            )
        return claims

    return _checker


def get_scope_context(
    request: Request,
    claims: Annotated[dict[str, Any], Depends(get_current_claims)],
    resolver: Annotated[ScopeContextService, Depends(get_scope_context_service)],
) -> ScopeContext:
    cached = getattr(request.state, SCOPE_CONTEXT_STATE_KEY, None)
    if isinstance(cached, ScopeContext) and cached.tenant_id == claims["tenant_id"]:
        return cached
    context = resolver.resolve(claims["tenant_id"], claims["user_id"])
    setattr(request.state, SCOPE_CONTEXT_STATE_KEY, context)
    return context


def get_audit_meta(request: Request) -> AuditRequestMeta:
    return AuditRequestMeta.from_request(request)


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Scope = Annotated[ScopeContext, Depends(get_scope_context)]
AuditMeta = Annotated[AuditRequestMeta, Depends(get_audit_meta)]
