from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Response, status

from orgscope.api.deps import AuditMeta, Claims, handle_service_error, require_perm
from orgscope.domain.errors import AuthorizationEngineError
from orgscope.domain.models import (
    BootstrapAdminRequest,
    DevLoginRequest,
    PermissionRead,
    RoleCreate,
    RoleRead,
    TenantCreate,
    TenantRead,
    TokenResponse,
    UserCreate,
    UserRead,
)
from orgscope.domain.permissions import PERM_IDENTITY_READ, PERM_IDENTITY_WRITE
from orgscope.infra.auth import create_access_token
from orgscope.services.identity_service import IdentityService

router = APIRouter()


def get_identity_service() -> IdentityService:
    return IdentityService()


Service = Annotated[IdentityService, Depends(get_identity_service)]


@router.post("/tenants", response_model=TenantRead, status_code=status.HTTP_201_CREATED)
def create_tenant(payload: TenantCreate, service: Service) -> TenantRead:
    try:
        return TenantRead.model_validate(service.create_tenant(payload))
    except AuthorizationEngineError as exc:
        handle_service_error(exc)


@router.post("/bootstrap-admin", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def bootstrap_admin(payload: BootstrapAdminRequest, service: Service) -> UserRead:
    try:
        return UserRead.model_validate(service.bootstrap_admin(payload))
    except AuthorizationEngineError as exc:
        handle_service_error(exc)


@router.post("/dev-login", response_model=TokenResponse)
def dev_login(payload: DevLoginRequest, service: Service) -> TokenResponse:
    try:
        user, permissions = service.dev_login(payload.tenant_id, payload.username, payload.password)
    except AuthorizationEngineError as exc:
        handle_service_error(exc)
    token = create_access_token(user_id=user.id, tenant_id=user.tenant_id)
    return TokenResponse(access_token=token, permissions=permissions)


@router.post(
    "/users",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def create_user(payload: UserCreate, claims: Claims, service: Service) -> UserRead:
    try:
        return UserRead.model_validate(service.create_user(claims["tenant_id"], payload))
    except AuthorizationEngineError as exc:
        handle_service_error(exc)


@router.get(
    "/users",
    response_model=list[UserRead],
    dependencies=[Depends(require_perm(PERM_IDENTITY_READ))],
)
def list_users(claims: Claims, service: Service) -> list[UserRead]:
    return [UserRead.model_validate(item) for item in service.list_users(claims["tenant_id"])]


@router.get(
    "/users/{user_id}",
    response_model=UserRead,
    dependencies=[Depends(require_perm(PERM_IDENTITY_READ))],
)
def get_user(user_id: int, claims: Claims, service: Service) -> UserRead:
    try:
        return UserRead.model_validate(service.get_user(claims["tenant_id"], user_id))
    except AuthorizationEngineError as exc:
        handle_service_error(exc)


@router.post(
    "/roles",
    response_model=RoleRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def create_role(payload: RoleCreate, claims: Claims, service: Service) -> RoleRead:
    try:
        return RoleRead.model_validate(service.create_role(claims["tenant_id"], payload))
    except AuthorizationEngineError as exc:
        handle_service_error(exc)


@router.get(
    "/roles",
    response_model=list[RoleRead],
    dependencies=[Depends(require_perm(PERM_IDENTITY_READ))],
)
def list_roles(claims: Claims, service: Service) -> list[RoleRead]:
    return [RoleRead.model_validate(item) for item in service.list_roles(claims["tenant_id"])]


@router.get(
    "/permissions",
    response_model=list[PermissionRead],
    dependencies=[Depends(require_perm(PERM_IDENTITY_READ))],
)
def list_permissions(service: Service) -> list[PermissionRead]:
    return [PermissionRead.model_validate(item) for item in service.list_permissions()]


@router.post(
    "/users/{user_id}/roles/{role_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def bind_user_role(user_id: int, role_id: int, claims: Claims, meta: AuditMeta, service: Service) -> Response:
    try:
        service.bind_user_role(
            claims["tenant_id"],
            user_id,
            role_id,
            actor_user_id=claims["user_id"],
            meta=meta,
        )
    except AuthorizationEngineError as exc:
        handle_service_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete(
    "/users/{user_id}/roles/{role_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def unbind_user_role(user_id: int, role_id: int, claims: Claims, meta: AuditMeta, service: Service) -> Response:
    try:
        service.unbind_user_role(
            claims["tenant_id"],
            user_id,
            role_id,
            actor_user_id=claims["user_id"],
            meta=meta,
        )
    except AuthorizationEngineError as exc:
        handle_service_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/roles/{role_id}/permissions/{permission_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def bind_role_permission(
    role_id: int,
    permission_id: int,
    claims: Claims,
    meta: AuditMeta,
    service: Service,
) -> Response:
    try:
        service.bind_role_permission(
            claims["tenant_id"],
            role_id,
            permission_id,
            actor_user_id=claims["user_id"],
            meta=meta,
        )
    except AuthorizationEngineError as exc:
        handle_service_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete(
    "/roles/{role_id}/permissions/{permission_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def unbind_role_permission(
    role_id: int,
    permission_id: int,
    claims: Claims,
    meta: AuditMeta,
    service: Service,
) -> Response:
    try:
        service.unbind_role_permission(
            claims["tenant_id"],
            role_id,
            permission_id,
            actor_user_id=claims["user_id"],
            meta=meta,
        )
    except AuthorizationEngineError as exc:
        handle_service_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
