from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from orgscope.api.deps import (
    AuditMeta,
    Claims,
    Scope,
    get_scope_context_service,
    handle_service_error,
    require_perm,
)
from orgscope.domain.errors import AuthorizationEngineError
from orgscope.domain.models import (
    AuditLogPageRead,
    AuditLogRead,
    PaginationRead,
    ScopeContextRead,
    ScopeGrantRead,
    ScopeReplaceRead,
    ScopeReplaceRequest,
)
from orgscope.domain.permissions import (
    PERM_AUDIT_READ,
    PERM_DATA_SCOPE_READ,
    PERM_DATA_SCOPE_UPSERT,
)
from orgscope.services.audit_service import (
    AUDIT_PAGE_SIZE_DEFAULT,
    AuditLogFilters,
    AuditLogService,
)
from orgscope.services.identity_service import IdentityService
from orgscope.services.scope_context_service import ScopeContextService
from orgscope.services.scope_grant_service import ScopeGrantService

router = APIRouter()


def get_scope_grant_service() -> ScopeGrantService:
    return ScopeGrantService()


def get_audit_log_service() -> AuditLogService:
    return AuditLogService()


def get_identity_service() -> IdentityService:
    return IdentityService()


GrantService = Annotated[ScopeGrantService, Depends(get_scope_grant_service)]
AuditService = Annotated[AuditLogService, Depends(get_audit_log_service)]
Identity = Annotated[IdentityService, Depends(get_identity_service)]
Resolver = Annotated[ScopeContextService, Depends(get_scope_context_service)]


@router.get(
    "/data-scopes",
    response_model=list[ScopeGrantRead],
    dependencies=[Depends(require_perm(PERM_DATA_SCOPE_READ))],
)
def list_data_scopes(
    claims: Claims,
    service: GrantService,
    user_id: int | None = None,
    scope_type: str | None = None,
    scope_id: int | None = None,
) -> list[ScopeGrantRead]:
    try:
        rows = service.list_grants(
            claims["tenant_id"],
            user_id=user_id,
            scope_type=scope_type,
            scope_id=scope_id,
        )
    except AuthorizationEngineError as exc:
        handle_service_error(exc)
    return [ScopeGrantRead.model_validate(item) for item in rows]


@router.put(
    "/data-scopes/users/{user_id}/replace",
    response_model=ScopeReplaceRead,
    dependencies=[Depends(require_perm(PERM_DATA_SCOPE_UPSERT))],
)
def replace_user_data_scopes(
    user_id: int,
    payload: ScopeReplaceRequest,
    claims: Claims,
    meta: AuditMeta,
    service: GrantService,
) -> ScopeReplaceRead:
    try:
        rows = service.replace_scopes(
            claims["tenant_id"],
            user_id,
            payload.scopes,
            actor_user_id=claims["user_id"],
            meta=meta,
        )
    except AuthorizationEngineError as exc:
        handle_service_error(exc)
    return ScopeReplaceRead(
        user_id=user_id,
        scope_count=len(rows),
        scopes=[ScopeGrantRead.model_validate(item) for item in rows],
    )


@router.get(
    "/users/{user_id}/scope-context",
    response_model=ScopeContextRead,
    dependencies=[Depends(require_perm(PERM_DATA_SCOPE_READ))],
)
def get_user_scope_context(
    user_id: int,
    claims: Claims,
    identity: Identity,
    resolver: Resolver,
) -> ScopeContextRead:
    try:
        identity.get_user(claims["tenant_id"], user_id)
    except AuthorizationEngineError as exc:
        handle_service_error(exc)
    context = resolver.resolve(claims["tenant_id"], user_id)
    return ScopeContextRead(user_id=user_id, **context.snapshot())


@router.get(
    "/audit-logs",
    response_model=AuditLogPageRead,
    dependencies=[Depends(require_perm(PERM_AUDIT_READ))],
)
def list_audit_logs(
    claims: Claims,
    context: Scope,
    service: AuditService,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1)] = AUDIT_PAGE_SIZE_DEFAULT,
    scope_type: str | None = None,
    scope_id: int | None = None,
    actor_user_id: int | None = None,
    target_user_id: int | None = None,
    action: str | None = None,
    resource_type: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
) -> AuditLogPageRead:
    try:
        filters = AuditLogFilters.build(
            scope_type=scope_type,
            scope_id=scope_id,
            actor_user_id=actor_user_id,
            target_user_id=target_user_id,
            action=action,
            resource_type=resource_type,
            created_from=created_from,
            created_to=created_to,
        )
        result = service.list_audit_logs(
            claims["tenant_id"],
            context,
            filters,
            page=page,
            page_size=page_size,
        )
    except AuthorizationEngineError as exc:
        handle_service_error(exc)
    return AuditLogPageRead(
        rows=[AuditLogRead.model_validate(item) for item in result.rows],
        pagination=PaginationRead(
            page=result.page,
            page_size=result.page_size,
            total=result.total,
            total_pages=result.total_pages,
        ),
    )
