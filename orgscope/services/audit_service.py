from __future__ import annotations

import math
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func
from sqlmodel import Session, col, select

from orgscope.domain.errors import ValidationError
from orgscope.domain.models import AuditLog
from orgscope.domain.scope import ScopeContext, ScopeType, normalize_scope_type, visibility_predicate
from orgscope.infra.db import get_engine
from orgscope.infra.scope_sql import render_scope_columns

AUDIT_PAGE_SIZE_DEFAULT = 50
AUDIT_PAGE_SIZE_MAX = int(os.getenv("AUDIT_PAGE_SIZE_MAX", "200"))


@dataclass(frozen=True)
class AuditLogFilters:
    scope_type: ScopeType | None = None
    scope_id: int | None = None
    actor_user_id: int | None = None
    target_user_id: int | None = None
    action: str | None = None
    resource_type: str | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None

    @classmethod
    def build(
        cls,
        *,
        scope_type: Any = None,
        scope_id: int | None = None,
        actor_user_id: int | None = None,
        target_user_id: int | None = None,
        action: str | None = None,
        resource_type: str | None = None,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
    ) -> AuditLogFilters:
        normalized_scope_type = normalize_scope_type(scope_type) if scope_type else None
        if normalized_scope_type is not None and scope_id is None:
            raise ValidationError("scope_id is required when scope_type is provided")
        if scope_id is not None and scope_id <= 0:
            raise ValidationError("scope_id must be a positive integer")
        if created_from is not None and created_to is not None and created_from > created_to:
            raise ValidationError("created_from must not be after created_to")
        return cls(
            scope_type=normalized_scope_type,
            scope_id=scope_id,
            actor_user_id=actor_user_id,
            target_user_id=target_user_id,
            action=action.strip() if action and action.strip() else None,
            resource_type=resource_type.strip() if resource_type and resource_type.strip() else None,
            created_from=created_from,
            created_to=created_to,
        )


@dataclass(frozen=True)
class AuditLogPage:
    rows: list[AuditLog]
    page: int
    page_size: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.total > 0 else 0


class AuditLogService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def list_audit_logs(
        self,
        tenant_id: int,
        context: ScopeContext,
        filters: AuditLogFilters | None = None,
        *,
        page: int = 1,
        page_size: int = AUDIT_PAGE_SIZE_DEFAULT,
    ) -> AuditLogPage:
        if page < 1:
            raise ValidationError("page must be a positive integer")
        if page_size < 1:
            raise ValidationError("page_size must be a positive integer")
        page_size = min(page_size, AUDIT_PAGE_SIZE_MAX)
        active = filters or AuditLogFilters()

        conditions = [
            AuditLog.tenant_id == tenant_id,
            render_scope_columns(visibility_predicate(context), AuditLog.scope_type, AuditLog.scope_id),
        ]
        if active.scope_type is not None:
            conditions.append(AuditLog.scope_type == active.scope_type.value)
        if active.scope_id is not None:
            conditions.append(AuditLog.scope_id == active.scope_id)
        if active.actor_user_id is not None:
            conditions.append(AuditLog.actor_user_id == active.actor_user_id)
        if active.target_user_id is not None:
            conditions.append(AuditLog.target_user_id == active.target_user_id)
        if active.action is not None:
            conditions.append(AuditLog.action == active.action)
        if active.resource_type is not None:
            conditions.append(AuditLog.resource_type == active.resource_type)
        if active.created_from is not None:
            conditions.append(col(AuditLog.created_at) >= active.created_from)
        if active.created_to is not None:
            conditions.append(col(AuditLog.created_at) <= active.created_to)

        with self._session() as session:
            total = session.exec(select(func.count()).select_from(AuditLog).where(*conditions)).one()
            rows = list(
                session.exec(
                    select(AuditLog)
                    .where(*conditions)
                    .order_by(col(AuditLog.created_at).desc(), col(AuditLog.id).desc())
                    .offset((page - 1) * page_size)
                    .limit(page_size)
                ).all()
            )
        return AuditLogPage(rows=rows, page=page, page_size=page_size, total=int(total))
